"""
Clinic notification sinks.

The booking service only needs ``publish(clinic_id, event)``; delivery is
best-effort and nothing waits for a subscriber.
"""

import json
import logging
from typing import Any, Dict, Protocol

from ..core.config import settings

logger = logging.getLogger(__name__)

NEW_APPOINTMENT = "newAppointment"
APPOINTMENT_UPDATED = "appointmentUpdated"


class NotificationSink(Protocol):
    def publish(self, clinic_id: int, event: Dict[str, Any]) -> None:
        ...


class RedisNotificationSink:
    """Publishes events as JSON on a per-clinic Redis pub/sub channel."""

    def __init__(self, client, channel_prefix: str = settings.NOTIFICATION_CHANNEL_PREFIX):
        self.client = client
        self.channel_prefix = channel_prefix

    def channel_for(self, clinic_id: int) -> str:
        return f"{self.channel_prefix}{clinic_id}"

    def publish(self, clinic_id: int, event: Dict[str, Any]) -> None:
        channel = self.channel_for(clinic_id)
        receivers = self.client.publish(channel, json.dumps(event, default=str))
        logger.debug(f"Published {event.get('event')} to {channel} ({receivers} subscriber(s))")
