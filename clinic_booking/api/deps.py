from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.database import get_db, get_redis
from ..services.availability_service import AvailabilityService
from ..services.booking_service import BookingService
from ..services.notifications import NotificationSink, RedisNotificationSink
from ..services.override_service import OverrideService


def get_notification_sink(redis_client=Depends(get_redis)) -> NotificationSink:
    """Clinic event publisher; tests override this with a recording sink."""
    return RedisNotificationSink(redis_client)


def get_booking_service(
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> BookingService:
    return BookingService(db, notifier)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_override_service(db: Session = Depends(get_db)) -> OverrideService:
    return OverrideService(db)
