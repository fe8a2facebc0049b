import json
from datetime import datetime

from clinic_booking.services.notifications import RedisNotificationSink, NEW_APPOINTMENT


class FakeRedis:
    def __init__(self):
        self.published = []

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def test_publishes_json_on_clinic_channel():
    client = FakeRedis()
    sink = RedisNotificationSink(client)

    sink.publish(7, {"event": NEW_APPOINTMENT, "data": {"id": 3, "start": datetime(2026, 3, 2, 10, 0)}})

    channel, message = client.published[0]
    assert channel == "clinic_7"
    payload = json.loads(message)
    assert payload["event"] == "newAppointment"
    assert payload["data"] == {"id": 3, "start": "2026-03-02 10:00:00"}


def test_custom_prefix():
    sink = RedisNotificationSink(FakeRedis(), channel_prefix="bookings.")
    assert sink.channel_for(2) == "bookings.2"
