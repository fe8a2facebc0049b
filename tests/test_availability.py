from datetime import datetime, time

import pytest

from clinic_booking.core.exceptions import PractitionerNotFoundError
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.models.availability import PractitionerAvailability
from clinic_booking.services.availability_service import AvailabilityService
from clinic_booking.services.intervals import Interval
from clinic_booking.services.override_service import OverrideService

from .conftest import MONDAY, TUESDAY


def local(day, hour, minute=0):
    return datetime(day.year, day.month, day.day, hour, minute)


def slots(*pairs):
    return [{"start_time": start, "end_time": end} for start, end in pairs]


class TestResolveAvailability:

    def test_recurring_rule_alone(self, db, seeded):
        service = AvailabilityService(db)
        free = service.resolve_availability(seeded.practitioner_id, MONDAY)
        assert free == [Interval(local(MONDAY, 9), local(MONDAY, 17))]

    def test_block_override_splits_the_day(self, db, seeded):
        OverrideService(db).block_range(
            seeded.practitioner_id, local(MONDAY, 12), local(MONDAY, 13), True
        )

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, MONDAY)
        assert free == slots(("09:00:00", "12:00:00"), ("13:00:00", "17:00:00"))

    def test_block_only_applies_to_its_date(self, db, seeded):
        OverrideService(db).block_range(
            seeded.practitioner_id, local(MONDAY, 12), local(MONDAY, 13), True
        )

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, TUESDAY)
        assert free == slots(("09:00:00", "17:00:00"))

    def test_weekday_without_rules_has_no_free_time(self, db, seeded):
        wednesday = datetime(2026, 3, 4).date()
        assert AvailabilityService(db).get_free_slots(seeded.practitioner_id, wednesday) == []

    def test_available_override_extends_the_day(self, db, seeded):
        OverrideService(db).set_availability(
            seeded.practitioner_id, time(17, 0), time(19, 0), True, target_date=MONDAY
        )

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, MONDAY)
        assert free == slots(("09:00:00", "19:00:00"))

    def test_unavailable_override_is_cut_out(self, db, seeded):
        OverrideService(db).block_slot(seeded.practitioner_id, MONDAY, time(15, 0), time(16, 0))

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, MONDAY)
        assert free == slots(("09:00:00", "15:00:00"), ("16:00:00", "17:00:00"))

    def test_live_appointments_are_cut_out(self, db, seeded):
        db.add_all([
            Appointment(
                patient_id=seeded.patient_id,
                clinic_id=seeded.clinic_id,
                practitioner_id=seeded.practitioner_id,
                appointment_start_datetime=local(MONDAY, 10),
                duration=30,
                status=AppointmentStatus.SCHEDULED,
            ),
            Appointment(
                patient_id=seeded.patient_id,
                clinic_id=seeded.clinic_id,
                practitioner_id=seeded.practitioner_id,
                appointment_start_datetime=local(MONDAY, 14),
                duration=60,
                status=AppointmentStatus.CANCELLED,
            ),
        ])
        db.commit()

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, MONDAY)
        assert free == slots(("09:00:00", "10:00:00"), ("10:30:00", "17:00:00"))

    def test_rows_of_another_clinic_are_ignored(self, db, seeded):
        db.add(PractitionerAvailability(
            practitioner_id=seeded.practitioner_id,
            clinic_id=seeded.other_clinic_id,
            date=MONDAY,
            start_time=time(9, 0),
            end_time=time(17, 0),
            is_blocked=True,
        ))
        db.commit()

        free = AvailabilityService(db).get_free_slots(seeded.practitioner_id, MONDAY)
        assert free == slots(("09:00:00", "17:00:00"))

    def test_unknown_practitioner(self, db, seeded):
        with pytest.raises(PractitionerNotFoundError):
            AvailabilityService(db).resolve_availability(9999, MONDAY)

    def test_practitioner_outside_clinic(self, db, seeded):
        with pytest.raises(PractitionerNotFoundError):
            AvailabilityService(db).resolve_availability(
                seeded.practitioner_id, MONDAY, clinic_id=seeded.other_clinic_id
            )


class TestListBlockedSlots:

    def test_lists_blocks_for_a_date(self, db, seeded):
        overrides = OverrideService(db)
        overrides.block_range(seeded.practitioner_id, local(MONDAY, 12), local(MONDAY, 13), True)
        overrides.block_range(seeded.practitioner_id, local(TUESDAY, 8), local(TUESDAY, 9), True)

        service = AvailabilityService(db)
        assert len(service.list_blocked_slots(seeded.practitioner_id)) == 2

        monday_blocks = service.list_blocked_slots(seeded.practitioner_id, MONDAY)
        assert [(row.start_time, row.end_time) for row in monday_blocks] == [(time(12, 0), time(13, 0))]

    def test_unblocked_rows_are_not_listed(self, db, seeded):
        overrides = OverrideService(db)
        overrides.block_range(seeded.practitioner_id, local(MONDAY, 12), local(MONDAY, 13), True)
        overrides.block_range(seeded.practitioner_id, local(MONDAY, 12), local(MONDAY, 13), False)

        assert AvailabilityService(db).list_blocked_slots(seeded.practitioner_id) == []
