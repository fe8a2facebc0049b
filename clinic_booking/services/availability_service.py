from sqlalchemy import or_, and_
from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from ..core.config import settings
from ..core.exceptions import PractitionerNotFoundError
from ..core.timezone import combine_local, weekday_for
from ..models.appointment import Appointment, AppointmentStatus
from ..models.availability import PractitionerAvailability, AvailabilityReason, DayOfWeek
from ..models.practitioner import Practitioner
from .intervals import Interval, merge_intervals, subtract_intervals

logger = logging.getLogger(__name__)

TIME_FORMAT = "%H:%M:%S"


def row_interval(row: PractitionerAvailability, target_date: date) -> Interval:
    """Place an availability row's time-of-day window on a date."""
    return Interval(
        combine_local(target_date, row.start_time),
        combine_local(target_date, row.end_time),
    )


def appointment_interval(appointment: Appointment) -> Interval:
    return Interval(appointment.appointment_start_datetime, appointment.appointment_end_datetime)


def format_interval(interval: Interval) -> Dict[str, str]:
    return {
        "start_time": interval.start.strftime(TIME_FORMAT),
        "end_time": interval.end.strftime(TIME_FORMAT),
    }


class AvailabilityService:
    def __init__(self, db: Session):
        self.db = db

    def get_practitioner(self, practitioner_id: int, clinic_id: Optional[int] = None) -> Practitioner:
        """Load a practitioner, optionally requiring membership of a clinic."""
        query = self.db.query(Practitioner).filter(Practitioner.id == practitioner_id)
        if clinic_id is not None:
            query = query.filter(Practitioner.clinic_id == clinic_id)

        practitioner = query.first()
        if not practitioner:
            raise PractitionerNotFoundError(
                f"The practitioner ID {practitioner_id} does not match any record."
            )
        return practitioner

    def rows_for_day(
        self,
        practitioner_id: int,
        clinic_id: int,
        target_date: date,
    ) -> Tuple[List[PractitionerAvailability], List[PractitionerAvailability]]:
        """Return (recurring rules, date overrides) that apply to a local date."""
        rows = self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner_id,
            PractitionerAvailability.clinic_id == clinic_id,
            or_(
                and_(
                    PractitionerAvailability.date.is_(None),
                    PractitionerAvailability.day_of_week == DayOfWeek(weekday_for(target_date)),
                ),
                PractitionerAvailability.date == target_date,
            ),
        ).order_by(PractitionerAvailability.start_time.asc()).all()

        recurring = [row for row in rows if row.is_recurring]
        overrides = [row for row in rows if not row.is_recurring]
        return recurring, overrides

    def active_appointments(
        self,
        practitioner_id: int,
        clinic_id: int,
        window: Interval,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Appointment]:
        """Non-cancelled appointments of a practitioner overlapping a window."""
        # Only the start is stored, so bound the scan by the longest duration
        earliest_start = window.start - timedelta(minutes=settings.MAX_APPOINTMENT_DURATION_MINUTES)

        query = self.db.query(Appointment).filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.clinic_id == clinic_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.appointment_start_datetime < window.end,
            Appointment.appointment_start_datetime > earliest_start,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        appointments = query.order_by(Appointment.appointment_start_datetime.asc()).all()
        return [a for a in appointments if appointment_interval(a).overlaps(window)]

    @staticmethod
    def partition(
        rows: Sequence[PractitionerAvailability],
        target_date: date,
    ) -> Tuple[List[Interval], List[Interval]]:
        """Split rows into (available, forced-blocked) intervals on a date."""
        available: List[Interval] = []
        blocked: List[Interval] = []

        for row in rows:
            reason = row.reason
            if reason == AvailabilityReason.AVAILABLE:
                available.append(row_interval(row, target_date))
            elif reason in (AvailabilityReason.BLOCKED_BY_ADMIN, AvailabilityReason.OCCUPIED_BY_BOOKING):
                blocked.append(row_interval(row, target_date))

        return available, blocked

    def resolve_availability(
        self,
        practitioner_id: int,
        target_date: date,
        clinic_id: Optional[int] = None,
    ) -> List[Interval]:
        """
        Free intervals for a practitioner on a clinic-local date.

        Recurring rules and date overrides that are available are merged, then
        blocked and unavailable windows are cut out, then live appointments.
        A practitioner with no rules for the day has no free time.
        """
        practitioner = self.get_practitioner(practitioner_id, clinic_id)
        clinic_id = practitioner.clinic_id

        recurring, overrides = self.rows_for_day(practitioner.id, clinic_id, target_date)

        recurring_available, recurring_blocked = self.partition(recurring, target_date)
        override_available, override_blocked = self.partition(overrides, target_date)

        available = merge_intervals(recurring_available + override_available)
        blocked = merge_intervals(recurring_blocked + override_blocked)
        after_blocks = subtract_intervals(available, blocked)

        day_start = datetime.combine(target_date, datetime.min.time())
        day = Interval(day_start, day_start + timedelta(days=1))
        booked = [
            appointment_interval(a)
            for a in self.active_appointments(practitioner.id, clinic_id, day)
        ]

        free = subtract_intervals(after_blocks, booked)

        logger.debug(
            f"Resolved availability for practitioner {practitioner.id} on {target_date}: "
            f"{len(available)} available, {len(blocked)} blocked, {len(booked)} booked, {len(free)} free"
        )
        return free

    def get_free_slots(
        self,
        practitioner_id: int,
        target_date: date,
        clinic_id: Optional[int] = None,
    ) -> List[Dict[str, str]]:
        """Free intervals formatted as local time-of-day pairs."""
        return [
            format_interval(interval)
            for interval in self.resolve_availability(practitioner_id, target_date, clinic_id)
        ]

    def list_blocked_slots(
        self,
        practitioner_id: int,
        target_date: Optional[date] = None,
    ) -> List[PractitionerAvailability]:
        """Blocked rows for a practitioner, recurring and date-specific."""
        practitioner = self.get_practitioner(practitioner_id)

        query = self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner.id,
            PractitionerAvailability.clinic_id == practitioner.clinic_id,
            PractitionerAvailability.is_blocked.is_(True),
        )
        if target_date is not None:
            query = query.filter(PractitionerAvailability.date == target_date)

        return query.order_by(
            PractitionerAvailability.date.asc(),
            PractitionerAvailability.day_of_week.asc(),
            PractitionerAvailability.start_time.asc(),
        ).all()
