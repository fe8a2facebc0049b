from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
import logging

from ..core.exceptions import (
    PatientNotFoundError, ClinicNotFoundError, PractitionerNotFoundError,
    ClinicAssociationError, DuplicateAppointmentError, SlotBlockedError,
    OutsideAvailabilityError, PractitionerBookedError, PractitionerUnavailableError
)
from ..core.timezone import iter_local_dates
from ..models.appointment import Appointment, AppointmentStatus
from ..models.availability import PractitionerAvailability, AvailabilityReason
from ..models.clinic import Clinic
from ..models.patient import Patient
from ..models.practitioner import Practitioner
from .availability_service import AvailabilityService, row_interval
from .intervals import Interval

logger = logging.getLogger(__name__)


class BookingValidator:
    """
    Pre-commit checks for a booking request.

    Run inside the booking transaction so every check sees the same
    snapshot. Checks run in a fixed order and each failure raises its own
    exception type.
    """

    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)

    def validate_booking(
        self,
        patient_id: int,
        clinic_id: int,
        practitioner_id: Optional[int],
        start: datetime,
        end: datetime,
        appointment_date: date,
        weekday: str,
        duration: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        """Raise the first failing check for the requested [start, end) window."""
        window = Interval(start, end)

        patient, _, practitioner = self.check_entities(patient_id, clinic_id, practitioner_id)
        self.check_clinic_registration(patient, clinic_id)
        self.check_duplicate(patient_id, clinic_id, start, exclude_appointment_id)

        if practitioner is None:
            logger.debug("No practitioner requested; skipping availability checks")
            return

        logger.debug(
            f"Checking availability for practitioner {practitioner.id}, date {appointment_date}, "
            f"day {weekday}, window {start} - {end} ({duration} min)"
        )
        self.check_not_blocked(practitioner, window)
        self.check_within_availability(practitioner, window, appointment_date)
        self.check_no_practitioner_overlap(practitioner, window, exclude_appointment_id)
        self.check_not_marked_unavailable(practitioner, window)

    def check_entities(
        self,
        patient_id: int,
        clinic_id: int,
        practitioner_id: Optional[int],
    ) -> Tuple[Patient, Clinic, Optional[Practitioner]]:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        clinic = self.db.query(Clinic).filter(Clinic.id == clinic_id).first()
        practitioner = None
        if practitioner_id is not None:
            practitioner = self.db.query(Practitioner).filter(
                Practitioner.id == practitioner_id
            ).first()

        if not patient:
            raise PatientNotFoundError(f"The patient ID {patient_id} does not exist.")

        if not clinic:
            raise ClinicNotFoundError(f"The clinic ID {clinic_id} is not valid.")

        if practitioner_id is not None and not practitioner:
            raise PractitionerNotFoundError(
                f"The practitioner ID {practitioner_id} does not match any record."
            )

        return patient, clinic, practitioner

    def check_clinic_registration(self, patient: Patient, clinic_id: int) -> None:
        if patient.clinic_id != clinic_id:
            raise ClinicAssociationError(
                f"The selected patient (ID: {patient.id}) is not registered with "
                f"the specified clinic (ID: {clinic_id})."
            )

    def check_duplicate(
        self,
        patient_id: int,
        clinic_id: int,
        start: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        query = self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.clinic_id == clinic_id,
            Appointment.appointment_start_datetime == start,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        if query.first():
            raise DuplicateAppointmentError(
                f"An appointment already exists for the selected patient at this clinic "
                f"on {start.isoformat()}."
            )

    def check_not_blocked(self, practitioner: Practitioner, window: Interval) -> None:
        for row, interval in self._rows_touching(practitioner, window):
            if row.reason == AvailabilityReason.BLOCKED_BY_ADMIN and interval.overlaps(window):
                raise SlotBlockedError(
                    f"The selected time slot ({window.start.isoformat()} to {window.end.isoformat()}) "
                    f"is blocked by the practitioner from ({interval.start.isoformat()} to "
                    f"{interval.end.isoformat()})."
                )

    def check_within_availability(
        self,
        practitioner: Practitioner,
        window: Interval,
        appointment_date: date,
    ) -> None:
        recurring, overrides = self.availability.rows_for_day(
            practitioner.id, practitioner.clinic_id, appointment_date
        )

        # A covering override wins; recurring rules are only consulted without one
        for rows, source in ((overrides, "override"), (recurring, "recurring rule")):
            for row in rows:
                if row.reason == AvailabilityReason.AVAILABLE and row_interval(row, appointment_date).contains(window):
                    logger.debug(f"Window covered by {source} {row.id}")
                    return

        raise OutsideAvailabilityError(
            f"The practitioner is not available from {window.start.isoformat()} to "
            f"{window.end.isoformat()}."
        )

    def check_no_practitioner_overlap(
        self,
        practitioner: Practitioner,
        window: Interval,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        overlapping = self.availability.active_appointments(
            practitioner.id, practitioner.clinic_id, window, exclude_appointment_id
        )
        if overlapping:
            existing = overlapping[0]
            raise PractitionerBookedError(
                f"The selected time slot {existing.appointment_start_datetime.isoformat()} for "
                f"duration of {existing.duration} minutes overlaps with another appointment."
            )

    def check_not_marked_unavailable(self, practitioner: Practitioner, window: Interval) -> None:
        for row, interval in self._rows_touching(practitioner, window):
            if row.reason == AvailabilityReason.OCCUPIED_BY_BOOKING and interval.overlaps(window):
                raise PractitionerUnavailableError(
                    f"The practitioner is marked unavailable during the selected time slot "
                    f"{interval.start.isoformat()} - {interval.end.isoformat()}."
                )

    def _rows_touching(
        self,
        practitioner: Practitioner,
        window: Interval,
    ) -> List[Tuple[PractitionerAvailability, Interval]]:
        """Rows for every local date the window touches, placed on that date."""
        last_day = (window.end - timedelta(microseconds=1)).date()
        touching = []
        for day in iter_local_dates(window.start.date(), last_day):
            recurring, overrides = self.availability.rows_for_day(
                practitioner.id, practitioner.clinic_id, day
            )
            touching.extend((row, row_interval(row, day)) for row in recurring + overrides)
        return touching
