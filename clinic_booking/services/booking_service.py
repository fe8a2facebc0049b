from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging
import random
import time

from ..core.config import settings
from ..core.exceptions import (
    SchedulingError, InvalidRequestError, ClinicAssociationError,
    AppointmentNotFoundError, PractitionerBookedError, ConcurrencyConflictError
)
from ..core.timezone import add_minutes, to_clinic_local, weekday_for
from ..models.appointment import Appointment, AppointmentStatus
from ..models.patient import Patient
from ..models.practitioner import Practitioner
from ..schemas.appointment import AppointmentCreate, AppointmentReschedule
from .availability_service import AvailabilityService
from .booking_validator import BookingValidator
from .notifications import NotificationSink, NEW_APPOINTMENT, APPOINTMENT_UPDATED
from .override_service import OverrideService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE serialization_failure and deadlock_detected
RETRYABLE_PGCODES = {"40001", "40P01"}
# SQLSTATE unique_violation
UNIQUE_VIOLATION_PGCODE = "23505"


def _retry_delay(attempt: int) -> float:
    base = 0.05 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


class BookingService:
    """
    Books, moves and cancels appointments.

    Every write runs in one transaction that validates, marks the
    practitioner's window occupied and stores the appointment. Transactions
    that lose a race with a concurrent booking are retried, so the caller
    sees the precise conflict on the next pass. Events are published only
    after commit.
    """

    def __init__(self, db: Session, notifier: NotificationSink):
        self.db = db
        self.notifier = notifier
        self.validator = BookingValidator(db)
        self.overrides = OverrideService(db)
        self.availability = AvailabilityService(db)

    @staticmethod
    def _is_retryable(exc: SQLAlchemyError) -> bool:
        """Whether a failure came from losing a race rather than from bad data."""
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        message = str(exc).lower()

        if isinstance(exc, IntegrityError):
            # Only a unique-key collision means another transaction won
            return pgcode == UNIQUE_VIOLATION_PGCODE or "unique constraint failed" in message

        if pgcode in RETRYABLE_PGCODES:
            return True
        return "database is locked" in message or "could not serialize" in message

    def _begin(self) -> None:
        """Open the write transaction at the isolation the backend needs."""
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

    def _lock_practitioner(self, practitioner_id: int) -> Optional[Practitioner]:
        return self.db.query(Practitioner).filter(
            Practitioner.id == practitioner_id
        ).with_for_update().first()

    def _in_transaction(self, op_name: str, work: Callable[[], T]) -> T:
        """Run work and commit, retrying when a concurrent transaction wins."""
        attempt = 1
        while True:
            try:
                self._begin()
                result = work()
                self.db.commit()
                return result
            except SchedulingError:
                self.db.rollback()
                raise
            except (OperationalError, IntegrityError) as exc:
                self.db.rollback()
                if not self._is_retryable(exc):
                    raise
                if attempt >= settings.BOOKING_MAX_RETRIES:
                    logger.error(f"{op_name} gave up after {attempt} attempts: {exc}")
                    raise ConcurrencyConflictError(
                        "The appointment could not be saved because of concurrent changes. "
                        "Please try again."
                    ) from exc

                delay = _retry_delay(attempt)
                logger.warning(f"{op_name} collided with a concurrent transaction, retry {attempt} in {delay:.3f}s")
                time.sleep(delay)
                attempt += 1
            except SQLAlchemyError:
                self.db.rollback()
                raise

    def _publish(self, clinic_id: int, event: str, details: Dict[str, Any]) -> None:
        try:
            self.notifier.publish(clinic_id, {"event": event, "data": details})
        except Exception:
            logger.exception(f"Failed to publish {event} for clinic {clinic_id}")

    def validate_clinic_association(
        self,
        patient_id: int,
        practitioner_id: Optional[int],
        clinic_id: int,
    ) -> None:
        """Patient and practitioner must both belong to the booking's clinic."""
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if patient is None or patient.clinic_id != clinic_id:
            raise ClinicAssociationError(
                f"Patient {patient_id} is not registered with clinic {clinic_id}."
            )

        if practitioner_id is None:
            return

        practitioner = self.db.query(Practitioner).filter(Practitioner.id == practitioner_id).first()
        if practitioner is None or practitioner.clinic_id != clinic_id:
            raise ClinicAssociationError(
                f"Practitioner {practitioner_id} does not work at clinic {clinic_id}."
            )

    def _occupy(self, practitioner: Practitioner, start: datetime, end: datetime) -> None:
        if not self.overrides.occupy_window(practitioner, start, end):
            raise PractitionerBookedError(
                f"The selected time slot {start.isoformat()} was taken by another booking."
            )

    def book_appointment(self, request: AppointmentCreate) -> Dict[str, Any]:
        """Validate and store a booking, then announce it to the clinic."""
        status = request.status or AppointmentStatus.PENDING
        if status == AppointmentStatus.CANCELLED:
            raise InvalidRequestError("A new appointment cannot be created as CANCELLED.")

        start = to_clinic_local(request.appointment_start_datetime)
        end = add_minutes(start, request.duration)
        appointment_date = start.date()
        weekday = weekday_for(appointment_date)

        def work() -> int:
            practitioner = None
            if request.practitioner_id is not None:
                practitioner = self._lock_practitioner(request.practitioner_id)

            self.validator.validate_booking(
                patient_id=request.patient_id,
                clinic_id=request.clinic_id,
                practitioner_id=request.practitioner_id,
                start=start,
                end=end,
                appointment_date=appointment_date,
                weekday=weekday,
                duration=request.duration,
            )
            logger.debug(f"Booking for patient {request.patient_id} at {start} passed validation")

            self.validate_clinic_association(request.patient_id, request.practitioner_id, request.clinic_id)

            if practitioner is not None:
                self._occupy(practitioner, start, end)

            appointment = Appointment(
                patient_id=request.patient_id,
                clinic_id=request.clinic_id,
                practitioner_id=request.practitioner_id,
                appointment_start_datetime=start,
                duration=request.duration,
                status=status,
                appointment_context=request.appointment_context,
            )
            self.db.add(appointment)
            self.db.flush()
            return appointment.id

        appointment_id = self._in_transaction("book_appointment", work)
        logger.info(f"Appointment {appointment_id} booked for clinic {request.clinic_id} at {start}")

        details = self.fetch_appointment_details(appointment_id, request.clinic_id)
        self._publish(request.clinic_id, NEW_APPOINTMENT, details)
        return details

    def _load_for_update(self, appointment_id: int, clinic_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.clinic_id == clinic_id,
        ).with_for_update().first()
        if not appointment:
            raise AppointmentNotFoundError(
                f"No appointment {appointment_id} found for clinic {clinic_id}."
            )
        return appointment

    def update_status(
        self,
        appointment_id: int,
        clinic_id: int,
        new_status: AppointmentStatus,
    ) -> Dict[str, Any]:
        """
        Move an appointment to a new status.

        Cancelling frees the practitioner's occupied window. A cancelled
        appointment stays cancelled.
        """
        def work() -> None:
            appointment = self._load_for_update(appointment_id, clinic_id)
            if appointment.status == new_status:
                return

            if appointment.status == AppointmentStatus.CANCELLED:
                raise InvalidRequestError(
                    f"Appointment {appointment_id} is cancelled and cannot be changed to {new_status.value}."
                )

            if new_status == AppointmentStatus.CANCELLED and appointment.practitioner_id is not None:
                practitioner = self._lock_practitioner(appointment.practitioner_id)
                released = self.overrides.release_window(
                    practitioner,
                    appointment.appointment_start_datetime,
                    appointment.appointment_end_datetime,
                )
                logger.debug(f"Released {released} occupied window(s) for appointment {appointment_id}")

            appointment.status = new_status

        self._in_transaction("update_status", work)
        logger.info(f"Appointment {appointment_id} status set to {new_status.value}")

        details = self.fetch_appointment_details(appointment_id, clinic_id)
        self._publish(clinic_id, APPOINTMENT_UPDATED, details)
        return details

    def cancel_appointment(self, appointment_id: int, clinic_id: int) -> Dict[str, Any]:
        return self.update_status(appointment_id, clinic_id, AppointmentStatus.CANCELLED)

    def reschedule_appointment(
        self,
        appointment_id: int,
        clinic_id: int,
        request: AppointmentReschedule,
    ) -> Dict[str, Any]:
        """Move an appointment to a new window, revalidated as a fresh booking."""
        start = to_clinic_local(request.appointment_start_datetime)

        def work() -> None:
            appointment = self._load_for_update(appointment_id, clinic_id)
            if appointment.status == AppointmentStatus.CANCELLED:
                raise InvalidRequestError(f"Appointment {appointment_id} is cancelled and cannot be rescheduled.")

            duration = request.duration or appointment.duration
            end = add_minutes(start, duration)

            practitioner = None
            if appointment.practitioner_id is not None:
                practitioner = self._lock_practitioner(appointment.practitioner_id)
                self.overrides.release_window(
                    practitioner,
                    appointment.appointment_start_datetime,
                    appointment.appointment_end_datetime,
                )

            self.validator.validate_booking(
                patient_id=appointment.patient_id,
                clinic_id=clinic_id,
                practitioner_id=appointment.practitioner_id,
                start=start,
                end=end,
                appointment_date=start.date(),
                weekday=weekday_for(start.date()),
                duration=duration,
                exclude_appointment_id=appointment.id,
            )
            self.validate_clinic_association(appointment.patient_id, appointment.practitioner_id, clinic_id)

            if practitioner is not None:
                self._occupy(practitioner, start, end)

            appointment.appointment_start_datetime = start
            appointment.duration = duration

        self._in_transaction("reschedule_appointment", work)
        logger.info(f"Appointment {appointment_id} rescheduled to {start}")

        details = self.fetch_appointment_details(appointment_id, clinic_id)
        self._publish(clinic_id, APPOINTMENT_UPDATED, details)
        return details

    @staticmethod
    def to_details(appointment: Appointment) -> Dict[str, Any]:
        """Appointment fields plus patient and practitioner display names."""
        return {
            "id": appointment.id,
            "patient_id": appointment.patient_id,
            "clinic_id": appointment.clinic_id,
            "practitioner_id": appointment.practitioner_id,
            "appointment_start_datetime": appointment.appointment_start_datetime,
            "appointment_end_datetime": appointment.appointment_end_datetime,
            "duration": appointment.duration,
            "status": appointment.status,
            "appointment_context": appointment.appointment_context,
            "patient_name": appointment.patient.full_name if appointment.patient else None,
            "practitioner_name": appointment.practitioner.name if appointment.practitioner else None,
            "created_at": appointment.created_at,
            "updated_at": appointment.updated_at,
        }

    def _details_query(self):
        return self.db.query(Appointment).options(
            joinedload(Appointment.patient),
            joinedload(Appointment.practitioner),
        )

    def fetch_appointment_details(self, appointment_id: int, clinic_id: Optional[int] = None) -> Dict[str, Any]:
        query = self._details_query().filter(Appointment.id == appointment_id)
        if clinic_id is not None:
            query = query.filter(Appointment.clinic_id == clinic_id)

        appointment = query.first()
        if not appointment:
            raise AppointmentNotFoundError(f"No appointment found with ID {appointment_id}.")
        return self.to_details(appointment)

    def list_clinic_appointments(self, clinic_id: int) -> List[Dict[str, Any]]:
        appointments = self._details_query().filter(
            Appointment.clinic_id == clinic_id
        ).order_by(Appointment.appointment_start_datetime.asc()).all()
        return [self.to_details(a) for a in appointments]

    def list_practitioner_appointments(
        self,
        practitioner_id: int,
        clinic_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        practitioner = self.availability.get_practitioner(practitioner_id, clinic_id)
        appointments = self._details_query().filter(
            Appointment.practitioner_id == practitioner.id,
            Appointment.clinic_id == practitioner.clinic_id,
        ).order_by(Appointment.appointment_start_datetime.asc()).all()
        return [self.to_details(a) for a in appointments]
