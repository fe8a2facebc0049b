from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional
import logging

from ..core.exceptions import ClinicAssociationError, InvalidRequestError, PractitionerNotFoundError
from ..core.timezone import iter_local_dates, to_clinic_local
from ..models.availability import PractitionerAvailability, DayOfWeek
from ..models.practitioner import Practitioner

logger = logging.getLogger(__name__)

OVERRIDE_KEY = ["practitioner_id", "date", "start_time", "end_time"]
RECURRING_KEY = ["practitioner_id", "day_of_week"]

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _time_of_day(value: time) -> time:
    return value.replace(microsecond=0, tzinfo=None)


class OverrideService:
    """
    Writes recurring rules, date overrides and blocks.

    Rows are written with ``INSERT ... ON CONFLICT DO UPDATE`` against the
    table's unique keys, so two writers racing on the same window end up
    with one row. ``occupy_window`` and ``release_window`` join the
    caller's transaction; every other public method commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_practitioner(self, practitioner_id: int) -> Practitioner:
        practitioner = self.db.query(Practitioner).filter(
            Practitioner.id == practitioner_id
        ).first()
        if not practitioner:
            raise PractitionerNotFoundError(f"No practitioner found with ID {practitioner_id}.")
        return practitioner

    def _upsert(
        self,
        values: Dict[str, Any],
        index_elements: List[str],
        update: Dict[str, Any],
        where=None,
    ) -> int:
        """Insert a row or update the one holding the same key; return rows written."""
        dialect = self.db.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Availability upserts are not supported on {dialect}")

        stmt = insert(PractitionerAvailability).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={**update, "updated_at": func.now()},
            where=where,
        ).returning(PractitionerAvailability.id)
        return len(self.db.execute(stmt).all())

    def _override_row(
        self,
        practitioner_id: int,
        target_date: date,
        start_time: time,
        end_time: time,
    ) -> Optional[PractitionerAvailability]:
        return self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner_id,
            PractitionerAvailability.date == target_date,
            PractitionerAvailability.start_time == start_time,
            PractitionerAvailability.end_time == end_time,
        ).populate_existing().first()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def set_availability(
        self,
        practitioner_id: int,
        start_time: time,
        end_time: time,
        is_available: bool,
        day_of_week: Optional[DayOfWeek] = None,
        target_date: Optional[date] = None,
    ) -> PractitionerAvailability:
        """
        Upsert a recurring weekday rule or a one-time date override.

        A date takes precedence: when given, an override keyed on the date
        and window is written; otherwise the weekday's single recurring rule
        is replaced.
        """
        start_time, end_time = _time_of_day(start_time), _time_of_day(end_time)
        if start_time >= end_time:
            raise InvalidRequestError("start_time must be earlier than end_time.")
        if target_date is None and day_of_week is None:
            raise InvalidRequestError(
                "Either 'day_of_week' for recurring availability or 'date' for "
                "one-time availability must be provided."
            )

        practitioner = self._get_practitioner(practitioner_id)
        values = {
            "practitioner_id": practitioner.id,
            "clinic_id": practitioner.clinic_id,
            "start_time": start_time,
            "end_time": end_time,
            "is_available": is_available,
            "is_blocked": False,
        }

        if target_date is not None:
            self._upsert(
                {**values, "date": target_date},
                OVERRIDE_KEY,
                {"is_available": is_available, "is_blocked": False},
            )
            self._commit()
            logger.info(f"One-time availability for practitioner {practitioner.id} on {target_date} updated")
            return self._override_row(practitioner.id, target_date, start_time, end_time)

        self._upsert(
            {**values, "day_of_week": day_of_week},
            RECURRING_KEY,
            {"start_time": start_time, "end_time": end_time, "is_available": is_available},
        )
        self._commit()
        logger.info(f"Recurring availability for practitioner {practitioner.id} on {day_of_week.value} updated")
        return self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner.id,
            PractitionerAvailability.day_of_week == day_of_week,
        ).populate_existing().first()

    def block_range(
        self,
        practitioner_id: int,
        start_datetime: datetime,
        end_datetime: datetime,
        is_blocked: bool = True,
    ) -> List[PractitionerAvailability]:
        """
        Block (or unblock) a window on every local date of a range.

        The wall-clock start and end times of the request are repeated on
        each date, so a three-day range from 09:00 to 17:00 yields three
        09:00-17:00 rows rather than one span.
        """
        start = to_clinic_local(start_datetime)
        end = to_clinic_local(end_datetime)
        if end < start:
            raise InvalidRequestError("end_datetime must not be earlier than start_datetime.")

        start_time, end_time = _time_of_day(start.time()), _time_of_day(end.time())
        if start_time >= end_time:
            raise InvalidRequestError(
                "The blocked time of day must start before it ends; the same window is applied to every date."
            )

        practitioner = self._get_practitioner(practitioner_id)
        update: Dict[str, Any] = {"is_blocked": is_blocked}
        if is_blocked:
            update["is_available"] = None

        days = list(iter_local_dates(start.date(), end.date()))
        for day in days:
            self._upsert(
                {
                    "practitioner_id": practitioner.id,
                    "clinic_id": practitioner.clinic_id,
                    "date": day,
                    "start_time": start_time,
                    "end_time": end_time,
                    "is_blocked": is_blocked,
                    "is_available": None,
                },
                OVERRIDE_KEY,
                update,
            )
        self._commit()

        logger.info(
            f"{'Blocked' if is_blocked else 'Unblocked'} {start_time}-{end_time} for practitioner "
            f"{practitioner.id} on {len(days)} day(s) from {days[0]}"
        )
        return [self._override_row(practitioner.id, day, start_time, end_time) for day in days]

    def block_slot(
        self,
        practitioner_id: int,
        target_date: date,
        start_time: time,
        end_time: time,
        clinic_id: Optional[int] = None,
    ) -> PractitionerAvailability:
        """Mark one window on one date unavailable."""
        start_time, end_time = _time_of_day(start_time), _time_of_day(end_time)
        if start_time >= end_time:
            raise InvalidRequestError("start_time must be earlier than end_time.")

        practitioner = self._get_practitioner(practitioner_id)
        if clinic_id is None:
            clinic_id = practitioner.clinic_id
            logger.debug(f"Resolved clinic {clinic_id} for practitioner {practitioner_id}")
        elif clinic_id != practitioner.clinic_id:
            raise ClinicAssociationError(
                f"Practitioner {practitioner_id} does not work at clinic {clinic_id}."
            )

        self._upsert(
            {
                "practitioner_id": practitioner.id,
                "clinic_id": clinic_id,
                "date": target_date,
                "start_time": start_time,
                "end_time": end_time,
                "is_available": False,
            },
            OVERRIDE_KEY,
            {"is_available": False},
        )
        self._commit()
        logger.info(f"Slot {target_date} {start_time}-{end_time} blocked for practitioner {practitioner_id}")
        return self._override_row(practitioner_id, target_date, start_time, end_time)

    def occupy_window(self, practitioner: Practitioner, start: datetime, end: datetime) -> bool:
        """
        Mark a booked window unavailable inside the caller's transaction.

        Flips an existing override for exactly this window or creates one.
        Returns False when the row was already occupied or blocked, which
        means a concurrent booking took the window first.
        """
        written = self._upsert(
            {
                "practitioner_id": practitioner.id,
                "clinic_id": practitioner.clinic_id,
                "date": start.date(),
                "start_time": _time_of_day(start.time()),
                "end_time": _time_of_day(end.time()),
                "is_available": False,
            },
            OVERRIDE_KEY,
            {
                "is_available": False,
                "previous_is_available": PractitionerAvailability.is_available,
            },
            where=(
                PractitionerAvailability.is_available.is_not(False)
                & PractitionerAvailability.is_blocked.is_not(True)
            ),
        )
        return written == 1

    def release_window(self, practitioner: Practitioner, start: datetime, end: datetime) -> int:
        """
        Undo occupy_window inside the caller's transaction.

        A row the booking created goes back to neutral; a row it flipped gets
        its earlier is_available back.
        """
        released = self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner.id,
            PractitionerAvailability.clinic_id == practitioner.clinic_id,
            PractitionerAvailability.date == start.date(),
            PractitionerAvailability.start_time == _time_of_day(start.time()),
            PractitionerAvailability.end_time == _time_of_day(end.time()),
            PractitionerAvailability.is_available.is_(False),
            PractitionerAvailability.is_blocked.is_not(True),
        ).update(
            {
                "is_available": PractitionerAvailability.previous_is_available,
                "previous_is_available": None,
            },
            synchronize_session="fetch",
        )
        return released
