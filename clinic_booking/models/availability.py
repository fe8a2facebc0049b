from sqlalchemy import (
    Column, Integer, ForeignKey, Date, DateTime, Time, Boolean,
    CheckConstraint, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from typing import Optional
import enum

from ..core.database import Base

class DayOfWeek(str, enum.Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

class AvailabilityReason(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BLOCKED_BY_ADMIN = "BLOCKED_BY_ADMIN"
    OCCUPIED_BY_BOOKING = "OCCUPIED_BY_BOOKING"

class PractitionerAvailability(Base):
    """
    One availability window for a practitioner.

    A row is either a recurring weekly rule (``day_of_week`` set, ``date``
    null) or a date-specific override (``date`` set, ``day_of_week`` null).
    Only the time-of-day is stored; the resolver places it on a date.

    ``is_available`` and ``is_blocked`` are independent nullable flags.
    A blocked row is an administrative block whatever ``is_available`` says.
    """
    __tablename__ = "practitioner_availability"

    id = Column(Integer, primary_key=True, index=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    # Exactly one of these is set
    day_of_week = Column(SQLEnum(DayOfWeek), nullable=True)
    date = Column(Date, nullable=True)

    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    is_available = Column(Boolean, nullable=True)
    is_blocked = Column(Boolean, nullable=True, default=False)
    # is_available as it was before a booking occupied the window
    previous_is_available = Column(Boolean, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    practitioner = relationship("Practitioner", back_populates="availability")

    __table_args__ = (
        # Upsert keys
        UniqueConstraint(
            "practitioner_id", "date", "start_time", "end_time",
            name="uq_availability_override_window",
        ),
        UniqueConstraint("practitioner_id", "day_of_week", name="uq_availability_recurring_day"),
        CheckConstraint(
            "(date IS NULL) <> (day_of_week IS NULL)",
            name="ck_availability_date_xor_weekday",
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_window_order"),
        Index("idx_availability_practitioner_date", "practitioner_id", "date"),
    )

    @property
    def is_recurring(self) -> bool:
        return self.date is None

    @property
    def reason(self) -> Optional[AvailabilityReason]:
        """What this row contributes, or None when it contributes nothing."""
        if self.is_blocked:
            return AvailabilityReason.BLOCKED_BY_ADMIN
        if self.is_available is False:
            return AvailabilityReason.OCCUPIED_BY_BOOKING
        if self.is_available:
            return AvailabilityReason.AVAILABLE
        return None

    def __repr__(self):
        when = self.date.isoformat() if self.date else self.day_of_week
        return (
            f"<PractitionerAvailability(practitioner_id={self.practitioner_id}, {when}, "
            f"{self.start_time}-{self.end_time}, available={self.is_available}, blocked={self.is_blocked})>"
        )
