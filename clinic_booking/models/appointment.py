from sqlalchemy import (
    Column, Integer, ForeignKey, DateTime, Text, CheckConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..core.database import Base
from ..core.timezone import add_minutes

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"

class Appointment(Base):
    __tablename__ = "patient_appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=True)

    # Appointment details; start is clinic-local wall-clock time
    appointment_start_datetime = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    appointment_context = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    practitioner = relationship("Practitioner", back_populates="appointments")

    __table_args__ = (
        CheckConstraint("duration > 0", name="ck_appointment_duration_positive"),
        Index("idx_appointments_practitioner_start", "practitioner_id", "appointment_start_datetime"),
    )

    @property
    def appointment_end_datetime(self) -> datetime:
        return add_minutes(self.appointment_start_datetime, self.duration)

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, practitioner_id={self.practitioner_id}, start='{self.appointment_start_datetime}')>"
