from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Optional

from ..core.config import settings
from ..models.appointment import AppointmentStatus


def _canonical_status(value):
    # Status arrives in either case from clients
    if isinstance(value, str):
        return value.strip().upper()
    return value


class AppointmentCreate(BaseModel):
    patient_id: int = Field(..., gt=0)
    clinic_id: int = Field(..., gt=0)
    practitioner_id: Optional[int] = Field(None, gt=0)
    appointment_start_datetime: datetime
    duration: int = Field(..., gt=0, le=settings.MAX_APPOINTMENT_DURATION_MINUTES)
    appointment_context: Optional[str] = None
    status: Optional[AppointmentStatus] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        return _canonical_status(value)


class AppointmentStatusUpdate(BaseModel):
    clinic_id: int = Field(..., gt=0)
    status: AppointmentStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        return _canonical_status(value)


class AppointmentReschedule(BaseModel):
    clinic_id: int = Field(..., gt=0)
    appointment_start_datetime: datetime
    duration: Optional[int] = Field(None, gt=0, le=settings.MAX_APPOINTMENT_DURATION_MINUTES)


class AppointmentDetails(BaseModel):
    """An appointment with the patient's and practitioner's display names."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    clinic_id: int
    practitioner_id: Optional[int] = None
    appointment_start_datetime: datetime
    appointment_end_datetime: datetime
    duration: int
    status: AppointmentStatus
    appointment_context: Optional[str] = None
    patient_name: Optional[str] = None
    practitioner_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
