from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date as date_type, datetime, time
from typing import Optional

from ..models.availability import DayOfWeek, AvailabilityReason


class FreeSlot(BaseModel):
    start_time: str
    end_time: str


class AvailabilityUpsert(BaseModel):
    """A recurring weekday rule, or a one-time override when ``date`` is set."""

    practitioner_id: int = Field(..., gt=0)
    day_of_week: Optional[DayOfWeek] = None
    date: Optional[date_type] = None
    start_time: time
    end_time: time
    is_available: bool = True

    @model_validator(mode="after")
    def check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time")
        if self.day_of_week is None and self.date is None:
            raise ValueError("either day_of_week or date must be provided")
        return self


class BlockRangeRequest(BaseModel):
    start_datetime: datetime
    end_datetime: datetime
    is_blocked: bool = True

    @model_validator(mode="after")
    def check_range(self):
        if self.end_datetime < self.start_datetime:
            raise ValueError("end_datetime must not be earlier than start_datetime")
        return self


class BlockSlotRequest(BaseModel):
    date: date_type
    start_time: time
    end_time: time
    clinic_id: Optional[int] = Field(None, gt=0)

    @model_validator(mode="after")
    def check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time")
        return self


class AvailabilityRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    practitioner_id: int
    clinic_id: int
    day_of_week: Optional[DayOfWeek] = None
    date: Optional[date_type] = None
    start_time: time
    end_time: time
    is_available: Optional[bool] = None
    is_blocked: Optional[bool] = None
    reason: Optional[AvailabilityReason] = None
