from fastapi import APIRouter, Depends, Query
from datetime import date
from typing import List, Optional

from ...api.deps import get_availability_service, get_override_service
from ...services.availability_service import AvailabilityService
from ...services.override_service import OverrideService
from ...schemas.availability import (
    FreeSlot, AvailabilityUpsert, AvailabilityRowResponse, BlockRangeRequest, BlockSlotRequest
)

router = APIRouter(prefix="/practitioners", tags=["Practitioners"])

@router.get("/{practitioner_id}/availability", response_model=List[FreeSlot])
def get_free_slots(
    practitioner_id: int,
    target_date: date = Query(..., alias="date"),
    clinic_id: Optional[int] = Query(None, gt=0),
    availability_service: AvailabilityService = Depends(get_availability_service),
):
    """Free time-of-day windows for a practitioner on a clinic-local date."""
    return availability_service.get_free_slots(practitioner_id, target_date, clinic_id)

@router.put("/availability", response_model=AvailabilityRowResponse)
def set_availability(
    availability_data: AvailabilityUpsert,
    override_service: OverrideService = Depends(get_override_service),
):
    """Create or replace a recurring rule, or a one-time override when a date is given."""
    return override_service.set_availability(
        practitioner_id=availability_data.practitioner_id,
        start_time=availability_data.start_time,
        end_time=availability_data.end_time,
        is_available=availability_data.is_available,
        day_of_week=availability_data.day_of_week,
        target_date=availability_data.date,
    )

@router.get("/{practitioner_id}/blocked", response_model=List[AvailabilityRowResponse])
def list_blocked_slots(
    practitioner_id: int,
    target_date: Optional[date] = Query(None, alias="date"),
    availability_service: AvailabilityService = Depends(get_availability_service),
):
    return availability_service.list_blocked_slots(practitioner_id, target_date)

@router.post("/{practitioner_id}/blocks", response_model=List[AvailabilityRowResponse])
def block_range(
    practitioner_id: int,
    block_data: BlockRangeRequest,
    override_service: OverrideService = Depends(get_override_service),
):
    """Block or unblock the same time-of-day window on each date of a range."""
    return override_service.block_range(
        practitioner_id,
        block_data.start_datetime,
        block_data.end_datetime,
        block_data.is_blocked,
    )

@router.post("/{practitioner_id}/slots", response_model=AvailabilityRowResponse)
def block_slot(
    practitioner_id: int,
    slot_data: BlockSlotRequest,
    override_service: OverrideService = Depends(get_override_service),
):
    """Mark one window on one date unavailable."""
    return override_service.block_slot(
        practitioner_id,
        slot_data.date,
        slot_data.start_time,
        slot_data.end_time,
        slot_data.clinic_id,
    )
