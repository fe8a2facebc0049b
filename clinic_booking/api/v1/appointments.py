from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from ...api.deps import get_booking_service
from ...services.booking_service import BookingService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentDetails, AppointmentStatusUpdate, AppointmentReschedule
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=AppointmentDetails, status_code=status.HTTP_201_CREATED)
def book_appointment(
    appointment_data: AppointmentCreate,
    booking_service: BookingService = Depends(get_booking_service),
):
    """Book an appointment and notify the clinic."""
    return booking_service.book_appointment(appointment_data)

@router.get("", response_model=List[AppointmentDetails])
def list_clinic_appointments(
    clinic_id: int = Query(..., gt=0),
    booking_service: BookingService = Depends(get_booking_service),
):
    """List a clinic's appointments."""
    return booking_service.list_clinic_appointments(clinic_id)

@router.get("/practitioners/{practitioner_id}", response_model=List[AppointmentDetails])
def list_practitioner_appointments(
    practitioner_id: int,
    clinic_id: Optional[int] = Query(None, gt=0),
    booking_service: BookingService = Depends(get_booking_service),
):
    """List a practitioner's appointments."""
    return booking_service.list_practitioner_appointments(practitioner_id, clinic_id)

@router.get("/{appointment_id}", response_model=AppointmentDetails)
def get_appointment(
    appointment_id: int,
    clinic_id: int = Query(..., gt=0),
    booking_service: BookingService = Depends(get_booking_service),
):
    return booking_service.fetch_appointment_details(appointment_id, clinic_id)

@router.patch("/{appointment_id}/status", response_model=AppointmentDetails)
def update_appointment_status(
    appointment_id: int,
    status_data: AppointmentStatusUpdate,
    booking_service: BookingService = Depends(get_booking_service),
):
    """Change an appointment's status; cancelling frees the practitioner's window."""
    return booking_service.update_status(appointment_id, status_data.clinic_id, status_data.status)

@router.patch("/{appointment_id}/reschedule", response_model=AppointmentDetails)
def reschedule_appointment(
    appointment_id: int,
    reschedule_data: AppointmentReschedule,
    booking_service: BookingService = Depends(get_booking_service),
):
    """Move an appointment to a new start time and duration."""
    return booking_service.reschedule_appointment(
        appointment_id, reschedule_data.clinic_id, reschedule_data
    )
