"""Booking router - FastAPI endpoints for pending bookings and confirmation"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import PendingBooking
from ...services.notification_service import get_dispatcher
from ..contracts.router import to_contract_response
from ..contracts.schemas import ContractResponse
from ..contracts.service import UnitAssignment
from .schemas import ConfirmBookingRequest, PendingBookingCreate, PendingBookingResponse
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, dispatcher=get_dispatcher())


def to_booking_response(booking: PendingBooking) -> PendingBookingResponse:
    return PendingBookingResponse(
        id=booking.id,
        vendorId=booking.vendor_id,
        requestedTypes=booking.requested_types or [],
        requestedStart=booking.requested_start,
        durationDays=booking.duration_days,
        isTrial=booking.is_trial,
        status=booking.status,
        contractId=booking.contract_id,
        note=booking.note,
        createdAt=booking.created_at,
    )


@router.get("", response_model=list[PendingBookingResponse])
async def get_bookings(
    vendorId: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    return [to_booking_response(b) for b in service.list_bookings(vendorId, status)]


@router.post("", response_model=PendingBookingResponse)
async def create_booking(
    data: PendingBookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    booking = service.create_booking(
        vendor_id=data.vendorId,
        types=data.types,
        start=data.start,
        duration_days=data.durationDays,
        is_trial=data.isTrial,
        note=data.note,
    )
    return to_booking_response(booking)


@router.get("/{booking_id}", response_model=PendingBookingResponse)
async def get_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return to_booking_response(service.get_booking(booking_id))


@router.post("/{booking_id}/cancel", response_model=PendingBookingResponse)
async def cancel_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return to_booking_response(service.cancel_booking(booking_id))


@router.post("/{booking_id}/confirm", response_model=ContractResponse)
async def confirm_booking(
    booking_id: int,
    data: ConfirmBookingRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Assign units to a pending booking and create the contract"""
    assignments = [
        UnitAssignment(unit_id=u.unitId, monthly_price=u.monthlyPrice) for u in data.units
    ]
    contract = await service.confirm_booking(booking_id, assignments)
    return to_contract_response(contract)
