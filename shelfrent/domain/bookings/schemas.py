"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class PendingBookingCreate(BaseModel):
    """Schema for requesting a booking"""

    vendorId: int
    types: list[str]
    start: date
    durationDays: Optional[int] = Field(None, description="Whole days; omit for open-ended")
    isTrial: bool = False
    note: Optional[str] = None


class PendingBookingResponse(BaseModel):
    id: int
    vendorId: int
    requestedTypes: list[str]
    requestedStart: date
    durationDays: Optional[int] = None
    isTrial: bool
    status: str
    contractId: Optional[int] = None
    note: Optional[str] = None
    createdAt: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnitAssignmentRequest(BaseModel):
    unitId: int
    monthlyPrice: Optional[float] = None


class ConfirmBookingRequest(BaseModel):
    units: list[UnitAssignmentRequest]
