"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class BookedServiceResponse(BaseModel):
    id: int
    unitId: int
    startDate: date
    endDate: Optional[date] = None
    monthlyPrice: float


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: int
    vendorId: int
    pendingBookingId: Optional[int] = None
    state: str
    impactFrom: date
    impactTo: Optional[date] = None
    isTrialBooking: bool
    paymentObligationStartDate: Optional[date] = None
    totalMonthlyPrice: float
    trialConversionDate: Optional[date] = None
    cancelledAt: Optional[datetime] = None
    cancellationEffectiveDate: Optional[date] = None
    services: list[BookedServiceResponse] = []
    note: Optional[str] = None

    class Config:
        from_attributes = True


class CancelContractRequest(BaseModel):
    effectiveDate: date = Field(..., description="First day the contract no longer occupies its units")


class AdvanceContractRequest(BaseModel):
    conversionDate: Optional[date] = None


class ServiceUpdate(BaseModel):
    unitId: int
    startDate: date
    endDate: Optional[date] = None
    monthlyPrice: Optional[float] = None


class UpdateServicesRequest(BaseModel):
    services: list[ServiceUpdate]
