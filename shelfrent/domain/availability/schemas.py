"""Availability domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class ConflictResponse(BaseModel):
    contractId: int
    vendorName: str
    state: str
    conflictFrom: date
    conflictTo: Optional[date] = None


class UnitAvailabilityResponse(BaseModel):
    unitId: int
    unitName: str
    unitType: str
    site: Optional[str] = None
    listPrice: float
    available: bool
    conflicts: list[ConflictResponse] = []
    nextAvailable: Optional[date] = None


class BatchAvailabilityRequest(BaseModel):
    """Schema for checking explicitly selected units"""

    unitIds: list[int]
    start: date
    durationDays: Optional[int] = Field(None, description="Whole days; omit for open-ended")


class RentalUnitCreate(BaseModel):
    name: str
    unitType: str
    listPrice: float
    sizeSqm: float = 1.0
    site: Optional[str] = None
    description: Optional[str] = None


class RentalUnitUpdate(BaseModel):
    name: Optional[str] = None
    unitType: Optional[str] = None
    listPrice: Optional[float] = None
    sizeSqm: Optional[float] = None
    site: Optional[str] = None
    description: Optional[str] = None


class RentalUnitResponse(BaseModel):
    id: int
    name: str
    unitType: str
    sizeSqm: float
    site: Optional[str] = None
    listPrice: float
    description: Optional[str] = None
