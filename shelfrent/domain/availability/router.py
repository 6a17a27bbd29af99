"""Availability router - FastAPI endpoints for availability checks and the unit catalog"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import RentalUnit
from .schemas import (
    BatchAvailabilityRequest,
    ConflictResponse,
    RentalUnitCreate,
    RentalUnitResponse,
    RentalUnitUpdate,
    UnitAvailabilityResponse,
)
from .service import AvailabilityService, UnitAvailability, UnitCatalogService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Availability"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


def get_catalog_service(db: Session = Depends(get_db)) -> UnitCatalogService:
    return UnitCatalogService(db)


def to_availability_response(result: UnitAvailability) -> UnitAvailabilityResponse:
    return UnitAvailabilityResponse(
        unitId=result.unit.id,
        unitName=result.unit.name,
        unitType=result.unit.unit_type,
        site=result.unit.site,
        listPrice=result.unit.list_price,
        available=result.available,
        conflicts=[
            ConflictResponse(
                contractId=c.contract_id,
                vendorName=c.vendor_name,
                state=c.state,
                conflictFrom=c.interval.start,
                conflictTo=c.interval.end,
            )
            for c in result.conflicts
        ],
        nextAvailable=result.next_available,
    )


def to_unit_response(unit: RentalUnit) -> RentalUnitResponse:
    return RentalUnitResponse(
        id=unit.id,
        name=unit.name,
        unitType=unit.unit_type,
        sizeSqm=unit.size_sqm,
        site=unit.site,
        listPrice=unit.list_price,
        description=unit.description,
    )


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.get("/availability", response_model=list[UnitAvailabilityResponse])
async def check_availability(
    start: date = Query(..., description="First day of the requested rental"),
    durationDays: Optional[int] = Query(None, description="Whole days; omit for open-ended"),
    types: list[str] = Query(..., description="Unit types or aliases, 'all' for every type"),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Check availability of all units matching the requested types"""
    results = service.check_availability(start, durationDays, types)
    return [to_availability_response(r) for r in results]


@router.post("/availability/units", response_model=list[UnitAvailabilityResponse])
async def check_unit_availability(
    data: BatchAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Check availability of explicitly selected units"""
    results = service.check_units(data.unitIds, data.start, data.durationDays)
    return [to_availability_response(r) for r in results]


# ============================================================================
# UNIT CATALOG
# ============================================================================


@router.get("/units", response_model=list[RentalUnitResponse])
async def list_units(
    unitType: Optional[str] = Query(None),
    service: UnitCatalogService = Depends(get_catalog_service),
):
    return [to_unit_response(u) for u in service.list_units(unitType)]


@router.post("/units", response_model=RentalUnitResponse)
async def create_unit(
    data: RentalUnitCreate,
    service: UnitCatalogService = Depends(get_catalog_service),
):
    unit = service.create_unit(
        name=data.name,
        unit_type=data.unitType,
        list_price=data.listPrice,
        size_sqm=data.sizeSqm,
        site=data.site,
        description=data.description,
    )
    return to_unit_response(unit)


@router.patch("/units/{unit_id}", response_model=RentalUnitResponse)
async def update_unit(
    unit_id: int,
    data: RentalUnitUpdate,
    service: UnitCatalogService = Depends(get_catalog_service),
):
    unit = service.update_unit(
        unit_id,
        name=data.name,
        unit_type=data.unitType,
        list_price=data.listPrice,
        size_sqm=data.sizeSqm,
        site=data.site,
        description=data.description,
    )
    return to_unit_response(unit)
