"""Contract router - FastAPI endpoints for contract lifecycle operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import AlreadyTerminal, InvalidRequest
from ...models import Contract, ContractState
from ...services.notification_service import get_dispatcher
from .schemas import (
    AdvanceContractRequest,
    BookedServiceResponse,
    CancelContractRequest,
    ContractResponse,
    UpdateServicesRequest,
)
from .service import ContractLifecycleService, ServiceSpec

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_lifecycle_service(db: Session = Depends(get_db)) -> ContractLifecycleService:
    """Dependency injection for ContractLifecycleService"""
    return ContractLifecycleService(db, dispatcher=get_dispatcher())


def to_contract_response(contract: Contract, note: Optional[str] = None) -> ContractResponse:
    return ContractResponse(
        id=contract.id,
        vendorId=contract.vendor_id,
        pendingBookingId=contract.pending_booking_id,
        state=contract.state.value,
        impactFrom=contract.impact_from,
        impactTo=contract.impact_to,
        isTrialBooking=contract.is_trial_booking,
        paymentObligationStartDate=contract.payment_obligation_start_date,
        totalMonthlyPrice=contract.total_monthly_price,
        trialConversionDate=contract.trial_conversion_date,
        cancelledAt=contract.cancelled_at,
        cancellationEffectiveDate=contract.cancellation_effective_date,
        services=[
            BookedServiceResponse(
                id=s.id,
                unitId=s.unit_id,
                startDate=s.start_date,
                endDate=s.end_date,
                monthlyPrice=s.monthly_price,
            )
            for s in contract.services
        ],
        note=note,
    )


@router.get("", response_model=list[ContractResponse])
async def get_contracts(
    vendorId: Optional[int] = Query(None, description="Filter contracts by vendor ID"),
    state: Optional[str] = Query(None, description="Filter by contract state"),
    service: ContractLifecycleService = Depends(get_lifecycle_service),
):
    """List contracts, newest first"""
    state_filter = None
    if state:
        try:
            state_filter = ContractState(state)
        except ValueError:
            raise InvalidRequest(f"Unknown contract state: {state}")
    return [to_contract_response(c) for c in service.list_contracts(vendorId, state_filter)]


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    service: ContractLifecycleService = Depends(get_lifecycle_service),
):
    return to_contract_response(service.get_contract(contract_id))


@router.post("/{contract_id}/cancel", response_model=ContractResponse)
async def cancel_contract(
    contract_id: int,
    data: CancelContractRequest,
    service: ContractLifecycleService = Depends(get_lifecycle_service),
):
    """Cancel a contract; cancelling a finished contract succeeds with a note"""
    try:
        contract = service.cancel(contract_id, data.effectiveDate)
    except AlreadyTerminal as e:
        logger.info(f"ℹ️ Cancel on contract {contract_id} ignored: {e.message}")
        return to_contract_response(service.get_contract(contract_id), note=e.message)
    return to_contract_response(contract)


@router.post("/{contract_id}/advance", response_model=ContractResponse)
async def advance_contract(
    contract_id: int,
    data: Optional[AdvanceContractRequest] = None,
    service: ContractLifecycleService = Depends(get_lifecycle_service),
):
    """Convert a trial contract into a paying one"""
    conversion_date = data.conversionDate if data else None
    contract = service.advance_to_active(contract_id, conversion_date)
    return to_contract_response(contract)


@router.put("/{contract_id}/services", response_model=ContractResponse)
async def update_contract_services(
    contract_id: int,
    data: UpdateServicesRequest,
    service: ContractLifecycleService = Depends(get_lifecycle_service),
):
    specs = [
        ServiceSpec(
            unit_id=s.unitId,
            start=s.startDate,
            end=s.endDate,
            monthly_price=s.monthlyPrice,
        )
        for s in data.services
    ]
    return to_contract_response(service.update_services(contract_id, specs))
