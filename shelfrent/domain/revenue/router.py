"""Revenue router - reporting endpoints"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import InvalidRequest
from .schemas import RevenueResponse, RevenueTrendsResponse, UnitRevenueResponse
from .service import RevenueSummary
from .service import RevenueService

router = APIRouter(prefix="/revenue", tags=["Revenue"])


def get_revenue_service(db: Session = Depends(get_db)) -> RevenueService:
    return RevenueService(db)


@router.get("", response_model=RevenueResponse)
async def get_revenue(
    start: Optional[date] = Query(None, description="Period start (inclusive)"),
    end: Optional[date] = Query(None, description="Period end (exclusive)"),
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None),
    service: RevenueService = Depends(get_revenue_service),
):
    """Revenue for [start, end) or for a calendar month"""
    if year is not None and month is not None:
        summary = service.revenue_for_month(year, month)
    elif start is not None and end is not None:
        summary = service.revenue_for_period(start, end)
    else:
        raise InvalidRequest("Provide start and end, or year and month")

    return to_revenue_response(summary)


@router.get("/by-unit", response_model=list[UnitRevenueResponse])
async def get_revenue_by_unit(
    start: date = Query(...),
    end: date = Query(...),
    service: RevenueService = Depends(get_revenue_service),
):
    return [
        UnitRevenueResponse(
            unitId=r.unit_id,
            unitName=r.unit_name,
            unitType=r.unit_type,
            total=r.total,
            serviceCount=r.service_count,
        )
        for r in service.revenue_by_unit(start, end)
    ]


def to_revenue_response(summary: RevenueSummary) -> RevenueResponse:
    return RevenueResponse(
        start=summary.start,
        end=summary.end,
        total=summary.total,
        contractCount=summary.contract_count,
        trialContractCount=summary.trial_contract_count,
        isProjection=summary.is_projection,
    )


@router.get("/range", response_model=list[RevenueResponse])
async def get_revenue_range(
    startYear: int = Query(...),
    startMonth: int = Query(...),
    endYear: int = Query(...),
    endMonth: int = Query(...),
    projected: bool = Query(False, description="Project live contracts instead of reporting actuals"),
    includeTrialRevenue: bool = Query(False, description="Projections only: count trials still in their free period"),
    service: RevenueService = Depends(get_revenue_service),
):
    """Monthly revenue series, oldest month first"""
    if projected:
        series = service.projected_revenue_range(startYear, startMonth, endYear, endMonth, includeTrialRevenue)
    else:
        series = service.revenue_range(startYear, startMonth, endYear, endMonth)
    return [to_revenue_response(s) for s in series]


@router.get("/projection", response_model=RevenueResponse)
async def get_revenue_projection(
    year: int = Query(...),
    month: int = Query(...),
    includeTrialRevenue: bool = Query(False),
    service: RevenueService = Depends(get_revenue_service),
):
    return to_revenue_response(service.projected_revenue_for_month(year, month, includeTrialRevenue))


@router.get("/trends", response_model=RevenueTrendsResponse)
async def get_revenue_trends(
    year: Optional[int] = Query(None, description="Last month's year, defaults to the current month"),
    month: Optional[int] = Query(None),
    months: int = Query(12, ge=1),
    service: RevenueService = Depends(get_revenue_service),
):
    today = date.today()
    return service.revenue_trends(year or today.year, month or today.month, months)
