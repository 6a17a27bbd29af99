"""Revenue domain schemas"""

from datetime import date

from pydantic import BaseModel


class RevenueResponse(BaseModel):
    start: date
    end: date
    total: float
    contractCount: int
    trialContractCount: int
    isProjection: bool = False


class UnitRevenueResponse(BaseModel):
    unitId: int
    unitName: str
    unitType: str
    total: float
    serviceCount: int


class MonthlyTrendResponse(BaseModel):
    month: date
    revenue: float
    growthRate: float
    contracts: int
    trialContracts: int


class MonthRevenueResponse(BaseModel):
    month: date
    revenue: float


class RevenueTrendsResponse(BaseModel):
    monthlyTrends: list[MonthlyTrendResponse]
    averageGrowthRate: float
    bestMonth: MonthRevenueResponse
    worstMonth: MonthRevenueResponse
