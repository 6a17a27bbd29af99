"""
Revenue service - monthly revenue over a reporting period

A contract contributes its total monthly price when its impact interval
intersects the period. Trial contracts only count once their payment
obligation has started within the period and the contract was still running
at that date.

Projections look ahead at live contracts and assume trials convert once
their payment obligation starts.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session

from ...config import REVENUE_RANGE_MAX_MONTHS
from ...errors import InvalidRequest
from ...models import BookedService, Contract, ContractState, RentalUnit
from ...shared.intervals import DateInterval

logger = logging.getLogger(__name__)

# Contracts a projection assumes will keep running
PROJECTED_STATES = (ContractState.SCHEDULED, ContractState.TRIAL_ACTIVE, ContractState.ACTIVE)


@dataclass
class RevenueSummary:
    start: date
    end: date
    total: float
    contract_count: int
    trial_contract_count: int
    is_projection: bool = False


@dataclass
class UnitRevenue:
    unit_id: int
    unit_name: str
    unit_type: str
    total: float
    service_count: int


class RevenueService:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _period(start: date, end: date) -> DateInterval:
        if start is None or end is None:
            raise InvalidRequest("Both start and end are required")
        return DateInterval(start, end)

    @staticmethod
    def _month_bounds(year: int, month: int) -> tuple[date, date]:
        if not 1 <= month <= 12:
            raise InvalidRequest(f"Invalid month: {month}")
        first = date(year, month, 1)
        return first, first + timedelta(days=calendar.monthrange(year, month)[1])

    @staticmethod
    def _intersects(period: DateInterval):
        return and_(
            Contract.impact_from < period.end,
            or_(Contract.impact_to.is_(None), Contract.impact_to > period.start),
        )

    @classmethod
    def _counts_toward_revenue(cls, period: DateInterval):
        """SQL condition for contracts that contribute to `period`"""
        intersects = cls._intersects(period)
        trial_billable = and_(
            Contract.payment_obligation_start_date.isnot(None),
            Contract.payment_obligation_start_date <= period.end,
            or_(
                Contract.impact_to.is_(None),
                Contract.impact_to > Contract.payment_obligation_start_date,
            ),
        )
        # Cancelled before the contract ever started
        never_started = and_(
            Contract.state == ContractState.CANCELLED,
            Contract.cancellation_effective_date.isnot(None),
            Contract.cancellation_effective_date <= Contract.impact_from,
        )
        return and_(
            intersects,
            or_(Contract.is_trial_booking.is_(False), trial_billable),
            ~never_started,
        )

    def revenue_for_period(self, start: date, end: date) -> RevenueSummary:
        period = self._period(start, end)

        total, contract_count, trial_count = (
            self.db.query(
                func.coalesce(func.sum(Contract.total_monthly_price), 0.0),
                func.count(Contract.id),
                func.coalesce(func.sum(case((Contract.is_trial_booking.is_(True), 1), else_=0)), 0),
            )
            .filter(self._counts_toward_revenue(period))
            .one()
        )

        summary = RevenueSummary(
            start=period.start,
            end=period.end,
            total=round(float(total or 0.0), 2),
            contract_count=int(contract_count or 0),
            trial_contract_count=int(trial_count or 0),
        )
        logger.info(
            f"💰 Revenue {period.start} → {period.end}: {summary.total} "
            f"from {summary.contract_count} contract(s)"
        )
        return summary

    def revenue_for_month(self, year: int, month: int) -> RevenueSummary:
        return self.revenue_for_period(*self._month_bounds(year, month))

    def revenue_by_unit(self, start: date, end: date) -> list[UnitRevenue]:
        """Per-unit breakdown of the same revenue rule, using service prices"""
        period = self._period(start, end)

        service_intersects = and_(
            BookedService.start_date < period.end,
            or_(BookedService.end_date.is_(None), BookedService.end_date > period.start),
        )
        rows = (
            self.db.query(
                RentalUnit.id,
                RentalUnit.name,
                RentalUnit.unit_type,
                func.coalesce(func.sum(BookedService.monthly_price), 0.0),
                func.count(BookedService.id),
            )
            .join(BookedService, BookedService.unit_id == RentalUnit.id)
            .join(Contract, Contract.id == BookedService.contract_id)
            .filter(service_intersects, self._counts_toward_revenue(period))
            .group_by(RentalUnit.id, RentalUnit.name, RentalUnit.unit_type)
            .order_by(RentalUnit.name.asc())
            .all()
        )
        return [
            UnitRevenue(
                unit_id=unit_id,
                unit_name=name,
                unit_type=unit_type,
                total=round(float(total or 0.0), 2),
                service_count=int(count or 0),
            )
            for unit_id, name, unit_type, total, count in rows
        ]

    # ------------------------------------------------------------------
    # Monthly series
    # ------------------------------------------------------------------

    @staticmethod
    def _months(start_year: int, start_month: int, end_year: int, end_month: int) -> list[tuple[int, int]]:
        for month in (start_month, end_month):
            if not 1 <= month <= 12:
                raise InvalidRequest(f"Invalid month: {month}")
        first = start_year * 12 + start_month - 1
        last = end_year * 12 + end_month - 1
        if last < first:
            raise InvalidRequest("Range end must not be before range start")
        if last - first + 1 > REVENUE_RANGE_MAX_MONTHS:
            raise InvalidRequest(f"Ranges are limited to {REVENUE_RANGE_MAX_MONTHS} months")
        return [divmod(index, 12) for index in range(first, last + 1)]

    def revenue_range(
        self, start_year: int, start_month: int, end_year: int, end_month: int
    ) -> list[RevenueSummary]:
        """One summary per calendar month, oldest first"""
        return [
            self.revenue_for_month(year, index + 1)
            for year, index in self._months(start_year, start_month, end_year, end_month)
        ]

    def revenue_trends(self, end_year: int, end_month: int, months: int = 12) -> dict:
        """Month-over-month growth for the `months` months ending at end_year/end_month"""
        if months < 1:
            raise InvalidRequest("At least one month is required")
        first = end_year * 12 + end_month - 1 - (months - 1)
        series = self.revenue_range(first // 12, first % 12 + 1, end_year, end_month)

        trends = []
        previous = None
        for summary in series:
            if previous is not None and previous.total > 0:
                growth = round((summary.total - previous.total) / previous.total * 100, 2)
            else:
                growth = 0.0
            trends.append(
                {
                    "month": summary.start.isoformat(),
                    "revenue": summary.total,
                    "growthRate": growth,
                    "contracts": summary.contract_count,
                    "trialContracts": summary.trial_contract_count,
                }
            )
            previous = summary

        growth_rates = [t["growthRate"] for t in trends[1:]]
        best = max(trends, key=lambda t: t["revenue"])
        worst = min(trends, key=lambda t: t["revenue"])
        return {
            "monthlyTrends": trends,
            "averageGrowthRate": round(sum(growth_rates) / len(growth_rates), 2) if growth_rates else 0.0,
            "bestMonth": {"month": best["month"], "revenue": best["revenue"]},
            "worstMonth": {"month": worst["month"], "revenue": worst["revenue"]},
        }

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def projected_revenue_for_month(
        self, year: int, month: int, include_trial_revenue: bool = False
    ) -> RevenueSummary:
        """
        Expected revenue for a month from contracts that are still live.

        Scheduled and running trials are assumed to convert once their
        payment obligation starts. Trials still inside their free period that
        month are counted in `trial_contract_count` and only add to the total
        when `include_trial_revenue` is set.
        """
        start, end = self._month_bounds(year, month)
        period = self._period(start, end)

        will_pay = or_(
            Contract.is_trial_booking.is_(False),
            and_(
                Contract.payment_obligation_start_date.isnot(None),
                Contract.payment_obligation_start_date <= period.end,
            ),
        )
        paid_total, paid_count, trial_total, trial_count = (
            self.db.query(
                func.coalesce(func.sum(case((will_pay, Contract.total_monthly_price), else_=0.0)), 0.0),
                func.coalesce(func.sum(case((will_pay, 1), else_=0)), 0),
                func.coalesce(func.sum(case((will_pay, 0.0), else_=Contract.total_monthly_price)), 0.0),
                func.coalesce(func.sum(case((will_pay, 0), else_=1)), 0),
            )
            .filter(Contract.state.in_(PROJECTED_STATES), self._intersects(period))
            .one()
        )

        total = float(paid_total or 0.0)
        if include_trial_revenue:
            total += float(trial_total or 0.0)
        summary = RevenueSummary(
            start=period.start,
            end=period.end,
            total=round(total, 2),
            contract_count=int(paid_count or 0),
            trial_contract_count=int(trial_count or 0),
            is_projection=True,
        )
        logger.info(
            f"🔮 Projected revenue {year}-{month:02d}: {summary.total} "
            f"({summary.contract_count} paying, {summary.trial_contract_count} in trial)"
        )
        return summary

    def projected_revenue_range(
        self,
        start_year: int,
        start_month: int,
        end_year: int,
        end_month: int,
        include_trial_revenue: bool = False,
    ) -> list[RevenueSummary]:
        return [
            self.projected_revenue_for_month(year, index + 1, include_trial_revenue)
            for year, index in self._months(start_year, start_month, end_year, end_month)
        ]
