"""
Availability service - decides whether rental units are free for a requested interval

Availability is always derived from the booked services of non-terminal
contracts. Each unit is tested against the contract's per-unit service
interval, so a multi-unit contract only blocks the units it actually occupies.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import NEXT_AVAILABLE_HORIZON_DAYS
from ...errors import InvalidRequest, NotFound
from ...models import RentalUnit
from ...shared.intervals import DateInterval, overlaps
from ...shared.unit_types import canonical_type, resolve_types
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)


@dataclass
class UnitConflictInfo:
    contract_id: int
    vendor_name: str
    state: str
    interval: DateInterval
    unit_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "unitId": self.unit_id,
            "contractId": self.contract_id,
            "vendorName": self.vendor_name,
            "state": self.state,
            "from": self.interval.start.isoformat(),
            "to": self.interval.end.isoformat() if self.interval.end else None,
        }


@dataclass
class UnitAvailability:
    unit: RentalUnit
    available: bool
    conflicts: list[UnitConflictInfo] = field(default_factory=list)
    next_available: Optional[date] = None


def next_available_date(
    requested: DateInterval, conflicts: list[UnitConflictInfo]
) -> Optional[date]:
    """
    Latest end date among the overlapping conflicts.

    None if any conflict is open-ended or the date lies beyond the search horizon.
    """
    if not conflicts:
        return requested.start
    ends = sorted(c.interval.end for c in conflicts if c.interval.end is not None)
    if len(ends) < len(conflicts):
        return None
    latest = max(requested.start, ends[-1])
    if latest > requested.start + timedelta(days=NEXT_AVAILABLE_HORIZON_DAYS):
        return None
    return latest


class AvailabilityService:
    """Service layer for availability resolution (read-only)"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def check_availability(
        self, start: date, duration_days: Optional[int], types: Iterable[str]
    ) -> list[UnitAvailability]:
        """Availability of every unit matching the requested types"""
        requested = self._requested_interval(start, duration_days)
        unit_types = resolve_types(types)
        units = self.repo.get_units_by_types(self.db, unit_types)
        logger.info(
            f"🔍 Checking {len(units)} unit(s) of types {sorted(unit_types)} for "
            f"{requested.start} → {requested.end or 'open'}"
        )
        return self._resolve(units, requested)

    def check_units(
        self, unit_ids: Iterable[int], start: date, duration_days: Optional[int]
    ) -> list[UnitAvailability]:
        """Availability of explicitly selected units"""
        requested = self._requested_interval(start, duration_days)
        unit_ids = list(unit_ids)
        if not unit_ids:
            raise InvalidRequest("At least one unit id is required")
        units = self.repo.get_units_by_ids(self.db, unit_ids)
        missing = set(unit_ids) - {u.id for u in units}
        if missing:
            raise NotFound(f"Unknown rental unit(s): {sorted(missing)}")
        return self._resolve(units, requested)

    def find_available_units(
        self, types: Iterable[str], start: date, duration_days: Optional[int], limit: int = 50
    ) -> list[RentalUnit]:
        """Units of the requested types that are free for the whole interval"""
        results = self.check_availability(start, duration_days, types)
        return [r.unit for r in results if r.available][:limit]

    def conflicts_for_unit(
        self,
        unit_id: int,
        requested: DateInterval,
        exclude_contract_id: Optional[int] = None,
    ) -> list[UnitConflictInfo]:
        rows = self.repo.get_overlapping_bookings(
            self.db, [unit_id], requested, exclude_contract_id=exclude_contract_id
        )
        return self._conflicts_from_rows(rows, requested).get(unit_id, [])

    def is_unit_free(
        self, unit_id: int, requested: DateInterval, exclude_contract_id: Optional[int] = None
    ) -> bool:
        return not self.conflicts_for_unit(unit_id, requested, exclude_contract_id)

    def _resolve(self, units: list[RentalUnit], requested: DateInterval) -> list[UnitAvailability]:
        if not units:
            return []
        rows = self.repo.get_overlapping_bookings(self.db, [u.id for u in units], requested)
        conflicts_by_unit = self._conflicts_from_rows(rows, requested)

        results = []
        for unit in units:
            conflicts = conflicts_by_unit.get(unit.id, [])
            if conflicts:
                results.append(
                    UnitAvailability(
                        unit=unit,
                        available=False,
                        conflicts=conflicts,
                        next_available=next_available_date(requested, conflicts),
                    )
                )
            else:
                results.append(UnitAvailability(unit=unit, available=True))
        return results

    @staticmethod
    def _conflicts_from_rows(rows, requested: DateInterval) -> dict[int, list[UnitConflictInfo]]:
        conflicts: dict[int, list[UnitConflictInfo]] = {}
        for service, contract, vendor_name in rows:
            interval = service.interval
            # SQL already filtered, re-check with the interval model
            if not overlaps(interval, requested):
                continue
            conflicts.setdefault(service.unit_id, []).append(
                UnitConflictInfo(
                    contract_id=contract.id,
                    vendor_name=vendor_name or "Unknown",
                    state=contract.state.value,
                    interval=interval,
                    unit_id=service.unit_id,
                )
            )
        for unit_conflicts in conflicts.values():
            unit_conflicts.sort(key=lambda c: (c.interval.start, c.contract_id))
        return conflicts

    @staticmethod
    def _requested_interval(start: Optional[date], duration_days: Optional[int]) -> DateInterval:
        if start is None:
            raise InvalidRequest("A start date is required")
        if duration_days is not None and (
            isinstance(duration_days, bool) or not isinstance(duration_days, int)
        ):
            raise InvalidRequest("Duration must be a whole number of days")
        return DateInterval.from_duration(start, duration_days)


class UnitCatalogService:
    """Administrative operations on the rental unit catalog"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def get_unit(self, unit_id: int) -> RentalUnit:
        unit = self.repo.get_unit(self.db, unit_id)
        if not unit:
            raise NotFound(f"Rental unit {unit_id} not found")
        return unit

    def list_units(self, unit_type: Optional[str] = None) -> list[RentalUnit]:
        canonical = None
        if unit_type:
            canonical = canonical_type(unit_type)
            if canonical is None:
                raise InvalidRequest(f"Unknown unit type: {unit_type}")
        return self.repo.list_units(self.db, canonical)

    def create_unit(
        self,
        name: str,
        unit_type: str,
        list_price: float,
        size_sqm: float = 1.0,
        site: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RentalUnit:
        canonical = canonical_type(unit_type)
        if canonical is None:
            raise InvalidRequest(f"Unknown unit type: {unit_type}")
        if list_price < 0:
            raise InvalidRequest("List price cannot be negative")
        if self.repo.get_unit_by_name(self.db, name):
            raise InvalidRequest(f"A rental unit named '{name}' already exists")

        unit = self.repo.create_unit(
            self.db,
            name=name,
            unit_type=canonical,
            list_price=list_price,
            size_sqm=size_sqm,
            site=site,
            description=description,
        )
        logger.info(f"✅ Rental unit created: {unit.id} ({unit.name}, {unit.unit_type})")
        return unit

    def update_unit(self, unit_id: int, **updates) -> RentalUnit:
        """Update a unit; type and site are frozen once any contract references it"""
        unit = self.get_unit(unit_id)

        if updates.get("unit_type") is not None:
            canonical = canonical_type(updates["unit_type"])
            if canonical is None:
                raise InvalidRequest(f"Unknown unit type: {updates['unit_type']}")
            updates["unit_type"] = canonical

        changes_identity = (
            updates.get("unit_type") not in (None, unit.unit_type)
            or updates.get("site") not in (None, unit.site)
        )
        if changes_identity and self.repo.unit_is_referenced(self.db, unit.id):
            raise InvalidRequest(
                f"Type and site of rental unit {unit.id} cannot change once it has been booked"
            )

        return self.repo.update_unit(self.db, unit, **updates)
