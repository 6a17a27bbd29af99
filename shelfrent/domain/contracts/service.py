"""
Contract lifecycle service - the contract state machine

    scheduled ──► trial_active ──► active ──► cancelled
        │                │                       ▲
        └──► active      └──► expired            │
                                   (any non-terminal state)

A contract's availability impact interval is the span of its services while
the contract is live. Cancel/expire truncate it once and freeze it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import CONFIRM_MAX_RETRIES, TRIAL_DURATION_DAYS
from ...errors import AlreadyTerminal, InvalidRequest, InvalidTransition, NotFound, UnitConflict
from ...models import (
    BookedService,
    Contract,
    ContractState,
    PendingBooking,
    PendingBookingStatus,
)
from ...shared.intervals import DateInterval, span
from ..availability.service import AvailabilityService
from .repository import ContractRepository

logger = logging.getLogger(__name__)

# Allowed transitions; terminal states have none
VALID_TRANSITIONS = {
    ContractState.SCHEDULED: {ContractState.TRIAL_ACTIVE, ContractState.ACTIVE, ContractState.CANCELLED, ContractState.EXPIRED},
    ContractState.TRIAL_ACTIVE: {ContractState.ACTIVE, ContractState.CANCELLED, ContractState.EXPIRED},
    ContractState.ACTIVE: {ContractState.CANCELLED},
    ContractState.CANCELLED: set(),
    ContractState.EXPIRED: set(),
}


def validate_transition(current: ContractState, new: ContractState) -> bool:
    """Whether a contract may move from `current` to `new` (same state is a no-op)"""
    if current == new:
        return True
    return new in VALID_TRANSITIONS.get(current, set())


@dataclass
class UnitAssignment:
    unit_id: int
    monthly_price: Optional[float] = None


@dataclass
class ServiceSpec:
    unit_id: int
    start: date
    end: Optional[date]
    monthly_price: Optional[float] = None


class ContractLifecycleService:
    """Service layer owning every contract state change"""

    def __init__(self, db: Session, dispatcher=None):
        self.db = db
        self.repo = ContractRepository()
        self.availability = AvailabilityService(db)
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: int) -> Contract:
        contract = self.repo.get_contract(self.db, contract_id)
        if not contract:
            raise NotFound(f"Contract {contract_id} not found")
        return contract

    def list_contracts(
        self, vendor_id: Optional[int] = None, state: Optional[ContractState] = None
    ) -> list[Contract]:
        return self.repo.list_contracts(self.db, vendor_id, state)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm(
        self,
        pending_booking_id: int,
        assignments: list[UnitAssignment],
        today: Optional[date] = None,
    ) -> Contract:
        """Confirm a pending booking and notify the vendor"""
        contract = self.create_contract_from_booking(pending_booking_id, assignments, today)

        if self.dispatcher is not None:
            payload = {
                "contractId": contract.id,
                "units": [s.unit_id for s in contract.services],
                "startDate": contract.impact_from.isoformat(),
                "endDate": contract.impact_to.isoformat() if contract.impact_to else None,
                "isTrial": contract.is_trial_booking,
            }
            try:
                await self.dispatcher.dispatch(
                    self.db,
                    "booking_confirmed",
                    contract.vendor_id,
                    payload,
                    dedupe_key=f"booking_confirmed:{contract.id}",
                )
            except Exception as e:
                # The contract exists either way
                logger.error(f"❌ Failed to dispatch booking confirmation for contract {contract.id}: {e}")

        return contract

    def create_contract_from_booking(
        self,
        pending_booking_id: int,
        assignments: list[UnitAssignment],
        today: Optional[date] = None,
    ) -> Contract:
        """
        Turn a pending booking into a contract.

        Availability of every assigned unit is re-validated inside the same
        transaction that creates the contract, and each unit's booking version
        is compare-and-set so that a concurrent confirmation on the same unit
        makes one of the two retry and see the other's contract.

        Raises:
            NotFound: unknown booking or unit
            InvalidRequest: booking not pending, no/duplicate units
            UnitConflict: a unit is booked for an overlapping interval
        """
        today = today or date.today()
        if not assignments:
            raise InvalidRequest("At least one unit must be assigned")
        unit_ids = [a.unit_id for a in assignments]
        if len(set(unit_ids)) != len(unit_ids):
            raise InvalidRequest("A unit can only be assigned once per booking")

        for attempt in range(1, CONFIRM_MAX_RETRIES + 1):
            booking = self.repo.get_pending_booking(self.db, pending_booking_id)
            if not booking:
                raise NotFound(f"Pending booking {pending_booking_id} not found")
            if booking.status != PendingBookingStatus.PENDING:
                raise InvalidRequest(
                    f"Pending booking {pending_booking_id} is {booking.status}, cannot confirm"
                )

            requested = DateInterval.from_duration(booking.requested_start, booking.duration_days)

            # Read versions before checking so a concurrent booking is detected at commit
            units = {u.id: u for u in self.repo.load_units_fresh(self.db, unit_ids)}
            missing = set(unit_ids) - set(units)
            if missing:
                raise NotFound(f"Unknown rental unit(s): {sorted(missing)}")
            seen_versions = {unit_id: unit.booking_version for unit_id, unit in units.items()}

            conflicts = []
            for unit_id in unit_ids:
                conflicts.extend(self.availability.conflicts_for_unit(unit_id, requested))
            if conflicts:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Booking {pending_booking_id} conflicts on unit(s) "
                    f"{sorted({c.unit_id for c in conflicts})}"
                )
                raise UnitConflict(
                    "One or more assigned units are no longer available for the requested interval",
                    conflicts=[c.to_dict() for c in conflicts],
                )

            lost_race = [
                unit_id
                for unit_id in unit_ids
                if not self.repo.bump_unit_version(self.db, unit_id, seen_versions[unit_id])
            ]
            if lost_race:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Concurrent booking on unit(s) {lost_race} while confirming booking "
                    f"{pending_booking_id} (attempt {attempt}/{CONFIRM_MAX_RETRIES}), re-validating"
                )
                continue

            contract = self._build_contract(booking, requested, assignments, units, today)
            booking.status = PendingBookingStatus.COMPLETED
            booking.contract_id = contract.id
            self.db.commit()
            self.db.refresh(contract)

            logger.info(
                f"✅ Contract {contract.id} created from booking {booking.id}: "
                f"{contract.state.value}, units {unit_ids}, impact {contract.impact_from} → "
                f"{contract.impact_to or 'open'}"
            )
            return contract

        raise UnitConflict(
            f"Could not confirm booking {pending_booking_id}: units kept changing concurrently"
        )

    def _build_contract(
        self,
        booking: PendingBooking,
        requested: DateInterval,
        assignments: list[UnitAssignment],
        units: dict,
        today: date,
    ) -> Contract:
        services = [
            BookedService(
                unit_id=a.unit_id,
                start_date=requested.start,
                end_date=requested.end,
                monthly_price=(
                    a.monthly_price if a.monthly_price is not None else units[a.unit_id].list_price
                ),
            )
            for a in assignments
        ]
        impact = span(s.interval for s in services)

        if booking.is_trial:
            obligation_start = requested.start + timedelta(days=TRIAL_DURATION_DAYS)
        else:
            obligation_start = requested.start

        if requested.start > today:
            state = ContractState.SCHEDULED
        elif booking.is_trial:
            state = ContractState.TRIAL_ACTIVE
        else:
            state = ContractState.ACTIVE

        contract = Contract(
            vendor_id=booking.vendor_id,
            pending_booking_id=booking.id,
            state=state,
            impact_from=impact.start,
            impact_to=impact.end,
            is_trial_booking=booking.is_trial,
            payment_obligation_start_date=obligation_start,
            total_monthly_price=sum(s.monthly_price for s in services),
        )
        return self.repo.add_contract(self.db, contract, services)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_due(self, contract_id: int, today: Optional[date] = None) -> Contract:
        """scheduled → trial_active/active once the start date has arrived"""
        today = today or date.today()
        contract = self.get_contract(contract_id)
        if contract.state != ContractState.SCHEDULED or contract.impact_from > today:
            return contract

        new_state = ContractState.TRIAL_ACTIVE if contract.is_trial_booking else ContractState.ACTIVE
        return self._apply(contract, new_state)

    def advance_to_active(self, contract_id: int, today: Optional[date] = None) -> Contract:
        """trial_active → active; a no-op on an already active contract"""
        today = today or date.today()
        contract = self.get_contract(contract_id)

        if contract.state == ContractState.ACTIVE:
            logger.debug(f"ℹ️ Contract {contract.id} already active")
            return contract
        self._guard_not_terminal(contract)
        if contract.state != ContractState.TRIAL_ACTIVE:
            raise InvalidTransition(
                f"Contract {contract.id} is {contract.state.value}; only trial contracts can be converted"
            )

        contract.trial_conversion_date = today
        vendor = contract.vendor
        if vendor is not None and vendor.trial_conversion_date is None:
            vendor.trial_conversion_date = today
        return self._apply(contract, ContractState.ACTIVE)

    def cancel(self, contract_id: int, effective_date: date) -> Contract:
        """
        Cancel any non-terminal contract as of `effective_date`.

        The impact interval is truncated (never extended) and then frozen.

        Raises:
            AlreadyTerminal: contract already cancelled/expired
        """
        if effective_date is None:
            raise InvalidRequest("An effective date is required")
        contract = self.get_contract(contract_id)
        self._guard_not_terminal(contract)

        self._truncate(contract, effective_date)
        contract.cancelled_at = datetime.utcnow()
        contract.cancellation_effective_date = effective_date
        return self._apply(contract, ContractState.CANCELLED)

    def expire(self, contract_id: int, today: Optional[date] = None) -> Contract:
        """System-only: a trial lapsed without conversion. Truncates like cancel."""
        today = today or date.today()
        contract = self.get_contract(contract_id)
        self._guard_not_terminal(contract)
        if not contract.is_trial_booking:
            raise InvalidTransition(f"Contract {contract.id} is not a trial booking")

        trial_end = contract.payment_obligation_start_date or today
        self._truncate(contract, min(trial_end, today))
        return self._apply(contract, ContractState.EXPIRED)

    def update_services(self, contract_id: int, services: list[ServiceSpec]) -> Contract:
        """
        Replace a live contract's services and recompute its impact interval.

        Uses the same read-version, check, compare-and-set sequence as
        confirmation, so a booking committed concurrently on one of the
        units forces a re-validation instead of an overbooking.
        """
        if not services:
            raise InvalidRequest("A contract needs at least one service")
        unit_ids = [item.unit_id for item in services]
        if len(set(unit_ids)) != len(unit_ids):
            raise InvalidRequest("A unit can only appear once per contract")
        intervals = {item.unit_id: DateInterval(item.start, item.end) for item in services}

        for attempt in range(1, CONFIRM_MAX_RETRIES + 1):
            contract = self.get_contract(contract_id)
            self._guard_not_terminal(contract)

            # Read versions before checking so a concurrent booking is detected at commit
            units = {u.id: u for u in self.repo.load_units_fresh(self.db, unit_ids)}
            missing = set(unit_ids) - set(units)
            if missing:
                raise NotFound(f"Unknown rental unit(s): {sorted(missing)}")
            seen_versions = {unit_id: unit.booking_version for unit_id, unit in units.items()}

            conflicts = []
            for unit_id in unit_ids:
                conflicts.extend(
                    self.availability.conflicts_for_unit(
                        unit_id, intervals[unit_id], exclude_contract_id=contract.id
                    )
                )
            if conflicts:
                self.db.rollback()
                raise UnitConflict(
                    f"Unit(s) {sorted({c.unit_id for c in conflicts})} not available for contract {contract_id}",
                    conflicts=[c.to_dict() for c in conflicts],
                )

            lost_race = [
                unit_id
                for unit_id in unit_ids
                if not self.repo.bump_unit_version(self.db, unit_id, seen_versions[unit_id])
            ]
            if lost_race:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Concurrent booking on unit(s) {lost_race} while updating contract "
                    f"{contract_id} (attempt {attempt}/{CONFIRM_MAX_RETRIES}), re-validating"
                )
                continue

            contract.services = [
                BookedService(
                    unit_id=item.unit_id,
                    start_date=item.start,
                    end_date=item.end,
                    monthly_price=(
                        item.monthly_price
                        if item.monthly_price is not None
                        else units[item.unit_id].list_price
                    ),
                )
                for item in services
            ]
            self._recompute_impact(contract)
            contract.total_monthly_price = sum(s.monthly_price for s in contract.services)
            self._commit(contract)
            logger.info(f"✅ Contract {contract.id} services updated, impact {contract.impact_from} → {contract.impact_to or 'open'}")
            return contract

        raise UnitConflict(
            f"Could not update contract {contract_id}: units kept changing concurrently"
        )

    def request_conversion(self, vendor_id: int):
        """Record that the vendor wants to keep renting after the trial"""
        vendor = self.repo.get_vendor(self.db, vendor_id)
        if not vendor:
            raise NotFound(f"Vendor {vendor_id} not found")
        if vendor.conversion_requested_at is None:
            vendor.conversion_requested_at = datetime.utcnow()
            self.db.commit()
            logger.info(f"✅ Vendor {vendor.id} requested trial conversion")
        return vendor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _guard_not_terminal(contract: Contract) -> None:
        if contract.is_terminal:
            raise AlreadyTerminal(
                f"Contract {contract.id} is already {contract.state.value}",
                contract_id=contract.id,
                state=contract.state.value,
            )

    @staticmethod
    def _recompute_impact(contract: Contract) -> None:
        if contract.is_terminal:
            # Frozen so historical conflict queries stay stable
            return
        impact = span(s.interval for s in contract.services)
        contract.impact_from = impact.start
        contract.impact_to = impact.end

    @staticmethod
    def _truncate(contract: Contract, at: date) -> None:
        """
        Cut every service at `at` and derive the impact from what is left.

        Services that would only start on or after the cut are dropped. When
        none start before it, the earliest ones are kept as a single day.
        """
        services = list(contract.services)
        started = [s for s in services if s.start_date < at]
        if started:
            kept = started
        else:
            first_start = min(s.start_date for s in services)
            kept = [s for s in services if s.start_date == first_start]

        for service in kept:
            service.end_date = service.interval.truncate(at).end
        if len(kept) != len(services):
            contract.services = kept
            contract.total_monthly_price = sum(s.monthly_price for s in kept)

        impact = span(s.interval for s in kept)
        contract.impact_from = impact.start
        contract.impact_to = impact.end

    def _apply(self, contract: Contract, new_state: ContractState) -> Contract:
        old_state = contract.state
        if not validate_transition(old_state, new_state):
            raise InvalidTransition(
                f"Contract {contract.id} cannot move from {old_state.value} to {new_state.value}"
            )
        contract.state = new_state
        self._commit(contract)
        logger.info(f"✅ Contract {contract.id} transitioned: {old_state.value} → {new_state.value}")
        return contract

    def _commit(self, contract: Contract) -> None:
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise InvalidTransition(
                f"Contract {contract.id} was modified concurrently, reload and retry"
            ) from e
        self.db.refresh(contract)
