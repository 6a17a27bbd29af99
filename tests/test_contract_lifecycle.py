"""Tests for confirmation, cancellation and the other contract transitions."""

from datetime import date, timedelta

import pytest

from conftest import make_contract, make_pending_booking, make_unit, make_vendor
from shelfrent.config import TRIAL_DURATION_DAYS
from shelfrent.domain.availability.service import AvailabilityService
from shelfrent.domain.contracts.service import (
    ContractLifecycleService,
    ServiceSpec,
    UnitAssignment,
    validate_transition,
)
from shelfrent.errors import AlreadyTerminal, InvalidRequest, InvalidTransition, UnitConflict
from shelfrent.models import BookedService, ContractState, PendingBookingStatus


class TestValidateTransition:
    def test_allowed_and_rejected(self):
        assert validate_transition(ContractState.SCHEDULED, ContractState.TRIAL_ACTIVE)
        assert validate_transition(ContractState.TRIAL_ACTIVE, ContractState.EXPIRED)
        assert validate_transition(ContractState.ACTIVE, ContractState.ACTIVE)
        assert not validate_transition(ContractState.ACTIVE, ContractState.EXPIRED)
        assert not validate_transition(ContractState.CANCELLED, ContractState.ACTIVE)


# ── Confirm ──────────────────────────────────────────────────────────


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_creates_contract_and_notifies(self, db, dispatcher, today):
        unit = make_unit(db, "Regal 1", list_price=80.0)
        vendor = make_vendor(db)
        booking = make_pending_booking(db, vendor, today, duration_days=90)

        contract = await ContractLifecycleService(db, dispatcher).confirm(
            booking.id, [UnitAssignment(unit.id)], today
        )

        assert contract.state == ContractState.ACTIVE
        assert contract.impact_from == today
        assert contract.impact_to == today + timedelta(days=90)
        assert contract.total_monthly_price == 80.0
        assert contract.payment_obligation_start_date == today
        db.refresh(booking)
        assert booking.status == PendingBookingStatus.COMPLETED
        assert booking.contract_id == contract.id
        assert dispatcher.kinds() == ["booking_confirmed"]
        db.refresh(unit)
        assert unit.booking_version == 1

    def test_trial_booking_in_the_future_is_scheduled(self, db, today):
        unit = make_unit(db, "Regal 1")
        booking = make_pending_booking(db, make_vendor(db), today + timedelta(days=10), is_trial=True)

        contract = ContractLifecycleService(db).create_contract_from_booking(
            booking.id, [UnitAssignment(unit.id, monthly_price=55.0)], today
        )

        assert contract.state == ContractState.SCHEDULED
        assert contract.impact_to is None
        assert contract.total_monthly_price == 55.0
        assert contract.payment_obligation_start_date == today + timedelta(days=10 + TRIAL_DURATION_DAYS)

    def test_confirm_rejects_occupied_unit(self, db, today):
        unit = make_unit(db, "Regal 1")
        other = make_vendor(db, "Käserei Alpen")
        existing = make_contract(db, other, [unit], today - timedelta(days=30), today + timedelta(days=30))
        booking = make_pending_booking(db, make_vendor(db), today, duration_days=60)

        with pytest.raises(UnitConflict) as exc_info:
            ContractLifecycleService(db).create_contract_from_booking(booking.id, [UnitAssignment(unit.id)], today)

        [conflict] = exc_info.value.conflicts
        assert conflict["contractId"] == existing.id
        assert conflict["vendorName"] == "Käserei Alpen"
        db.refresh(booking)
        assert booking.status == PendingBookingStatus.PENDING

    def test_confirm_requires_pending_booking(self, db, today):
        unit = make_unit(db, "Regal 1")
        booking = make_pending_booking(db, make_vendor(db), today, duration_days=30)
        service = ContractLifecycleService(db)
        service.create_contract_from_booking(booking.id, [UnitAssignment(unit.id)], today)

        with pytest.raises(InvalidRequest):
            service.create_contract_from_booking(booking.id, [UnitAssignment(unit.id)], today)

    def test_concurrent_confirms_on_same_unit(self, session_factory, today):
        setup = session_factory()
        unit = make_unit(setup, "Regal 1")
        first = make_pending_booking(setup, make_vendor(setup, "Vendor A"), today, duration_days=30)
        second = make_pending_booking(setup, make_vendor(setup, "Vendor B"), today + timedelta(days=10), duration_days=30)
        unit_id, first_id, second_id = unit.id, first.id, second.id
        setup.close()

        session_a = session_factory()
        session_b = session_factory()
        service_a = ContractLifecycleService(session_a)
        service_b = ContractLifecycleService(session_b)

        original_check = service_b.availability.conflicts_for_unit
        calls = []

        def check_then_lose_race(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                # A confirms in between B's check and B's commit
                service_a.create_contract_from_booking(first_id, [UnitAssignment(unit_id)], today)
                return []
            return original_check(*args, **kwargs)

        service_b.availability.conflicts_for_unit = check_then_lose_race

        with pytest.raises(UnitConflict) as exc_info:
            service_b.create_contract_from_booking(second_id, [UnitAssignment(unit_id)], today)

        assert len(calls) == 2
        assert exc_info.value.conflicts[0]["vendorName"] == "Vendor A"

        check = session_factory()
        contracts = service_a.list_contracts()
        assert len(contracts) == 1
        assert AvailabilityService(check).check_units([unit_id], today, 30)[0].available is False
        for session in (session_a, session_b, check):
            session.close()

    def test_service_update_racing_a_confirm_on_the_target_unit(self, session_factory, today):
        setup = session_factory()
        current = make_unit(setup, "Regal 1")
        target = make_unit(setup, "Regal 2")
        contract = make_contract(
            setup, make_vendor(setup, "Vendor A"), [current], today, today + timedelta(days=30)
        )
        booking = make_pending_booking(setup, make_vendor(setup, "Vendor B"), today, duration_days=30)
        contract_id, target_id, booking_id = contract.id, target.id, booking.id
        setup.close()

        session_a = session_factory()
        session_b = session_factory()
        updater = ContractLifecycleService(session_a)
        confirmer = ContractLifecycleService(session_b)

        original_check = updater.availability.conflicts_for_unit
        calls = []

        def check_then_lose_race(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                # Vendor B takes the target unit between the check and the commit
                confirmer.create_contract_from_booking(booking_id, [UnitAssignment(target_id)], today)
                return []
            return original_check(*args, **kwargs)

        updater.availability.conflicts_for_unit = check_then_lose_race

        with pytest.raises(UnitConflict) as exc_info:
            updater.update_services(
                contract_id, [ServiceSpec(target_id, today, today + timedelta(days=30))]
            )

        assert len(calls) == 2
        assert exc_info.value.conflicts[0]["vendorName"] == "Vendor B"

        check = session_factory()
        booked_on_target = check.query(BookedService).filter(BookedService.unit_id == target_id).all()
        assert len(booked_on_target) == 1
        assert booked_on_target[0].contract_id != contract_id
        for session in (session_a, session_b, check):
            session.close()


# ── Cancel / expire / advance ────────────────────────────────────────


class TestTransitions:
    def test_cancel_truncates_and_frees_the_unit(self, db, today):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), None)
        service = ContractLifecycleService(db)

        cancelled = service.cancel(contract.id, date(2025, 6, 1))

        assert cancelled.state == ContractState.CANCELLED
        assert cancelled.impact_to == date(2025, 6, 1)
        assert cancelled.services[0].end_date == date(2025, 6, 1)
        assert cancelled.cancellation_effective_date == date(2025, 6, 1)
        [result] = AvailabilityService(db).check_availability(date(2025, 6, 1), 30, ["regal"])
        assert result.available is True

    def test_cancel_never_extends(self, db):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), date(2025, 3, 1))

        cancelled = ContractLifecycleService(db).cancel(contract.id, date(2025, 9, 1))
        assert cancelled.impact_to == date(2025, 3, 1)

    def test_cancel_before_start_collapses_to_one_day(self, db):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(
            db, make_vendor(db), [unit], date(2025, 8, 1), None, state=ContractState.SCHEDULED
        )

        cancelled = ContractLifecycleService(db).cancel(contract.id, date(2025, 7, 1))
        assert cancelled.impact_from == date(2025, 8, 1)
        assert cancelled.impact_to == date(2025, 8, 2)

    def test_cancel_drops_services_that_never_started(self, db):
        running = make_unit(db, "Regal 1", list_price=50.0)
        later = make_unit(db, "Regal 2", list_price=30.0)
        contract = make_contract(
            db,
            make_vendor(db),
            [running, later],
            date(2025, 1, 1),
            None,
            service_intervals={
                running.id: (date(2025, 1, 1), None),
                later.id: (date(2025, 7, 1), None),
            },
        )

        cancelled = ContractLifecycleService(db).cancel(contract.id, date(2025, 6, 1))

        assert [(s.unit_id, s.start_date, s.end_date) for s in cancelled.services] == [
            (running.id, date(2025, 1, 1), date(2025, 6, 1))
        ]
        assert (cancelled.impact_from, cancelled.impact_to) == (date(2025, 1, 1), date(2025, 6, 1))
        assert cancelled.total_monthly_price == 50.0
        [result] = AvailabilityService(db).check_units([later.id], date(2025, 7, 1), 1)
        assert result.available is True

    def test_cancel_impact_matches_service_span(self, db):
        first = make_unit(db, "Regal 1")
        second = make_unit(db, "Regal 2")
        contract = make_contract(
            db,
            make_vendor(db),
            [first, second],
            date(2025, 1, 1),
            None,
            service_intervals={
                first.id: (date(2025, 1, 1), date(2025, 3, 1)),
                second.id: (date(2025, 2, 1), None),
            },
        )

        cancelled = ContractLifecycleService(db).cancel(contract.id, date(2025, 5, 1))

        ends = sorted(s.end_date for s in cancelled.services)
        assert ends == [date(2025, 3, 1), date(2025, 5, 1)]
        assert cancelled.impact_from == min(s.start_date for s in cancelled.services)
        assert cancelled.impact_to == max(ends)

    def test_cancel_terminal_contract(self, db):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), None)
        service = ContractLifecycleService(db)
        service.cancel(contract.id, date(2025, 6, 1))

        with pytest.raises(AlreadyTerminal) as exc_info:
            service.cancel(contract.id, date(2025, 5, 1))
        assert exc_info.value.state == "cancelled"
        assert service.get_contract(contract.id).impact_to == date(2025, 6, 1)

    def test_advance_is_idempotent(self, db, today):
        unit = make_unit(db, "Regal 1")
        vendor = make_vendor(db)
        contract = make_contract(
            db, vendor, [unit], today - timedelta(days=20), None, state=ContractState.TRIAL_ACTIVE, is_trial=True
        )
        service = ContractLifecycleService(db)

        advanced = service.advance_to_active(contract.id, today)
        assert advanced.state == ContractState.ACTIVE
        assert advanced.trial_conversion_date == today
        db.refresh(vendor)
        assert vendor.trial_conversion_date == today

        again = service.advance_to_active(contract.id, today + timedelta(days=1))
        assert again.state == ContractState.ACTIVE
        assert again.trial_conversion_date == today

    def test_advance_from_scheduled_is_rejected(self, db, today):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(
            db, make_vendor(db), [unit], today + timedelta(days=5), None, state=ContractState.SCHEDULED
        )
        with pytest.raises(InvalidTransition):
            ContractLifecycleService(db).advance_to_active(contract.id, today)

    def test_expire_truncates_at_trial_end(self, db):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(
            db,
            make_vendor(db),
            [unit],
            date(2025, 5, 1),
            None,
            state=ContractState.TRIAL_ACTIVE,
            is_trial=True,
            obligation=date(2025, 5, 31),
        )

        expired = ContractLifecycleService(db).expire(contract.id, date(2025, 6, 2))
        assert expired.state == ContractState.EXPIRED
        assert expired.impact_to == date(2025, 5, 31)

    def test_start_due(self, db, today):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(
            db, make_vendor(db), [unit], today, None, state=ContractState.SCHEDULED, is_trial=True
        )
        started = ContractLifecycleService(db).start_due(contract.id, today)
        assert started.state == ContractState.TRIAL_ACTIVE

    def test_update_services_recomputes_impact(self, db):
        first = make_unit(db, "Regal 1")
        second = make_unit(db, "Regal 2", list_price=30.0)
        contract = make_contract(db, make_vendor(db), [first], date(2025, 1, 1), date(2025, 4, 1))
        service = ContractLifecycleService(db)

        updated = service.update_services(
            contract.id,
            [
                ServiceSpec(first.id, date(2025, 1, 1), date(2025, 4, 1)),
                ServiceSpec(second.id, date(2025, 2, 1), date(2025, 6, 1)),
            ],
        )
        assert updated.impact_from == date(2025, 1, 1)
        assert updated.impact_to == date(2025, 6, 1)
        assert updated.total_monthly_price == 130.0

        service.cancel(contract.id, date(2025, 3, 1))
        with pytest.raises(AlreadyTerminal):
            service.update_services(contract.id, [ServiceSpec(first.id, date(2025, 1, 1), None)])

    def test_request_conversion(self, db):
        vendor = make_vendor(db)
        ContractLifecycleService(db).request_conversion(vendor.id)
        db.refresh(vendor)
        assert vendor.conversion_requested_at is not None
