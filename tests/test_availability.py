"""Tests for the availability resolver and the unit catalog."""

from datetime import date, timedelta

import pytest

from conftest import make_contract, make_unit, make_vendor
from shelfrent.domain.availability.service import AvailabilityService, UnitCatalogService
from shelfrent.errors import InvalidRequest, NotFound
from shelfrent.models import ContractState
from shelfrent.shared.intervals import DateInterval


def by_name(results):
    return {r.unit.name: r for r in results}


class TestCheckAvailability:
    def test_conflict_reports_contract_and_next_available(self, db):
        unit = make_unit(db, "Regal 1")
        vendor = make_vendor(db, "Imkerei Sommer")
        contract = make_contract(db, vendor, [unit], date(2025, 9, 1), date(2025, 12, 1))

        [result] = AvailabilityService(db).check_availability(date(2025, 10, 1), 31, ["regal"])

        assert result.available is False
        assert result.next_available == date(2025, 12, 1)
        [conflict] = result.conflicts
        assert conflict.contract_id == contract.id
        assert conflict.vendor_name == "Imkerei Sommer"
        assert conflict.interval == DateInterval(date(2025, 9, 1), date(2025, 12, 1))
        assert conflict.state == "active"

    def test_booking_starting_on_end_date_is_free(self, db):
        unit = make_unit(db, "Regal 1")
        make_contract(db, make_vendor(db), [unit], date(2025, 10, 1), date(2025, 12, 1))

        [result] = AvailabilityService(db).check_availability(date(2025, 12, 1), 30, ["regal"])
        assert result.available is True
        assert result.conflicts == []

    def test_open_ended_conflict_has_no_next_available(self, db):
        unit = make_unit(db, "Regal 1")
        make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), None)

        [result] = AvailabilityService(db).check_availability(date(2026, 3, 1), None, ["regal"])
        assert result.available is False
        assert result.next_available is None

    def test_terminal_contracts_never_block(self, db):
        unit = make_unit(db, "Regal 1")
        vendor = make_vendor(db)
        make_contract(db, vendor, [unit], date(2025, 1, 1), None, state=ContractState.CANCELLED)
        make_contract(db, vendor, [unit], date(2025, 1, 1), None, state=ContractState.EXPIRED)

        [result] = AvailabilityService(db).check_availability(date(2025, 2, 1), 10, ["regal"])
        assert result.available is True

    def test_cancelled_yesterday_frees_unit_today(self, db):
        unit = make_unit(db, "Regal 1")
        today = date(2025, 6, 1)
        make_contract(
            db, make_vendor(db), [unit], date(2025, 1, 1), today - timedelta(days=1), state=ContractState.CANCELLED
        )

        [result] = AvailabilityService(db).check_availability(today, None, ["regal"])
        assert result.available is True

    def test_scheduled_and_trial_contracts_block(self, db):
        first = make_unit(db, "Regal 1")
        second = make_unit(db, "Regal 2")
        vendor = make_vendor(db)
        make_contract(db, vendor, [first], date(2025, 8, 1), date(2025, 9, 1), state=ContractState.SCHEDULED)
        make_contract(
            db, vendor, [second], date(2025, 7, 1), None, state=ContractState.TRIAL_ACTIVE, is_trial=True
        )

        results = by_name(AvailabilityService(db).check_availability(date(2025, 8, 15), 7, ["regal"]))
        assert results["Regal 1"].available is False
        assert results["Regal 2"].available is False

    def test_multi_unit_contract_uses_per_unit_intervals(self, db):
        short = make_unit(db, "Regal A")
        long = make_unit(db, "Regal B")
        make_contract(
            db,
            make_vendor(db),
            [short, long],
            date(2025, 1, 1),
            date(2025, 7, 1),
            service_intervals={
                short.id: (date(2025, 1, 1), date(2025, 4, 1)),
                long.id: (date(2025, 1, 1), date(2025, 7, 1)),
            },
        )

        results = by_name(AvailabilityService(db).check_availability(date(2025, 4, 1), 30, ["regal"]))
        assert results["Regal A"].available is True
        assert results["Regal B"].available is False

    def test_conflicts_sorted_by_start(self, db):
        unit = make_unit(db, "Regal 1")
        vendor = make_vendor(db)
        later = make_contract(db, vendor, [unit], date(2025, 5, 1), date(2025, 6, 1))
        earlier = make_contract(db, vendor, [unit], date(2025, 3, 1), date(2025, 4, 1))

        [result] = AvailabilityService(db).check_availability(date(2025, 1, 1), 365, ["regal"])
        assert [c.contract_id for c in result.conflicts] == [earlier.id, later.id]
        assert result.next_available == date(2025, 6, 1)

    def test_alias_types_match(self, db):
        make_unit(db, "Kühlregal 1", unit_type="kuehlregal")
        make_unit(db, "Regal 1", unit_type="regal")

        results = AvailabilityService(db).check_availability(date(2025, 1, 1), 30, ["Kühl"])
        assert [r.unit.name for r in results] == ["Kühlregal 1"]

    def test_invalid_requests(self, db):
        service = AvailabilityService(db)
        with pytest.raises(InvalidRequest):
            service.check_availability(date(2025, 1, 1), 0, ["regal"])
        with pytest.raises(InvalidRequest):
            service.check_availability(date(2025, 1, 1), 30, [])
        with pytest.raises(InvalidRequest):
            service.check_availability(date(2025, 1, 1), 30, ["aquarium"])
        with pytest.raises(InvalidRequest):
            service.check_availability(date(2025, 1, 1), 2.5, ["regal"])


class TestBatchAndHelpers:
    def test_check_units_unknown_id(self, db):
        unit = make_unit(db, "Regal 1")
        with pytest.raises(NotFound):
            AvailabilityService(db).check_units([unit.id, 999], date(2025, 1, 1), 30)

    def test_find_available_units(self, db):
        free = make_unit(db, "Regal 1")
        taken = make_unit(db, "Regal 2")
        make_contract(db, make_vendor(db), [taken], date(2025, 1, 1), None)

        units = AvailabilityService(db).find_available_units(["regal"], date(2025, 3, 1), 30)
        assert [u.id for u in units] == [free.id]

    def test_is_unit_free_excluding_own_contract(self, db):
        unit = make_unit(db, "Regal 1")
        contract = make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), date(2025, 3, 1))
        service = AvailabilityService(db)
        interval = DateInterval(date(2025, 2, 1), date(2025, 4, 1))

        assert service.is_unit_free(unit.id, interval) is False
        assert service.is_unit_free(unit.id, interval, exclude_contract_id=contract.id) is True


class TestUnitCatalog:
    def test_create_unit_normalises_type(self, db):
        unit = UnitCatalogService(db).create_unit("Tisch 1", "Tisch", 45.0)
        assert unit.unit_type == "verkaufstisch"

    def test_create_rejects_duplicates_and_unknown_types(self, db):
        catalog = UnitCatalogService(db)
        catalog.create_unit("Regal 1", "regal", 50.0)
        with pytest.raises(InvalidRequest):
            catalog.create_unit("Regal 1", "regal", 50.0)
        with pytest.raises(InvalidRequest):
            catalog.create_unit("Aquarium 1", "aquarium", 50.0)

    def test_type_is_frozen_once_booked(self, db):
        catalog = UnitCatalogService(db)
        unit = catalog.create_unit("Regal 1", "regal", 50.0)
        make_contract(db, make_vendor(db), [unit], date(2025, 1, 1), None)

        with pytest.raises(InvalidRequest):
            catalog.update_unit(unit.id, unit_type="kuehlregal")
        updated = catalog.update_unit(unit.id, list_price=60.0)
        assert updated.list_price == 60.0
