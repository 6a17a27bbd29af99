"""Shared fixtures: a throwaway SQLite database per test and a recording dispatcher."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ.pop("ADMIN_ALERT_EMAIL", None)
os.environ.pop("RESEND_API_KEY", None)

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from shelfrent import models  # noqa: F401 - registers tables on Base
from shelfrent.database import Base, build_engine
from shelfrent.models import (
    BookedService,
    Contract,
    ContractState,
    PendingBooking,
    PendingBookingStatus,
    RentalUnit,
    Vendor,
)
from shelfrent.services.notification_service import DispatchResult


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'shelfrent-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ── Recording dispatcher ─────────────────────────────────────────────


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; records every dispatch."""

    def __init__(self):
        self.calls = []
        self.accept = True
        self.fail_for_vendors = set()

    async def dispatch(self, db, kind, recipient_vendor_id, payload, dedupe_key=None):
        if recipient_vendor_id in self.fail_for_vendors:
            raise RuntimeError(f"dispatcher exploded for vendor {recipient_vendor_id}")
        self.calls.append(
            {"kind": kind, "vendorId": recipient_vendor_id, "payload": payload, "dedupeKey": dedupe_key}
        )
        if not self.accept:
            return DispatchResult(accepted=False, channel="failed", error="unavailable")
        return DispatchResult(accepted=True, channel="queue", job_id=dedupe_key)

    def kinds(self):
        return [c["kind"] for c in self.calls]


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


# ── Factories ────────────────────────────────────────────────────────


def make_unit(db, name, unit_type="regal", list_price=100.0, site="Ladenlokal"):
    unit = RentalUnit(name=name, unit_type=unit_type, list_price=list_price, site=site, size_sqm=1.0)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit


def make_vendor(db, name="Hofladen Meier", email=None):
    vendor = Vendor(name=name, email=email or f"{name.lower().replace(' ', '.')}@example.com")
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    return vendor


def make_contract(
    db,
    vendor,
    units,
    start,
    end=None,
    state=ContractState.ACTIVE,
    is_trial=False,
    obligation=None,
    price=None,
    service_intervals=None,
):
    """Insert a contract directly; service_intervals maps unit id -> (start, end)."""
    service_intervals = service_intervals or {}
    services = []
    for unit in units:
        s_start, s_end = service_intervals.get(unit.id, (start, end))
        services.append(
            BookedService(
                unit_id=unit.id,
                start_date=s_start,
                end_date=s_end,
                monthly_price=price if price is not None else unit.list_price,
            )
        )
    if obligation is None:
        obligation = start + timedelta(days=30) if is_trial else start
    contract = Contract(
        vendor_id=vendor.id,
        state=state,
        impact_from=start,
        impact_to=end,
        is_trial_booking=is_trial,
        payment_obligation_start_date=obligation,
        total_monthly_price=sum(s.monthly_price for s in services),
        services=services,
    )
    db.add(contract)
    db.commit()
    db.refresh(contract)
    return contract


def make_pending_booking(db, vendor, start, duration_days=None, is_trial=False, types=("regal",)):
    booking = PendingBooking(
        vendor_id=vendor.id,
        requested_types=list(types),
        requested_start=start,
        duration_days=duration_days,
        is_trial=is_trial,
        status=PendingBookingStatus.PENDING,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture
def today():
    return date(2025, 6, 1)
