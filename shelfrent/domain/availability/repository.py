"""Availability repository - read queries over units and the contracts booked on them"""

from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import NON_TERMINAL_STATES, BookedService, Contract, RentalUnit, Vendor
from ...shared.intervals import DateInterval


class AvailabilityRepository:
    """Repository for unit lookups and per-unit booking queries"""

    @staticmethod
    def get_unit(db: Session, unit_id: int) -> Optional[RentalUnit]:
        return db.query(RentalUnit).filter(RentalUnit.id == unit_id).first()

    @staticmethod
    def get_unit_by_name(db: Session, name: str) -> Optional[RentalUnit]:
        return db.query(RentalUnit).filter(RentalUnit.name == name).first()

    @staticmethod
    def get_units_by_types(db: Session, unit_types: Iterable[str]) -> list[RentalUnit]:
        """Get all units of the given canonical types, ordered by name"""
        return (
            db.query(RentalUnit)
            .filter(RentalUnit.unit_type.in_(list(unit_types)))
            .order_by(RentalUnit.name.asc())
            .all()
        )

    @staticmethod
    def get_units_by_ids(db: Session, unit_ids: Iterable[int]) -> list[RentalUnit]:
        return (
            db.query(RentalUnit)
            .filter(RentalUnit.id.in_(list(unit_ids)))
            .order_by(RentalUnit.name.asc())
            .all()
        )

    @staticmethod
    def list_units(db: Session, unit_type: Optional[str] = None) -> list[RentalUnit]:
        query = db.query(RentalUnit)
        if unit_type:
            query = query.filter(RentalUnit.unit_type == unit_type)
        return query.order_by(RentalUnit.name.asc()).all()

    @staticmethod
    def get_overlapping_bookings(
        db: Session,
        unit_ids: Iterable[int],
        requested: DateInterval,
        exclude_contract_id: Optional[int] = None,
    ) -> list[tuple[BookedService, Contract, str]]:
        """
        Booked services of non-terminal contracts on the given units whose own
        interval overlaps the requested one.

        Returns (service, contract, vendor_name) rows in a single query.
        """
        query = (
            db.query(BookedService, Contract, Vendor.name)
            .join(Contract, BookedService.contract_id == Contract.id)
            .join(Vendor, Contract.vendor_id == Vendor.id)
            .filter(
                BookedService.unit_id.in_(list(unit_ids)),
                Contract.state.in_(NON_TERMINAL_STATES),
                or_(BookedService.end_date.is_(None), BookedService.end_date > requested.start),
            )
        )
        if requested.end is not None:
            query = query.filter(BookedService.start_date < requested.end)
        if exclude_contract_id is not None:
            query = query.filter(Contract.id != exclude_contract_id)

        return query.order_by(BookedService.start_date.asc(), Contract.id.asc()).all()

    @staticmethod
    def unit_is_referenced(db: Session, unit_id: int) -> bool:
        """Whether any contract (in any state) has booked this unit"""
        return (
            db.query(BookedService.id).filter(BookedService.unit_id == unit_id).first() is not None
        )

    @staticmethod
    def create_unit(db: Session, **unit_data) -> RentalUnit:
        unit = RentalUnit(**unit_data)
        db.add(unit)
        db.commit()
        db.refresh(unit)
        return unit

    @staticmethod
    def update_unit(db: Session, unit: RentalUnit, **updates) -> RentalUnit:
        for key, value in updates.items():
            if value is not None and hasattr(unit, key):
                setattr(unit, key, value)
        db.commit()
        db.refresh(unit)
        return unit
