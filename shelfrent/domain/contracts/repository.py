"""Contract repository - Database operations for contracts"""

from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session, selectinload

from ...models import (
    BookedService,
    Contract,
    ContractState,
    PendingBooking,
    RentalUnit,
    Vendor,
)


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def get_contract(db: Session, contract_id: int) -> Optional[Contract]:
        return (
            db.query(Contract)
            .options(selectinload(Contract.services))
            .filter(Contract.id == contract_id)
            .first()
        )

    @staticmethod
    def list_contracts(
        db: Session,
        vendor_id: Optional[int] = None,
        state: Optional[ContractState] = None,
    ) -> list[Contract]:
        """Get contracts with optional filters, newest first"""
        query = db.query(Contract).options(selectinload(Contract.services))
        if vendor_id is not None:
            query = query.filter(Contract.vendor_id == vendor_id)
        if state is not None:
            query = query.filter(Contract.state == state)
        return query.order_by(Contract.impact_from.desc(), Contract.id.desc()).all()

    @staticmethod
    def get_due_scheduled_contracts(db: Session, today: date) -> list[Contract]:
        """Scheduled contracts whose start date has arrived"""
        return (
            db.query(Contract)
            .filter(Contract.state == ContractState.SCHEDULED, Contract.impact_from <= today)
            .order_by(Contract.impact_from.asc(), Contract.id.asc())
            .all()
        )

    @staticmethod
    def get_vendor(db: Session, vendor_id: int) -> Optional[Vendor]:
        return db.query(Vendor).filter(Vendor.id == vendor_id).first()

    @staticmethod
    def get_pending_booking(db: Session, booking_id: int) -> Optional[PendingBooking]:
        return db.query(PendingBooking).filter(PendingBooking.id == booking_id).first()

    @staticmethod
    def load_units_fresh(db: Session, unit_ids: Iterable[int]) -> list[RentalUnit]:
        """Load units, overwriting anything cached in the session"""
        return (
            db.query(RentalUnit)
            .populate_existing()
            .filter(RentalUnit.id.in_(list(unit_ids)))
            .all()
        )

    @staticmethod
    def bump_unit_version(db: Session, unit_id: int, seen_version: int) -> bool:
        """
        Compare-and-set on the unit's booking version.

        Returns False if another transaction booked the unit since `seen_version` was read.
        """
        updated = (
            db.query(RentalUnit)
            .filter(RentalUnit.id == unit_id, RentalUnit.booking_version == seen_version)
            .update({RentalUnit.booking_version: seen_version + 1}, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def add_contract(db: Session, contract: Contract, services: list[BookedService]) -> Contract:
        """Stage a new contract with its services (caller commits)"""
        contract.services = services
        db.add(contract)
        db.flush()
        return contract
