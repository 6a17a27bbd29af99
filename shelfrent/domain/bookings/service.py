"""
Pending booking service - booking requests waiting for unit assignment

A vendor requests unit types for a start date and duration. An operator then
assigns concrete units and confirms, which hands over to the contract
lifecycle service.
"""

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...errors import InvalidRequest, NotFound
from ...models import Contract, PendingBooking, PendingBookingStatus
from ...shared.intervals import DateInterval
from ...shared.unit_types import resolve_types
from ..contracts.service import ContractLifecycleService, UnitAssignment
from .repository import BookingRepository

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(self, db: Session, dispatcher=None):
        self.db = db
        self.repo = BookingRepository()
        self.lifecycle = ContractLifecycleService(db, dispatcher=dispatcher)

    def get_booking(self, booking_id: int) -> PendingBooking:
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise NotFound(f"Pending booking {booking_id} not found")
        return booking

    def list_bookings(
        self, vendor_id: Optional[int] = None, status: Optional[str] = None
    ) -> list[PendingBooking]:
        return self.repo.list_bookings(self.db, vendor_id, status)

    def create_booking(
        self,
        vendor_id: int,
        types: Iterable[str],
        start: date,
        duration_days: Optional[int],
        is_trial: bool = False,
        note: Optional[str] = None,
    ) -> PendingBooking:
        """Record a booking request; types are stored in canonical form"""
        if not self.repo.get_vendor(self.db, vendor_id):
            raise NotFound(f"Vendor {vendor_id} not found")
        canonical = sorted(resolve_types(types))
        # Validates start/duration
        DateInterval.from_duration(start, duration_days)

        booking = self.repo.create_booking(
            self.db,
            vendor_id=vendor_id,
            requested_types=canonical,
            requested_start=start,
            duration_days=duration_days,
            is_trial=is_trial,
            note=note,
        )
        logger.info(
            f"✅ Pending booking {booking.id} created for vendor {vendor_id}: "
            f"{canonical} from {start} for {duration_days or 'open-ended'} day(s)"
        )
        return booking

    def cancel_booking(self, booking_id: int) -> PendingBooking:
        booking = self.get_booking(booking_id)
        if booking.status == PendingBookingStatus.CANCELLED:
            return booking
        if booking.status != PendingBookingStatus.PENDING:
            raise InvalidRequest(
                f"Pending booking {booking_id} is {booking.status} and can no longer be cancelled"
            )
        booking.status = PendingBookingStatus.CANCELLED
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Pending booking {booking_id} cancelled")
        return booking

    async def confirm_booking(
        self,
        booking_id: int,
        assignments: list[UnitAssignment],
        today: Optional[date] = None,
    ) -> Contract:
        return await self.lifecycle.confirm(booking_id, assignments, today)
