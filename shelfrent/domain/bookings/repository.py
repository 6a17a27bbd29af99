"""Pending booking repository - Database operations for booking requests"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import PendingBooking, PendingBookingStatus, Vendor


class BookingRepository:
    """Repository for pending booking database operations"""

    @staticmethod
    def get_vendor(db: Session, vendor_id: int) -> Optional[Vendor]:
        return db.query(Vendor).filter(Vendor.id == vendor_id).first()

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[PendingBooking]:
        return db.query(PendingBooking).filter(PendingBooking.id == booking_id).first()

    @staticmethod
    def list_bookings(
        db: Session, vendor_id: Optional[int] = None, status: Optional[str] = None
    ) -> list[PendingBooking]:
        query = db.query(PendingBooking)
        if vendor_id is not None:
            query = query.filter(PendingBooking.vendor_id == vendor_id)
        if status:
            query = query.filter(PendingBooking.status == status)
        return query.order_by(PendingBooking.created_at.desc(), PendingBooking.id.desc()).all()

    @staticmethod
    def create_booking(db: Session, **fields) -> PendingBooking:
        booking = PendingBooking(status=PendingBookingStatus.PENDING, **fields)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking
