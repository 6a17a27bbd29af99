import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .shared.intervals import DateInterval


class ContractState(str, enum.Enum):
    SCHEDULED = "scheduled"
    TRIAL_ACTIVE = "trial_active"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


NON_TERMINAL_STATES = (ContractState.SCHEDULED, ContractState.TRIAL_ACTIVE, ContractState.ACTIVE)
TERMINAL_STATES = (ContractState.CANCELLED, ContractState.EXPIRED)


class PendingBookingStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RentalUnit(Base):
    __tablename__ = "rental_units"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    unit_type = Column(String(50), index=True, nullable=False)  # canonical tag, see shared.unit_types
    size_sqm = Column(Float, default=1.0, nullable=False)
    site = Column(String(255), nullable=True)
    list_price = Column(Float, nullable=False, default=0.0)  # monthly list price
    description = Column(Text, nullable=True)
    # Compare-and-set counter bumped whenever a contract is booked onto this unit
    booking_version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    services = relationship("BookedService", back_populates="unit")


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    # Trial automation state - each flag goes false -> true once
    seven_day_reminder_sent = Column(Boolean, default=False, nullable=False)
    three_day_reminder_sent = Column(Boolean, default=False, nullable=False)
    one_day_reminder_sent = Column(Boolean, default=False, nullable=False)
    expiration_notification_sent = Column(Boolean, default=False, nullable=False)
    last_reminder_sent_at = Column(DateTime, nullable=True)
    trial_conversion_date = Column(Date, nullable=True)
    # Explicit "keep renting after the trial" signal
    conversion_requested_at = Column(DateTime, nullable=True)
    automation_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contracts = relationship("Contract", back_populates="vendor")
    pending_bookings = relationship("PendingBooking", back_populates="vendor")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), index=True, nullable=False)
    pending_booking_id = Column(Integer, ForeignKey("pending_bookings.id"), nullable=True)
    state = Column(
        Enum(
            ContractState,
            name="contract_state",
            values_callable=lambda states: [s.value for s in states],
        ),
        index=True,
        nullable=False,
        default=ContractState.SCHEDULED,
    )
    # Availability impact [impact_from, impact_to); impact_to null = open-ended
    impact_from = Column(Date, index=True, nullable=False)
    impact_to = Column(Date, index=True, nullable=True)
    is_trial_booking = Column(Boolean, default=False, nullable=False, index=True)
    payment_obligation_start_date = Column(Date, index=True, nullable=True)
    total_monthly_price = Column(Float, default=0.0, nullable=False)
    trial_conversion_date = Column(Date, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_effective_date = Column(Date, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vendor = relationship("Vendor", back_populates="contracts")
    services = relationship(
        "BookedService",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="BookedService.start_date",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class BookedService(Base):
    __tablename__ = "booked_services"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), index=True, nullable=False)
    unit_id = Column(Integer, ForeignKey("rental_units.id"), index=True, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    monthly_price = Column(Float, nullable=False)

    contract = relationship("Contract", back_populates="services")
    unit = relationship("RentalUnit", back_populates="services")

    @property
    def interval(self) -> DateInterval:
        return DateInterval(self.start_date, self.end_date)


class PendingBooking(Base):
    __tablename__ = "pending_bookings"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), index=True, nullable=False)
    requested_types = Column(JSON, default=list, nullable=False)
    requested_start = Column(Date, nullable=False)
    duration_days = Column(Integer, nullable=True)  # null = open-ended
    is_trial = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default=PendingBookingStatus.PENDING, nullable=False, index=True)
    contract_id = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vendor = relationship("Vendor", back_populates="pending_bookings")


class SchedulerJob(Base):
    """Persisted run marker and status for a periodic job"""

    __tablename__ = "scheduler_jobs"

    name = Column(String(100), primary_key=True)
    in_progress = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    last_finished_at = Column(DateTime, nullable=True)
    consecutive_overlaps = Column(Integer, default=0, nullable=False)
    last_summary = Column(JSON, nullable=True)


class OperationalAlert(Base):
    __tablename__ = "operational_alerts"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(100), index=True, nullable=False)  # dispatch_failed, job_overlap, ...
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)
