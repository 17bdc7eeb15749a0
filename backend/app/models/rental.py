"""
Rental database model.

The central reservation entity. A rental occupies its unit over the
half-open date range [start_date, end_date).
"""

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, Enum,
    CheckConstraint, Index
)
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.rental_enums import RentalStatus, ApprovalStatus


class Rental(Base):
    """
    Rental model.

    `total_amount` is computed at creation from the price snapshot and is
    never recomputed. `admin_approval_status` only leaves PENDING while
    `status` is CONFIRMED.
    """
    __tablename__ = "rentals"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey('vehicle_units.id'), nullable=True, index=True)  # Null for legacy bookings

    # Period [start_date, end_date)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Pricing (frozen at creation)
    total_days = Column(Integer, nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)

    # Lifecycle
    status = Column(Enum(RentalStatus), default=RentalStatus.PENDING, nullable=False, index=True)
    admin_approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False, index=True)
    approved_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Pickup / return
    pickup_location = Column(String(255), nullable=True)
    pickup_latitude = Column(Numeric(10, 8), nullable=True)
    pickup_longitude = Column(Numeric(11, 8), nullable=True)
    return_location = Column(String(255), nullable=True)
    return_latitude = Column(Numeric(10, 8), nullable=True)
    return_longitude = Column(Numeric(11, 8), nullable=True)
    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('end_date > start_date', name='ck_rentals_date_range'),
        CheckConstraint('total_days >= 1', name='ck_rentals_total_days'),
        Index('ix_rentals_unit_period', 'unit_id', 'start_date', 'end_date'),
    )

    def __repr__(self):
        return f"<Rental(id={self.id}, unit_id={self.unit_id}, status='{self.status.value}')>"
