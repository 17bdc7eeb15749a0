"""
Vehicle Unit database model.

One physical, individually identifiable instance of a Vehicle.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.rental_enums import UnitStatus


class VehicleUnit(Base):
    """
    Vehicle Unit model.

    Unit status is the single point of mutual exclusion for inventory.
    It is written only by the allocator, approval gate, sweeper and
    cancellation handler, always in the same transaction as the rental change.
    """
    __tablename__ = "vehicle_units"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False, index=True)
    plate_number = Column(String(20), unique=True, nullable=False, index=True)

    status = Column(Enum(UnitStatus), default=UnitStatus.AVAILABLE, nullable=False, index=True)

    # Location
    current_location = Column(String(255), nullable=True)
    current_latitude = Column(Numeric(10, 8), nullable=True)
    current_longitude = Column(Numeric(11, 8), nullable=True)

    # Maintenance
    mileage = Column(Integer, default=0, nullable=True)
    last_maintenance_date = Column(Date, nullable=True)
    next_maintenance_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<VehicleUnit(id={self.id}, plate='{self.plate_number}', status='{self.status.value}')>"
