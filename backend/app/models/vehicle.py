"""
Vehicle database model.

Catalog entry owned by the external catalog service. The rental core reads
price and roster and writes only the cached aggregate `status`.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.rental_enums import VehicleStatus


class Vehicle(Base):
    """
    Vehicle model.

    Not itself reservable once units exist; `status` is recomputed from
    unit states on every unit mutation and is never a source of truth.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Catalog details
    title = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    vehicle_category = Column(String(100), nullable=False)
    year = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    photos = Column(JSON, nullable=True)
    features = Column(JSON, nullable=True)
    transmission = Column(String(20), nullable=True)  # manual / automatic
    fuel_type = Column(String(50), nullable=True)
    passenger_capacity = Column(Integer, nullable=True)

    # Pricing (snapshotted onto each rental at creation)
    price_per_day = Column(Numeric(10, 2), nullable=False)

    # Cached projection of unit states
    status = Column(Enum(VehicleStatus), default=VehicleStatus.AVAILABLE, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, title='{self.title}', status='{self.status.value}')>"
