"""
Vehicle schemas.
"""

from pydantic import BaseModel
from datetime import date
from backend.app.models.rental_enums import VehicleStatus


class VehicleAvailabilityResponse(BaseModel):
    """Free capacity of a vehicle for a date range."""
    vehicle_id: int
    start_date: date
    end_date: date
    total_units: int
    available_units: int
    is_available: bool
    vehicle_status: VehicleStatus
    display_status: str
