"""
Vehicle API Endpoints.

Public availability lookup so clients can check dates before booking.
"""

from datetime import date

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.vehicle import Vehicle
from backend.app.schemas.vehicle import VehicleAvailabilityResponse
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.rentals.availability import (
    validate_date_range, count_in_service_units, vehicle_capacity
)
from backend.app.domain.rentals.inventory import display_status, get_unit_statuses

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.get("/{vehicle_id}/availability", response_model=VehicleAvailabilityResponse)
async def get_vehicle_availability(
    vehicle_id: int = Path(..., gt=0),
    start_date: date = Query(..., description="First rental day (inclusive)"),
    end_date: date = Query(..., description="Return day (exclusive)"),
    db: AsyncSession = Depends(get_db)
):
    """
    Number of units of a vehicle still free for the given dates.

    Units in maintenance or out of service are not counted.
    """
    validate_date_range(start_date, end_date)

    vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)

    available_units = await vehicle_capacity(db, vehicle_id, start_date, end_date)

    return VehicleAvailabilityResponse(
        vehicle_id=vehicle.id,
        start_date=start_date,
        end_date=end_date,
        total_units=await count_in_service_units(db, vehicle_id),
        available_units=available_units,
        is_available=available_units > 0,
        vehicle_status=vehicle.status,
        display_status=display_status(await get_unit_statuses(db, vehicle_id))
    )
