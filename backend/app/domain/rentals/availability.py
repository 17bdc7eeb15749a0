"""
Availability Calculator.

Counts occupying rentals whose [start, end) range overlaps a query range.
Two ranges overlap iff existing.start < new.end AND existing.end > new.start,
so back-to-back bookings (one ends the day the other starts) never collide.
"""

import math
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import RequestValidationFailed
from backend.app.models.rental import Rental
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental_enums import OCCUPYING_STATUSES, OUT_OF_SERVICE_UNIT_STATUSES


def validate_date_range(start_date: date, end_date: date) -> None:
    """
    Reject zero-length and inverted ranges before any capacity check.

    Raises:
        RequestValidationFailed: If end_date <= start_date
    """
    if start_date is None or end_date is None:
        raise RequestValidationFailed("Start date and end date are required")

    if end_date <= start_date:
        raise RequestValidationFailed(
            "End date must be after start date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        )


def calculate_total_days(start_date: date, end_date: date) -> int:
    """Whole calendar days in [start_date, end_date), rounded up."""
    return math.ceil((end_date - start_date).days)


def calculate_total_amount(total_days: int, price_per_day: Decimal) -> Decimal:
    """total_days x price_per_day, quantized to cents."""
    return (Decimal(total_days) * Decimal(price_per_day)).quantize(Decimal("0.01"))


def overlapping_rentals_query(
    start_date: date,
    end_date: date,
    unit_id: Optional[int] = None,
    vehicle_id: Optional[int] = None,
    exclude_rental_id: Optional[int] = None
):
    """
    Build the WHERE clause list for occupying rentals overlapping a range.

    Scoped to a unit when `unit_id` is given, otherwise to a vehicle.
    """
    if unit_id is None and vehicle_id is None:
        raise ValueError("unit_id or vehicle_id is required")

    conditions = [
        Rental.status.in_(list(OCCUPYING_STATUSES)),
        Rental.start_date < end_date,
        Rental.end_date > start_date,
    ]
    if unit_id is not None:
        conditions.append(Rental.unit_id == unit_id)
    else:
        conditions.append(Rental.vehicle_id == vehicle_id)
    if exclude_rental_id is not None:
        conditions.append(Rental.id != exclude_rental_id)

    return conditions


async def count_overlapping(
    db: AsyncSession,
    start_date: date,
    end_date: date,
    unit_id: Optional[int] = None,
    vehicle_id: Optional[int] = None,
    exclude_rental_id: Optional[int] = None
) -> int:
    """
    Count occupying rentals overlapping [start_date, end_date).

    Args:
        db: Database session
        start_date: Query range start (inclusive)
        end_date: Query range end (exclusive)
        unit_id: Scope to one unit
        vehicle_id: Scope to a whole vehicle (legacy no-unit bookings)
        exclude_rental_id: Rental to leave out (the one being checked)

    Returns:
        Number of overlapping occupying rentals
    """
    conditions = overlapping_rentals_query(start_date, end_date, unit_id, vehicle_id, exclude_rental_id)
    result = await db.execute(select(func.count(Rental.id)).where(*conditions))
    return result.scalar() or 0


async def is_unit_available(db: AsyncSession, unit_id: int, start_date: date, end_date: date) -> bool:
    """Binary availability of a unit for a range."""
    return await count_overlapping(db, start_date, end_date, unit_id=unit_id) == 0


async def count_in_service_units(db: AsyncSession, vehicle_id: int) -> int:
    """Units of a vehicle that can take bookings at all."""
    result = await db.execute(
        select(func.count(VehicleUnit.id)).where(
            VehicleUnit.vehicle_id == vehicle_id,
            VehicleUnit.status.not_in(list(OUT_OF_SERVICE_UNIT_STATUSES))
        )
    )
    return result.scalar() or 0


async def vehicle_capacity(db: AsyncSession, vehicle_id: int, start_date: date, end_date: date) -> int:
    """
    Free capacity of a vehicle for a range.

    capacity = in-service units - overlapping occupying rentals held by them

    Rentals on a unit that has since gone to maintenance do not reduce the
    capacity of the remaining units. Rentals without a unit still count.
    """
    total_units = await count_in_service_units(db, vehicle_id)

    conditions = overlapping_rentals_query(start_date, end_date, vehicle_id=vehicle_id)
    result = await db.execute(
        select(func.count(Rental.id))
        .select_from(Rental)
        .outerjoin(VehicleUnit, VehicleUnit.id == Rental.unit_id)
        .where(
            *conditions,
            or_(
                Rental.unit_id.is_(None),
                VehicleUnit.status.not_in(list(OUT_OF_SERVICE_UNIT_STATUSES))
            )
        )
    )
    occupied = result.scalar() or 0
    return max(total_units - occupied, 0)
