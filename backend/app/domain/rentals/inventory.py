"""
Inventory helpers.

Unit locking, unit occupy/release and the vehicle status projection.
All functions work inside the caller's transaction and never commit.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.rental import Rental
from backend.app.models.vehicle import Vehicle
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental_enums import (
    UnitStatus, VehicleStatus, OCCUPYING_STATUSES, OUT_OF_SERVICE_UNIT_STATUSES
)

logger = logging.getLogger(__name__)


class InventoryLocks:
    """
    Process-local mutexes, one per vehicle.

    Held across check, write and commit so two allocations for the same
    vehicle never interleave inside one process. Row locks taken with
    `lock_vehicle` / `lock_unit` cover other processes on PostgreSQL.
    """

    def __init__(self):
        self._by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict]" = weakref.WeakKeyDictionary()

    def _lock_for(self, vehicle_id: int) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._by_loop.setdefault(loop, {})
        return locks.setdefault(vehicle_id, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, vehicle_id: int):
        async with self._lock_for(vehicle_id):
            yield


inventory_locks = InventoryLocks()


async def lock_vehicle(db: AsyncSession, vehicle_id: int) -> Optional[Vehicle]:
    """SELECT ... FOR UPDATE on a vehicle row."""
    result = await db.execute(
        select(Vehicle).where(Vehicle.id == vehicle_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_unit(db: AsyncSession, unit_id: int) -> Optional[VehicleUnit]:
    """SELECT ... FOR UPDATE on a unit row."""
    result = await db.execute(
        select(VehicleUnit).where(VehicleUnit.id == unit_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def is_unit_in_service(unit: VehicleUnit) -> bool:
    return unit.status not in OUT_OF_SERVICE_UNIT_STATUSES


async def count_other_occupying(db: AsyncSession, unit_id: int, rental_id: Optional[int]) -> int:
    """Occupying rentals attached to a unit, other than `rental_id`."""
    conditions = [
        Rental.unit_id == unit_id,
        Rental.status.in_(list(OCCUPYING_STATUSES)),
    ]
    if rental_id is not None:
        conditions.append(Rental.id != rental_id)

    result = await db.execute(select(func.count(Rental.id)).where(*conditions))
    return result.scalar() or 0


def occupy_unit(unit: VehicleUnit) -> None:
    """Mark a unit rented. Idempotent. Units out of service keep their status."""
    if not is_unit_in_service(unit):
        logger.warning(
            "Unit %s (%s) is %s, leaving status unchanged", unit.id, unit.plate_number, unit.status.value
        )
        return
    if unit.status != UnitStatus.RENTED:
        unit.status = UnitStatus.RENTED
        logger.info("Unit %s (%s) marked rented", unit.id, unit.plate_number)


async def release_unit(db: AsyncSession, unit_id: Optional[int], rental_id: Optional[int]) -> Optional[VehicleUnit]:
    """
    Return a unit to AVAILABLE once `rental_id` stops occupying it.

    The unit stays RENTED while another occupying rental still references
    it, and maintenance/out-of-service flags are never overwritten.
    """
    if unit_id is None:
        return None

    await db.flush()
    unit = await lock_unit(db, unit_id)
    if unit is None:
        logger.warning("Rental %s references missing unit %s", rental_id, unit_id)
        return None

    if unit.status != UnitStatus.RENTED:
        return unit

    if await count_other_occupying(db, unit_id, rental_id) > 0:
        logger.info("Unit %s still held by another booking, left rented", unit_id)
        return unit

    unit.status = UnitStatus.AVAILABLE
    logger.info("Unit %s (%s) restored to available", unit.id, unit.plate_number)
    return unit


def project_vehicle_status(unit_statuses: list[UnitStatus]) -> Optional[VehicleStatus]:
    """
    Derive the cached vehicle status from its units.

    None when the vehicle has no units (stored status is left alone).
    """
    if not unit_statuses:
        return None
    if any(status == UnitStatus.AVAILABLE for status in unit_statuses):
        return VehicleStatus.AVAILABLE
    if all(status in OUT_OF_SERVICE_UNIT_STATUSES for status in unit_statuses):
        return VehicleStatus.MAINTENANCE
    return VehicleStatus.RENTED


def display_status(unit_statuses: list[UnitStatus]) -> str:
    """Read-only catalog label for a vehicle."""
    if not unit_statuses:
        return "no_units"

    available = sum(1 for status in unit_statuses if status == UnitStatus.AVAILABLE)
    if available == 0:
        return "fully_rented"
    if available == len(unit_statuses):
        return "fully_available"
    return "partially_available"


async def get_unit_statuses(db: AsyncSession, vehicle_id: int) -> list[UnitStatus]:
    result = await db.execute(
        select(VehicleUnit.status).where(VehicleUnit.vehicle_id == vehicle_id)
    )
    return list(result.scalars().all())


async def refresh_vehicle_status(db: AsyncSession, vehicle_id: int) -> Optional[VehicleStatus]:
    """
    Recompute and persist a vehicle's cached status from its units.
    """
    await db.flush()

    vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None:
        return None

    new_status = project_vehicle_status(await get_unit_statuses(db, vehicle_id))
    if new_status is not None and vehicle.status != new_status:
        logger.info("Vehicle %s status %s -> %s", vehicle_id, vehicle.status.value, new_status.value)
        vehicle.status = new_status

    return vehicle.status
