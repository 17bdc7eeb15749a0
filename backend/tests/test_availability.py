"""
Availability calculator and inventory projection tests.
"""

import pytest
from datetime import date
from decimal import Decimal

from backend.app.core.exceptions import RequestValidationFailed
from backend.app.domain.rentals.availability import (
    validate_date_range, calculate_total_days, calculate_total_amount,
    count_overlapping, is_unit_available, vehicle_capacity
)
from backend.app.domain.rentals.inventory import project_vehicle_status, display_status
from backend.app.models.rental_enums import RentalStatus, UnitStatus, VehicleStatus


def test_validate_date_range_rejects_zero_length_and_inverted():
    with pytest.raises(RequestValidationFailed):
        validate_date_range(date(2025, 1, 10), date(2025, 1, 10))
    with pytest.raises(RequestValidationFailed):
        validate_date_range(date(2025, 1, 12), date(2025, 1, 10))

    validate_date_range(date(2025, 1, 10), date(2025, 1, 11))


def test_total_days_and_amount():
    assert calculate_total_days(date(2025, 1, 10), date(2025, 1, 12)) == 2
    assert calculate_total_days(date(2025, 1, 31), date(2025, 2, 1)) == 1
    assert calculate_total_amount(3, Decimal("150000.50")) == Decimal("450001.50")


async def test_back_to_back_ranges_do_not_overlap(db_session, renter_user, unit, rental_factory):
    await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 12))

    # Ends the day the existing one starts, and starts the day it ends
    assert await is_unit_available(db_session, unit.id, date(2025, 1, 8), date(2025, 1, 10))
    assert await is_unit_available(db_session, unit.id, date(2025, 1, 12), date(2025, 1, 14))


async def test_overlapping_ranges_are_counted(db_session, renter_user, unit, rental_factory):
    await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 15))

    for start, end in [
        (date(2025, 1, 9), date(2025, 1, 11)),   # straddles start
        (date(2025, 1, 14), date(2025, 1, 20)),  # straddles end
        (date(2025, 1, 11), date(2025, 1, 12)),  # contained
        (date(2025, 1, 1), date(2025, 1, 31)),   # contains
    ]:
        assert await count_overlapping(db_session, start, end, unit_id=unit.id) == 1


async def test_terminal_rentals_do_not_occupy(db_session, renter_user, unit, rental_factory):
    for status in (RentalStatus.CANCELLED, RentalStatus.REJECTED, RentalStatus.COMPLETED):
        await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 12), status=status)

    assert await count_overlapping(db_session, date(2025, 1, 10), date(2025, 1, 12), unit_id=unit.id) == 0


async def test_every_occupying_status_counts(db_session, renter_user, unit_factory, rental_factory):
    statuses = [RentalStatus.PENDING, RentalStatus.CONFIRMED, RentalStatus.APPROVED, RentalStatus.ACTIVE]
    for i, status in enumerate(statuses):
        target = await unit_factory(f"B 20{i} OCC")
        await rental_factory(renter_user, target, date(2025, 3, 1), date(2025, 3, 5), status=status)
        assert await count_overlapping(db_session, date(2025, 3, 2), date(2025, 3, 3), unit_id=target.id) == 1


async def test_exclude_rental_id(db_session, renter_user, unit, rental_factory):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 12))

    assert await count_overlapping(
        db_session, rental.start_date, rental.end_date, unit_id=unit.id, exclude_rental_id=rental.id
    ) == 0


async def test_vehicle_capacity_ignores_out_of_service_units(db_session, vehicle, renter_user, unit_factory, rental_factory):
    first = await unit_factory("B 1 CAP")
    await unit_factory("B 2 CAP")
    await unit_factory("B 3 CAP", status=UnitStatus.MAINTENANCE)

    assert await vehicle_capacity(db_session, vehicle.id, date(2025, 1, 10), date(2025, 1, 12)) == 2

    await rental_factory(renter_user, first, date(2025, 1, 10), date(2025, 1, 12))
    assert await vehicle_capacity(db_session, vehicle.id, date(2025, 1, 11), date(2025, 1, 13)) == 1
    assert await vehicle_capacity(db_session, vehicle.id, date(2025, 1, 12), date(2025, 1, 13)) == 2


def test_vehicle_status_projection():
    assert project_vehicle_status([]) is None
    assert project_vehicle_status([UnitStatus.RENTED, UnitStatus.AVAILABLE]) == VehicleStatus.AVAILABLE
    assert project_vehicle_status([UnitStatus.RENTED, UnitStatus.MAINTENANCE]) == VehicleStatus.RENTED
    assert project_vehicle_status([UnitStatus.MAINTENANCE, UnitStatus.OUT_OF_SERVICE]) == VehicleStatus.MAINTENANCE


def test_display_status_labels():
    assert display_status([]) == "no_units"
    assert display_status([UnitStatus.RENTED]) == "fully_rented"
    assert display_status([UnitStatus.AVAILABLE, UnitStatus.AVAILABLE]) == "fully_available"
    assert display_status([UnitStatus.AVAILABLE, UnitStatus.RENTED]) == "partially_available"
