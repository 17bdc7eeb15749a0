"""
Reservation Allocator (Domain Logic).

Turns a booking request into a pending Rental, an occupied Unit, a pending
Payment and a gateway payment session, all or nothing.

The per-vehicle inventory lock and the row locks are held from the
availability re-check through the commit, so two overlapping requests for
the same unit cannot both pass the check.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import select, case
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    ConflictError, IntegrityViolationError, RequestValidationFailed, ResourceNotFoundError
)
from backend.app.domain.rentals.availability import (
    validate_date_range, calculate_total_days, calculate_total_amount,
    count_overlapping, vehicle_capacity
)
from backend.app.domain.rentals.inventory import (
    inventory_locks, lock_vehicle, lock_unit, is_unit_in_service, occupy_unit, refresh_vehicle_status
)
from backend.app.core.guards import OwnershipGuard
from backend.app.models.payment import Payment
from backend.app.models.rental import Rental
from backend.app.models.user import User
from backend.app.models.vehicle import Vehicle
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental_enums import (
    ApprovalStatus, PaymentStatus, RentalStatus, UnitStatus,
    PAID_STATUSES, OUT_OF_SERVICE_UNIT_STATUSES
)
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.payment_gateway import PaymentSession, build_order_id

logger = logging.getLogger(__name__)

ownership_guard = OwnershipGuard()


class ReservationAllocator:

    @staticmethod
    async def _resolve_vehicle_id(db: AsyncSession, data) -> int:
        if data.unit_id is not None:
            unit = await db.get(VehicleUnit, data.unit_id)
            if unit is None:
                raise ResourceNotFoundError("Vehicle unit", data.unit_id)
            if data.vehicle_id is not None and data.vehicle_id != unit.vehicle_id:
                raise RequestValidationFailed(
                    "Unit does not belong to the requested vehicle",
                    details={"unit_id": data.unit_id, "vehicle_id": data.vehicle_id}
                )
            return unit.vehicle_id

        if data.vehicle_id is None:
            raise RequestValidationFailed("Either unit_id or vehicle_id is required")
        return data.vehicle_id

    @staticmethod
    async def _claim_requested_unit(db: AsyncSession, unit_id: int, data) -> VehicleUnit:
        unit = await lock_unit(db, unit_id)
        if unit is None:
            raise ResourceNotFoundError("Vehicle unit", unit_id)

        if not is_unit_in_service(unit):
            raise ConflictError(
                f"Unit {unit.plate_number} is not available for booking",
                details={"unit_id": unit.id, "unit_status": unit.status.value},
                error_code="ERR_UNIT_UNAVAILABLE"
            )

        if await count_overlapping(db, data.start_date, data.end_date, unit_id=unit.id) > 0:
            raise ConflictError(
                "Unit is already booked for the selected dates",
                details={
                    "unit_id": unit.id,
                    "start_date": data.start_date.isoformat(),
                    "end_date": data.end_date.isoformat(),
                },
                error_code="ERR_DATES_UNAVAILABLE"
            )
        return unit

    @staticmethod
    async def _claim_any_unit(db: AsyncSession, vehicle_id: int, data) -> VehicleUnit:
        """
        Pick a free unit for a vehicle-level booking.

        Prefers units currently marked available, then lowest id.
        """
        if await vehicle_capacity(db, vehicle_id, data.start_date, data.end_date) <= 0:
            raise ConflictError(
                "No units available for the selected dates",
                details={"vehicle_id": vehicle_id},
                error_code="ERR_DATES_UNAVAILABLE"
            )

        result = await db.execute(
            select(VehicleUnit.id).where(
                VehicleUnit.vehicle_id == vehicle_id,
                VehicleUnit.status.not_in(list(OUT_OF_SERVICE_UNIT_STATUSES))
            ).order_by(
                case((VehicleUnit.status == UnitStatus.AVAILABLE, 0), else_=1),
                VehicleUnit.id
            )
        )
        for unit_id in result.scalars().all():
            unit = await lock_unit(db, unit_id)
            if unit is None or not is_unit_in_service(unit):
                continue
            if await count_overlapping(db, data.start_date, data.end_date, unit_id=unit_id) == 0:
                return unit

        raise ConflictError(
            "No units available for the selected dates",
            details={"vehicle_id": vehicle_id},
            error_code="ERR_DATES_UNAVAILABLE"
        )

    @staticmethod
    async def create_reservation(
        db: AsyncSession,
        gateway,
        renter: dict,
        data
    ) -> Tuple[Rental, Payment, PaymentSession]:
        """
        Allocate a unit and open a payment session.

        Flow:
        1. Validate date range
        2. Resolve unit (direct unit_id or first free unit of vehicle_id)
        3. Re-check availability under lock
        4. Create Rental (pending), occupy Unit, refresh Vehicle projection
        5. Create Payment (pending) and gateway session
        6. Verify no overlap was written, audit, commit

        Args:
            db: Database session (committed here, rolled back on any failure)
            gateway: Payment gateway client
            renter: Authenticated user payload
            data: Booking request (unit_id / vehicle_id, dates, pickup/return)

        Returns:
            (rental, payment, payment session)

        Raises:
            RequestValidationFailed: Bad date range or unit/vehicle mismatch
            ResourceNotFoundError: Unknown vehicle, unit or renter
            ConflictError: No free capacity for the dates
            GatewayError: Payment session could not be created
            IntegrityViolationError: Overlap detected after write
        """
        validate_date_range(data.start_date, data.end_date)

        user = await db.get(User, renter["user_id"])
        if user is None:
            raise ResourceNotFoundError("User", renter["user_id"])

        vehicle_id = await ReservationAllocator._resolve_vehicle_id(db, data)

        async with inventory_locks.hold(vehicle_id):
            try:
                vehicle: Optional[Vehicle] = await lock_vehicle(db, vehicle_id)
                if vehicle is None:
                    raise ResourceNotFoundError("Vehicle", vehicle_id)

                if data.unit_id is not None:
                    unit = await ReservationAllocator._claim_requested_unit(db, data.unit_id, data)
                else:
                    unit = await ReservationAllocator._claim_any_unit(db, vehicle_id, data)

                total_days = calculate_total_days(data.start_date, data.end_date)
                total_amount = calculate_total_amount(total_days, vehicle.price_per_day)

                rental = Rental(
                    user_id=user.id,
                    vehicle_id=vehicle.id,
                    unit_id=unit.id,
                    start_date=data.start_date,
                    end_date=data.end_date,
                    total_days=total_days,
                    price_per_day=vehicle.price_per_day,
                    total_amount=total_amount,
                    status=RentalStatus.PENDING,
                    admin_approval_status=ApprovalStatus.PENDING,
                    pickup_location=data.pickup_location,
                    pickup_latitude=data.pickup_latitude,
                    pickup_longitude=data.pickup_longitude,
                    return_location=data.return_location,
                    return_latitude=data.return_latitude,
                    return_longitude=data.return_longitude,
                    notes=data.notes,
                )
                db.add(rental)
                await db.flush()  # rental.id for the order id

                occupy_unit(unit)
                await refresh_vehicle_status(db, vehicle.id)

                payment = Payment(
                    rental_id=rental.id,
                    user_id=user.id,
                    amount=total_amount,
                    payment_status=PaymentStatus.PENDING,
                    gateway_order_id=build_order_id(rental.id),
                )
                db.add(payment)
                await db.flush()

                session = await gateway.create_session(rental, user, payment.gateway_order_id)
                payment.snap_token = session.token
                payment.snap_redirect_url = session.redirect_url

                overlaps = await count_overlapping(
                    db, rental.start_date, rental.end_date,
                    unit_id=unit.id, exclude_rental_id=rental.id
                )
                if overlaps > 0:
                    raise IntegrityViolationError(
                        "Overlapping occupying rentals on one unit",
                        details={"rental_id": rental.id, "unit_id": unit.id, "overlaps": overlaps}
                    )

                await log_event(
                    db,
                    action=AuditAction.RENTAL_CREATED,
                    rental_id=rental.id,
                    actor=renter,
                    metadata={
                        "unit_id": unit.id,
                        "vehicle_id": vehicle.id,
                        "start_date": rental.start_date.isoformat(),
                        "end_date": rental.end_date.isoformat(),
                        "total_amount": str(total_amount),
                        "order_id": payment.gateway_order_id,
                    }
                )

                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(
            "Allocated unit %s to rental %s (%s..%s) for user %s",
            unit.id, rental.id, rental.start_date, rental.end_date, user.id
        )
        return rental, payment, session

    @staticmethod
    async def retry_payment(
        db: AsyncSession,
        gateway,
        renter: dict,
        rental_id: int
    ) -> Tuple[Rental, Payment, PaymentSession]:
        """
        Open a fresh gateway session for a rental still waiting for payment.

        The previous order id is replaced so the gateway treats it as a new
        transaction. Nothing is written if the gateway call fails.
        """
        try:
            result = await db.execute(
                select(Rental).where(Rental.id == rental_id).with_for_update()
            )
            rental = result.scalar_one_or_none()
            if rental is None:
                raise ResourceNotFoundError("Rental", rental_id)

            ownership_guard.enforce(rental.user_id, renter, "rental")

            if rental.status != RentalStatus.PENDING:
                raise ConflictError(
                    "Only pending rentals can retry payment",
                    details={"rental_id": rental.id, "status": rental.status.value}
                )

            result = await db.execute(
                select(Payment).where(Payment.rental_id == rental.id).with_for_update()
            )
            payment = result.scalar_one_or_none()
            if payment is None:
                raise ResourceNotFoundError("Payment for rental", rental.id)

            if payment.payment_status in PAID_STATUSES:
                raise ConflictError(
                    "Payment already completed",
                    details={"rental_id": rental.id, "payment_status": payment.payment_status.value}
                )

            user = await db.get(User, rental.user_id)
            previous_order_id = payment.gateway_order_id
            order_id = build_order_id(rental.id)

            session = await gateway.create_session(rental, user, order_id)

            payment.gateway_order_id = order_id
            payment.snap_token = session.token
            payment.snap_redirect_url = session.redirect_url
            payment.payment_status = PaymentStatus.PENDING
            payment.payment_response = None
            payment.paid_at = None

            await log_event(
                db,
                action=AuditAction.PAYMENT_RETRIED,
                rental_id=rental.id,
                actor=renter,
                metadata={"previous_order_id": previous_order_id, "order_id": order_id}
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Issued new payment session %s for rental %s", order_id, rental.id)
        return rental, payment, session
