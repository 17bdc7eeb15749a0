"""
Cancellation Handler (Domain Logic).

Renter-initiated cancellation before the rental starts. The gateway-side
cancel is best effort: when it fails, local state still moves to CANCELLED
and a dead letter entry is queued in the same transaction so the sweeper
can retry the remote cancel later. Callers commit.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import GatewayError, InvalidTransitionError, RequestValidationFailed
from backend.app.core.guards import OwnershipGuard
from backend.app.domain.rentals.completion import load_rental_for_update
from backend.app.domain.rentals.inventory import release_unit, refresh_vehicle_status
from backend.app.domain.rentals.state_machine import transition_rental
from backend.app.models.dlq import DeadLetterQueue, DLQStatus, DLQTask
from backend.app.models.payment import Payment
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import PaymentStatus, RentalStatus
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

ownership_guard = OwnershipGuard()

CANCELLABLE_STATUSES = frozenset({RentalStatus.PENDING, RentalStatus.CONFIRMED, RentalStatus.APPROVED})


async def cancel(
    db: AsyncSession,
    gateway,
    rental_id: int,
    renter: dict,
    today: Optional[date] = None
) -> Rental:
    """
    Cancel a rental on behalf of its owner.

    Raises:
        ResourceNotFoundError: Unknown rental
        InsufficientPermissionsError: Caller does not own the rental
        RequestValidationFailed: Rental already started
        InvalidTransitionError: Rental is active or terminal
    """
    today = today or date.today()
    rental = await load_rental_for_update(db, rental_id)

    ownership_guard.enforce(rental.user_id, renter, "rental")

    if rental.status not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError(
            rental.status.value,
            RentalStatus.CANCELLED.value,
            message=f"Rental in status '{rental.status.value}' cannot be cancelled"
        )

    if today >= rental.start_date:
        raise RequestValidationFailed(
            "Cannot cancel a rental that has already started",
            details={"start_date": rental.start_date.isoformat(), "today": today.isoformat()}
        )

    result = await db.execute(
        select(Payment).where(Payment.rental_id == rental.id).with_for_update()
    )
    payment = result.scalar_one_or_none()

    gateway_cancelled = None
    if payment is not None and payment.gateway_order_id:
        try:
            await gateway.cancel(payment.gateway_order_id)
            gateway_cancelled = True
        except GatewayError as e:
            gateway_cancelled = False
            logger.warning(
                "Gateway cancel failed for order %s, queued for retry: %s",
                payment.gateway_order_id, e.message
            )
            db.add(DeadLetterQueue(
                task_name=DLQTask.GATEWAY_CANCEL,
                error_message=f"{e.message}: {e.details}",
                payload={"order_id": payment.gateway_order_id, "rental_id": rental.id},
                status=DLQStatus.FAILED,
            ))
            await log_event(
                db,
                action=AuditAction.GATEWAY_CANCEL_FAILED,
                rental_id=rental.id,
                metadata={"order_id": payment.gateway_order_id}
            )

    previous = rental.status
    transition_rental(rental, RentalStatus.CANCELLED)

    if payment is not None:
        payment.payment_status = PaymentStatus.CANCEL
        payment.paid_at = None

    await release_unit(db, rental.unit_id, rental.id)
    await refresh_vehicle_status(db, rental.vehicle_id)

    await log_event(
        db,
        action=AuditAction.RENTAL_CANCELLED,
        rental_id=rental.id,
        actor=renter,
        metadata={"from": previous.value, "gateway_cancelled": gateway_cancelled}
    )
    await db.flush()

    logger.info("Rental %s cancelled by user %s", rental.id, renter.get("user_id"))
    return rental
