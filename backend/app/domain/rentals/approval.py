"""
Approval Gate (Domain Logic).

Admin approval or rejection of paid rentals. Both operations require
status CONFIRMED with approval PENDING and leave every field untouched
otherwise. Callers commit.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidTransitionError, RequestValidationFailed
from backend.app.domain.rentals.completion import load_rental_for_update
from backend.app.domain.rentals.inventory import (
    lock_unit, occupy_unit, release_unit, refresh_vehicle_status
)
from backend.app.domain.rentals.state_machine import transition_rental
from backend.app.models.payment import Payment
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import ApprovalStatus, PaymentStatus, RentalStatus
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


def _ensure_awaiting_approval(rental: Rental, target: RentalStatus) -> None:
    if rental.status != RentalStatus.CONFIRMED or rental.admin_approval_status != ApprovalStatus.PENDING:
        logger.warning(
            "Rental %s not awaiting approval (status=%s, approval=%s)",
            rental.id, rental.status.value, rental.admin_approval_status.value
        )
        raise InvalidTransitionError(
            rental.status.value,
            target.value,
            message="Rental is not awaiting admin approval"
        )


class ApprovalGate:

    @staticmethod
    async def approve(db: AsyncSession, rental_id: int, admin: dict, today: Optional[date] = None) -> Rental:
        """
        Approve a confirmed rental.

        Started rentals (start_date <= today) become ACTIVE with their unit
        rented. Future rentals stay CONFIRMED with approval APPROVED.

        Raises:
            ResourceNotFoundError: Unknown rental
            InvalidTransitionError: Not CONFIRMED + approval PENDING
        """
        today = today or date.today()
        rental = await load_rental_for_update(db, rental_id)
        _ensure_awaiting_approval(rental, RentalStatus.ACTIVE)

        rental.admin_approval_status = ApprovalStatus.APPROVED
        rental.approved_by = admin.get("user_id")
        rental.approved_at = datetime.now(timezone.utc)

        activated = False
        if rental.start_date <= today:
            transition_rental(rental, RentalStatus.ACTIVE)
            activated = True
            if rental.unit_id is not None:
                unit = await lock_unit(db, rental.unit_id)
                if unit is not None:
                    occupy_unit(unit)
                await refresh_vehicle_status(db, rental.vehicle_id)

        await log_event(
            db,
            action=AuditAction.RENTAL_APPROVED,
            rental_id=rental.id,
            actor=admin,
            metadata={"status": rental.status.value, "activated": activated}
        )
        await db.flush()

        logger.info("Rental %s approved by admin %s (status=%s)", rental.id, admin.get("user_id"), rental.status.value)
        return rental

    @staticmethod
    async def reject(db: AsyncSession, rental_id: int, admin: dict, reason: str) -> Rental:
        """
        Reject a confirmed rental.

        The rental ends REJECTED, its payment is cancelled, its unit is
        released and the vehicle status is recomputed in one transaction.

        Raises:
            RequestValidationFailed: Empty reason
            ResourceNotFoundError: Unknown rental
            InvalidTransitionError: Not CONFIRMED + approval PENDING
        """
        if not reason or not reason.strip():
            raise RequestValidationFailed("Rejection reason is required")

        rental = await load_rental_for_update(db, rental_id)
        _ensure_awaiting_approval(rental, RentalStatus.REJECTED)

        transition_rental(rental, RentalStatus.REJECTED)
        rental.admin_approval_status = ApprovalStatus.REJECTED
        rental.rejection_reason = reason.strip()
        rental.approved_by = admin.get("user_id")
        rental.approved_at = datetime.now(timezone.utc)

        result = await db.execute(
            select(Payment).where(Payment.rental_id == rental.id).with_for_update()
        )
        payment = result.scalar_one_or_none()
        if payment is not None:
            payment.payment_status = PaymentStatus.CANCEL
            payment.paid_at = None

        await release_unit(db, rental.unit_id, rental.id)
        await refresh_vehicle_status(db, rental.vehicle_id)

        await log_event(
            db,
            action=AuditAction.RENTAL_REJECTED,
            rental_id=rental.id,
            actor=admin,
            metadata={"reason": rental.rejection_reason}
        )
        await db.flush()

        logger.info("Rental %s rejected by admin %s", rental.id, admin.get("user_id"))
        return rental

    @staticmethod
    async def list_pending(db: AsyncSession, page: int = 1, limit: int = 10) -> tuple[list[Rental], int]:
        """Rentals waiting for an admin decision, oldest first."""
        conditions = [
            Rental.status == RentalStatus.CONFIRMED,
            Rental.admin_approval_status == ApprovalStatus.PENDING,
        ]
        total = (await db.execute(select(func.count(Rental.id)).where(*conditions))).scalar() or 0

        result = await db.execute(
            select(Rental).where(*conditions)
            .order_by(Rental.created_at.asc(), Rental.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total
