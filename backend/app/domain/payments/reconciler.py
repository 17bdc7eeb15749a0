"""
Payment Reconciler (Domain Logic).

Applies gateway payment outcomes to Payment and Rental rows.
Two entry points share one apply step:
- handle_gateway_event: signed push callback
- poll_status: pull from the gateway on demand

Callers own the transaction: both entry points flush but never commit.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidSignatureError, ResourceNotFoundError
from backend.app.domain.payments.signature import verify_signature
from backend.app.domain.payments.status_mapping import map_gateway_status
from backend.app.domain.rentals.inventory import release_unit, refresh_vehicle_status
from backend.app.domain.rentals.state_machine import can_transition, transition_rental
from backend.app.models.payment import Payment
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import (
    ApprovalStatus, PaymentStatus, RentalStatus,
    PAID_STATUSES, FAILED_STATUSES, TERMINAL_STATUSES
)
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


class PaymentReconciler:

    @staticmethod
    async def _load_payment(db: AsyncSession, order_id: str) -> Payment:
        result = await db.execute(
            select(Payment).where(Payment.gateway_order_id == order_id).with_for_update()
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise ResourceNotFoundError("Payment", order_id)
        return payment

    @staticmethod
    async def _cascade_to_rental(db: AsyncSession, rental: Rental, new_status: PaymentStatus) -> Optional[RentalStatus]:
        """
        Move the rental according to the payment outcome.

        Returns the rental status it moved to, or None when untouched.
        """
        if rental.status in TERMINAL_STATUSES:
            logger.info(
                "Rental %s is %s, payment %s not cascaded",
                rental.id, rental.status.value, new_status.value
            )
            return None

        if new_status in PAID_STATUSES:
            # Only a pending rental gets confirmed, later states already passed payment
            if rental.status != RentalStatus.PENDING:
                return None
            transition_rental(rental, RentalStatus.CONFIRMED)
            rental.admin_approval_status = ApprovalStatus.PENDING
            return RentalStatus.CONFIRMED

        if new_status in FAILED_STATUSES:
            if not can_transition(rental.status, RentalStatus.CANCELLED):
                logger.warning(
                    "Payment for rental %s failed (%s) but rental is %s, left as is",
                    rental.id, new_status.value, rental.status.value
                )
                return None
            transition_rental(rental, RentalStatus.CANCELLED)
            await release_unit(db, rental.unit_id, rental.id)
            await refresh_vehicle_status(db, rental.vehicle_id)
            return RentalStatus.CANCELLED

        return None

    @staticmethod
    async def apply_status(
        db: AsyncSession,
        payment: Payment,
        new_status: PaymentStatus,
        raw: Dict[str, Any],
        source: str
    ) -> Payment:
        """
        Write a mapped gateway status onto a payment and cascade it.

        Re-applying the same status yields the same end state.
        """
        previous_status = payment.payment_status

        payment.payment_status = new_status
        payment.payment_response = raw
        if raw.get("payment_type"):
            payment.payment_method = raw["payment_type"]
        if raw.get("transaction_id"):
            payment.gateway_transaction_id = raw["transaction_id"]

        if new_status in PAID_STATUSES:
            # Keep the first settlement time on repeated paid events
            if payment.paid_at is None:
                payment.paid_at = datetime.now(timezone.utc)
        else:
            payment.paid_at = None

        result = await db.execute(
            select(Rental).where(Rental.id == payment.rental_id).with_for_update()
        )
        rental = result.scalar_one_or_none()
        if rental is None:
            raise ResourceNotFoundError("Rental", payment.rental_id)

        rental_status = await PaymentReconciler._cascade_to_rental(db, rental, new_status)

        if previous_status != new_status or rental_status is not None:
            await log_event(
                db,
                action=AuditAction.PAYMENT_STATUS_CHANGED,
                rental_id=rental.id,
                metadata={
                    "order_id": payment.gateway_order_id,
                    "source": source,
                    "from": previous_status.value if previous_status else None,
                    "to": new_status.value,
                    "rental_status": rental.status.value,
                }
            )

        await db.flush()
        logger.info(
            "Payment %s (%s) %s -> %s, rental %s is %s",
            payment.id, source, previous_status.value if previous_status else None,
            new_status.value, rental.id, rental.status.value
        )
        return payment

    @staticmethod
    async def handle_gateway_event(
        db: AsyncSession,
        payload: Dict[str, Any],
        server_key: Optional[str] = None
    ) -> Payment:
        """
        Process a signed gateway callback.

        Flow:
        1. Verify signature (no state change on mismatch)
        2. Map transaction/fraud status
        3. Apply to Payment
        4. Cascade to Rental (and unit on failure)

        Raises:
            InvalidSignatureError: Signature does not match
            ResourceNotFoundError: No payment for the order id
        """
        order_id = payload.get("order_id")

        if not verify_signature(payload, server_key or settings.midtrans_server_key):
            logger.warning("Rejected gateway callback with bad signature for order %s", order_id)
            raise InvalidSignatureError(order_id)

        new_status = map_gateway_status(payload.get("transaction_status"), payload.get("fraud_status"))
        payment = await PaymentReconciler._load_payment(db, order_id)

        return await PaymentReconciler.apply_status(db, payment, new_status, dict(payload), source="callback")

    @staticmethod
    async def poll_status(db: AsyncSession, gateway, order_id: str) -> Payment:
        """
        Pull the current status from the gateway and apply it.

        Raises:
            ResourceNotFoundError: No payment for the order id
            GatewayError: Gateway unreachable; local state is left untouched
        """
        payment = await PaymentReconciler._load_payment(db, order_id)

        # Raises before any local mutation
        body = await gateway.get_status(order_id)

        new_status = map_gateway_status(body.get("transaction_status"), body.get("fraud_status"))
        return await PaymentReconciler.apply_status(db, payment, new_status, dict(body), source="poll")
