"""
Payment API Endpoints.

Gateway callback (unauthenticated, signature checked), renter payment
listing, on-demand status poll and payment retry.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from backend.app.db.session import get_db
from backend.app.models.payment import Payment
from backend.app.models.rental_enums import PaymentStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.payment import GatewayNotification, NotificationAck, PaymentResponse, PaymentListResponse
from backend.app.schemas.rental import RentalCreateResponse, RentalResponse, PaymentHandle
from backend.app.core.guards import require_role, OwnershipGuard
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.payments.reconciler import PaymentReconciler
from backend.app.domain.rentals.allocator import ReservationAllocator
from backend.app.services.payment_gateway import MidtransGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
ownership_guard = OwnershipGuard()

renter_access = require_role([UserRole.RENTER, UserRole.ADMIN])


@router.post("/notification", response_model=NotificationAck)
async def payment_notification(
    notification: GatewayNotification,
    db: AsyncSession = Depends(get_db)
):
    """
    Gateway payment callback.

    No bearer auth: authenticity comes from the signature_key.
    400 on a bad signature, 404 on an unknown order id.
    """
    payload = notification.model_dump(exclude_none=True)
    logger.info(
        "Gateway callback for order %s: %s/%s",
        notification.order_id, notification.transaction_status, notification.fraud_status
    )

    payment = await PaymentReconciler.handle_gateway_event(db, payload)
    await db.commit()

    return NotificationAck(order_id=payment.gateway_order_id, payment_status=payment.payment_status)


@router.get("", response_model=PaymentListResponse)
async def list_my_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status", description="Filter by payment status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's payments, newest first."""
    conditions = [Payment.user_id == current_user["user_id"]]
    if status_filter:
        conditions.append(Payment.payment_status == status_filter)

    total = (await db.execute(select(func.count(Payment.id)).where(*conditions))).scalar() or 0

    result = await db.execute(
        select(Payment).where(*conditions)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in result.scalars().all()],
        total=total,
        page=page,
        page_size=limit
    )


@router.get("/status/{order_id}", response_model=PaymentResponse)
async def poll_payment_status(
    order_id: str = Path(..., description="Gateway order id"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db),
    gateway: MidtransGateway = Depends(get_payment_gateway)
):
    """
    Pull the latest status from the gateway and apply it.

    502 when the gateway is unavailable; nothing is changed locally then.
    """
    payment = (await db.execute(
        select(Payment).where(Payment.gateway_order_id == order_id)
    )).scalar_one_or_none()
    if not payment:
        raise ResourceNotFoundError("Payment", order_id)

    if current_user.get("role") != UserRole.ADMIN.value:
        ownership_guard.enforce(payment.user_id, current_user, "payment")

    payment = await PaymentReconciler.poll_status(db, gateway, order_id)
    await db.commit()
    await db.refresh(payment)
    return PaymentResponse.model_validate(payment)


@router.post("/retry/{rental_id}", response_model=RentalCreateResponse)
async def retry_payment(
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db),
    gateway: MidtransGateway = Depends(get_payment_gateway)
):
    """Open a fresh payment session for a rental still waiting for payment."""
    rental, payment, session = await ReservationAllocator.retry_payment(db, gateway, current_user, rental_id)
    await db.refresh(rental)

    return RentalCreateResponse(
        rental=RentalResponse.model_validate(rental),
        payment=PaymentHandle(
            order_id=payment.gateway_order_id,
            snap_token=session.token,
            redirect_url=session.redirect_url
        )
    )
