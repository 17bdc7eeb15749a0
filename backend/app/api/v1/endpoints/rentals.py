"""
Rental API Endpoints.

Renters book units, list and inspect their rentals, and cancel before the
start date.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from backend.app.db.session import get_db
from backend.app.models.payment import Payment
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import RentalStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.rental import (
    RentalCreate, RentalResponse, RentalDetailResponse, RentalCreateResponse,
    RentalListResponse, RenterStatsResponse, PaymentHandle, PaymentSummary
)
from backend.app.core.guards import require_role, OwnershipGuard
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.rentals.allocator import ReservationAllocator
from backend.app.domain.rentals.cancellation import cancel
from backend.app.domain.rentals.statistics import renter_stats
from backend.app.services.payment_gateway import MidtransGateway, get_payment_gateway

router = APIRouter(prefix="/rentals", tags=["Rentals"])
ownership_guard = OwnershipGuard()

renter_access = require_role([UserRole.RENTER, UserRole.ADMIN])


@router.post("", response_model=RentalCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_rental(
    rental_data: RentalCreate,
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db),
    gateway: MidtransGateway = Depends(get_payment_gateway)
):
    """
    Book a unit (or any free unit of a vehicle) and open a payment session.

    Returns the pending rental and the payment handle for the client.
    Fails with 409 when the dates are taken, 502 when the gateway is down.
    """
    rental, payment, session = await ReservationAllocator.create_reservation(
        db, gateway, current_user, rental_data
    )
    await db.refresh(rental)

    return RentalCreateResponse(
        rental=RentalResponse.model_validate(rental),
        payment=PaymentHandle(
            order_id=payment.gateway_order_id,
            snap_token=session.token,
            redirect_url=session.redirect_url
        )
    )


@router.get("", response_model=RentalListResponse)
async def list_my_rentals(
    status_filter: Optional[RentalStatus] = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's rentals, newest first."""
    conditions = [Rental.user_id == current_user["user_id"]]
    if status_filter:
        conditions.append(Rental.status == status_filter)

    total = (await db.execute(select(func.count(Rental.id)).where(*conditions))).scalar() or 0

    result = await db.execute(
        select(Rental).where(*conditions)
        .order_by(Rental.created_at.desc(), Rental.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return RentalListResponse(
        rentals=[RentalResponse.model_validate(r) for r in result.scalars().all()],
        total=total,
        page=page,
        page_size=limit
    )


@router.get("/stats", response_model=RenterStatsResponse)
async def get_my_stats(
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db)
):
    """Completed trip count and currently approved or running rentals."""
    stats = await renter_stats(db, current_user["user_id"])
    return RenterStatsResponse(
        total_trips=stats["total_trips"],
        active_rentals=stats["active_rentals"],
        active_rental_details=[RentalResponse.model_validate(r) for r in stats["active_rental_details"]]
    )


@router.get("/{rental_id}", response_model=RentalDetailResponse)
async def get_rental(
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db)
):
    """Get one rental with its payment. Admins may read any rental."""
    rental = await db.get(Rental, rental_id)
    if not rental:
        raise ResourceNotFoundError("Rental", rental_id)

    if current_user.get("role") != UserRole.ADMIN.value:
        ownership_guard.enforce(rental.user_id, current_user, "rental")

    payment = (await db.execute(
        select(Payment).where(Payment.rental_id == rental.id)
    )).scalar_one_or_none()

    response = RentalDetailResponse.model_validate(rental)
    if payment:
        response.payment = PaymentSummary.model_validate(payment)
    return response


@router.patch("/{rental_id}/cancel", response_model=RentalResponse)
async def cancel_rental(
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(renter_access),
    db: AsyncSession = Depends(get_db),
    gateway: MidtransGateway = Depends(get_payment_gateway)
):
    """
    Cancel a rental before its start date.

    The unit is released immediately. A failed gateway cancel is queued
    for retry and does not block the cancellation.
    """
    rental = await cancel(db, gateway, rental_id, current_user)
    await db.commit()
    await db.refresh(rental)
    return RentalResponse.model_validate(rental)
