"""
Admin Rental API Endpoints.

Listing, approval decisions, manual completion and the manual sweep
trigger. Admin role only.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from backend.app.db.session import get_db
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import RentalStatus, ApprovalStatus
from backend.app.schemas.rental import (
    RentalResponse, RentalListResponse, RejectRequest, AdminStatsResponse, AuditEntryResponse
)
from backend.app.core.guards import require_admin
from backend.app.domain.rentals.approval import ApprovalGate
from backend.app.domain.rentals.completion import ADMIN_COMPLETABLE, complete_rental, load_rental_for_update
from backend.app.domain.rentals.statistics import admin_stats
from backend.app.services.audit import get_rental_audit_trail
from backend.app.services.lifecycle_sweeper import RentalLifecycleSweeper, SweepReport, get_lifecycle_sweeper

router = APIRouter(prefix="/admin/rentals", tags=["Admin - Rentals"])


@router.get("", response_model=RentalListResponse)
async def list_rentals(
    status_filter: Optional[RentalStatus] = Query(None, alias="status"),
    approval_status: Optional[ApprovalStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List all rentals with optional status and approval filters."""
    conditions = []
    if status_filter:
        conditions.append(Rental.status == status_filter)
    if approval_status:
        conditions.append(Rental.admin_approval_status == approval_status)

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


@router.get("/pending", response_model=RentalListResponse)
async def list_pending_approvals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Paid rentals waiting for an admin decision."""
    rentals, total = await ApprovalGate.list_pending(db, page=page, limit=limit)
    return RentalListResponse(
        rentals=[RentalResponse.model_validate(r) for r in rentals],
        total=total,
        page=page,
        page_size=limit
    )


@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return AdminStatsResponse(**await admin_stats(db))


@router.post("/complete-expired", response_model=SweepReport)
async def complete_expired_rentals(
    current_user: dict = Depends(require_admin),
    sweeper: RentalLifecycleSweeper = Depends(get_lifecycle_sweeper)
):
    """Run one lifecycle sweep now instead of waiting for the next interval."""
    return await sweeper.run_once()


@router.get("/{rental_id}/audit", response_model=list[AuditEntryResponse])
async def get_audit_trail(
    rental_id: int = Path(..., description="Rental ID"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    entries = await get_rental_audit_trail(db, rental_id, limit=limit)
    return [AuditEntryResponse.model_validate(e) for e in entries]


@router.patch("/{rental_id}/approve", response_model=RentalResponse)
async def approve_rental(
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve a paid rental.

    Activates it right away when the start date has arrived.
    409 if the rental is not confirmed and awaiting approval.
    """
    rental = await ApprovalGate.approve(db, rental_id, current_user)
    await db.commit()
    await db.refresh(rental)
    return RentalResponse.model_validate(rental)


@router.patch("/{rental_id}/reject", response_model=RentalResponse)
async def reject_rental(
    body: RejectRequest,
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Reject a paid rental, cancel its payment and free the unit."""
    rental = await ApprovalGate.reject(db, rental_id, current_user, body.reason)
    await db.commit()
    await db.refresh(rental)
    return RentalResponse.model_validate(rental)


@router.patch("/{rental_id}/complete", response_model=RentalResponse)
async def complete_rental_manually(
    rental_id: int = Path(..., description="Rental ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Close an active rental early (vehicle returned)."""
    rental = await load_rental_for_update(db, rental_id)
    await complete_rental(db, rental, ADMIN_COMPLETABLE, actor=current_user, reason="manual")
    await db.commit()
    await db.refresh(rental)
    return RentalResponse.model_validate(rental)
