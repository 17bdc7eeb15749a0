"""
Rental statistics for renter dashboards and the admin console.
"""

from decimal import Decimal

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.rental import Rental
from backend.app.models.rental_enums import ApprovalStatus, RentalStatus


def _approved_or_running():
    # Future rentals approved by an admin stay CONFIRMED with approval APPROVED
    return or_(
        Rental.status.in_([RentalStatus.ACTIVE, RentalStatus.APPROVED]),
        and_(
            Rental.status == RentalStatus.CONFIRMED,
            Rental.admin_approval_status == ApprovalStatus.APPROVED
        )
    )


async def renter_stats(db: AsyncSession, user_id: int) -> dict:
    total_trips = (await db.execute(
        select(func.count(Rental.id)).where(
            Rental.user_id == user_id,
            Rental.status == RentalStatus.COMPLETED
        )
    )).scalar() or 0

    result = await db.execute(
        select(Rental).where(Rental.user_id == user_id, _approved_or_running())
        .order_by(Rental.created_at.desc(), Rental.id.desc())
    )
    active = list(result.scalars().all())

    return {
        "total_trips": total_trips,
        "active_rentals": len(active),
        "active_rental_details": active,
    }


async def admin_stats(db: AsyncSession) -> dict:
    """
    Counts per lifecycle bucket plus revenue of completed rentals.
    """
    async def count(*conditions) -> int:
        return (await db.execute(select(func.count(Rental.id)).where(*conditions))).scalar() or 0

    revenue = (await db.execute(
        select(func.coalesce(func.sum(Rental.total_amount), 0)).where(Rental.status == RentalStatus.COMPLETED)
    )).scalar()

    return {
        "total_rentals": await count(),
        "pending_approvals": await count(
            Rental.status == RentalStatus.CONFIRMED,
            Rental.admin_approval_status == ApprovalStatus.PENDING
        ),
        "active_rentals": await count(Rental.status == RentalStatus.ACTIVE),
        "completed_rentals": await count(Rental.status == RentalStatus.COMPLETED),
        "total_revenue": Decimal(str(revenue or 0)).quantize(Decimal("0.01")),
    }
