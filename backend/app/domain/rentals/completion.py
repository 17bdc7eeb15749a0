"""
Rental completion.

Shared by the admin override and the lifecycle sweeper.
"""

import logging
from typing import Optional, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidTransitionError, ResourceNotFoundError
from backend.app.domain.rentals.inventory import release_unit, refresh_vehicle_status
from backend.app.domain.rentals.state_machine import transition_rental
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import RentalStatus
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

# Admin override only closes rentals that are actually running
ADMIN_COMPLETABLE = frozenset({RentalStatus.ACTIVE})

# Sweeper closes every started-and-occupying rental past its end date
SWEEP_COMPLETABLE = frozenset({RentalStatus.ACTIVE, RentalStatus.CONFIRMED, RentalStatus.APPROVED})


async def load_rental_for_update(db: AsyncSession, rental_id: int) -> Rental:
    result = await db.execute(
        select(Rental).where(Rental.id == rental_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    rental = result.scalar_one_or_none()
    if rental is None:
        raise ResourceNotFoundError("Rental", rental_id)
    return rental


async def complete_rental(
    db: AsyncSession,
    rental: Rental,
    allowed_from: Iterable[RentalStatus],
    actor: Optional[dict] = None,
    reason: str = "manual"
) -> Rental:
    """
    Mark a rental completed, free its unit and refresh the vehicle status.

    Raises:
        InvalidTransitionError: If the rental is not in `allowed_from`
    """
    if rental.status not in allowed_from:
        raise InvalidTransitionError(
            rental.status.value,
            RentalStatus.COMPLETED.value,
            message=f"Rental in status '{rental.status.value}' cannot be completed"
        )

    previous = rental.status
    transition_rental(rental, RentalStatus.COMPLETED)
    await release_unit(db, rental.unit_id, rental.id)
    await refresh_vehicle_status(db, rental.vehicle_id)

    await log_event(
        db,
        action=AuditAction.RENTAL_COMPLETED,
        rental_id=rental.id,
        actor=actor,
        metadata={"from": previous.value, "reason": reason, "end_date": rental.end_date.isoformat()}
    )
    return rental
