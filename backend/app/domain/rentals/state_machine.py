"""
Rental lifecycle state machine.

Every change to `Rental.status` goes through `transition_rental`.
"""

import logging

from backend.app.core.exceptions import InvalidTransitionError
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import RentalStatus

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[RentalStatus, frozenset[RentalStatus]] = {
    RentalStatus.PENDING: frozenset({
        RentalStatus.CONFIRMED,
        RentalStatus.CANCELLED,
    }),
    RentalStatus.CONFIRMED: frozenset({
        RentalStatus.APPROVED,
        RentalStatus.ACTIVE,
        RentalStatus.COMPLETED,
        RentalStatus.CANCELLED,
        RentalStatus.REJECTED,
    }),
    RentalStatus.APPROVED: frozenset({
        RentalStatus.ACTIVE,
        RentalStatus.COMPLETED,
        RentalStatus.CANCELLED,
    }),
    RentalStatus.ACTIVE: frozenset({
        RentalStatus.COMPLETED,
    }),
    RentalStatus.COMPLETED: frozenset(),
    RentalStatus.CANCELLED: frozenset(),
    RentalStatus.REJECTED: frozenset(),
}


def can_transition(current: RentalStatus, target: RentalStatus) -> bool:
    """Return True if `current -> target` is in the table or a no-op."""
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition_rental(rental: Rental, target: RentalStatus) -> bool:
    """
    Move a rental to `target`.

    Returns:
        True if the status changed, False for a same-state no-op

    Raises:
        InvalidTransitionError: If the table does not allow the move
    """
    current = rental.status
    if current == target:
        return False

    if target not in ALLOWED_TRANSITIONS[current]:
        logger.warning("Refused transition of rental %s: %s -> %s", rental.id, current.value, target.value)
        raise InvalidTransitionError(current.value, target.value)

    rental.status = target
    logger.info("Rental %s: %s -> %s", rental.id, current.value, target.value)
    return True
