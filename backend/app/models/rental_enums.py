"""
Rental, payment and inventory enumerations.
"""

import enum


class RentalStatus(str, enum.Enum):
    """Primary rental lifecycle."""
    PENDING = "pending"  # Created, waiting for payment
    CONFIRMED = "confirmed"  # Paid, waiting for admin approval
    APPROVED = "approved"  # Legacy rows approved before their start date
    ACTIVE = "active"  # Approved and started
    COMPLETED = "completed"  # Ended normally
    CANCELLED = "cancelled"  # Cancelled by renter or failed payment
    REJECTED = "rejected"  # Rejected by admin


class ApprovalStatus(str, enum.Enum):
    """Admin approval sub-state, meaningful while rental is CONFIRMED."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(str, enum.Enum):
    """Internal payment status, named after the gateway vocabulary."""
    PENDING = "pending"
    SETTLEMENT = "settlement"
    CAPTURE = "capture"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"
    FAILURE = "failure"


class UnitStatus(str, enum.Enum):
    """Physical unit status."""
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"


class VehicleStatus(str, enum.Enum):
    """Cached projection of a vehicle's unit states."""
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"


# Rentals in these states consume a unit's capacity
OCCUPYING_STATUSES = frozenset({
    RentalStatus.PENDING,
    RentalStatus.CONFIRMED,
    RentalStatus.APPROVED,
    RentalStatus.ACTIVE,
})

TERMINAL_STATUSES = frozenset({
    RentalStatus.COMPLETED,
    RentalStatus.CANCELLED,
    RentalStatus.REJECTED,
})

PAID_STATUSES = frozenset({PaymentStatus.SETTLEMENT, PaymentStatus.CAPTURE})

FAILED_STATUSES = frozenset({
    PaymentStatus.DENY,
    PaymentStatus.CANCEL,
    PaymentStatus.EXPIRE,
    PaymentStatus.FAILURE,
})

# Units in these states cannot be booked at all
OUT_OF_SERVICE_UNIT_STATUSES = frozenset({UnitStatus.MAINTENANCE, UnitStatus.OUT_OF_SERVICE})
