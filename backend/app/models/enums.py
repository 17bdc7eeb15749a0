"""
User roles enumeration.

Defines the role types the rental core authorizes against.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Approves, rejects and completes rentals
        RENTER: Books vehicles and pays for them (default role)
    """
    ADMIN = "ADMIN"
    RENTER = "RENTER"
