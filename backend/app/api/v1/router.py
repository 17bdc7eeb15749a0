"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import rentals, vehicles, payments, admin_rentals

router = APIRouter()

# Renter endpoints
router.include_router(rentals.router)

# Vehicle availability (public)
router.include_router(vehicles.router)

# Payment endpoints (gateway callback included)
router.include_router(payments.router)

# Admin endpoints
router.include_router(admin_rentals.router)
