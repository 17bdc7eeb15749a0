"""
Database seeding script for development.

Creates an ADMIN, a RENTER and one vehicle with three units, then prints
bearer tokens for both users (identity is owned by an external service,
so there is no login endpoint here).
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.core.jwt import build_claims, create_access_token
from backend.app.models.user import User
from backend.app.models.vehicle import Vehicle
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental import Rental
from backend.app.models.payment import Payment
from backend.app.models.audit_log import AuditLog
from backend.app.models.dlq import DeadLetterQueue
from backend.app.models.enums import UserRole
from backend.app.models.rental_enums import UnitStatus, VehicleStatus
from sqlalchemy import select


async def seed_data():
    """
    Seed development data.

    Creates:
    - 1 ADMIN user
    - 1 RENTER user
    - 1 Vehicle with 3 available units
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting seeding...")

        result = await db.execute(
            select(User).where(User.email == "admin@rental.local")
        )
        if result.scalar_one_or_none():
            print("ℹ️  Seed data already exists, skipping seeding")
            return

        admin_user = User(
            email="admin@rental.local",
            name="Rental Admin",
            phone_number="+62811000001",
            role=UserRole.ADMIN,
            is_active=True
        )
        renter = User(
            email="renter@rental.local",
            name="Test Renter",
            phone_number="+62812345678",
            role=UserRole.RENTER,
            is_active=True
        )
        db.add_all([admin_user, renter])

        vehicle = Vehicle(
            title="Toyota Avanza 2023",
            brand="Toyota",
            model="Avanza",
            vehicle_category="MPV",
            year=2023,
            price_per_day=Decimal("350000.00"),
            transmission="automatic",
            fuel_type="gasoline",
            passenger_capacity=7,
            features=["AC", "Bluetooth"],
            status=VehicleStatus.AVAILABLE
        )
        db.add(vehicle)
        await db.flush()

        for plate in ("B 1234 ABC", "B 5678 DEF", "B 9012 GHI"):
            db.add(VehicleUnit(
                vehicle_id=vehicle.id,
                plate_number=plate,
                status=UnitStatus.AVAILABLE,
                current_location="Jakarta"
            ))

        await db.commit()

        print(f"✅ Created vehicle {vehicle.id} ({vehicle.title}) with 3 units")
        for user in (admin_user, renter):
            token = create_access_token(data=build_claims(user.id, user.role.value, user.email))
            print(f"✅ {user.role.value} {user.email} (id {user.id})\n   Bearer {token}")

        print("\n🎉 Seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(seed_data())
