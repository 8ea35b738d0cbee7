#!/usr/bin/env python3
"""Seed development users and a vehicle, and print bearer tokens for them."""

import asyncio
import json
from pathlib import Path

from sqlalchemy import select

from app.core.security import create_token_for_user
from app.database import get_db_context, init_db
from app.domain.payment_state import VehicleStatus
from app.models.user import User
from app.models.vehicle import Vehicle

TOKEN_FILE = Path(__file__).parent.parent / ".tokens.json"

DEV_USERS = [
    {"name": "Rentals Admin", "email": "admin@rentals.dev", "role": "admin"},
    {"name": "Asha Customer", "email": "customer@rentals.dev", "role": "user", "phone": "+919800000001"},
    {"name": "Ravi Driver", "email": "driver@rentals.dev", "role": "vendor", "phone": "+919800000002"},
]


async def seed(registration_no: str = "KA01AB1234", price_per_day: int = 250000) -> dict:
    """Create the dev users and vehicle if they don't exist."""
    await init_db()
    tokens: dict[str, str] = {}

    async with get_db_context() as session:
        for data in DEV_USERS:
            result = await session.execute(select(User).where(User.email == data["email"]))
            user = result.scalar_one_or_none()
            if user:
                user.role = data["role"]
                user.is_active = True
                print(f"Updated existing user: {data['email']}")
            else:
                user = User(**data)
                session.add(user)
                await session.flush()
                print(f"Created user: {data['email']}")
            tokens[data["role"]] = create_token_for_user(str(user.id), user.email, user.role)

        result = await session.execute(
            select(Vehicle).where(Vehicle.registration_no == registration_no)
        )
        vehicle = result.scalar_one_or_none()
        if not vehicle:
            vehicle = Vehicle(
                name="Toyota Innova Crysta",
                registration_no=registration_no,
                category="MUV",
                seats=7,
                price_per_day=price_per_day,
                status=VehicleStatus.AVAILABLE.value,
            )
            session.add(vehicle)
            await session.flush()
            print(f"Created vehicle: {registration_no}")

    seeded = {"vehicle_id": str(vehicle.id), "tokens": tokens}
    TOKEN_FILE.write_text(json.dumps(seeded, indent=2))
    print(f"Vehicle: {vehicle.id}")
    print(f"Tokens written to {TOKEN_FILE}")
    return seeded


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed development data")
    parser.add_argument("--registration-no", default="KA01AB1234", help="Vehicle registration")
    parser.add_argument("--price-per-day", type=int, default=250000, help="Day rate in paise")

    args = parser.parse_args()

    asyncio.run(seed(registration_no=args.registration_no, price_per_day=args.price_per_day))
