"""Seed script: populates the dev DB with sample gift codes."""

import asyncio

from sqlalchemy import select

from visionboard.config import get_settings
from visionboard.database import Database
from visionboard.models.gift_code import GiftCode

SEED_CODES = [
    {"code": "DEV-PRO-30", "plan_id": "pro", "duration_days": 30, "max_uses": 100},
    {"code": "DEV-PRO-SINGLE", "plan_id": "pro", "duration_days": 365, "max_uses": 1},
    {"code": "DEV-RETIRED", "plan_id": "pro", "duration_days": 30, "max_uses": 10, "active": False},
]


async def seed():
    settings = get_settings()
    if not settings.has_database:
        print("DATABASE_URL is not set; nothing to seed.")
        return

    database = Database(settings.database_url).open()
    try:
        await database.create_schema()
        async with database.session() as db:
            result = await db.execute(select(GiftCode.code))
            existing = set(result.scalars().all())

            created = 0
            for seed in SEED_CODES:
                if seed["code"] in existing:
                    continue
                db.add(GiftCode(used_count=0, **{"active": True, **seed}))
                created += 1

        print(f"Seeded {created} gift codes ({len(SEED_CODES) - created} already present)")
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(seed())
