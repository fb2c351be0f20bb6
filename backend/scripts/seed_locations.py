#!/usr/bin/env python3
"""
Seed the locations lookup table. Existing (country, city, district) rows are skipped.
Run from backend/: python -m scripts.seed_locations [--reset]

--reset drops and recreates every table first (development only).
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

LOCATIONS = [
    ("Germany", "Berlin", "Mitte"),
    ("Germany", "Berlin", "Kreuzberg"),
    ("Germany", "Berlin", "Prenzlauer Berg"),
    ("Germany", "Munich", "Altstadt"),
    ("Germany", "Munich", "Schwabing"),
    ("Germany", "Hamburg", "Altona"),
    ("Austria", "Vienna", "Innere Stadt"),
    ("Austria", "Vienna", "Leopoldstadt"),
    ("Poland", "Warsaw", "Mokotow"),
    ("Poland", "Krakow", "Stare Miasto"),
]


async def main():
    from marketplace.database import async_session, drop_and_recreate_db, init_db
    from marketplace.models import Location
    from sqlalchemy import select

    if "--reset" in sys.argv[1:]:
        await drop_and_recreate_db()
        print("Dropped and recreated all tables.")
    else:
        await init_db()

    created = 0
    async with async_session() as db:
        for country, city, district in LOCATIONS:
            r = await db.execute(
                select(Location.id).where(
                    Location.country == country,
                    Location.city == city,
                    Location.district == district,
                )
            )
            if r.first() is not None:
                continue
            db.add(Location(country=country, city=city, district=district))
            created += 1
        await db.commit()

    print(f"Seeded {created} location(s); {len(LOCATIONS) - created} already present.")


if __name__ == "__main__":
    asyncio.run(main())
