"""Script to initialize the database."""

import asyncio

from careslot.database import engine
from careslot.models.accounts import metadata as accounts_metadata
from careslot.models.appointments import metadata as appointments_metadata


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(accounts_metadata.create_all)
        await conn.run_sync(appointments_metadata.create_all)

        print("✓ Database initialized successfully!")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
