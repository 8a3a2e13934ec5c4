#!/usr/bin/env python3
"""
Mark overdue appointments as missed.

Meant to run from cron. An appointment counts as a no-show once it has
ended more than MISSED_GRACE_MINUTES ago while still scheduled or confirmed.

Usage:
    python scripts/sweep_missed.py
    python scripts/sweep_missed.py --limit 100
"""

import argparse
import asyncio

from careslot.database import AsyncSessionLocal, engine
from careslot.middleware.logging import configure_logging
from careslot.repositories.appointment_repository import UnitOfWork
from careslot.services.account_service import SqlAccountResolver
from careslot.services.appointment_service import AppointmentService
from careslot.services.notification_service import NotificationDispatcher


async def sweep(limit: int) -> int:
    """Run one sweep and return how many appointments were marked."""
    dispatcher = NotificationDispatcher()
    service = AppointmentService(
        UnitOfWork(AsyncSessionLocal),
        SqlAccountResolver(AsyncSessionLocal),
        dispatcher,
    )
    try:
        marked = await service.sweep_missed(limit=limit)
        await dispatcher.drain()
    finally:
        await engine.dispose()
    return len(marked)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mark overdue appointments as missed")
    parser.add_argument("--limit", type=int, default=500, help="Maximum appointments per run")
    args = parser.parse_args()

    configure_logging()
    count = asyncio.run(sweep(args.limit))
    print(f"✓ Marked {count} appointment(s) as missed")


if __name__ == "__main__":
    main()
