#!/usr/bin/env python3
"""
Archive every appointment of a removed account.

Called by the account subsystem when a patient or doctor is deleted. Rows
are flagged, never removed, and keep their status.

Usage:
    python scripts/archive_account.py <account_id>
"""

import argparse
import asyncio
import sys
from uuid import UUID

from careslot.database import AsyncSessionLocal, engine
from careslot.middleware.logging import configure_logging
from careslot.repositories.appointment_repository import UnitOfWork
from careslot.services.account_service import SqlAccountResolver
from careslot.services.appointment_service import AppointmentService
from careslot.services.notification_service import NotificationDispatcher


async def archive(account_id: UUID) -> int:
    service = AppointmentService(
        UnitOfWork(AsyncSessionLocal),
        SqlAccountResolver(AsyncSessionLocal),
        NotificationDispatcher(),
    )
    try:
        return await service.archive_account_appointments(account_id)
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Archive appointments of a removed account")
    parser.add_argument("account_id", help="UUID of the removed account")
    args = parser.parse_args()

    try:
        account_id = UUID(args.account_id)
    except ValueError:
        print(f"Error: invalid account id {args.account_id!r}", file=sys.stderr)
        sys.exit(1)

    configure_logging()
    count = asyncio.run(archive(account_id))
    print(f"✓ Archived {count} appointment(s)")


if __name__ == "__main__":
    main()
