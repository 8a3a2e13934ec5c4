"""Database models."""

from careslot.models.accounts import accounts
from careslot.models.appointments import appointments, provider_schedule_locks

__all__ = [
    "accounts",
    "appointments",
    "provider_schedule_locks",
]
