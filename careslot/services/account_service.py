"""Account lookups used to validate booking parties."""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careslot.core.exceptions import InvalidRoleError, NotFoundError
from careslot.models.accounts import accounts
from careslot.schemas.appointments import ActorRole

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccountInfo:
    """What the scheduling core needs to know about an account."""

    id: UUID
    role: str
    is_active: bool = True


class AccountResolver(Protocol):
    """Read-only view of the account subsystem."""

    async def resolve(self, account_id: UUID) -> AccountInfo | None: ...


class SqlAccountResolver:
    """Resolves accounts from the shared ``accounts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def resolve(self, account_id: UUID) -> AccountInfo | None:
        async with self.session_factory() as session:
            stmt = select(accounts.c.id, accounts.c.role, accounts.c.is_active).where(
                accounts.c.id == account_id
            )
            result = await session.execute(stmt)
            row = result.fetchone()

        if not row:
            return None
        return AccountInfo(id=row.id, role=row.role, is_active=row.is_active)


async def require_account(
    resolver: AccountResolver,
    account_id: UUID,
    role: ActorRole,
    label: str,
) -> AccountInfo:
    """
    Resolve an account and check it holds the expected role.

    Args:
        resolver: Account collaborator
        account_id: Account to resolve
        role: Role the account must hold
        label: Human name of the party, used in messages

    Returns:
        Resolved account

    Raises:
        NotFoundError: If the account does not exist
        InvalidRoleError: If the account has another role or is inactive
    """
    account = await resolver.resolve(account_id)

    if account is None:
        raise NotFoundError(f"{label.capitalize()} not found")

    if account.role != role.value:
        logger.info(
            "account_role_mismatch",
            account_id=str(account_id),
            expected=role.value,
            actual=account.role,
        )
        raise InvalidRoleError(f"Account {account_id} is not a {label}")

    if not account.is_active:
        raise InvalidRoleError(f"{label.capitalize()} account is deactivated")

    return account
