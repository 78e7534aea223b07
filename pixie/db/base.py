"""Shared plumbing for the per-entity data operation classes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Database
from .errors import DatabaseOperationError, NotFoundError
from .identifiers import EntityId, ExternalId, InternalId
from .models import Guild, User, utcnow
from .validator import ValidationError, parse_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def get_user(session: AsyncSession, user_id: EntityId) -> User | None:
    if isinstance(user_id, InternalId):
        return await session.get(User, user_id.value)
    if isinstance(user_id, ExternalId):
        result = await session.execute(select(User).where(User.discord_id == user_id.value))
        return result.scalar_one_or_none()
    raise TypeError(f"Expected ExternalId or InternalId, got {type(user_id).__name__}")


async def get_guild(session: AsyncSession, guild_id: EntityId) -> Guild | None:
    if isinstance(guild_id, InternalId):
        return await session.get(Guild, guild_id.value)
    if isinstance(guild_id, ExternalId):
        result = await session.execute(select(Guild).where(Guild.discord_id == guild_id.value))
        return result.scalar_one_or_none()
    raise TypeError(f"Expected ExternalId or InternalId, got {type(guild_id).__name__}")


async def insert_if_absent(session: AsyncSession, model: type, **values: Any) -> None:
    """INSERT that leaves an existing row alone when a unique constraint is hit.

    Concurrent writers creating the same row both succeed; callers select the
    row afterwards.
    """
    dialect = postgresql if session.get_bind().dialect.name == "postgresql" else sqlite
    await session.execute(dialect.insert(model).values(**values).on_conflict_do_nothing())


class BaseOperations:
    """Holds the database handle and wraps failures with the operation name."""

    entity = "record"

    def __init__(self, db: Database | None = None):
        self.db = db or Database.get_instance()

    async def _run(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run `fn` in one transaction; unexpected failures become DatabaseOperationError."""
        try:
            return await self.db.transaction(fn)
        except (DatabaseOperationError, ValidationError, TypeError):
            raise
        except Exception as e:
            logger.error("Error in %s %s: %s", operation, self.entity, e)
            raise DatabaseOperationError(f"Failed to {operation} {self.entity}: {e}") from e

    @staticmethod
    def _require(record: T | None, what: str) -> T:
        if record is None:
            raise NotFoundError(f"{what} not found")
        return record


@dataclass(frozen=True)
class BanInfo:
    reason: str | None
    expires_at: datetime | None


def active_ban(record: Any) -> BanInfo | None:
    """
    Ban state of a User, Guild or GuildMember row.

    An expired ban is lifted on the record in place (the caller's
    transaction persists it) and reads as not banned.
    """
    if record is None or not record.is_banned:
        return None
    if record.ban_expires_at is not None and record.ban_expires_at <= utcnow():
        clear_ban(record)
        return None
    return BanInfo(record.ban_reason, record.ban_expires_at)


def apply_ban(record: Any, reason: str, expires_at: datetime | None = None) -> None:
    """Mark the record banned. Aware expiry times are stored as naive UTC."""
    record.is_banned = True
    record.ban_reason = reason
    record.ban_expires_at = parse_datetime(expires_at) if expires_at is not None else None


def clear_ban(record: Any) -> None:
    record.is_banned = False
    record.ban_reason = None
    record.ban_expires_at = None
