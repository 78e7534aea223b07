"""
Ownership graph and cascading deletes.

Every parent → child edge is declared once in OWNERSHIP; `delete_cascade`
walks it depth-first so children are always removed before their owner,
whatever the backend does with foreign keys.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import Table, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Base,
    Channel,
    Conversation,
    Guild,
    GuildMember,
    GuildSettings,
    Message,
    User,
    guild_member_permissions,
    guild_permissions,
    user_permissions,
)

logger = logging.getLogger(__name__)

# owner → [(owned model, foreign key column on the owned model)]
OWNERSHIP: dict[type[Base], list[tuple[type[Base], str]]] = {
    Guild: [(GuildSettings, "guild_id"), (Channel, "guild_id"), (GuildMember, "guild_id")],
    Channel: [(Conversation, "channel_id")],
    Conversation: [(Message, "conversation_id")],
    User: [(Conversation, "user_id"), (GuildMember, "user_id")],
}

# Permission assignment rows; they have no lifecycle of their own
ASSIGNMENTS: dict[type[Base], list[tuple[Table, str]]] = {
    User: [(user_permissions, "user_id")],
    Guild: [(guild_permissions, "guild_id")],
    GuildMember: [(guild_member_permissions, "guild_member_id")],
}


async def delete_cascade(session: AsyncSession, model: type[Base], ids: Iterable[int]) -> int:
    """Delete `model` rows with the given primary keys and everything they own.

    Returns the number of `model` rows removed. Runs inside the caller's
    transaction.
    """
    ids = list(ids)
    if not ids:
        return 0

    for child, fk in OWNERSHIP.get(model, ()):
        result = await session.execute(select(child.id).where(getattr(child, fk).in_(ids)))
        await delete_cascade(session, child, result.scalars().all())

    for table, column in ASSIGNMENTS.get(model, ()):
        await session.execute(delete(table).where(table.c[column].in_(ids)))

    result = await session.execute(delete(model).where(model.id.in_(ids)))
    logger.debug("Deleted %d %s row(s)", result.rowcount, model.__tablename__)
    return result.rowcount
