"""Data operations for guild and DM channels."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseOperations, get_guild, insert_if_absent
from .cascade import delete_cascade
from .identifiers import ExternalId
from .models import Channel, Guild
from .validator import ensure_valid, validate_channel

logger = logging.getLogger(__name__)


async def find_channel(session: AsyncSession, channel_id: ExternalId, guild: Guild | None) -> Channel | None:
    stmt = select(Channel).where(Channel.discord_id == channel_id.value)
    if guild is None:
        stmt = stmt.where(Channel.guild_id.is_(None))
    else:
        stmt = stmt.where(Channel.guild_id == guild.id)
    return await session.scalar(stmt)


async def resolve_channel(
    session: AsyncSession,
    channel_id: ExternalId,
    guild: Guild | None,
    name: str | None = None,
    channel_type: str | None = None,
    is_nsfw: bool | None = None,
) -> Channel:
    """Find or create the channel inside the caller's transaction.

    Without a guild the channel is a DM channel.
    """
    channel = await find_channel(session, channel_id, guild)
    if channel is None:
        await insert_if_absent(
            session,
            Channel,
            discord_id=channel_id.value,
            guild_id=guild.id if guild else None,
            name=name or ("DM" if guild is None else f"channel-{channel_id}"),
            type=channel_type or ("DM" if guild is None else "text"),
            is_nsfw=bool(is_nsfw),
        )
        # Another writer may have won the insert; its row is the one to update
        channel = await find_channel(session, channel_id, guild)
        if channel is None:
            raise LookupError(f"Channel {channel_id} vanished after insert")

    if name is not None:
        channel.name = name
    if channel_type is not None:
        channel.type = channel_type
    if is_nsfw is not None:
        channel.is_nsfw = is_nsfw
    return channel


class ChannelOperations(BaseOperations):
    entity = "channel"

    async def upsert(
        self,
        channel_id: ExternalId,
        guild_id: ExternalId,
        name: str,
        channel_type: str = "text",
        is_nsfw: bool = False,
    ) -> Channel:
        """Register a guild channel. The guild must already exist."""
        ensure_valid(validate_channel(name, channel_type))

        async def _upsert(session: AsyncSession) -> Channel:
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")
            return await resolve_channel(session, channel_id, guild, name, channel_type, is_nsfw)

        return await self._run("upsert", _upsert)

    async def delete(self, channel_id: ExternalId, guild_id: ExternalId | None = None) -> bool:
        """Delete the channel with its conversations. Returns False when it is unknown."""

        async def _delete(session: AsyncSession) -> bool:
            guild = await get_guild(session, guild_id) if guild_id else None
            if guild_id and guild is None:
                return False
            channel = await find_channel(session, channel_id, guild)
            if channel is None:
                return False
            await delete_cascade(session, Channel, [channel.id])
            return True

        return await self._run("delete", _delete)
