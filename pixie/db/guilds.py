"""Data operations for guilds, their AI settings and their members."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pixie.llm.providers import PROVIDERS

from .base import BanInfo, BaseOperations, active_ban, apply_ban, clear_ban, get_guild, get_user
from .cascade import delete_cascade
from .identifiers import EntityId, ExternalId
from .models import Guild, GuildMember, GuildSettings, Permission
from .validator import ValidationError, ensure_valid, validate_ban, validate_guild_settings

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    "ai_enabled": True,
    "ai_provider": "openai",
    "ai_model": "gpt-4o-mini",
    "temperature": 0.7,
    "max_tokens": 2000,
    "max_conversation_length": 10,
    "allowed_channels": "[]",
    "enable_reasoning": True,
    "enable_web_search": False,
    "enable_weather": False,
}


async def ensure_settings(session: AsyncSession, guild: Guild) -> GuildSettings:
    settings = await session.scalar(select(GuildSettings).where(GuildSettings.guild_id == guild.id))
    if settings is None:
        settings = GuildSettings(guild=guild, **DEFAULT_SETTINGS)
        session.add(settings)
        await session.flush()
    return settings


class GuildOperations(BaseOperations):
    entity = "guild"

    async def get(self, guild_id: EntityId) -> Guild | None:
        return await self._run("get", lambda s: get_guild(s, guild_id))

    async def upsert(self, discord_id: ExternalId, name: str | None = None, icon: str | None = None) -> Guild:
        """Create the guild with default settings, or refresh its name and icon."""

        async def _upsert(session: AsyncSession) -> Guild:
            guild = await get_guild(session, discord_id)
            if guild is None:
                guild = Guild(discord_id=discord_id.value, is_banned=False)
                session.add(guild)
                logger.debug("Registering guild %s", discord_id)
            guild.name = name or "Unknown Guild"
            guild.icon = icon
            await session.flush()
            await ensure_settings(session, guild)
            return guild

        return await self._run("upsert", _upsert)

    async def get_settings(self, guild_id: EntityId) -> GuildSettings | None:
        """Settings of a known guild (defaults are created when missing); None for unknown guilds."""

        async def _get(session: AsyncSession) -> GuildSettings | None:
            guild = await get_guild(session, guild_id)
            if guild is None:
                return None
            return await ensure_settings(session, guild)

        return await self._run("get settings of", _get)

    async def update_settings(self, guild_id: EntityId, changes: dict[str, Any]) -> GuildSettings:
        """
        Apply a partial settings update after validation.

        Switching provider without naming a model falls back to the new
        provider's default model when the current one is not offered there.
        """

        async def _update(session: AsyncSession) -> GuildSettings:
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")
            settings = await ensure_settings(session, guild)

            ensure_valid(validate_guild_settings(changes, current_provider=settings.ai_provider))
            updates = dict(changes)
            provider = updates.get("ai_provider", settings.ai_provider)
            if "ai_model" not in updates and settings.ai_model not in PROVIDERS[provider].models:
                updates["ai_model"] = PROVIDERS[provider].default_model

            for key, value in updates.items():
                setattr(settings, key, value)
            await session.flush()
            return settings

        return await self._run("update settings of", _update)

    async def ban(self, guild_id: EntityId, reason: str, expires_at: datetime | None = None) -> Guild:
        ensure_valid(validate_ban(True, reason, expires_at))

        async def _ban(session: AsyncSession) -> Guild:
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")
            apply_ban(guild, reason, expires_at)
            return guild

        return await self._run("ban", _ban)

    async def unban(self, guild_id: EntityId) -> Guild:
        async def _unban(session: AsyncSession) -> Guild:
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")
            clear_ban(guild)
            return guild

        return await self._run("unban", _unban)

    async def active_ban(self, guild_id: EntityId) -> BanInfo | None:
        async def _check(session: AsyncSession) -> BanInfo | None:
            return active_ban(await get_guild(session, guild_id))

        return await self._run("check ban of", _check)

    async def delete(self, guild_id: EntityId) -> bool:
        """Delete the guild and everything it owns. Returns False for unknown guilds."""

        async def _delete(session: AsyncSession) -> bool:
            guild = await get_guild(session, guild_id)
            if guild is None:
                return False
            await delete_cascade(session, Guild, [guild.id])
            return True

        return await self._run("delete", _delete)


async def get_member(session: AsyncSession, user_id: EntityId, guild_id: EntityId) -> GuildMember | None:
    user = await get_user(session, user_id)
    guild = await get_guild(session, guild_id)
    if user is None or guild is None:
        return None
    return await session.scalar(
        select(GuildMember)
        .options(selectinload(GuildMember.permissions))
        .where(GuildMember.user_id == user.id, GuildMember.guild_id == guild.id)
    )


class GuildMemberOperations(BaseOperations):
    entity = "guild member"

    async def get(self, user_id: EntityId, guild_id: EntityId) -> GuildMember | None:
        return await self._run("get", lambda s: get_member(s, user_id, guild_id))

    async def upsert(
        self,
        user_id: EntityId,
        guild_id: EntityId,
        is_guild_admin: bool = False,
        permissions: Iterable[str] = (),
    ) -> GuildMember:
        """Register a membership and grant the named permissions (existing grants are kept)."""
        names = set(permissions)

        async def _upsert(session: AsyncSession) -> GuildMember:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")

            member = await get_member(session, user_id, guild_id)
            if member is None:
                member = GuildMember(user_id=user.id, guild_id=guild.id, is_banned=False, permissions=[])
                session.add(member)
            member.is_guild_admin = is_guild_admin

            if names:
                result = await session.execute(select(Permission).where(Permission.name.in_(names)))
                granted = list(result.scalars().all())
                missing = names - {p.name for p in granted}
                if missing:
                    raise ValidationError([f"Unknown permission: {n}" for n in sorted(missing)])
                held = {p.name for p in member.permissions}
                member.permissions.extend(p for p in granted if p.name not in held)

            await session.flush()
            return member

        return await self._run("upsert", _upsert)

    async def ban(
        self, user_id: EntityId, guild_id: EntityId, reason: str, expires_at: datetime | None = None
    ) -> GuildMember:
        ensure_valid(validate_ban(True, reason, expires_at))

        async def _ban(session: AsyncSession) -> GuildMember:
            member = self._require(await get_member(session, user_id, guild_id), "Guild member")
            apply_ban(member, reason, expires_at)
            return member

        return await self._run("ban", _ban)

    async def unban(self, user_id: EntityId, guild_id: EntityId) -> GuildMember:
        async def _unban(session: AsyncSession) -> GuildMember:
            member = self._require(await get_member(session, user_id, guild_id), "Guild member")
            clear_ban(member)
            return member

        return await self._run("unban", _unban)

    async def active_ban(self, user_id: EntityId, guild_id: EntityId) -> BanInfo | None:
        async def _check(session: AsyncSession) -> BanInfo | None:
            return active_ban(await get_member(session, user_id, guild_id))

        return await self._run("check ban of", _check)

    async def delete(self, user_id: EntityId, guild_id: EntityId) -> bool:
        async def _delete(session: AsyncSession) -> bool:
            member = await get_member(session, user_id, guild_id)
            if member is None:
                return False
            await delete_cascade(session, GuildMember, [member.id])
            return True

        return await self._run("delete", _delete)
