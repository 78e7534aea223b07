"""Data operations for named permissions and their assignments."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseOperations, get_guild, get_user
from .guilds import get_member
from .identifiers import EntityId
from .models import Permission

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS: dict[str, str] = {
    "use_ai": "Allows using AI features",
    "manage_ai": "Allows managing AI settings",
    "manage_guild": "Allows managing guild settings",
    "manage_users": "Allows managing user permissions",
}


async def get_permission(session: AsyncSession, name: str) -> Permission | None:
    return await session.scalar(select(Permission).where(Permission.name == name))


class PermissionOperations(BaseOperations):
    entity = "permission"

    async def seed_defaults(self) -> int:
        """Create the default permissions that are missing. Returns how many were created."""

        async def _seed(session: AsyncSession) -> int:
            existing = set((await session.execute(select(Permission.name))).scalars().all())
            created = 0
            for name, description in DEFAULT_PERMISSIONS.items():
                if name not in existing:
                    session.add(Permission(name=name, description=description))
                    created += 1
            return created

        created = await self._run("seed", _seed)
        if created:
            logger.info("Seeded %d default permission(s)", created)
        return created

    async def list_all(self) -> list[Permission]:
        async def _list(session: AsyncSession) -> list[Permission]:
            result = await session.execute(select(Permission).order_by(Permission.name))
            return list(result.scalars().all())

        return await self._run("list", _list)

    async def grant_to_user(self, user_id: EntityId, name: str) -> None:
        async def _grant(session: AsyncSession) -> None:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            await session.refresh(user, ["permissions"])
            permission = self._require(await get_permission(session, name), f"Permission {name}")
            if permission not in user.permissions:
                user.permissions.append(permission)

        await self._run("grant", _grant)

    async def grant_to_guild(self, guild_id: EntityId, name: str) -> None:
        async def _grant(session: AsyncSession) -> None:
            guild = self._require(await get_guild(session, guild_id), f"Guild {guild_id}")
            await session.refresh(guild, ["permissions"])
            permission = self._require(await get_permission(session, name), f"Permission {name}")
            if permission not in guild.permissions:
                guild.permissions.append(permission)

        await self._run("grant", _grant)

    async def revoke_from_guild(self, guild_id: EntityId, name: str) -> None:
        async def _revoke(session: AsyncSession) -> None:
            guild = await get_guild(session, guild_id)
            if guild is not None:
                await session.refresh(guild, ["permissions"])
                guild.permissions = [p for p in guild.permissions if p.name != name]

        await self._run("revoke", _revoke)

    async def revoke_from_member(self, user_id: EntityId, guild_id: EntityId, name: str) -> None:
        async def _revoke(session: AsyncSession) -> None:
            member = await get_member(session, user_id, guild_id)
            if member is not None:
                member.permissions = [p for p in member.permissions if p.name != name]

        await self._run("revoke", _revoke)

