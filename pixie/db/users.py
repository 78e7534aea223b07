"""Data operations for users."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from .base import BanInfo, BaseOperations, active_ban, apply_ban, clear_ban, get_user
from .cascade import delete_cascade
from .identifiers import EntityId, ExternalId
from .models import User
from .validator import ensure_valid, validate_ban

logger = logging.getLogger(__name__)


class UserOperations(BaseOperations):
    entity = "user"

    async def get(self, user_id: EntityId) -> User | None:
        return await self._run("get", lambda s: get_user(s, user_id))

    async def upsert(
        self,
        discord_id: ExternalId,
        username: str | None = None,
        discriminator: str | None = None,
        avatar: str | None = None,
        is_bot_admin: bool | None = None,
    ) -> User:
        """Create the user on first sight; refresh the profile fields afterwards.

        `is_bot_admin` is only written when given explicitly.
        """

        async def _upsert(session: AsyncSession) -> User:
            user = await get_user(session, discord_id)
            if user is None:
                user = User(discord_id=discord_id.value, is_bot_admin=bool(is_bot_admin), is_banned=False)
                session.add(user)
                logger.debug("Registering user %s", discord_id)
            user.username = username
            user.discriminator = discriminator
            user.avatar = avatar
            if is_bot_admin is not None:
                user.is_bot_admin = is_bot_admin
            await session.flush()
            return user

        return await self._run("upsert", _upsert)

    async def set_bot_admin(self, user_id: EntityId, is_admin: bool) -> User:
        async def _set(session: AsyncSession) -> User:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            user.is_bot_admin = is_admin
            return user

        return await self._run("set admin status of", _set)

    async def ban(self, user_id: EntityId, reason: str, expires_at: datetime | None = None) -> User:
        ensure_valid(validate_ban(True, reason, expires_at))

        async def _ban(session: AsyncSession) -> User:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            apply_ban(user, reason, expires_at)
            return user

        return await self._run("ban", _ban)

    async def unban(self, user_id: EntityId) -> User:
        async def _unban(session: AsyncSession) -> User:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            clear_ban(user)
            return user

        return await self._run("unban", _unban)

    async def active_ban(self, user_id: EntityId) -> BanInfo | None:
        """Current ban of the user, or None. Expired bans are lifted here."""
        return await self._run("check ban of", lambda s: self._active_ban(s, user_id))

    @staticmethod
    async def _active_ban(session: AsyncSession, user_id: EntityId) -> BanInfo | None:
        return active_ban(await get_user(session, user_id))

    async def delete(self, user_id: EntityId) -> None:
        """Remove the user with their conversations and guild memberships."""

        async def _delete(session: AsyncSession) -> None:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            await delete_cascade(session, User, [user.id])

        await self._run("delete", _delete)
