"""
Permission resolution.

Precedence, first match wins:

  1. actor or scope unknown          → deny
  2. actor is a bot admin            → grant
  3. actor is not a member of scope  → deny
  4. membership is a guild admin     → grant
  5. user, guild or member grant     → grant (any of the three)

Failures while resolving are logged and read as a denial.
"""

from __future__ import annotations

import logging

from sqlalchemy import exists, select

from pixie.db.base import get_guild, get_user
from pixie.db.database import Database
from pixie.db.guilds import get_member
from pixie.db.identifiers import EntityId
from pixie.db.models import (
    Permission,
    guild_member_permissions,
    guild_permissions,
    user_permissions,
)
from pixie.db.permissions import PermissionOperations

logger = logging.getLogger(__name__)


class PermissionDenied(Exception):
    def __init__(self, permission: str):
        self.permission = permission
        super().__init__(f"Missing permission: {permission}")


class PermissionResolver:
    def __init__(self, db: Database | None = None):
        self.db = db or Database.get_instance()

    async def has_permission(self, actor: EntityId, scope: EntityId, permission: str) -> bool:
        try:
            async with self.db.session() as session:
                user = await get_user(session, actor)
                guild = await get_guild(session, scope)
                if user is None or guild is None:
                    return False
                if user.is_bot_admin:
                    return True

                member = await get_member(session, actor, scope)
                if member is None:
                    return False
                if member.is_guild_admin:
                    return True

                # The three grants are independent; one round trip evaluates them all
                permission_id = select(Permission.id).where(Permission.name == permission).scalar_subquery()
                user_grant = exists().where(
                    user_permissions.c.user_id == user.id,
                    user_permissions.c.permission_id == permission_id,
                )
                guild_grant = exists().where(
                    guild_permissions.c.guild_id == guild.id,
                    guild_permissions.c.permission_id == permission_id,
                )
                member_grant = exists().where(
                    guild_member_permissions.c.guild_member_id == member.id,
                    guild_member_permissions.c.permission_id == permission_id,
                )
                row = (await session.execute(select(user_grant, guild_grant, member_grant))).one()
                return any(row)
        except Exception as e:
            logger.error("Error checking permission %s for %s in %s: %s", permission, actor, scope, e)
            return False

    async def require_permission(self, actor: EntityId, scope: EntityId, permission: str) -> None:
        if not await self.has_permission(actor, scope, permission):
            raise PermissionDenied(permission)

    async def is_bot_admin(self, actor: EntityId) -> bool:
        try:
            async with self.db.session() as session:
                user = await get_user(session, actor)
                return bool(user and user.is_bot_admin)
        except Exception as e:
            logger.error("Error checking bot admin status of %s: %s", actor, e)
            return False

    async def is_guild_admin(self, actor: EntityId, scope: EntityId) -> bool:
        try:
            async with self.db.session() as session:
                member = await get_member(session, actor, scope)
                return bool(member and member.is_guild_admin)
        except Exception as e:
            logger.error("Error checking guild admin status of %s in %s: %s", actor, scope, e)
            return False

    async def seed_default_permissions(self) -> int:
        return await PermissionOperations(self.db).seed_defaults()
