"""
Gateway event handlers: messages and the guild lifecycle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from pixie.db.identifiers import ExternalId
from pixie.db.permissions import DEFAULT_PERMISSIONS

from .chat import ban_notice, denied_embed, handle_dm, handle_guild_message
from .errors import GENERIC_ERROR_REPLY, notify_admin_error

if TYPE_CHECKING:
    from .client import PixieBot

logger = logging.getLogger(__name__)

MEMBER_PERMISSIONS = ("use_ai",)
ADMIN_PERMISSIONS = ("use_ai", "manage_ai")


def is_platform_admin(member: discord.Member) -> bool:
    perms = member.guild_permissions
    return perms.administrator or perms.manage_guild or perms.manage_roles or perms.manage_channels


async def register_user(bot: "PixieBot", user: discord.abc.User) -> None:
    await bot.user_ops.upsert(
        ExternalId.of(user.id),
        username=user.name,
        discriminator=getattr(user, "discriminator", None),
        avatar=user.display_avatar.url if user.display_avatar else None,
    )


async def register_member(bot: "PixieBot", member: discord.Member) -> None:
    """Register a human member with the grants their role in the guild implies."""
    await register_user(bot, member)
    user_id = ExternalId.of(member.id)
    guild_id = ExternalId.of(member.guild.id)

    if member.id == member.guild.owner_id:
        await bot.member_ops.upsert(user_id, guild_id, is_guild_admin=True, permissions=DEFAULT_PERMISSIONS)
    elif is_platform_admin(member):
        await bot.member_ops.upsert(user_id, guild_id, is_guild_admin=True, permissions=ADMIN_PERMISSIONS)
    else:
        await bot.member_ops.upsert(user_id, guild_id, permissions=MEMBER_PERMISSIONS)


async def register_guild(bot: "PixieBot", guild: discord.Guild) -> None:
    guild_id = ExternalId.of(guild.id)
    await bot.guild_ops.upsert(guild_id, guild.name, guild.icon.key if guild.icon else None)
    await bot.permission_ops.seed_defaults()

    for channel in guild.text_channels:
        await bot.channel_ops.upsert(ExternalId.of(channel.id), guild_id, channel.name, "text", channel.is_nsfw())

    members = [m for m in guild.members if not m.bot]
    for member in members:
        await register_member(bot, member)
    logger.info("Registered guild %s (%s) with %d member(s)", guild.name, guild.id, len(members))


async def on_message(bot: "PixieBot", message: discord.Message) -> None:
    if message.author.bot:
        return

    logger.debug("Message received in channel %s (guild %s)", message.channel.id,
                  message.guild.id if message.guild else "none")
    try:
        await register_user(bot, message.author)

        ban = await bot.user_ops.active_ban(ExternalId.of(message.author.id))
        if ban is not None:
            await message.reply(embed=denied_embed(ban_notice(ban, bot.config.get("support_invite"))))
            return

        if message.guild is None:
            await handle_dm(bot, message)
        else:
            await handle_guild_message(bot, message)
    except Exception as e:
        logger.exception("Error in message handler: %s", e)
        await notify_admin_error(bot, bot.config, e, f"Message from {message.author.id} in {message.channel.id}")
        try:
            await message.reply(GENERIC_ERROR_REPLY, mention_author=False)
        except discord.HTTPException as reply_error:
            logger.warning("Could not send error reply: %s", reply_error)


async def on_guild_join(bot: "PixieBot", guild: discord.Guild) -> None:
    try:
        await register_guild(bot, guild)
        await bot.bot_log.write("info", "Joined guild", {"guild_id": str(guild.id), "name": guild.name})
    except Exception as e:
        logger.exception("Failed to register guild %s: %s", guild.id, e)
        await notify_admin_error(bot, bot.config, e, f"Guild join: {guild.id}")


async def on_guild_remove(bot: "PixieBot", guild: discord.Guild) -> None:
    try:
        if await bot.guild_ops.delete(ExternalId.of(guild.id)):
            logger.info("Removed guild %s (%s) and its data", guild.name, guild.id)
            await bot.bot_log.write("info", "Left guild", {"guild_id": str(guild.id), "name": guild.name})
    except Exception as e:
        logger.exception("Failed to delete guild %s: %s", guild.id, e)
        await notify_admin_error(bot, bot.config, e, f"Guild remove: {guild.id}")


async def on_member_join(bot: "PixieBot", member: discord.Member) -> None:
    if member.bot:
        return
    try:
        if await bot.guild_ops.get(ExternalId.of(member.guild.id)) is None:
            await register_guild(bot, member.guild)
            return
        await register_user(bot, member)
        await bot.member_ops.upsert(ExternalId.of(member.id), ExternalId.of(member.guild.id), permissions=MEMBER_PERMISSIONS)
    except Exception as e:
        logger.exception("Failed to register member %s in guild %s: %s", member.id, member.guild.id, e)


async def on_guild_channel_delete(bot: "PixieBot", channel: discord.abc.GuildChannel) -> None:
    try:
        if await bot.channel_ops.delete(ExternalId.of(channel.id), ExternalId.of(channel.guild.id)):
            logger.info("Removed channel %s (%s) and its conversations", channel.name, channel.id)
    except Exception as e:
        logger.exception("Failed to delete channel %s: %s", channel.id, e)
