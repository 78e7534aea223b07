"""
The Discord client: wiring of data operations, the AI client, the command
tree and scheduled maintenance.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from discord import app_commands
from discord.ext import commands

from pixie.auth.resolver import PermissionResolver
from pixie.config.validator import parse_cron
from pixie.db.channels import ChannelOperations
from pixie.db.database import Database
from pixie.db.guilds import GuildMemberOperations, GuildOperations
from pixie.db.identifiers import ExternalId
from pixie.db.logs import BotLogOperations
from pixie.db.permissions import PermissionOperations
from pixie.db.users import UserOperations
from pixie.llm.client import AIClient

from . import events
from .chat import ban_notice, denied_embed
from .commands import DEFAULT_COOLDOWN_SECONDS, invite_url, register_commands
from .errors import handle_app_command_error

logger = logging.getLogger(__name__)

EMBED_COLOR_COOLDOWN = discord.Color.orange()


class CooldownTable:
    """Per-user, per-command cooldowns kept in memory."""

    def __init__(self) -> None:
        self._until: dict[tuple[int, str], float] = {}

    def __len__(self) -> int:
        return len(self._until)

    def remaining(self, user_id: int, command: str) -> float:
        until = self._until.get((user_id, command))
        if until is None:
            return 0.0
        left = until - time.monotonic()
        if left <= 0:
            del self._until[(user_id, command)]
            return 0.0
        return left

    def start(self, user_id: int, command: str, seconds: float) -> None:
        now = time.monotonic()
        # Only live cooldowns are kept
        self._until = {key: until for key, until in self._until.items() if until > now}
        self._until[(user_id, command)] = now + seconds


class PixieCommandTree(app_commands.CommandTree):
    """Command tree whose interaction check gates every slash command."""

    def __init__(self, client: "PixieBot", **kwargs: Any):
        super().__init__(client, **kwargs)
        self.cooldowns = CooldownTable()

    async def _deny(self, interaction: discord.Interaction, embed: discord.Embed) -> bool:
        await interaction.response.send_message(embed=embed, ephemeral=True)
        return False

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        bot: PixieBot = interaction.client  # type: ignore[assignment]
        command = interaction.command
        if command is None:
            return True

        await events.register_user(bot, interaction.user)
        user_id = ExternalId.of(interaction.user.id)
        invite = bot.config.get("support_invite")

        ban = await bot.user_ops.active_ban(user_id)
        if ban is not None:
            return await self._deny(interaction, denied_embed(ban_notice(ban, invite)))

        if interaction.guild_id:
            guild_id = ExternalId.of(interaction.guild_id)
            ban = await bot.guild_ops.active_ban(guild_id)
            if ban is not None:
                return await self._deny(interaction, denied_embed(ban_notice(ban, invite, "This server is")))

            ban = await bot.member_ops.active_ban(user_id, guild_id)
            if ban is not None:
                return await self._deny(interaction, denied_embed(ban_notice(ban, invite)))

            permission = command.extras.get("permission")
            if permission and not await bot.resolver.has_permission(user_id, guild_id, permission):
                embed = denied_embed(
                    "You do not have the required permissions to use this command.", title="Missing Permissions"
                )
                embed.add_field(name="Required Permissions", value=permission)
                return await self._deny(interaction, embed)

        name = command.qualified_name
        left = self.cooldowns.remaining(interaction.user.id, name)
        if left > 0:
            embed = discord.Embed(
                title="Command on Cooldown",
                description=f"Please wait {left:.1f} seconds before using this command again.",
                color=EMBED_COLOR_COOLDOWN,
            )
            return await self._deny(interaction, embed)
        self.cooldowns.start(interaction.user.id, name, command.extras.get("cooldown", DEFAULT_COOLDOWN_SECONDS))
        return True


class PixieBot(commands.Bot):
    def __init__(self, config: dict[str, Any], db: Database | None = None, ai_client: AIClient | None = None):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
        intents.members = True
        activity = discord.CustomActivity(name=(config.get("status_message") or "github.com/CodeMeAPixel")[:128])
        super().__init__(
            command_prefix=None,
            intents=intents,
            activity=activity,
            tree_cls=PixieCommandTree,
        )

        self.config = config
        self.db = db or Database.get_instance(config.get("database_url"))
        self.user_ops = UserOperations(self.db)
        self.guild_ops = GuildOperations(self.db)
        self.member_ops = GuildMemberOperations(self.db)
        self.channel_ops = ChannelOperations(self.db)
        self.permission_ops = PermissionOperations(self.db)
        self.bot_log = BotLogOperations(self.db)
        self.resolver = PermissionResolver(self.db)
        self.ai_client = ai_client or AIClient(
            config.get("default_provider", "openai"),
            config.get("default_model"),
            {"temperature": config.get("temperature", 0.7), "max_tokens": config.get("max_tokens", 1000)},
            db=self.db,
        )
        self.scheduler = AsyncIOScheduler()

        self.tree.error(self.on_app_command_error)
        register_commands(self)

    async def on_app_command_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await handle_app_command_error(interaction, error, self, self.config)

    async def setup_hook(self) -> None:
        if not await self.db.connect():
            raise RuntimeError("Could not connect to the database")
        await self.db.create_tables()
        await self.resolver.seed_default_permissions()
        for admin_id in (self.config.get("permissions") or {}).get("bot_admin_ids") or []:
            user_id = ExternalId.of(admin_id)
            user = await self.user_ops.get(user_id)
            if user is None:
                await self.user_ops.upsert(user_id, is_bot_admin=True)
            elif not user.is_bot_admin:
                await self.user_ops.set_bot_admin(user_id, True)

    async def close(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await super().close()
        await self.db.disconnect()

    # ── Scheduled maintenance ───────────────────────────────────────────────

    async def run_conversation_cleanup(self, days_old: int) -> None:
        try:
            removed = await self.ai_client.cleanup_old_conversations(days_old)
            logger.info("Conversation cleanup removed %d stale conversation(s)", removed)
            await self.bot_log.write("info", "Conversation cleanup completed", {"removed": removed, "days_old": days_old})
        except Exception as e:
            logger.error("Conversation cleanup failed: %s", e)

    def setup_scheduled_tasks(self) -> None:
        cleanup = self.config.get("conversation_cleanup") or {}
        if not cleanup.get("enabled"):
            return
        try:
            self.scheduler.add_job(
                self.run_conversation_cleanup,
                "cron",
                id="conversation_cleanup",
                replace_existing=True,
                args=[cleanup.get("days_old", 30)],
                **parse_cron(cleanup.get("cron", "0 4 * * *")),
            )
            logger.info("Scheduled conversation cleanup: %s", cleanup.get("cron", "0 4 * * *"))
        except Exception as e:
            logger.error("Failed to setup conversation cleanup: %s", e)

    # ── Events ──────────────────────────────────────────────────────────────

    async def on_ready(self) -> None:
        client_id = self.config.get("client_id") or (self.user.id if self.user else None)
        if client_id:
            logger.info(f"\n\nBOT INVITE URL:\n{invite_url(client_id)}\n")
        await self.tree.sync()
        logger.info(f"Synced {len(self.tree.get_commands())} slash commands")

        for guild in self.guilds:
            if await self.guild_ops.get(ExternalId.of(guild.id)) is None:
                await events.register_guild(self, guild)

        if not self.scheduler.running:
            self.scheduler.start()
            self.setup_scheduled_tasks()
            logger.info("Scheduler started")

    async def on_message(self, message: discord.Message) -> None:
        await events.on_message(self, message)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await events.on_guild_join(self, guild)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        await events.on_guild_remove(self, guild)

    async def on_member_join(self, member: discord.Member) -> None:
        await events.on_member_join(self, member)

    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        await events.on_guild_channel_delete(self, channel)
