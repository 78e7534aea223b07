"""
Slash commands.

Commands declare what they need through `extras`: "permission" names the
permission checked in the guild, "cooldown" the per-user cooldown in seconds.
Both are enforced by the command tree's interaction check.
"""

import json
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.app_commands import Choice

from pixie.db.errors import NotFoundError
from pixie.db.identifiers import ExternalId
from pixie.db.models import utcnow
from pixie.db.validator import ValidationError, parse_allowed_channels
from pixie.llm.providers import PROVIDERS

from .events import register_member

if TYPE_CHECKING:
    from .client import PixieBot

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 15
EMBED_COLOR_PRIMARY = discord.Color.blurple()
PROVIDER_EMOJIS = {"openai": "🤖", "groq": "⚡", "ollama": "🦙"}
INVITE_PERMISSIONS = 412317191168
MAX_BAN_HOURS = 24 * 365


def invite_url(client_id: str | int) -> str:
    return f"https://discord.com/oauth2/authorize?client_id={client_id}&permissions={INVITE_PERMISSIONS}&scope=bot"


def _flag(value: bool) -> str:
    return "✅ Enabled" if value else "❌ Disabled"


def settings_embed(guild_name: str, settings) -> discord.Embed:
    channels = parse_allowed_channels(settings.allowed_channels)
    if not channels or "*" in channels:
        allowed = "All Channels"
    else:
        allowed = ", ".join(f"<#{c}>" for c in channels)

    embed = discord.Embed(title="Server Settings", description=f"Settings for {guild_name}", color=EMBED_COLOR_PRIMARY)
    embed.add_field(name="AI Status", value=_flag(settings.ai_enabled))
    embed.add_field(name="AI Provider", value=settings.ai_provider)
    embed.add_field(name="AI Model", value=settings.ai_model)
    embed.add_field(name="Max Tokens", value=str(settings.max_tokens))
    embed.add_field(name="Temperature", value=str(settings.temperature))
    embed.add_field(name="History Length", value=str(settings.max_conversation_length))
    embed.add_field(name="Allowed Channels", value=allowed)
    embed.add_field(name="Reasoning", value=_flag(settings.enable_reasoning))
    embed.add_field(name="Web Search", value=_flag(settings.enable_web_search))
    embed.add_field(name="Weather", value=_flag(settings.enable_weather))
    return embed


def models_table(provider: str) -> str:
    lines = ["Model             | Max Tokens | Temp", "------------------|------------|-----"]
    for spec in PROVIDERS[provider].models.values():
        name = spec.name.split("/")[-1]
        if len(name) > 16:
            name = name[:15] + "…"
        lines.append(f"{name:<17} | {spec.max_tokens:<10} | {spec.temperature}")
    return "```\n" + "\n".join(lines) + "\n```"


def parse_channel_list(raw: str) -> str:
    """Turn "*", "none" or a list of channel mentions/IDs into the stored JSON array."""
    raw = raw.strip()
    if raw.lower() in ("none", "all", ""):
        return "[]"
    if raw == "*":
        return json.dumps(["*"])
    ids = [part.strip("<#> ") for part in raw.replace(",", " ").split()]
    return json.dumps([i for i in ids if i])


def register_commands(bot: "PixieBot") -> None:
    tree = bot.tree

    settings_group = app_commands.Group(
        name="settings", description="View and manage your server settings", guild_only=True
    )

    @settings_group.command(name="view", description="View this server's settings")
    async def settings_view(interaction: discord.Interaction) -> None:
        settings = await bot.guild_ops.get_settings(ExternalId.of(interaction.guild_id))
        if settings is None:
            await interaction.response.send_message("This server is not registered yet.", ephemeral=True)
            return
        await interaction.response.send_message(embed=settings_embed(interaction.guild.name, settings))

    @settings_group.command(
        name="update", description="Change this server's AI settings", extras={"permission": "manage_ai"}
    )
    @app_commands.describe(
        ai_enabled="Turn AI replies on or off",
        provider="AI provider",
        model="Model offered by the provider",
        temperature="Sampling temperature (0-2)",
        max_tokens="Maximum reply length in tokens",
        history_length="Messages of history sent with each request",
        allowed_channels='Channels the bot answers in: mentions or IDs, "*" for all, "none" to reset',
        reasoning="Keep the model's reasoning in replies",
        web_search="Allow web searches",
        weather="Allow weather lookups",
    )
    @app_commands.choices(provider=[Choice(name=p, value=p) for p in PROVIDERS])
    async def settings_update(
        interaction: discord.Interaction,
        ai_enabled: Optional[bool] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[app_commands.Range[float, 0.0, 2.0]] = None,
        max_tokens: Optional[app_commands.Range[int, 1, 4096]] = None,
        history_length: Optional[app_commands.Range[int, 1, 50]] = None,
        allowed_channels: Optional[str] = None,
        reasoning: Optional[bool] = None,
        web_search: Optional[bool] = None,
        weather: Optional[bool] = None,
    ) -> None:
        changes = {
            "ai_enabled": ai_enabled,
            "ai_provider": provider,
            "ai_model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "max_conversation_length": history_length,
            "allowed_channels": parse_channel_list(allowed_channels) if allowed_channels is not None else None,
            "enable_reasoning": reasoning,
            "enable_web_search": web_search,
            "enable_weather": weather,
        }
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            await interaction.response.send_message("Nothing to update.", ephemeral=True)
            return

        try:
            settings = await bot.guild_ops.update_settings(ExternalId.of(interaction.guild_id), changes)
        except ValidationError as e:
            await interaction.response.send_message(
                "Invalid settings:\n" + "\n".join(f"• {r}" for r in e.reasons), ephemeral=True
            )
            return

        logger.info("Guild %s settings updated by %s: %s", interaction.guild_id, interaction.user.id, changes)
        await interaction.response.send_message(
            "✅ Settings updated.", embed=settings_embed(interaction.guild.name, settings), ephemeral=True
        )

    @settings_update.autocomplete("model")
    async def model_autocomplete(interaction: discord.Interaction, curr_str: str) -> list[Choice[str]]:
        provider = getattr(interaction.namespace, "provider", None)
        if provider not in PROVIDERS:
            settings = await bot.guild_ops.get_settings(ExternalId.of(interaction.guild_id))
            provider = settings.ai_provider if settings else "openai"
        choices = [Choice(name=m, value=m) for m in PROVIDERS[provider].models if curr_str.lower() in m.lower()]
        return choices[:25]

    tree.add_command(settings_group)

    moderation_group = app_commands.Group(
        name="moderation", description="Control who can use AI features in this server", guild_only=True
    )

    @moderation_group.command(
        name="ban", description="Ban a member from AI features in this server", extras={"permission": "manage_users"}
    )
    @app_commands.describe(
        member="Member to ban",
        reason="Why the member is banned",
        hours="Length of the ban in hours; permanent when left empty",
    )
    async def moderation_ban(
        interaction: discord.Interaction,
        member: discord.Member,
        reason: str,
        hours: Optional[app_commands.Range[int, 1, MAX_BAN_HOURS]] = None,
    ) -> None:
        if member.bot:
            await interaction.response.send_message("Bots cannot be banned.", ephemeral=True)
            return

        user_id = ExternalId.of(member.id)
        guild_id = ExternalId.of(interaction.guild_id)
        if await bot.member_ops.get(user_id, guild_id) is None:
            await register_member(bot, member)

        expires_at = utcnow() + timedelta(hours=hours) if hours else None
        try:
            await bot.member_ops.ban(user_id, guild_id, reason, expires_at)
        except ValidationError as e:
            await interaction.response.send_message("\n".join(f"• {r}" for r in e.reasons), ephemeral=True)
            return

        logger.info("Member %s banned in guild %s by %s", member.id, interaction.guild_id, interaction.user.id)
        await bot.bot_log.write("warning", "Member banned", {
            "user_id": str(member.id),
            "guild_id": str(interaction.guild_id),
            "moderator_id": str(interaction.user.id),
            "reason": reason[:100],
        })
        until = f"until {expires_at.strftime('%Y-%m-%d %H:%M UTC')}" if expires_at else "permanently"
        await interaction.response.send_message(
            f"🔨 {member.mention} is banned from AI features {until}.", ephemeral=True
        )

    @moderation_group.command(
        name="unban", description="Lift a member's ban in this server", extras={"permission": "manage_users"}
    )
    @app_commands.describe(member="Member to unban")
    async def moderation_unban(interaction: discord.Interaction, member: discord.Member) -> None:
        try:
            await bot.member_ops.unban(ExternalId.of(member.id), ExternalId.of(interaction.guild_id))
        except NotFoundError:
            await interaction.response.send_message(f"{member.mention} is not registered in this server.", ephemeral=True)
            return

        logger.info("Member %s unbanned in guild %s by %s", member.id, interaction.guild_id, interaction.user.id)
        await interaction.response.send_message(f"✅ {member.mention} can use AI features again.", ephemeral=True)

    tree.add_command(moderation_group)

    @tree.command(name="models", description="View the supported AI providers and models")
    async def models_command(interaction: discord.Interaction) -> None:
        embed = discord.Embed(
            title="🌐 Supported AI Providers & Models",
            description="Here are all the **providers** and **models** I can use right now:",
            color=EMBED_COLOR_PRIMARY,
        )
        for provider in PROVIDERS:
            embed.add_field(
                name=f"{PROVIDER_EMOJIS.get(provider, '✨')} {provider.capitalize()}",
                value=models_table(provider),
                inline=False,
            )
        await interaction.response.send_message(embed=embed)

    @tree.command(name="clear", description="Clear your conversation history in this channel")
    async def clear_command(interaction: discord.Interaction) -> None:
        guild = ExternalId.of(interaction.guild_id) if interaction.guild_id else None
        removed = await bot.ai_client.clear_conversation(
            ExternalId.of(interaction.user.id), ExternalId.of(interaction.channel_id), guild
        )
        await interaction.response.send_message(
            "✅ Conversation history cleared. Starting fresh!", ephemeral=True
        )
        logger.info("Conversation cleared by %s in %s (%d removed)", interaction.user.id, interaction.channel_id, removed)

    @tree.command(name="invite", description="Get the invite link for the bot")
    async def invite_command(interaction: discord.Interaction) -> None:
        client_id = bot.config.get("client_id") or (bot.user.id if bot.user else None)
        embed = discord.Embed(
            title="Woah, you want to invite me?",
            description="Hey there, thanks for wanting to invite me to your server!",
            color=EMBED_COLOR_PRIMARY,
        )
        embed.add_field(name="Invite Link", value=f"[Click here to invite me to your server]({invite_url(client_id)})")
        await interaction.response.send_message(embed=embed)
