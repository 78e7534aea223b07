"""
Chat handlers for direct messages and guild messages.

Both paths run the AI client under a typing indicator and report tool
progress through a single status reply that is later replaced by the answer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import discord

from pixie.db.base import BanInfo
from pixie.db.identifiers import ExternalId
from pixie.llm.client import HandleOptions, IncomingMessage, ToolCallbacks
from pixie.llm.prompts import PromptContext

if TYPE_CHECKING:
    from .client import PixieBot

logger = logging.getLogger(__name__)

TYPING_REFRESH_SECONDS = 9
MAX_MESSAGE_LENGTH = 2000
EMBED_COLOR_DENIED = discord.Color.red()

SEARCHING_STATUS = "🔍 Searching online sources for relevant information..."
ANALYZING_STATUS = "💭 Analyzing online information..."
WEATHER_STATUS = "🌤️ Checking the weather..."
NO_PERMISSION_REPLY = "You do not have permission to use AI features in this server."


class TypingIndicator:
    """Keep the typing indicator alive until the block exits."""

    def __init__(self, channel: discord.abc.Messageable, interval: float = TYPING_REFRESH_SECONDS):
        self.channel = channel
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def _refresh(self) -> None:
        while True:
            try:
                await self.channel.typing()
            except discord.HTTPException as e:
                logger.debug("Typing indicator failed: %s", e)
            await asyncio.sleep(self.interval)

    async def __aenter__(self) -> "TypingIndicator":
        self._task = asyncio.create_task(self._refresh())
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


def ban_notice(ban: BanInfo, support_invite: str | None = None, subject: str = "You are") -> str:
    if ban.expires_at is not None:
        text = f"{subject} banned until {ban.expires_at.strftime('%Y-%m-%d %H:%M UTC')}"
    else:
        text = f"{subject} permanently banned."
    if support_invite:
        text += f"\n\nIf you believe this is a mistake, please join our support server: {support_invite}"
    return text


def denied_embed(description: str, title: str = "Access Denied") -> discord.Embed:
    return discord.Embed(title=title, description=description, color=EMBED_COLOR_DENIED)


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into Discord-sized chunks, preferring line then word boundaries."""
    text = text.strip()
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = text.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut].rstrip())
        text = text[cut:].lstrip()
    if text:
        chunks.append(text)
    return chunks


class StatusReply:
    """One reply to the triggering message, first used for progress then for the answer."""

    def __init__(self, source: discord.Message):
        self.source = source
        self.sent: discord.Message | None = None

    async def show(self, text: str) -> None:
        if self.sent is None:
            self.sent = await self.source.reply(text, mention_author=False)
        else:
            await self.sent.edit(content=text)

    async def update(self, text: str) -> None:
        if self.sent is not None:
            await self.sent.edit(content=text)

    async def deliver(self, response: str) -> None:
        chunks = split_message(response)
        if not chunks:
            return
        if self.sent is not None:
            await self.sent.edit(content=chunks[0])
        else:
            self.sent = await self.source.reply(chunks[0], mention_author=False)
        for chunk in chunks[1:]:
            await self.source.channel.send(chunk)

    def callbacks(self) -> ToolCallbacks:
        async def search_started() -> None:
            await self.show(SEARCHING_STATUS)

        async def search_results(results: list[Any]) -> None:
            await self.update(ANALYZING_STATUS)

        async def weather_started() -> None:
            await self.show(WEATHER_STATUS)

        return ToolCallbacks(
            search_started=search_started,
            search_results=search_results,
            weather_started=weather_started,
        )


def prompt_context_for(message: discord.Message) -> PromptContext:
    author = message.author
    ctx = PromptContext(
        user_id=str(author.id),
        username=author.name,
        discriminator=getattr(author, "discriminator", None),
        channel_id=str(message.channel.id),
    )
    if message.guild is None:
        return ctx

    roles = getattr(author, "roles", [])
    ctx.role_ids = [str(r.id) for r in roles if not r.is_default()]
    ctx.channel_topic = getattr(message.channel, "topic", None)
    ctx.nsfw = bool(getattr(message.channel, "nsfw", False))
    ctx.guild_name = message.guild.name
    ctx.member_count = message.guild.member_count
    ctx.channel_count = len(message.guild.channels)
    return ctx


async def is_directed_at_bot(message: discord.Message, bot_user: discord.ClientUser) -> bool:
    if bot_user in message.mentions:
        return True
    ref = message.reference
    if ref is None or ref.message_id is None:
        return False
    replied = ref.resolved if isinstance(ref.resolved, discord.Message) else None
    if replied is None:
        try:
            replied = await message.channel.fetch_message(ref.message_id)
        except discord.HTTPException:
            return False
    return replied.author.id == bot_user.id


async def _run_ai(bot: "PixieBot", message: discord.Message, guild: ExternalId | None, options: HandleOptions) -> None:
    status = StatusReply(message)
    options.callbacks = status.callbacks()
    options.prompt_context = prompt_context_for(message)
    incoming = IncomingMessage(
        content=message.content,
        channel_id=ExternalId.of(message.channel.id),
        bot_user_id=str(bot.user.id) if bot.user else None,
    )
    async with TypingIndicator(message.channel):
        response = await bot.ai_client.handle_message(incoming, ExternalId.of(message.author.id), guild, options)
    if response and response.strip():
        await status.deliver(response)


async def handle_dm(bot: "PixieBot", message: discord.Message) -> None:
    dm = bot.config.get("dm") or {}
    await bot.bot_log.write("info", "DM message received", {
        "user_id": str(message.author.id),
        "channel_id": str(message.channel.id),
    })
    options = HandleOptions(
        enable_web_search=bool(dm.get("enable_web_search", False)),
        enable_weather=bool(dm.get("enable_weather", False)),
    )
    await _run_ai(bot, message, None, options)


async def handle_guild_message(bot: "PixieBot", message: discord.Message) -> None:
    if bot.user is None or not await is_directed_at_bot(message, bot.user):
        logger.debug("Message %s not directed at bot, ignoring", message.id)
        return

    guild_id = ExternalId.of(message.guild.id)
    author_id = ExternalId.of(message.author.id)
    await bot.bot_log.write("info", "Guild message received", {
        "user_id": str(author_id),
        "guild_id": str(guild_id),
        "channel_id": str(message.channel.id),
    })

    ban = await bot.guild_ops.active_ban(guild_id)
    if ban is not None:
        await bot.bot_log.write("warning", "Banned guild attempted access", {
            "guild_id": str(guild_id),
            "reason": (ban.reason or "")[:100],
        })
        await message.reply(embed=denied_embed(ban_notice(ban, bot.config.get("support_invite"), "This server is")))
        return

    ban = await bot.member_ops.active_ban(author_id, guild_id)
    if ban is not None:
        await message.reply(embed=denied_embed(ban_notice(ban, bot.config.get("support_invite"))))
        return

    if not await bot.resolver.has_permission(author_id, guild_id, "use_ai"):
        await message.reply(NO_PERMISSION_REPLY)
        return

    await _run_ai(bot, message, guild_id, HandleOptions())
