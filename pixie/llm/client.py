"""
AI orchestration client.

One `handle_message` call takes an incoming chat message through settings
resolution, history, the weather and web-search tool paths, the completion
itself and persistence of the exchange.
"""

from __future__ import annotations

import json
import logging
import re
import traceback
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from pixie.db.conversations import ConversationOperations
from pixie.db.database import Database
from pixie.db.guilds import DEFAULT_SETTINGS, GuildOperations
from pixie.db.identifiers import ExternalId
from pixie.db.logs import BotLogOperations
from pixie.db.validator import parse_allowed_channels

from .intent import IntentClassifier
from .prompts import PromptContext, build_system_prompt, search_results_message, weather_data_message
from .providers import PROVIDERS, BaseProvider, ChatMessage, ChatOptions, build_provider
from .tools.weather import WeatherSearch
from .tools.web_search import SearchResult, WebSearch

logger = logging.getLogger(__name__)

AI_DISABLED_NOTICE = (
    "AI features are currently disabled in this server. "
    "Please contact a server administrator to enable them."
)
CHANNEL_NOT_ALLOWED_NOTICE = (
    "I'm not allowed to respond in this channel. Please use one of the allowed channels "
    "or contact a server administrator to add this channel to the allowed list."
)
WEATHER_CLARIFICATION = (
    "I'd be happy to check the weather for you! Which city or location should I look up?"
)
WEATHER_NOT_FOUND = (
    "Sorry, I couldn't find weather information for \"{location}\". "
    "Please check the spelling or try a nearby city."
)
EMPTY_QUERY_PROMPT = "Hi there! How can I help you?"

MAX_STACK_LENGTH = 1000

_CREATOR_NAME_PATTERNS = (
    (re.compile(r"Code\s*Me\s*A\s*Pixel", re.I), "CodeMeAPixel"),
    (re.compile(r"Pixelated", re.I), "CodeMeAPixel"),
)


def strip_thinking(text: str) -> str:
    return re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL).strip()


def clean_fragment(text: str) -> str:
    """Canonicalize creator-name spellings without touching surrounding whitespace."""
    for pattern, replacement in _CREATOR_NAME_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def clean_response(text: str) -> str:
    if not text:
        return ""
    return clean_fragment(text).strip()


def strip_mention(content: str, bot_user_id: str | None) -> str:
    if not bot_user_id:
        return content.strip()
    return re.sub(rf"<@!?{re.escape(bot_user_id)}>\s*", "", content).strip()


def channel_allowed(allowed: list[str], channel_id: ExternalId) -> bool:
    return not allowed or "*" in allowed or channel_id.value in allowed


# ── Call inputs ─────────────────────────────────────────────────────────────

Callback = Callable[..., Awaitable[None]]


@dataclass
class ToolCallbacks:
    """Optional UI hooks; each fires at most once per handle_message call, in order."""

    search_started: Callback | None = None
    search_results: Callback | None = None
    weather_started: Callback | None = None


@dataclass
class IncomingMessage:
    content: str
    channel_id: ExternalId
    bot_user_id: str | None = None


@dataclass
class HandleOptions:
    # DM opt-ins; guild messages follow the guild settings
    enable_web_search: bool = False
    enable_weather: bool = False
    prompt_context: PromptContext | None = None
    callbacks: ToolCallbacks = field(default_factory=ToolCallbacks)


@dataclass
class EffectiveSettings:
    provider: str
    model: str | None
    temperature: float
    max_tokens: int
    max_conversation_length: int = 10
    enable_reasoning: bool = True
    enable_web_search: bool = False
    enable_weather: bool = False
    ai_enabled: bool = True
    allowed_channels: list[str] = field(default_factory=list)


class _Notifier:
    def __init__(self, callbacks: ToolCallbacks):
        self._callbacks = callbacks
        self._fired: set[str] = set()

    async def fire(self, name: str, *args: Any) -> None:
        callback = getattr(self._callbacks, name)
        if callback is None or name in self._fired:
            return
        self._fired.add(name)
        try:
            await callback(*args)
        except Exception as e:
            logger.warning("Notification %s failed: %s", name, e)


# ── Client ──────────────────────────────────────────────────────────────────

class AIClient:
    def __init__(
        self,
        provider_name: str = "openai",
        model_name: str | None = None,
        options: dict[str, Any] | None = None,
        *,
        db: Database | None = None,
        web_search: WebSearch | None = None,
        weather: WeatherSearch | None = None,
        provider_factory: Callable[[str, str | None], BaseProvider] | None = None,
    ):
        self.options = dict(options or {})
        self.provider_factory = provider_factory or (
            lambda name, model: build_provider(name, model, self.options.get("provider_options"))
        )
        # Fails fast on an unknown provider or model
        self.provider = self.provider_factory(provider_name, model_name)
        self.provider_name = provider_name
        self.model_name = model_name or PROVIDERS[provider_name].default_model

        db = db or Database.get_instance()
        self.conversations = ConversationOperations(db)
        self.guilds = GuildOperations(db)
        self.bot_log = BotLogOperations(db)
        self.web_search = web_search or WebSearch()
        self.weather = weather or WeatherSearch()

    # ── Settings ────────────────────────────────────────────────────────────

    async def resolve_settings(self, guild: ExternalId | None, options: HandleOptions) -> EffectiveSettings:
        if guild is None:
            return EffectiveSettings(
                provider=self.provider_name,
                model=self.model_name,
                temperature=self.options.get("temperature", 0.7),
                max_tokens=self.options.get("max_tokens", 1000),
                enable_web_search=options.enable_web_search,
                enable_weather=options.enable_weather,
            )

        stored = await self.guilds.get_settings(guild)
        values = {k: getattr(stored, k) for k in DEFAULT_SETTINGS} if stored else dict(DEFAULT_SETTINGS)
        return EffectiveSettings(
            provider=values["ai_provider"],
            model=values["ai_model"],
            temperature=values["temperature"],
            max_tokens=values["max_tokens"],
            max_conversation_length=values["max_conversation_length"],
            enable_reasoning=values["enable_reasoning"],
            enable_web_search=values["enable_web_search"],
            enable_weather=values["enable_weather"],
            ai_enabled=values["ai_enabled"],
            allowed_channels=parse_allowed_channels(values["allowed_channels"]),
        )

    def _provider_for(self, settings: EffectiveSettings) -> BaseProvider:
        if settings.provider == self.provider_name and settings.model == self.model_name:
            return self.provider
        return self.provider_factory(settings.provider, settings.model)

    # ── Streaming ───────────────────────────────────────────────────────────

    async def stream_response(
        self,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
        provider: BaseProvider | None = None,
    ) -> AsyncIterator[str]:
        try:
            async for content in (provider or self.provider).stream_chat(messages, options):
                cleaned = clean_fragment(content)
                if cleaned:
                    yield cleaned
        except Exception as e:
            logger.error("Error in stream_response: %s", e)
            raise

    async def complete(
        self,
        messages: list[ChatMessage],
        options: ChatOptions,
        provider: BaseProvider | None = None,
        enable_reasoning: bool = True,
    ) -> str:
        text = ""
        async for chunk in self.stream_response(messages, options, provider):
            text += chunk
        if not enable_reasoning:
            text = strip_thinking(text)
        return clean_response(text)

    # ── Message handling ────────────────────────────────────────────────────

    async def handle_message(
        self,
        message: IncomingMessage,
        user: ExternalId,
        guild: ExternalId | None = None,
        options: HandleOptions | None = None,
    ) -> str:
        options = options or HandleOptions()
        try:
            settings = await self.resolve_settings(guild, options)
            if guild is not None:
                if not settings.ai_enabled:
                    return AI_DISABLED_NOTICE
                if not channel_allowed(settings.allowed_channels, message.channel_id):
                    return CHANNEL_NOT_ALLOWED_NOTICE

            query = strip_mention(message.content, message.bot_user_id)
            if not query:
                return EMPTY_QUERY_PROMPT

            history = await self.conversations.get_recent_messages(
                user, message.channel_id, settings.max_conversation_length, guild_id=guild
            )

            provider = self._provider_for(settings)
            classifier = IntentClassifier(provider)
            notifier = _Notifier(options.callbacks)
            chat_options = ChatOptions(
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
                system=build_system_prompt(options.prompt_context),
            )

            if settings.enable_weather and await classifier.is_weather_query(query):
                response = await self._weather_flow(
                    query, history, classifier, provider, chat_options, settings, notifier
                )
                await self._persist(user, message.channel_id, guild, query, response)
                return response

            if settings.enable_web_search and await classifier.needs_web_search(query):
                response = await self._search_flow(
                    query, history, user, guild, message, provider, chat_options, settings, notifier
                )
                if response is not None:
                    await self._persist(user, message.channel_id, guild, query, response)
                    return response

            messages = [*history, {"role": "user", "content": query}]
            response = await self.complete(messages, chat_options, provider, settings.enable_reasoning)
            await self._persist(user, message.channel_id, guild, query, response)
            return response
        except Exception as e:
            await self._log_failure(e, user, guild, message.channel_id)
            raise

    async def _weather_flow(
        self,
        query: str,
        history: list[ChatMessage],
        classifier: IntentClassifier,
        provider: BaseProvider,
        chat_options: ChatOptions,
        settings: EffectiveSettings,
        notifier: _Notifier,
    ) -> str:
        await notifier.fire("weather_started")

        location = await classifier.extract_location(query)
        if not location:
            return WEATHER_CLARIFICATION

        report = await self.weather.get_current_weather(location)
        if report is None:
            return WEATHER_NOT_FOUND.format(location=location)

        messages = [
            *history,
            {"role": "system", "content": weather_data_message(json.dumps(report.to_prompt_data()))},
            {"role": "user", "content": query},
        ]
        return await self.complete(messages, chat_options, provider, settings.enable_reasoning)

    async def _search_flow(
        self,
        query: str,
        history: list[ChatMessage],
        user: ExternalId,
        guild: ExternalId | None,
        message: IncomingMessage,
        provider: BaseProvider,
        chat_options: ChatOptions,
        settings: EffectiveSettings,
        notifier: _Notifier,
    ) -> str | None:
        """Answer from search results; None when the search came back empty."""
        context = {"user_id": str(user), "guild_id": str(guild) if guild else None, "channel_id": str(message.channel_id)}
        await self.bot_log.write("info", "Web search started", {**context, "query": query})

        results: list[SearchResult] = await self.web_search.search(query)
        if not results:
            return None
        await self.bot_log.write("info", "Web search completed", {**context, "results_count": len(results)})

        await notifier.fire("search_started")
        messages = [
            *history,
            {"role": "system", "content": search_results_message([(r.title, r.snippet) for r in results])},
        ]
        await notifier.fire("search_results", results)
        messages.append({"role": "user", "content": query})
        return await self.complete(messages, chat_options, provider, settings.enable_reasoning)

    async def _persist(
        self, user: ExternalId, channel_id: ExternalId, guild: ExternalId | None, query: str, response: str
    ) -> None:
        await self.conversations.create_or_update_conversation(
            user,
            channel_id,
            [{"role": "user", "content": query}, {"role": "assistant", "content": response}],
            guild_id=guild,
        )

    async def _log_failure(
        self, error: Exception, user: ExternalId, guild: ExternalId | None, channel_id: ExternalId
    ) -> None:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        try:
            await self.bot_log.write(
                "error",
                f"Error in handle_message: {error}",
                {
                    "user_id": str(user),
                    "guild_id": str(guild) if guild else None,
                    "channel_id": str(channel_id),
                    "stack": stack[-MAX_STACK_LENGTH:],
                },
            )
        except Exception as log_error:
            logger.error("Could not record failure in bot log: %s", log_error)

    # ── Maintenance ─────────────────────────────────────────────────────────

    async def clear_conversation(
        self, user: ExternalId, channel_id: ExternalId, guild: ExternalId | None = None
    ) -> int:
        return await self.conversations.clear_conversation(user, channel_id, guild_id=guild)

    async def cleanup_old_conversations(self, days_old: int = 7) -> int:
        return await self.conversations.prune_stale_conversations(days_old)
