"""
Conversation store.

History is kept per (user, channel). Reads return a bounded context window:
the most recent "sessions" (runs of messages without a 30 minute pause) are
kept verbatim and anything older is folded into one leading system message
that carries a message count, the topics touched and the last questions
asked.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseOperations, get_guild, get_user, insert_if_absent
from .cascade import delete_cascade
from .channels import find_channel, resolve_channel
from .identifiers import EntityId, ExternalId
from .models import Conversation, Guild, Message, utcnow

logger = logging.getLogger(__name__)

SESSION_GAP = timedelta(minutes=30)
TOPIC_MIN_LENGTH = 6
TOPICS_PER_MESSAGE = 3
SUMMARY_QUESTIONS = 2
QUESTION_MAX_LENGTH = 100
STORED_ROLES = ("user", "assistant")

_WORD_RE = re.compile(r"[A-Za-z0-9']+")
_QUESTION_RE = re.compile(r"[^.!?\n]*\?")


class _Timed(Protocol):
    role: str
    content: str
    created_at: datetime


# ── Context window (pure) ───────────────────────────────────────────────────

def group_sessions(messages: Sequence[_Timed]) -> list[list[_Timed]]:
    """Split chronologically ordered messages wherever the gap exceeds SESSION_GAP."""
    groups: list[list[_Timed]] = []
    for msg in messages:
        if groups and msg.created_at - groups[-1][-1].created_at <= SESSION_GAP:
            groups[-1].append(msg)
        else:
            groups.append([msg])
    return groups


def extract_topics(messages: Sequence[_Timed]) -> list[str]:
    topics: list[str] = []
    for msg in messages:
        words = [w.lower() for w in _WORD_RE.findall(msg.content) if len(w) >= TOPIC_MIN_LENGTH]
        for word, _ in Counter(words).most_common(TOPICS_PER_MESSAGE):
            if word not in topics:
                topics.append(word)
    return topics


def extract_questions(messages: Sequence[_Timed]) -> list[str]:
    questions = [
        q.strip()[:QUESTION_MAX_LENGTH]
        for msg in messages
        for q in _QUESTION_RE.findall(msg.content)
        if q.strip() != "?"
    ]
    return questions[-SUMMARY_QUESTIONS:]


def summarize(messages: Sequence[_Timed]) -> str:
    parts = [f"Summary of {len(messages)} earlier messages in this conversation."]
    topics = extract_topics(messages)
    if topics:
        parts.append(f"Topics discussed: {', '.join(topics)}.")
    questions = extract_questions(messages)
    if questions:
        parts.append(f"Recent questions: {' | '.join(questions)}")
    return " ".join(parts)


def build_context(messages: Sequence[_Timed], limit: int) -> list[dict[str, str]]:
    """
    Bound chronologically ordered history to `limit` verbatim messages.

    Whole sessions are taken newest first while they fit. The newest session
    is always included, cut to its last `limit` messages when longer. The
    remainder becomes a single leading system summary.
    """
    if not messages or limit < 1:
        return []

    groups = group_sessions(messages)
    kept = list(groups.pop()[-limit:])
    while groups and len(kept) + len(groups[-1]) <= limit:
        kept = groups.pop() + kept

    older = messages[: len(messages) - len(kept)]
    context = [{"role": m.role, "content": m.content} for m in kept]
    if older:
        context.insert(0, {"role": "system", "content": summarize(older)})
    return context


def storable(messages: Sequence[dict[str, Any]]) -> list[dict[str, str]]:
    """Keep user/assistant turns with non-blank string content."""
    return [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if isinstance(m, dict)
        and m.get("role") in STORED_ROLES
        and isinstance(m.get("content"), str)
        and m["content"].strip()
    ]


# ── Persistence ─────────────────────────────────────────────────────────────

async def _scope_guild(session: AsyncSession, guild_id: ExternalId | None) -> Guild | None:
    return await get_guild(session, guild_id) if guild_id else None


async def find_conversation(
    session: AsyncSession, user_id: EntityId, channel_id: ExternalId, guild_id: ExternalId | None = None
) -> Conversation | None:
    user = await get_user(session, user_id)
    if user is None:
        return None
    channel = await find_channel(session, channel_id, await _scope_guild(session, guild_id))
    if channel is None:
        return None
    return await session.scalar(
        select(Conversation).where(Conversation.user_id == user.id, Conversation.channel_id == channel.id)
    )


class ConversationOperations(BaseOperations):
    entity = "conversation"

    async def find_by_user_and_channel(
        self, user_id: EntityId, channel_id: ExternalId, guild_id: ExternalId | None = None
    ) -> Conversation | None:
        return await self._run("find", lambda s: find_conversation(s, user_id, channel_id, guild_id))

    async def get_recent_messages(
        self,
        user_id: EntityId,
        channel_id: ExternalId,
        limit: int = 10,
        guild_id: ExternalId | None = None,
    ) -> list[dict[str, str]]:
        async def _recent(session: AsyncSession) -> list[dict[str, str]]:
            conversation = await find_conversation(session, user_id, channel_id, guild_id)
            if conversation is None:
                return []
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation.id)
                .order_by(Message.created_at, Message.id)
            )
            return build_context(list(result.scalars().all()), limit)

        return await self._run("read recent messages of", _recent)

    async def create_or_update_conversation(
        self,
        user_id: EntityId,
        channel_id: ExternalId,
        messages: Sequence[dict[str, Any]],
        guild_id: ExternalId | None = None,
    ) -> Conversation | None:
        """
        Append turns to the (user, channel) conversation.

        Returns None, writing nothing, when no turn is worth storing. The
        channel, the conversation and the messages are written atomically.
        """
        valid = storable(messages)
        if not valid:
            logger.debug("No valid messages to store")
            return None

        async def _write(session: AsyncSession) -> Conversation:
            user = self._require(await get_user(session, user_id), f"User {user_id}")
            channel = await resolve_channel(session, channel_id, await _scope_guild(session, guild_id))

            lookup = select(Conversation).where(
                Conversation.user_id == user.id, Conversation.channel_id == channel.id
            )
            conversation = await session.scalar(lookup)
            if conversation is None:
                await insert_if_absent(session, Conversation, user_id=user.id, channel_id=channel.id)
                conversation = await session.scalar(lookup)

            now = utcnow()
            session.add_all(
                Message(conversation_id=conversation.id, role=m["role"], content=m["content"], created_at=now)
                for m in valid
            )
            conversation.updated_at = now
            await session.flush()
            return conversation

        return await self._run("store", _write)

    async def clear_conversation(
        self, user_id: EntityId, channel_id: ExternalId, guild_id: ExternalId | None = None
    ) -> int:
        """Delete the messages of a conversation and keep the conversation. Returns messages removed."""

        async def _clear(session: AsyncSession) -> int:
            conversation = await find_conversation(session, user_id, channel_id, guild_id)
            if conversation is None:
                return 0
            result = await session.execute(delete(Message).where(Message.conversation_id == conversation.id))
            return result.rowcount

        return await self._run("clear", _clear)

    async def delete_conversation(self, conversation_id: int) -> bool:
        async def _delete(session: AsyncSession) -> bool:
            return await delete_cascade(session, Conversation, [conversation_id]) > 0

        return await self._run("delete", _delete)

    async def delete_user_conversations(self, user_id: EntityId) -> int:
        async def _delete(session: AsyncSession) -> int:
            user = await get_user(session, user_id)
            if user is None:
                return 0
            ids = (await session.execute(select(Conversation.id).where(Conversation.user_id == user.id))).scalars()
            return await delete_cascade(session, Conversation, ids.all())

        return await self._run("delete user conversations", _delete)

    async def delete_channel_conversations(self, channel_id: ExternalId, guild_id: ExternalId | None = None) -> int:
        async def _delete(session: AsyncSession) -> int:
            channel = await find_channel(session, channel_id, await _scope_guild(session, guild_id))
            if channel is None:
                return 0
            ids = (await session.execute(select(Conversation.id).where(Conversation.channel_id == channel.id))).scalars()
            return await delete_cascade(session, Conversation, ids.all())

        return await self._run("delete channel conversations", _delete)

    async def prune_stale_conversations(self, days_old: int = 30) -> int:
        """Delete conversations with no message newer than `days_old` days."""
        cutoff = utcnow() - timedelta(days=days_old)

        async def _prune(session: AsyncSession) -> int:
            last_message = (
                select(Message.conversation_id, func.max(Message.created_at).label("last_at"))
                .group_by(Message.conversation_id)
                .subquery()
            )
            stmt = (
                select(Conversation.id)
                .outerjoin(last_message, last_message.c.conversation_id == Conversation.id)
                .where(func.coalesce(last_message.c.last_at, Conversation.updated_at) < cutoff)
            )
            ids = (await session.execute(stmt)).scalars().all()
            return await delete_cascade(session, Conversation, ids)

        removed = await self._run("prune", _prune)
        if removed:
            logger.info("Pruned %d conversation(s) older than %d days", removed, days_old)
        return removed
