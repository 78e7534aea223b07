"""Append-only operational log stored in the database."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseOperations
from .models import BotLog

logger = logging.getLogger(__name__)

MAX_METADATA_LENGTH = 4000
LOG_LEVELS = ("debug", "info", "warning", "error")


def encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    encoded = json.dumps(metadata, default=str)
    if len(encoded) > MAX_METADATA_LENGTH:
        encoded = encoded[: MAX_METADATA_LENGTH - 3] + "..."
    return encoded


class BotLogOperations(BaseOperations):
    entity = "bot log"

    async def write(self, level: str, message: str, metadata: dict[str, Any] | None = None) -> BotLog:
        if level not in LOG_LEVELS:
            level = "info"
        entry = BotLog(level=level, message=message, metadata_json=encode_metadata(metadata))

        async def _write(session: AsyncSession) -> BotLog:
            session.add(entry)
            await session.flush()
            return entry

        return await self._run("write", _write)

    async def recent(self, limit: int = 50, level: str | None = None) -> list[BotLog]:
        async def _list(session: AsyncSession) -> list[BotLog]:
            stmt = select(BotLog).order_by(BotLog.created_at.desc(), BotLog.id.desc()).limit(limit)
            if level:
                stmt = stmt.where(BotLog.level == level)
            return list((await session.execute(stmt)).scalars().all())

        return await self._run("list", _list)
