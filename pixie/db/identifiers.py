"""
Tagged identifiers.

Discord hands us snowflakes; the database hands us integer primary keys.
Both travel through the same call sites (permission checks, membership
lookups), so they are wrapped in distinct types instead of being told apart
by their string shape.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")


@dataclass(frozen=True)
class ExternalId:
    """A Discord snowflake (user, guild or channel)."""

    value: str

    def __post_init__(self) -> None:
        cleaned = str(self.value).strip()
        if not cleaned:
            raise ValueError("Discord ID cannot be empty")
        if not _SNOWFLAKE_RE.match(cleaned):
            raise ValueError(f"Invalid Discord ID format: {self.value!r}")
        object.__setattr__(self, "value", cleaned)

    @classmethod
    def of(cls, snowflake: int | str) -> "ExternalId":
        return cls(str(snowflake))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class InternalId:
    """A database primary key."""

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 1:
            raise ValueError(f"Invalid internal ID: {self.value!r}")

    def __str__(self) -> str:
        return str(self.value)


EntityId = Union[ExternalId, InternalId]
