"""
Boundary validation for values written to the database.

Each `validate_*` function returns the list of problems found (empty when
the input is fine). `ensure_valid` turns a non-empty list into a
`ValidationError` so callers can choose between reporting and raising.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from pixie.llm.providers import PROVIDERS

from .models import utcnow

CHANNEL_TYPES = ("text", "voice", "DM")

SETTING_KEYS = {
    "ai_enabled",
    "ai_provider",
    "ai_model",
    "temperature",
    "max_tokens",
    "max_conversation_length",
    "allowed_channels",
    "enable_reasoning",
    "enable_web_search",
    "enable_weather",
}


class ValidationError(ValueError):
    """Input rejected at a data boundary; `reasons` lists every problem found."""

    def __init__(self, reasons: Iterable[str]):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "Validation failed")


def ensure_valid(reasons: list[str]) -> None:
    if reasons:
        raise ValidationError(reasons)


def parse_allowed_channels(raw: str | None) -> list[str]:
    """Decode the stored allow-list. Malformed JSON reads as an empty list."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    return [str(c) for c in parsed]


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_guild_settings(settings: dict[str, Any], current_provider: str | None = None) -> list[str]:
    """
    Check a partial settings update.

    `current_provider` is the provider already stored for the guild; a model
    change is checked against the new provider when one is given, otherwise
    against this one.
    """
    errors: list[str] = []

    unknown = sorted(set(settings) - SETTING_KEYS)
    if unknown:
        errors.append(f"Unknown settings: {', '.join(unknown)}")

    provider = settings.get("ai_provider", current_provider)
    if "ai_provider" in settings and provider not in PROVIDERS:
        errors.append(f"Invalid AI provider. Must be one of: {', '.join(PROVIDERS)}")

    if settings.get("ai_model") is not None:
        model = settings["ai_model"]
        if provider in PROVIDERS:
            valid = list(PROVIDERS[provider].models)
        else:
            valid = [m for spec in PROVIDERS.values() for m in spec.models]
        if model not in valid:
            errors.append(f"Invalid AI model. Must be one of: {', '.join(valid)}")

    max_tokens = settings.get("max_tokens")
    if max_tokens is not None and (
        isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or not 1 <= max_tokens <= 4096
    ):
        errors.append("Max tokens must be between 1 and 4096")

    temperature = settings.get("temperature")
    if temperature is not None and (
        isinstance(temperature, bool)
        or not isinstance(temperature, (int, float))
        or not 0 <= temperature <= 2
    ):
        errors.append("Temperature must be between 0 and 2")

    history = settings.get("max_conversation_length")
    if history is not None and (
        isinstance(history, bool) or not isinstance(history, int) or not 1 <= history <= 50
    ):
        errors.append("Max conversation length must be between 1 and 50")

    allowed = settings.get("allowed_channels")
    if allowed is not None:
        try:
            if not isinstance(json.loads(allowed), list):
                errors.append("Allowed channels must be a valid JSON array string")
        except (TypeError, ValueError):
            errors.append("Allowed channels must be a valid JSON array string")

    for flag in ("ai_enabled", "enable_reasoning", "enable_web_search", "enable_weather"):
        if flag in settings and not isinstance(settings[flag], bool):
            errors.append(f"{flag} must be true or false")

    return errors


def validate_ban(is_banned: bool, reason: str | None, expires_at: Any = None) -> list[str]:
    errors: list[str] = []
    if is_banned and not reason:
        errors.append("Ban reason is required when banning")
    if expires_at is not None:
        expiry = parse_datetime(expires_at)
        if expiry is None:
            errors.append("Invalid ban expiration date")
        elif expiry < utcnow():
            errors.append("Ban expiration date must be in the future")
    return errors


def validate_channel(name: Any, channel_type: Any) -> list[str]:
    errors: list[str] = []
    if not name or not isinstance(name, str):
        errors.append("Channel name is required")
    if channel_type not in CHANNEL_TYPES:
        errors.append("Invalid channel type")
    return errors
