"""
YAML configuration validator for config.yaml.

Validates structure, value ranges, and common misconfigurations. Secrets
are expected in the environment (.env) and only produce warnings here.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from apscheduler.triggers.cron import CronTrigger

from pixie.llm.providers import PROVIDERS

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def parse_cron(expr: str) -> dict[str, Any]:
    """Turn a 5-field crontab expression into APScheduler cron trigger kwargs."""
    parts = expr.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron: {expr}")
    minute, hour, day, month, dow = parts
    kwargs: dict[str, Any] = {"second": 0}
    if minute != "*": kwargs["minute"] = minute
    if hour != "*": kwargs["hour"] = hour
    if day != "*": kwargs["day"] = day
    if month != "*": kwargs["month"] = month
    if dow != "*": kwargs["day_of_week"] = dow
    return kwargs


def _is_snowflake(value: Any) -> bool:
    text = str(value).strip()
    return text.isdigit() and 17 <= len(text) <= 20


def validate_config(cfg: dict[str, Any], config_path: str = "config.yaml") -> None:
    """
    Validate a loaded config.yaml.

    Logs every problem found, then raises ConfigValidationError when at
    least one of them is an error. Warnings never fail validation.
    """
    errors: list[str] = []
    warnings: list[str] = []

    # ── Check root structure ────────────────────────────────────────────────
    if not isinstance(cfg, dict):
        errors.append(f"Config root must be a mapping, got {type(cfg).__name__}")
        cfg = {}

    # ── Discord credentials ─────────────────────────────────────────────────
    if not (cfg.get("bot_token") or os.getenv("DISCORD_TOKEN")):
        errors.append("Missing Discord token: set 'bot_token' or the DISCORD_TOKEN environment variable")

    if "client_id" in cfg and not _is_snowflake(cfg["client_id"]):
        errors.append(f"'client_id' must be a Discord ID, got {cfg['client_id']!r}")

    for key in ("status_message", "support_invite", "database_url"):
        if key in cfg and cfg[key] is not None and not isinstance(cfg[key], str):
            errors.append(f"'{key}' must be a string, got {type(cfg[key]).__name__}")

    # ── Default provider/model ──────────────────────────────────────────────
    provider = cfg.get("default_provider", "openai")
    if provider not in PROVIDERS:
        errors.append(
            f"'default_provider' must be one of {', '.join(PROVIDERS)}, got {provider!r}"
        )
    else:
        model = cfg.get("default_model")
        if model is not None and model not in PROVIDERS[provider].models:
            errors.append(f"'default_model' {model!r} is not offered by provider '{provider}'")

        credential_env = PROVIDERS[provider].provider.credential_env
        if not os.getenv(credential_env):
            warnings.append(f"{credential_env} is not set; the default provider '{provider}' will fail")

    if "temperature" in cfg:
        temperature = cfg["temperature"]
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or not 0 <= temperature <= 2:
            errors.append(f"'temperature' must be a number between 0 and 2, got {temperature!r}")

    if "max_tokens" in cfg:
        max_tokens = cfg["max_tokens"]
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 1:
            errors.append(f"'max_tokens' must be a positive integer, got {max_tokens!r}")

    # ── DM features ─────────────────────────────────────────────────────────
    if "dm" in cfg:
        dm = cfg["dm"]
        if not isinstance(dm, dict):
            errors.append(f"'dm' must be a mapping, got {type(dm).__name__}")
        else:
            for flag in ("enable_web_search", "enable_weather"):
                if flag in dm and not isinstance(dm[flag], bool):
                    errors.append(f"'dm.{flag}' must be true or false")
            if dm.get("enable_web_search") and not os.getenv("TAVILY_API_KEY"):
                warnings.append("'dm.enable_web_search' is on but TAVILY_API_KEY is not set")

    # ── Validate permissions section ───────────────────────────────────────
    if "permissions" in cfg:
        perms = cfg["permissions"]
        if not isinstance(perms, dict):
            errors.append(f"'permissions' must be a mapping, got {type(perms).__name__}")
        elif "bot_admin_ids" in perms:
            ids = perms["bot_admin_ids"]
            if not isinstance(ids, list):
                errors.append(
                    f"'permissions.bot_admin_ids' must be a list, got {type(ids).__name__}"
                )
            else:
                for admin_id in ids:
                    if not _is_snowflake(admin_id):
                        errors.append(f"'permissions.bot_admin_ids' contains an invalid Discord ID: {admin_id!r}")

    # ── Validate conversation cleanup job ──────────────────────────────────
    if "conversation_cleanup" in cfg:
        cleanup = cfg["conversation_cleanup"]
        if not isinstance(cleanup, dict):
            errors.append(
                f"'conversation_cleanup' must be a mapping, got {type(cleanup).__name__}"
            )
        elif cleanup.get("enabled"):
            cron = cleanup.get("cron")
            if not cron:
                errors.append("Enabled 'conversation_cleanup' missing required field: 'cron'")
            else:
                try:
                    CronTrigger(**parse_cron(str(cron)))
                except ValueError as e:
                    errors.append(f"'conversation_cleanup.cron' is not a valid cron expression: {e}")
            days_old = cleanup.get("days_old", 30)
            if isinstance(days_old, bool) or not isinstance(days_old, int) or days_old < 1:
                errors.append(f"'conversation_cleanup.days_old' must be a positive integer, got {days_old!r}")

    # ── Log warnings ────────────────────────────────────────────────────────
    for warning in warnings:
        logger.warning("Config warning: %s", warning)

    # ── Log errors and raise if any ─────────────────────────────────────────
    if errors:
        logger.error("=" * 70)
        logger.error("CONFIG VALIDATION FAILED (%s)", config_path)
        logger.error("=" * 70)
        for i, error in enumerate(errors, 1):
            logger.error("[%d] %s", i, error)
        logger.error("=" * 70)
        logger.error("Please fix the errors above and restart the bot.")
        logger.error("=" * 70)
        raise ConfigValidationError(f"Config validation failed with {len(errors)} error(s)")
