from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

import discord

from pixie.llm.errors import parse_error_message

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "An unexpected error occurred. Please try again later."


def admin_ids(config: dict[str, Any]) -> list[int]:
    ids = (config.get("permissions") or {}).get("bot_admin_ids") or []
    return [int(i) for i in ids]


async def notify_admin_error(
    discord_bot: discord.Client,
    config: dict[str, Any],
    error: Exception,
    context: str = "",
) -> None:
    """
    Send a concise error notification to all configured bot admins.
    """
    try:
        ids = admin_ids(config)
        if not ids:
            return

        msg = (
            "🤖 **Bot Error Notification**\n"
            f"⏰ Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"📝 Context: {context}\n\nError: {parse_error_message(error)}"
        )
        for admin_id in ids:
            try:
                user = discord_bot.get_user(admin_id) or await discord_bot.fetch_user(admin_id)
                await user.send(msg)
            except discord.DiscordException as e:
                logger.warning("Could not notify admin %s: %s", admin_id, e)
    except Exception as e:  # noqa: BLE001
        logger.warning("Failed to notify admins: %s", e)


async def handle_app_command_error(
    interaction: discord.Interaction,
    error: Exception,
    discord_bot: discord.Client,
    config: dict[str, Any],
) -> None:
    """
    Standard handler for slash command errors.
    """
    if isinstance(error, discord.app_commands.CheckFailure):
        # The interaction check already answered the user
        logger.debug("App command check failed: %s", error)
        return

    logger.exception("App command error: %s", error)
    await notify_admin_error(
        discord_bot,
        config,
        error,
        f"App command error: {getattr(interaction.command, 'name', 'unknown')}",
    )
    try:
        if not interaction.response.is_done():
            await interaction.response.send_message(GENERIC_ERROR_REPLY, ephemeral=True)
        else:
            await interaction.followup.send(GENERIC_ERROR_REPLY, ephemeral=True)
    except discord.DiscordException as e:
        logger.warning("Could not report command error to the user: %s", e)
