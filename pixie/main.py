"""
Entrypoint: `python -m pixie.main` or the `pixie` console script.
"""

import asyncio
import logging
import os
from typing import Any

from pixie.config.loader import get_config
from pixie.db.database import Database
from pixie.discord.client import PixieBot

if os.environ.get("DEBUG"):
    logging.basicConfig(level=logging.DEBUG)
    logging.getLogger("httpx").setLevel(logging.DEBUG)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s")


async def run_bot(config: dict[str, Any] | None = None) -> None:
    config = config or await asyncio.to_thread(get_config)
    db = Database.get_instance(config.get("database_url"))
    bot = PixieBot(config, db=db)
    async with bot:
        await bot.start(config["bot_token"])


def main() -> None:
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
