#!/usr/bin/env python3
"""
Start the GroupWarden bot.

Usage:
    python run_bot.py

Environment (or .env):
    - GROUPWARDEN_TELEGRAM_TOKEN
    - GROUPWARDEN_OPENAI__API_KEY (optional; without it the OpenAI check lets messages through)
    - GROUPWARDEN_MODERATION__ADMIN_CHAT_ID (optional; where review alerts go)
"""

import asyncio
import sys

from pydantic import ValidationError

from groupwarden import TelegramModerationApp
from groupwarden.config import BotSettings


def _load_settings() -> BotSettings:
    try:
        return BotSettings()
    except ValidationError as exc:
        sys.exit(f"Invalid configuration:\n{exc}")


async def _main(settings: BotSettings) -> None:
    await TelegramModerationApp(settings).run()


if __name__ == "__main__":
    try:
        asyncio.run(_main(_load_settings()))
    except KeyboardInterrupt:
        print("\nShutdown requested, bye.")
