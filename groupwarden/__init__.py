"""
GroupWarden core package.

Multi-check spam detection with a confidence-weighted verdict, plus a moderation
orchestrator that turns admin and automatic decisions into Telegram actions and
runs their side effects (audit, notifications, training data, cleanup).
"""

from .services.moderation_service import ModerationCoordinator
from .services.telegram_bot import TelegramModerationApp, telegram_app

__all__ = ["ModerationCoordinator", "TelegramModerationApp", "telegram_app"]
