from .moderation_service import ModerationCoordinator, build_engine, build_orchestrator
from .telegram_bot import TelegramModerationApp, telegram_app

__all__ = ["ModerationCoordinator", "TelegramModerationApp", "build_engine", "build_orchestrator", "telegram_app"]
