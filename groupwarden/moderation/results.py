from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .intents import PROTECTED_ACCOUNT_MESSAGE


class ModerationError(Exception):
    pass


class ProtectedAccount(ModerationError):
    def __init__(self, user_id: int) -> None:
        super().__init__(PROTECTED_ACCOUNT_MESSAGE)
        self.user_id = user_id


class HandlerFailure(ModerationError):
    """Raised inside a handler to abort with a failed result carrying the message."""


class SideEffectFailure(ModerationError):
    def __init__(self, handler: str, error: BaseException) -> None:
        super().__init__(f"{handler}: {error}")
        self.handler = handler
        self.error = error


@dataclass(slots=True)
class ModerationResult:
    success: bool
    error_message: Optional[str] = None
    message_deleted: bool = False
    trust_removed: bool = False
    trust_restored: bool = False
    chats_affected: int = 0
    warning_count: int = 0
    auto_ban_triggered: bool = False

    @classmethod
    def failure(cls, error_message: Optional[str]) -> "ModerationResult":
        return cls(success=False, error_message=error_message or "Moderation action failed")

    @classmethod
    def protected(cls, error: ProtectedAccount) -> "ModerationResult":
        return cls(success=False, error_message=str(error))


@dataclass(slots=True, kw_only=True)
class HandlerResult:
    success: bool = True
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, error_message: str):
        return cls(success=False, error_message=error_message)


@dataclass(slots=True, kw_only=True)
class BanResult(HandlerResult):
    chats_affected: int = 0
    chats_failed: int = 0
    should_revoke_trust: bool = True


@dataclass(slots=True, kw_only=True)
class TempBanResult(HandlerResult):
    chats_affected: int = 0
    expires_at: Optional[datetime] = None


@dataclass(slots=True, kw_only=True)
class UnbanResult(HandlerResult):
    chats_affected: int = 0


@dataclass(slots=True, kw_only=True)
class WarnResult(HandlerResult):
    warning_count: int = 0


@dataclass(slots=True, kw_only=True)
class TrustResult(HandlerResult):
    pass


@dataclass(slots=True, kw_only=True)
class DeleteResult(HandlerResult):
    message_deleted: bool = False


@dataclass(slots=True, kw_only=True)
class RestrictResult(HandlerResult):
    chats_affected: int = 0
    expires_at: Optional[datetime] = None


@dataclass(slots=True, kw_only=True)
class SpamBanResult(HandlerResult):
    message_deleted: bool = False
    chats_affected: int = 0
    trust_removed: bool = False


@dataclass(slots=True, kw_only=True)
class ViolationResult(HandlerResult):
    message_deleted: bool = False
    details: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class KickResult(HandlerResult):
    pass


@dataclass(slots=True, kw_only=True)
class RestorePermissionsResult(HandlerResult):
    pass
