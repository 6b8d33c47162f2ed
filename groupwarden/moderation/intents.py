from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..models import Actor, ChatIdentity, UserIdentity

# Telegram service account, anonymous group admin, channel bot, replies bot and the
# account that posts on behalf of linked channels. None of these can be moderated.
PROTECTED_USER_IDS = frozenset({777000, 1087968824, 136817688, 1271266957, 5434988373})

PROTECTED_ACCOUNT_MESSAGE = "Cannot perform moderation actions on Telegram system account (channel/anonymous posts)"

DEFAULT_DELETE_REASON = "Manual message deletion"


def is_protected(user_id: int) -> bool:
    return user_id in PROTECTED_USER_IDS


@dataclass(frozen=True, slots=True, kw_only=True)
class ModerationIntent:
    user: UserIdentity
    executor: Actor
    reason: str

    def __post_init__(self) -> None:
        if not self.reason or not self.reason.strip():
            raise ValueError(f"{type(self).__name__} requires a non-empty reason")


@dataclass(frozen=True, slots=True, kw_only=True)
class BanIntent(ModerationIntent):
    message_id: Optional[int] = None
    chat: Optional[ChatIdentity] = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncBanIntent(ModerationIntent):
    """Ban in one chat only; used to propagate an existing global ban to a newly joined chat."""

    chat: ChatIdentity
    message_id: Optional[int] = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TempBanIntent(ModerationIntent):
    duration: timedelta
    message_id: Optional[int] = None
    chat: Optional[ChatIdentity] = None

    def __post_init__(self) -> None:
        ModerationIntent.__post_init__(self)
        if self.duration <= timedelta(0):
            raise ValueError("TempBanIntent requires a positive duration")


@dataclass(frozen=True, slots=True, kw_only=True)
class UnbanIntent(ModerationIntent):
    restore_trust: bool = False
    chat: Optional[ChatIdentity] = None
    message_id: Optional[int] = None


@dataclass(frozen=True, slots=True, kw_only=True)
class WarnIntent(ModerationIntent):
    chat: Optional[ChatIdentity] = None
    message_id: Optional[int] = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TrustIntent(ModerationIntent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class UntrustIntent(ModerationIntent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class DeleteMessageIntent(ModerationIntent):
    chat: ChatIdentity
    message_id: int
    reason: str = DEFAULT_DELETE_REASON


@dataclass(frozen=True, slots=True, kw_only=True)
class RestrictIntent(ModerationIntent):
    """Mute a user. ``chat=None`` restricts across every managed chat."""

    duration: timedelta
    chat: Optional[ChatIdentity] = None
    message_id: Optional[int] = None

    def __post_init__(self) -> None:
        ModerationIntent.__post_init__(self)
        if self.duration <= timedelta(0):
            raise ValueError("RestrictIntent requires a positive duration")


@dataclass(frozen=True, slots=True, kw_only=True)
class RestorePermissionsIntent(ModerationIntent):
    chat: ChatIdentity


@dataclass(frozen=True, slots=True, kw_only=True)
class KickIntent(ModerationIntent):
    chat: ChatIdentity
    message_id: Optional[int] = None


@dataclass(frozen=True, slots=True, kw_only=True)
class MalwareViolationIntent(ModerationIntent):
    chat: ChatIdentity
    message_id: int
    malware_details: str


@dataclass(frozen=True, slots=True, kw_only=True)
class CriticalViolationIntent(ModerationIntent):
    chat: ChatIdentity
    message_id: int
    violations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class SpamBanIntent(ModerationIntent):
    chat: ChatIdentity
    message_id: int
    message_text: Optional[str] = None
    photo_path: Optional[str] = None
