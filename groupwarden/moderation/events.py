from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Optional

from ..models import Actor, ChatIdentity, UserIdentity
from .results import SideEffectFailure


class ModerationActionType(str, Enum):
    BAN = "ban"
    SYNC_BAN = "sync_ban"
    TEMP_BAN = "temp_ban"
    UNBAN = "unban"
    WARN = "warn"
    TRUST = "trust"
    UNTRUST = "untrust"
    DELETE = "delete"
    RESTRICT = "restrict"
    RESTORE_PERMISSIONS = "restore_permissions"
    KICK = "kick"
    MARK_AS_SPAM = "mark_as_spam_and_ban"
    MALWARE_VIOLATION = "malware_violation"
    CRITICAL_VIOLATION = "critical_violation"


class FollowUp(IntEnum):
    """Follow-up requested by a side effect. Higher values win."""

    NONE = 0
    BAN = 1


@dataclass(frozen=True, slots=True, kw_only=True)
class ModerationEvent:
    action_type: ModerationActionType
    user: UserIdentity
    executor: Actor
    reason: str
    chat: Optional[ChatIdentity] = None
    message_id: Optional[int] = None
    chats_affected: int = 0
    trust_removed: bool = False
    message_deleted: bool = False
    restore_trust: bool = False
    warning_count: int = 0
    duration: Optional[timedelta] = None
    expires_at: Optional[datetime] = None
    violations: tuple[str, ...] = ()
    message_text: Optional[str] = None
    photo_path: Optional[str] = None


@dataclass(slots=True)
class DispatchResult:
    follow_up: FollowUp = FollowUp.NONE
    failures: list[SideEffectFailure] = field(default_factory=list)
