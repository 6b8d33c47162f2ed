from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional


class ActorKind(str, Enum):
    WEB_USER = "web_user"
    TELEGRAM_USER = "telegram_user"
    AUTO_DETECTION = "auto_detection"
    AUTO_BAN = "auto_ban"
    FILE_SCANNER = "file_scanner"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class Actor:
    """Who caused an action. Carried unchanged through the whole call chain."""

    kind: ActorKind
    id: Optional[str] = None
    name: Optional[str] = field(default=None, compare=False)

    AUTO_DETECTION: ClassVar["Actor"]
    AUTO_BAN: ClassVar["Actor"]
    FILE_SCANNER: ClassVar["Actor"]

    @classmethod
    def web_user(cls, user_id: str, name: Optional[str] = None) -> "Actor":
        return cls(ActorKind.WEB_USER, str(user_id), name)

    @classmethod
    def telegram_user(cls, user_id: int, name: Optional[str] = None) -> "Actor":
        return cls(ActorKind.TELEGRAM_USER, str(user_id), name)

    @classmethod
    def system(cls, name: str) -> "Actor":
        return cls(ActorKind.SYSTEM, name, name)

    @property
    def telegram_user_id(self) -> Optional[int]:
        if self.kind is ActorKind.TELEGRAM_USER and self.id is not None:
            return int(self.id)
        return None

    @property
    def is_automated(self) -> bool:
        return self.kind not in (ActorKind.WEB_USER, ActorKind.TELEGRAM_USER)

    def display(self) -> str:
        if self.name:
            return self.name
        if self.id:
            return f"{self.kind.value}:{self.id}"
        return self.kind.value


Actor.AUTO_DETECTION = Actor(ActorKind.AUTO_DETECTION)
Actor.AUTO_BAN = Actor(ActorKind.AUTO_BAN)
Actor.FILE_SCANNER = Actor(ActorKind.FILE_SCANNER)


@dataclass(frozen=True, slots=True)
class UserIdentity:
    id: int
    display_name: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_id(cls, user_id: int) -> "UserIdentity":
        return cls(id=user_id)

    def display(self) -> str:
        return self.display_name or f"User {self.id}"


@dataclass(frozen=True, slots=True)
class ChatIdentity:
    id: int
    title: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_id(cls, chat_id: int) -> "ChatIdentity":
        return cls(id=chat_id)

    def display(self) -> str:
        return self.title or f"Chat {self.id}"


class CheckResult(str, Enum):
    SPAM = "spam"
    CLEAN = "clean"
    REVIEW = "review"


class Classification(str, Enum):
    PASS = "pass"
    REVIEW = "review"
    AUTO_BAN = "auto_ban"


@dataclass(slots=True)
class DetectionCheckRequest:
    message: str
    user: UserIdentity
    chat: ChatIdentity
    message_id: Optional[int] = None
    photo_path: Optional[str] = None
    urls: list[str] = field(default_factory=list)
    is_user_trusted: bool = False
    is_user_admin: bool = False
    has_spam_flags: bool = False
    check_config: dict[str, dict[str, Any]] = field(default_factory=dict)
    cancel_event: Optional[asyncio.Event] = None

    def config_for(self, check_name: str) -> dict[str, Any]:
        return self.check_config.get(check_name, {})

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(slots=True)
class DetectionCheckResponse:
    check_name: str
    result: CheckResult
    confidence: int
    details: str
    error: Optional[BaseException] = None
    # set when the check declined to judge; an abstaining veto check never vetoes
    abstained: bool = False

    def __post_init__(self) -> None:
        if self.error is not None:
            # erroring checks never flag
            self.result = CheckResult.CLEAN
            self.confidence = 0
        self.confidence = max(0, min(100, int(self.confidence)))

    @property
    def flagged(self) -> bool:
        return self.result in (CheckResult.SPAM, CheckResult.REVIEW)

    @classmethod
    def clean(cls, check_name: str, details: str, *, confidence: int = 0) -> "DetectionCheckResponse":
        return cls(check_name=check_name, result=CheckResult.CLEAN, confidence=confidence, details=details)

    @classmethod
    def abstain(cls, check_name: str, details: str) -> "DetectionCheckResponse":
        return cls(check_name=check_name, result=CheckResult.CLEAN, confidence=0, details=details, abstained=True)

    @classmethod
    def failed(cls, check_name: str, error: BaseException, details: Optional[str] = None) -> "DetectionCheckResponse":
        return cls(
            check_name=check_name,
            result=CheckResult.CLEAN,
            confidence=0,
            details=details or f"{check_name} check failed: {error} - allowing message",
            error=error,
        )


@dataclass(frozen=True, slots=True)
class AggregatedOutcome:
    net_confidence: int
    classification: Classification
    contributing_checks: tuple[DetectionCheckResponse, ...] = ()
    vetoed: bool = False
    primary_reason: str = "No spam detected"

    @property
    def spam_flags(self) -> int:
        return sum(1 for response in self.contributing_checks if response.result is CheckResult.SPAM)


@dataclass(slots=True)
class IncomingMessage:
    """Minimal view of a chat message handed to the coordinator by the transport."""

    message_id: int
    user: UserIdentity
    chat: ChatIdentity
    timestamp: datetime
    text: Optional[str] = None
    caption: Optional[str] = None
    photo_path: Optional[str] = None
    urls: list[str] = field(default_factory=list)
    is_user_admin: bool = False

    def content_text(self) -> str:
        return self.text or self.caption or ""


class TrainingLabelKind(str, Enum):
    SPAM = "spam"
    HAM = "ham"


@dataclass(frozen=True, slots=True)
class TrainingLabel:
    message_id: int
    chat_id: int
    label: TrainingLabelKind
    labeled_by: Actor
    text: str
    reason: Optional[str] = None


@dataclass(slots=True)
class HistoryMessage:
    message_id: int
    chat_id: int
    user_id: int
    text: str
    timestamp: datetime
    user_name: Optional[str] = None
    was_spam: bool = False
    photo_path: Optional[str] = None
    deleted: bool = False


@dataclass(slots=True)
class DetectionRecord:
    message_id: int
    chat_id: int
    user_id: int
    is_spam: bool
    confidence: int
    reason: str
    detection_source: str
    detected_by: Actor
    detected_at: datetime


@dataclass(slots=True)
class AuditEntry:
    action_type: str
    user_id: int
    actor: Actor
    reason: str
    created_at: datetime
    chat_id: Optional[int] = None
    message_id: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ManagedChat:
    chat_id: int
    title: Optional[str] = None
    active: bool = True
    healthy: bool = True


__all__ = [
    "AuditEntry",
    "DetectionRecord",
    "HistoryMessage",
    "ManagedChat",
    "TrainingLabel",
    "TrainingLabelKind",
    "Actor",
    "ActorKind",
    "AggregatedOutcome",
    "ChatIdentity",
    "CheckResult",
    "Classification",
    "DetectionCheckRequest",
    "DetectionCheckResponse",
    "IncomingMessage",
    "UserIdentity",
]
