from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from groupwarden.models import (
    ChatIdentity,
    CheckResult,
    DetectionCheckRequest,
    DetectionCheckResponse,
    IncomingMessage,
    UserIdentity,
)


def make_user(user_id: int = 10, name: Optional[str] = "tester") -> UserIdentity:
    return UserIdentity(id=user_id, display_name=name)


def make_chat(chat_id: int = -100, title: Optional[str] = "Test chat") -> ChatIdentity:
    return ChatIdentity(id=chat_id, title=title)


def make_request(
    text: str = "hello world, this is a perfectly normal message",
    *,
    user_id: int = 10,
    chat_id: int = -100,
    message_id: Optional[int] = 1,
    trusted: bool = False,
    admin: bool = False,
    check_config: Optional[dict] = None,
) -> DetectionCheckRequest:
    return DetectionCheckRequest(
        message=text,
        user=make_user(user_id),
        chat=make_chat(chat_id),
        message_id=message_id,
        is_user_trusted=trusted,
        is_user_admin=admin,
        check_config=check_config or {},
    )


def make_response(
    name: str,
    result: CheckResult = CheckResult.CLEAN,
    confidence: int = 0,
    details: str = "",
) -> DetectionCheckResponse:
    return DetectionCheckResponse(check_name=name, result=result, confidence=confidence, details=details or name)


def make_message(
    text: Optional[str] = "hello world, this is a perfectly normal message",
    *,
    user_id: int = 10,
    chat_id: int = -100,
    message_id: int = 1,
    timestamp: Optional[datetime] = None,
    caption: Optional[str] = None,
    photo_path: Optional[str] = None,
) -> IncomingMessage:
    return IncomingMessage(
        message_id=message_id,
        user=make_user(user_id),
        chat=make_chat(chat_id),
        timestamp=timestamp or datetime.now(timezone.utc),
        text=text,
        caption=caption,
        photo_path=photo_path,
    )
