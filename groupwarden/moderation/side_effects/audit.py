from __future__ import annotations

from typing import Optional

import structlog

from ...models import AuditEntry
from ...storage.base import AuditLogRepository
from ..events import FollowUp, ModerationEvent
from ..handlers.base import Clock, utcnow
from .base import SideEffectHandler

logger = structlog.get_logger(__name__)


class AuditHandler(SideEffectHandler):
    name = "audit"

    def __init__(self, audit: AuditLogRepository, *, clock: Clock = utcnow) -> None:
        self._audit = audit
        self._clock = clock

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        details: dict = {
            "chats_affected": event.chats_affected,
            "trust_removed": event.trust_removed,
            "message_deleted": event.message_deleted,
        }
        if event.warning_count:
            details["warning_count"] = event.warning_count
        if event.expires_at is not None:
            details["expires_at"] = event.expires_at.isoformat()
        if event.violations:
            details["violations"] = list(event.violations)
        await self._audit.log_action(
            AuditEntry(
                action_type=event.action_type.value,
                user_id=event.user.id,
                actor=event.executor,
                reason=event.reason,
                created_at=self._clock(),
                chat_id=event.chat.id if event.chat else None,
                message_id=event.message_id,
                details=details,
            )
        )
        logger.debug("audit_recorded", action=event.action_type.value, user_id=event.user.id)
        return None
