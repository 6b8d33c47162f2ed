from __future__ import annotations

from typing import Union

import structlog

from ...services.ports import ChatTransport, MessageNotFound
from ...storage.base import MessageHistoryRepository, UserModerationRepository
from ..intents import CriticalViolationIntent, DeleteMessageIntent, MalwareViolationIntent
from ..results import DeleteResult, ViolationResult
from .base import ActionHandler

logger = structlog.get_logger(__name__)


class DeleteMessageHandler(ActionHandler[DeleteMessageIntent, DeleteResult]):
    result_type = DeleteResult

    def __init__(self, transport: ChatTransport, history: MessageHistoryRepository) -> None:
        self._transport = transport
        self._history = history

    async def execute(self, intent: DeleteMessageIntent) -> DeleteResult:
        try:
            await self._transport.delete_message(intent.chat.id, intent.message_id)
        except MessageNotFound:
            logger.info("message_already_gone", chat_id=intent.chat.id, message_id=intent.message_id)
            return DeleteResult(success=False, error_message="Message not found", message_deleted=False)
        await self._history.mark_deleted(intent.chat.id, intent.message_id, reason=intent.reason)
        logger.info("message_deleted", chat_id=intent.chat.id, message_id=intent.message_id)
        return DeleteResult(message_deleted=True)


class _ViolationHandler(ActionHandler[Union[MalwareViolationIntent, CriticalViolationIntent], ViolationResult]):
    result_type = ViolationResult
    kind: str

    def __init__(self, users: UserModerationRepository, delete: DeleteMessageHandler) -> None:
        self._users = users
        self._delete = delete

    async def execute(self, intent: Union[MalwareViolationIntent, CriticalViolationIntent]) -> ViolationResult:
        await self._users.ensure_exists(intent.user)
        deleted = await self._delete.handle(
            DeleteMessageIntent(
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
            )
        )
        logger.warning(
            "violation_message_removed",
            kind=self.kind,
            user_id=intent.user.id,
            chat_id=intent.chat.id,
            message_deleted=deleted.message_deleted,
        )
        return ViolationResult(message_deleted=deleted.message_deleted)


class MalwareViolationHandler(_ViolationHandler):
    kind = "malware"


class CriticalViolationHandler(_ViolationHandler):
    kind = "critical"
