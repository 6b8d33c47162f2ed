from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from ..models import Actor, UserIdentity
from .dispatcher import ModerationEventDispatcher
from .events import DispatchResult, FollowUp, ModerationActionType, ModerationEvent
from .handlers.ban import BanHandler, KickHandler, TempBanHandler, UnbanHandler
from .handlers.messages import CriticalViolationHandler, DeleteMessageHandler, MalwareViolationHandler
from .handlers.restrict import RestorePermissionsHandler, RestrictHandler
from .handlers.spam_ban import SpamBanHandler
from .handlers.trust import TrustHandler, UntrustHandler
from .handlers.warn import WarnHandler
from .intents import (
    BanIntent,
    CriticalViolationIntent,
    DeleteMessageIntent,
    KickIntent,
    MalwareViolationIntent,
    RestorePermissionsIntent,
    RestrictIntent,
    SpamBanIntent,
    SyncBanIntent,
    TempBanIntent,
    TrustIntent,
    UnbanIntent,
    UntrustIntent,
    WarnIntent,
    is_protected,
)
from .results import ModerationResult, ProtectedAccount

logger = structlog.get_logger(__name__)

RESTORE_TRUST_REASON = "Trust restored after unban (false positive correction)"


def auto_ban_reason(warning_count: int) -> str:
    return f"Exceeded warning threshold ({warning_count} warnings)"


def trust_revoked_reason(reason: str) -> str:
    return f"Trust revoked due to ban: {reason}"


@dataclass(slots=True)
class ActionHandlers:
    ban: BanHandler
    temp_ban: TempBanHandler
    unban: UnbanHandler
    kick: KickHandler
    warn: WarnHandler
    trust: TrustHandler
    untrust: UntrustHandler
    delete: DeleteMessageHandler
    restrict: RestrictHandler
    restore_permissions: RestorePermissionsHandler
    spam_ban: SpamBanHandler
    malware: MalwareViolationHandler
    critical: CriticalViolationHandler


class ModerationOrchestrator:
    """
    Routes moderation intents to action handlers and dispatches one event per action.

    Each public coroutine runs a single primary handler, applies the fixed business
    rules around it (trust revocation on ban, auto-ban after warnings, trust
    restoration on unban) and returns a :class:`ModerationResult`. System accounts
    are never moderated.
    """

    def __init__(self, handlers: ActionHandlers, dispatcher: ModerationEventDispatcher) -> None:
        self._handlers = handlers
        self._dispatcher = dispatcher

    def _protected(self, user: UserIdentity, action: str) -> Optional[ProtectedAccount]:
        if not is_protected(user.id):
            return None
        logger.warning("moderation_blocked_protected_account", user_id=user.id, action=action)
        return ProtectedAccount(user.id)

    async def _dispatch(self, event: ModerationEvent, *, allow_follow_up: bool = True) -> DispatchResult:
        return await self._dispatcher.dispatch(event, allow_follow_up=allow_follow_up)

    async def _revoke_trust(self, user: UserIdentity, executor: Actor, reason: str) -> bool:
        result = await self._handlers.untrust.handle(
            UntrustIntent(user=user, executor=executor, reason=trust_revoked_reason(reason))
        )
        if not result.success:
            logger.warning("trust_revocation_failed", user_id=user.id, error=result.error_message)
        return result.success

    async def ban_user(self, intent: BanIntent, *, allow_follow_up: bool = True) -> ModerationResult:
        blocked = self._protected(intent.user, "ban")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.ban.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        trust_removed = False
        if result.should_revoke_trust:
            trust_removed = await self._revoke_trust(intent.user, intent.executor, intent.reason)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.BAN,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                chats_affected=result.chats_affected,
                trust_removed=trust_removed,
            ),
            allow_follow_up=allow_follow_up,
        )
        return ModerationResult(success=True, chats_affected=result.chats_affected, trust_removed=trust_removed)

    async def sync_ban_to_chat(self, intent: SyncBanIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "sync_ban")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.ban.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        trust_removed = False
        if result.should_revoke_trust:
            trust_removed = await self._revoke_trust(intent.user, intent.executor, intent.reason)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.SYNC_BAN,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                chats_affected=result.chats_affected,
                trust_removed=trust_removed,
            )
        )
        return ModerationResult(success=True, chats_affected=result.chats_affected, trust_removed=trust_removed)

    async def warn_user(self, intent: WarnIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "warn")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.warn.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        dispatched = await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.WARN,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                warning_count=result.warning_count,
            )
        )
        outcome = ModerationResult(success=True, warning_count=result.warning_count)

        if dispatched.follow_up is FollowUp.BAN:
            logger.warning("auto_ban_triggered", user_id=intent.user.id, warning_count=result.warning_count)
            banned = await self.ban_user(
                BanIntent(
                    user=intent.user,
                    executor=Actor.AUTO_BAN,
                    reason=auto_ban_reason(result.warning_count),
                    chat=intent.chat,
                    message_id=intent.message_id,
                ),
                allow_follow_up=False,
            )
            if banned.success:
                outcome.auto_ban_triggered = True
                outcome.chats_affected = banned.chats_affected
            else:
                logger.error("auto_ban_failed", user_id=intent.user.id, error=banned.error_message)
        return outcome

    async def trust_user(self, intent: TrustIntent) -> ModerationResult:
        result = await self._handlers.trust.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.TRUST,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
            )
        )
        return ModerationResult(success=True)

    async def untrust_user(self, intent: UntrustIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "untrust")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.untrust.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.UNTRUST,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                trust_removed=True,
            )
        )
        return ModerationResult(success=True, trust_removed=True)

    async def unban_user(self, intent: UnbanIntent) -> ModerationResult:
        result = await self._handlers.unban.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.UNBAN,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                chats_affected=result.chats_affected,
                restore_trust=intent.restore_trust,
            )
        )
        outcome = ModerationResult(success=True, chats_affected=result.chats_affected)

        if intent.restore_trust:
            trusted = await self.trust_user(
                TrustIntent(user=intent.user, executor=intent.executor, reason=RESTORE_TRUST_REASON)
            )
            outcome.trust_restored = trusted.success
        return outcome

    async def delete_message(self, intent: DeleteMessageIntent) -> ModerationResult:
        # a message that is already gone still counts as handled
        result = await self._handlers.delete.handle(intent)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.DELETE,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                message_deleted=result.message_deleted,
            )
        )
        return ModerationResult(success=True, message_deleted=result.message_deleted)

    async def temp_ban_user(self, intent: TempBanIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "temp_ban")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.temp_ban.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.TEMP_BAN,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                duration=intent.duration,
                expires_at=result.expires_at,
                chats_affected=result.chats_affected,
            )
        )
        return ModerationResult(success=True, chats_affected=result.chats_affected)

    async def restrict_user(self, intent: RestrictIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "restrict")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.restrict.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.RESTRICT,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                duration=intent.duration,
                expires_at=result.expires_at,
                chats_affected=result.chats_affected,
            )
        )
        return ModerationResult(success=True, chats_affected=result.chats_affected)

    async def mark_as_spam_and_ban(self, intent: SpamBanIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "mark_as_spam")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.spam_ban.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)

        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.MARK_AS_SPAM,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                chats_affected=result.chats_affected,
                trust_removed=result.trust_removed,
                message_deleted=result.message_deleted,
                message_text=intent.message_text,
                photo_path=intent.photo_path,
            )
        )
        return ModerationResult(
            success=True,
            chats_affected=result.chats_affected,
            message_deleted=result.message_deleted,
            trust_removed=result.trust_removed,
        )

    async def restore_user_permissions(self, intent: RestorePermissionsIntent) -> ModerationResult:
        result = await self._handlers.restore_permissions.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.RESTORE_PERMISSIONS,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                chats_affected=1,
            )
        )
        return ModerationResult(success=True, chats_affected=1)

    async def kick_user_from_chat(self, intent: KickIntent) -> ModerationResult:
        blocked = self._protected(intent.user, "kick")
        if blocked is not None:
            return ModerationResult.protected(blocked)

        result = await self._handlers.kick.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.KICK,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                chats_affected=1,
            )
        )
        return ModerationResult(success=True, chats_affected=1)

    async def handle_malware_violation(self, intent: MalwareViolationIntent) -> ModerationResult:
        result = await self._handlers.malware.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.MALWARE_VIOLATION,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                message_deleted=result.message_deleted,
                violations=(intent.malware_details,),
            )
        )
        return ModerationResult(success=True, message_deleted=result.message_deleted)

    async def handle_critical_violation(self, intent: CriticalViolationIntent) -> ModerationResult:
        result = await self._handlers.critical.handle(intent)
        if not result.success:
            return ModerationResult.failure(result.error_message)
        await self._dispatch(
            ModerationEvent(
                action_type=ModerationActionType.CRITICAL_VIOLATION,
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
                message_deleted=result.message_deleted,
                violations=intent.violations,
            )
        )
        return ModerationResult(success=True, message_deleted=result.message_deleted)
