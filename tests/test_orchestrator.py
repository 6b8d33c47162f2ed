from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from groupwarden.config import ModerationSettings
from groupwarden.models import Actor, ManagedChat, TrainingLabelKind, UserIdentity
from groupwarden.moderation.cleanup import CROSS_CHAT_CLEANUP_JOB
from groupwarden.moderation.handlers.ban import TEMP_BAN_EXPIRY_JOB
from groupwarden.moderation.intents import (
    PROTECTED_ACCOUNT_MESSAGE,
    PROTECTED_USER_IDS,
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
)
from groupwarden.moderation.orchestrator import RESTORE_TRUST_REASON, auto_ban_reason
from groupwarden.moderation.side_effects.training import TEXT_RETRAIN_JOB
from groupwarden.services.moderation_service import build_orchestrator
from tests.factories import make_chat, make_message, make_user
from tests.fakes import FakeJobTrigger, FakeNotifications, FakeTransport, InMemoryStorage

ADMIN = Actor.telegram_user(1, "@admin")
CHATS = [ManagedChat(chat_id=-100), ManagedChat(chat_id=-200), ManagedChat(chat_id=-300, healthy=False)]


class Harness:
    def __init__(self, *, transport: FakeTransport | None = None, **settings) -> None:
        self.storage = InMemoryStorage(list(CHATS))
        self.transport = transport or FakeTransport()
        self.notifications = FakeNotifications()
        self.jobs = FakeJobTrigger()
        self.orchestrator = build_orchestrator(
            self.storage,
            self.transport,
            self.notifications,
            self.jobs,
            ModerationSettings(**settings),
        )


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", sorted(PROTECTED_USER_IDS))
async def test_system_accounts_are_never_moderated(harness: Harness, user_id: int) -> None:
    user = UserIdentity.from_id(user_id)
    chat = make_chat()
    results = [
        await harness.orchestrator.ban_user(BanIntent(user=user, executor=ADMIN, reason="spam")),
        await harness.orchestrator.sync_ban_to_chat(SyncBanIntent(user=user, executor=ADMIN, reason="spam", chat=chat)),
        await harness.orchestrator.warn_user(WarnIntent(user=user, executor=ADMIN, reason="rude")),
        await harness.orchestrator.untrust_user(UntrustIntent(user=user, executor=ADMIN, reason="x")),
        await harness.orchestrator.temp_ban_user(
            TempBanIntent(user=user, executor=ADMIN, reason="x", duration=timedelta(hours=1))
        ),
        await harness.orchestrator.restrict_user(
            RestrictIntent(user=user, executor=ADMIN, reason="x", duration=timedelta(minutes=5))
        ),
        await harness.orchestrator.mark_as_spam_and_ban(
            SpamBanIntent(user=user, executor=ADMIN, reason="x", chat=chat, message_id=5)
        ),
        await harness.orchestrator.kick_user_from_chat(KickIntent(user=user, executor=ADMIN, reason="x", chat=chat)),
    ]
    assert all(not result.success for result in results)
    assert {result.error_message for result in results} == {PROTECTED_ACCOUNT_MESSAGE}
    assert harness.transport.calls == []
    assert harness.storage.audit == []


@pytest.mark.asyncio
async def test_ban_runs_across_healthy_chats_and_revokes_trust(harness: Harness) -> None:
    user = make_user(42)
    harness.storage._user(42).trusted = True

    result = await harness.orchestrator.ban_user(BanIntent(user=user, executor=ADMIN, reason="scam links"))

    assert result.success
    assert result.chats_affected == 2
    assert result.trust_removed is True
    assert sorted(call[1] for call in harness.transport.actions("ban")) == [-200, -100]
    assert await harness.storage.is_banned(42)
    assert not await harness.storage.is_trusted(42)
    assert [entry.action_type for entry in harness.storage.audit] == ["ban"]
    assert harness.notifications.channel_messages[0][1] == "User banned"
    assert harness.jobs.names() == [CROSS_CHAT_CLEANUP_JOB]


class TrustLockedStorage(InMemoryStorage):
    def __init__(self, chats) -> None:
        super().__init__(chats)
        self.trust_writes: list[tuple[int, bool]] = []

    async def set_trusted(self, user_id: int, trusted: bool, *, actor: Actor, reason: str) -> None:
        self.trust_writes.append((user_id, trusted))
        raise RuntimeError("users table locked")


@pytest.mark.asyncio
async def test_ban_succeeds_when_trust_revocation_fails() -> None:
    harness = Harness()
    harness.storage = TrustLockedStorage(list(CHATS))
    harness.orchestrator = build_orchestrator(harness.storage, harness.transport, harness.notifications, harness.jobs)

    result = await harness.orchestrator.ban_user(BanIntent(user=make_user(43), executor=ADMIN, reason="scam links"))

    assert result.success is True
    assert result.trust_removed is False
    assert result.chats_affected == 2
    assert harness.storage.trust_writes == [(43, False)]
    assert [entry.action_type for entry in harness.storage.audit] == ["ban"]
    assert harness.storage.audit[0].details["trust_removed"] is False


@pytest.mark.asyncio
async def test_ban_counts_failed_chats_without_failing() -> None:
    harness = Harness(transport=FakeTransport(failing_chats=(-200,)))
    result = await harness.orchestrator.ban_user(BanIntent(user=make_user(7), executor=ADMIN, reason="spam"))
    assert result.success
    assert result.chats_affected == 1


@pytest.mark.asyncio
async def test_sync_ban_touches_one_chat(harness: Harness) -> None:
    result = await harness.orchestrator.sync_ban_to_chat(
        SyncBanIntent(user=make_user(9), executor=Actor.system("ban_sync"), reason="global ban", chat=make_chat(-200))
    )
    assert result.success
    assert result.chats_affected == 1
    assert harness.transport.actions("ban") == [("ban", -200, 9, None)]
    assert harness.storage.audit[0].action_type == "sync_ban"


@pytest.mark.asyncio
async def test_third_warning_triggers_single_auto_ban(harness: Harness) -> None:
    user = make_user(50)
    for _ in range(2):
        result = await harness.orchestrator.warn_user(WarnIntent(user=user, executor=ADMIN, reason="off-topic"))
        assert not result.auto_ban_triggered

    result = await harness.orchestrator.warn_user(WarnIntent(user=user, executor=ADMIN, reason="off-topic"))

    assert result.warning_count == 3
    assert result.auto_ban_triggered is True
    assert result.chats_affected == 2
    assert await harness.storage.is_banned(50)
    bans = [entry for entry in harness.storage.audit if entry.action_type == "ban"]
    assert len(bans) == 1
    assert bans[0].actor == Actor.AUTO_BAN
    assert bans[0].reason == auto_ban_reason(3)
    assert [user_id for user_id, note in harness.notifications.dms if note.kind == "warning"] == [50, 50, 50]


@pytest.mark.asyncio
async def test_auto_ban_can_be_disabled() -> None:
    harness = Harness(auto_ban_enabled=False, warning_threshold=1)
    result = await harness.orchestrator.warn_user(WarnIntent(user=make_user(3), executor=ADMIN, reason="rude"))
    assert result.success
    assert result.auto_ban_triggered is False
    assert not await harness.storage.is_banned(3)


@pytest.mark.asyncio
async def test_unban_with_restore_trust_records_ham_label(harness: Harness) -> None:
    message = make_message("this was a legit question about the release", user_id=60, message_id=77)
    await harness.storage.record_message(message)
    await harness.storage.set_banned(60, True, actor=ADMIN, reason="oops")

    result = await harness.orchestrator.unban_user(
        UnbanIntent(
            user=message.user,
            executor=ADMIN,
            reason="false positive",
            restore_trust=True,
            chat=message.chat,
            message_id=77,
        )
    )

    assert result.success
    assert result.trust_restored is True
    assert not await harness.storage.is_banned(60)
    assert await harness.storage.is_trusted(60)
    label = harness.storage.labels[(message.chat.id, 77)]
    assert label.label is TrainingLabelKind.HAM
    assert label.text == message.text
    assert [entry.reason for entry in harness.storage.audit if entry.action_type == "trust"] == [RESTORE_TRUST_REASON]
    assert TEXT_RETRAIN_JOB in harness.jobs.names()


@pytest.mark.asyncio
async def test_plain_unban_leaves_trust_alone(harness: Harness) -> None:
    result = await harness.orchestrator.unban_user(UnbanIntent(user=make_user(61), executor=ADMIN, reason="appeal"))
    assert result.success
    assert result.trust_restored is False
    assert not await harness.storage.is_trusted(61)
    assert harness.storage.labels == {}


@pytest.mark.asyncio
async def test_mark_as_spam_deletes_bans_and_labels(harness: Harness) -> None:
    message = make_message("cheap followers, dm me", user_id=70, message_id=11, photo_path="/tmp/11.jpg")
    await harness.storage.record_message(message)

    result = await harness.orchestrator.mark_as_spam_and_ban(
        SpamBanIntent(
            user=message.user,
            executor=Actor.AUTO_DETECTION,
            reason="Auto-detected spam",
            chat=message.chat,
            message_id=11,
        )
    )

    assert result.success
    assert result.message_deleted is True
    assert result.chats_affected == 2
    assert result.trust_removed is True
    assert harness.transport.actions("delete") == [("delete", -100, 11)]
    assert harness.storage.messages[(-100, 11)].deleted is True
    assert harness.storage.labels[(-100, 11)].label is TrainingLabelKind.SPAM
    assert harness.storage.images[11] == ("/tmp/11.jpg", True)
    assert [entry.action_type for entry in harness.storage.audit] == ["mark_as_spam_and_ban"]
    assert harness.notifications.channel_messages[0][1] == "Spam ban"
    assert harness.jobs.names().count(CROSS_CHAT_CLEANUP_JOB) == 1


@pytest.mark.asyncio
async def test_mark_as_spam_fails_when_ban_fails() -> None:
    harness = Harness()

    async def broken_list():
        raise RuntimeError("database is locked")

    harness.storage.list_active_chats = broken_list  # type: ignore[method-assign]
    result = await harness.orchestrator.mark_as_spam_and_ban(
        SpamBanIntent(user=make_user(71), executor=ADMIN, reason="spam", chat=make_chat(), message_id=12)
    )
    assert not result.success
    assert "database is locked" in result.error_message
    assert harness.storage.audit == []


@pytest.mark.asyncio
async def test_delete_of_missing_message_still_succeeds() -> None:
    harness = Harness(transport=FakeTransport(missing_messages=(99,)))
    result = await harness.orchestrator.delete_message(
        DeleteMessageIntent(user=make_user(), executor=ADMIN, chat=make_chat(), message_id=99)
    )
    assert result.success
    assert result.message_deleted is False
    assert harness.storage.audit[0].reason == "Manual message deletion"


@pytest.mark.asyncio
async def test_temp_ban_schedules_expiry_and_notifies(harness: Harness) -> None:
    result = await harness.orchestrator.temp_ban_user(
        TempBanIntent(user=make_user(80), executor=ADMIN, reason="flood", duration=timedelta(hours=2))
    )
    assert result.success
    assert result.chats_affected == 2
    name, payload, delay = harness.jobs.triggered[0]
    assert name == TEMP_BAN_EXPIRY_JOB
    assert payload["user_id"] == 80
    assert delay == 7200
    user_id, note = harness.notifications.dms[0]
    assert (user_id, note.kind) == (80, "tempban")
    assert "2h" in note.body


@pytest.mark.asyncio
async def test_restrict_and_restore_permissions(harness: Harness) -> None:
    chat = make_chat(-100)
    restricted = await harness.orchestrator.restrict_user(
        RestrictIntent(user=make_user(81), executor=ADMIN, reason="caps", duration=timedelta(minutes=10), chat=chat)
    )
    global_restricted = await harness.orchestrator.restrict_user(
        RestrictIntent(user=make_user(82), executor=ADMIN, reason="caps", duration=timedelta(minutes=10))
    )
    restored = await harness.orchestrator.restore_user_permissions(
        RestorePermissionsIntent(user=make_user(81), executor=ADMIN, reason="calmed down", chat=chat)
    )
    assert restricted.chats_affected == 1
    assert global_restricted.chats_affected == 2
    assert restored.success
    assert harness.transport.actions("restore") == [("restore", -100, 81)]


@pytest.mark.asyncio
async def test_kick_bans_then_unbans(harness: Harness) -> None:
    result = await harness.orchestrator.kick_user_from_chat(
        KickIntent(user=make_user(83), executor=ADMIN, reason="bye", chat=make_chat(-100))
    )
    assert result.success
    assert [call[0] for call in harness.transport.calls] == ["ban", "unban"]
    assert not await harness.storage.is_banned(83)


@pytest.mark.asyncio
async def test_trust_and_untrust(harness: Harness) -> None:
    user = make_user(84)
    assert (await harness.orchestrator.trust_user(TrustIntent(user=user, executor=ADMIN, reason="regular"))).success
    assert await harness.storage.is_trusted(84)
    result = await harness.orchestrator.untrust_user(UntrustIntent(user=user, executor=ADMIN, reason="changed"))
    assert result.trust_removed
    assert not await harness.storage.is_trusted(84)


@pytest.mark.asyncio
async def test_violations_delete_and_notify(harness: Harness) -> None:
    chat = make_chat()
    malware = await harness.orchestrator.handle_malware_violation(
        MalwareViolationIntent(
            user=make_user(85),
            executor=Actor.FILE_SCANNER,
            reason="Malware detected",
            chat=chat,
            message_id=20,
            malware_details="Trojan.Generic",
        )
    )
    critical = await harness.orchestrator.handle_critical_violation(
        CriticalViolationIntent(
            user=make_user(86),
            executor=Actor.AUTO_DETECTION,
            reason="Blocked link",
            chat=chat,
            message_id=21,
            violations=("phishing domain",),
        )
    )
    assert malware.message_deleted and critical.message_deleted
    assert harness.notifications.channel_messages[0][1] == "Malware detected"
    assert "Trojan.Generic" in harness.notifications.channel_messages[0][2]
    assert harness.notifications.dms[0][1].kind == "critical_violation"
    assert not await harness.storage.is_banned(85)


@pytest.mark.asyncio
async def test_failing_side_effect_does_not_fail_the_action() -> None:
    harness = Harness()
    harness.notifications.send_channel = None  # type: ignore[assignment]
    result = await harness.orchestrator.ban_user(BanIntent(user=make_user(90), executor=ADMIN, reason="spam"))
    assert result.success
    assert [entry.action_type for entry in harness.storage.audit] == ["ban"]
    assert harness.jobs.names() == [CROSS_CHAT_CLEANUP_JOB]


@pytest.mark.asyncio
async def test_cancellation_propagates_out_of_handlers() -> None:
    harness = Harness()

    async def hanging(chat_id, user_id, *, until_date=None):
        await asyncio.sleep(10)

    harness.transport.ban_chat_member = hanging  # type: ignore[assignment]
    task = asyncio.create_task(
        harness.orchestrator.ban_user(BanIntent(user=make_user(91), executor=ADMIN, reason="spam"))
    )
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert harness.storage.audit == []
