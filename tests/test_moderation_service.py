from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from groupwarden.adapters.openai import GPTClient
from groupwarden.config import BotSettings, CasSettings, DetectionSettings, ModerationSettings
from groupwarden.models import Actor, Classification, ManagedChat
from groupwarden.moderation.intents import BanIntent, TempBanIntent
from groupwarden.scheduler.jobs import LocalJobTrigger
from groupwarden.services.moderation_service import ModerationCoordinator
from tests.factories import make_message, make_user
from tests.fakes import FakeNotifications, FakeTransport, InMemoryStorage


class Harness:
    def __init__(self, verdict: dict | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.verdict = verdict or {"result": "spam", "reason": "crypto scam", "confidence": 0.96}
        http = httpx.AsyncClient(transport=httpx.MockTransport(self._openai), base_url="https://api.openai.test/v1")
        settings = BotSettings(
            telegram_token="123:test",
            detection=DetectionSettings(
                stop_words=["crypto signals"],
                history_context=False,
                cas=CasSettings(enabled=False),
            ),
            moderation=ModerationSettings(cleanup_delay_seconds=0, admin_channel="admins"),
        )
        self.storage = InMemoryStorage([ManagedChat(chat_id=-100), ManagedChat(chat_id=-200)])
        self.transport = FakeTransport()
        self.notifications = FakeNotifications()
        self.jobs = LocalJobTrigger()
        self.coordinator = ModerationCoordinator(
            settings,
            transport=self.transport,
            notifications=self.notifications,
            storage=self.storage,
            jobs=self.jobs,
            gpt_client=GPTClient("sk-test", client=http, max_attempts=1),
        )

    def _openai(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        content = json.dumps(self.verdict)
        return httpx.Response(200, json={"choices": [{"message": {"content": content}, "finish_reason": "stop"}]})


@pytest_asyncio.fixture
async def harness():
    built = Harness()
    await built.coordinator.start()
    try:
        yield built
    finally:
        await built.coordinator.shutdown()


@pytest.mark.asyncio
async def test_confirmed_spam_is_removed_and_user_banned(harness: Harness) -> None:
    message = make_message("Join now for free crypto signals and 10x gains every week", user_id=55, message_id=9)
    outcome = await harness.coordinator.process_message(message)

    assert outcome is not None
    assert outcome.classification is Classification.AUTO_BAN
    assert outcome.net_confidence == 93
    assert len(harness.requests) == 1
    assert ("delete", -100, 9) in harness.transport.calls
    assert sorted(call[1] for call in harness.transport.actions("ban")) == [-200, -100]
    assert await harness.storage.is_banned(55)
    assert harness.storage.audit[0].actor == Actor.AUTO_DETECTION
    assert harness.storage.detections[0].detection_source == "stop_words,openai"


@pytest.mark.asyncio
async def test_clean_message_passes_without_calling_openai(harness: Harness) -> None:
    outcome = await harness.coordinator.process_message(make_message("Has anyone tried the new release yet?"))

    assert outcome is not None
    assert outcome.classification is Classification.PASS
    assert harness.requests == []
    assert harness.transport.calls == []
    assert harness.storage.detections == []
    assert (-100, 1) in harness.storage.messages


@pytest.mark.asyncio
async def test_openai_veto_overrides_stop_word_hit() -> None:
    harness = Harness({"result": "clean", "reason": "asking about a course", "confidence": 0.9})
    await harness.coordinator.start()
    try:
        outcome = await harness.coordinator.process_message(
            make_message("Are the crypto signals lectures recorded for later viewing?")
        )
    finally:
        await harness.coordinator.shutdown()

    assert outcome is not None
    assert outcome.vetoed is True
    assert outcome.classification is Classification.PASS
    assert harness.transport.calls == []


@pytest.mark.asyncio
async def test_review_band_alerts_admins() -> None:
    harness = Harness({"result": "review", "reason": "borderline promo", "confidence": 0.6})
    await harness.coordinator.start()
    try:
        outcome = await harness.coordinator.process_message(
            make_message("I share crypto signals sometimes, ask me if curious", message_id=4)
        )
    finally:
        await harness.coordinator.shutdown()

    assert outcome is not None
    assert outcome.classification is Classification.REVIEW
    assert harness.transport.calls == []
    channel, subject, body = harness.notifications.channel_messages[0]
    assert (channel, subject) == ("admins", "Message needs review")
    assert "75%" in body
    assert harness.storage.detections[0].is_spam is False


@pytest.mark.asyncio
async def test_system_account_messages_are_recorded_but_not_checked(harness: Harness) -> None:
    outcome = await harness.coordinator.process_message(
        make_message("crypto signals channel post with a long body text", user_id=777000, message_id=3)
    )
    assert outcome is None
    assert (-100, 3) in harness.storage.messages
    assert harness.requests == []


@pytest.mark.asyncio
async def test_trusted_users_skip_the_openai_check(harness: Harness) -> None:
    harness.storage._user(56).trusted = True
    outcome = await harness.coordinator.process_message(
        make_message("crypto signals are on the agenda for tonight's call", user_id=56)
    )
    assert outcome is not None
    assert harness.requests == []
    assert outcome.classification is Classification.AUTO_BAN


@pytest.mark.asyncio
async def test_ban_sweeps_the_users_messages_across_chats(harness: Harness) -> None:
    await harness.storage.record_message(make_message("first", user_id=60, chat_id=-100, message_id=1))
    await harness.storage.record_message(make_message("second", user_id=60, chat_id=-200, message_id=2))
    await harness.storage.record_message(make_message("bystander", user_id=61, chat_id=-100, message_id=3))

    await harness.coordinator.orchestrator.ban_user(
        BanIntent(user=make_user(60), executor=Actor.telegram_user(1), reason="spam")
    )
    await harness.jobs.wait_idle(timeout=2)

    assert sorted(harness.transport.actions("delete")) == [("delete", -200, 2), ("delete", -100, 1)]
    assert harness.storage.messages[(-100, 1)].deleted
    assert not harness.storage.messages[(-100, 3)].deleted


@pytest.mark.asyncio
async def test_temp_ban_expiry_lifts_the_ban(harness: Harness) -> None:
    await harness.coordinator.orchestrator.temp_ban_user(
        TempBanIntent(
            user=make_user(70),
            executor=Actor.telegram_user(1),
            reason="flood",
            duration=timedelta(milliseconds=50),
        )
    )
    assert await harness.storage.is_banned(70)

    await harness.jobs.wait_idle(timeout=2)

    assert not await harness.storage.is_banned(70)
    assert ("unban", -100, 70) in harness.transport.calls


@pytest.mark.asyncio
async def test_temp_ban_expiry_keeps_a_later_permanent_ban(harness: Harness) -> None:
    user = make_user(71)
    await harness.coordinator.orchestrator.temp_ban_user(
        TempBanIntent(
            user=user,
            executor=Actor.telegram_user(1),
            reason="flood",
            duration=timedelta(milliseconds=50),
        )
    )
    await harness.coordinator.orchestrator.ban_user(
        BanIntent(user=user, executor=Actor.telegram_user(1), reason="came back spamming")
    )

    await harness.jobs.wait_idle(timeout=2)

    assert await harness.storage.is_banned(71)
    assert harness.transport.actions("unban") == []
