from __future__ import annotations

from typing import Optional

import pytest

from groupwarden.models import Actor
from groupwarden.moderation.dispatcher import ModerationEventDispatcher
from groupwarden.moderation.events import FollowUp, ModerationActionType, ModerationEvent
from groupwarden.moderation.side_effects.base import SideEffectHandler
from tests.factories import make_user


class Recorder(SideEffectHandler):
    name = "recorder"

    def __init__(self, log: list[str], label: str, follow_up: Optional[FollowUp] = None, *, fail: bool = False) -> None:
        self._log = log
        self._label = label
        self._follow_up = follow_up
        self._fail = fail

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        self._log.append(self._label)
        if self._fail:
            raise RuntimeError(f"{self._label} exploded")
        return self._follow_up


class WarnOnly(Recorder):
    name = "warn_only"
    action_types = frozenset({ModerationActionType.WARN})


def _event(action: ModerationActionType = ModerationActionType.WARN) -> ModerationEvent:
    return ModerationEvent(action_type=action, user=make_user(), executor=Actor.AUTO_DETECTION, reason="test")


@pytest.mark.asyncio
async def test_handlers_run_in_order_and_failures_are_collected() -> None:
    log: list[str] = []
    dispatcher = ModerationEventDispatcher(
        [Recorder(log, "first"), Recorder(log, "second", fail=True), Recorder(log, "third")]
    )
    result = await dispatcher.dispatch(_event())

    assert log == ["first", "second", "third"]
    assert len(result.failures) == 1
    assert result.failures[0].handler == "recorder"
    assert "second exploded" in str(result.failures[0].error)


@pytest.mark.asyncio
async def test_handlers_only_see_their_action_types() -> None:
    log: list[str] = []
    dispatcher = ModerationEventDispatcher([WarnOnly(log, "warn"), Recorder(log, "all")])
    await dispatcher.dispatch(_event(ModerationActionType.BAN))
    assert log == ["all"]


@pytest.mark.asyncio
async def test_strongest_follow_up_wins_unless_suppressed() -> None:
    log: list[str] = []
    dispatcher = ModerationEventDispatcher(
        [Recorder(log, "a", FollowUp.BAN), Recorder(log, "b", FollowUp.NONE), Recorder(log, "c")]
    )
    assert (await dispatcher.dispatch(_event())).follow_up is FollowUp.BAN
    assert (await dispatcher.dispatch(_event(), allow_follow_up=False)).follow_up is FollowUp.NONE
