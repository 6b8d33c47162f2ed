from __future__ import annotations

import logging
import os

import pytest

from groupwarden.adapters.openai import GPTClient, OmniModerationClient
from groupwarden.config import CasSettings, DetectionSettings
from groupwarden.detection.cache import DetectionCache
from groupwarden.detection.checks.openai import OpenAIContentCheck
from groupwarden.models import CheckResult, Classification
from groupwarden.services.moderation_service import build_engine
from tests.factories import make_request


logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


pytestmark = pytest.mark.skipif(
    not os.getenv("RUN_LIVE_TESTS"),
    reason="Set RUN_LIVE_TESTS=1 to execute tests against the real OpenAI API.",
)


def _require_api_key() -> str:
    key = os.getenv("GROUPWARDEN_OPENAI__API_KEY")
    if not key:
        raise pytest.SkipTest("GROUPWARDEN_OPENAI__API_KEY env variable is required for live tests.")
    return key


@pytest.mark.asyncio
async def test_openai_check_live() -> None:
    key = _require_api_key()
    client = GPTClient(api_key=key)
    check = OpenAIContentCheck(client, DetectionCache(), DetectionSettings(veto_mode=False))

    try:
        spam_text = "EARN $5000 A DAY from home!!! Crypto signals, DM @fastmoney_bot now, only 3 slots left"
        logger.info("Submitting spam message to OpenAI: %s", spam_text)
        spam = await check.run(make_request(spam_text))

        ham_text = "Does anyone know whether the meetup on Thursday starts at 7 or at 8?"
        logger.info("Submitting ordinary message to OpenAI: %s", ham_text)
        ham = await check.run(make_request(ham_text, message_id=2))
    finally:
        await client.close()

    logger.info("spam verdict=%s confidence=%s details=%s", spam.result.value, spam.confidence, spam.details)
    logger.info("ham verdict=%s confidence=%s details=%s", ham.result.value, ham.confidence, ham.details)
    assert spam.error is None
    assert spam.result in {CheckResult.SPAM, CheckResult.REVIEW}
    assert ham.error is None
    assert ham.result is CheckResult.CLEAN


@pytest.mark.asyncio
async def test_live_engine_veto() -> None:
    key = _require_api_key()
    settings = DetectionSettings(
        veto_mode=True,
        stop_words=["crypto signals"],
        cas=CasSettings(enabled=False),
        omni_enabled=True,
    )
    gpt_client = GPTClient(api_key=key)
    omni_client = OmniModerationClient(api_key=key)
    engine = build_engine(settings, gpt_client=gpt_client, omni_client=omni_client)

    try:
        # Stop word hit raises the flag so the veto-mode GPT check gets a say.
        text = "We discussed crypto signals at the lecture yesterday, the slides are on the course page."
        logger.info("Submitting flagged message to live engine: %s", text)
        outcome = await engine.check_message(make_request(text))
    finally:
        await engine.close()
        await gpt_client.close()
        await omni_client.close()

    for response in outcome.contributing_checks:
        logger.info(
            "check=%s result=%s confidence=%s details=%s",
            response.check_name,
            response.result.value,
            response.confidence,
            response.details,
        )
    assert any(response.check_name == "openai" for response in outcome.contributing_checks)
    assert outcome.classification in {Classification.PASS, Classification.REVIEW}
