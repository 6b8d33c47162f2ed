from __future__ import annotations

import asyncio
import dataclasses
import json
import re
from typing import Any, Optional

import structlog

from ...adapters.openai import ChatCompletionRequest, GPTClient
from ...config import DetectionSettings
from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse, HistoryMessage
from ...storage.base import MessageHistoryRepository
from ..cache import DetectionCache
from ..confidence import LEGACY_FALLBACK_CONFIDENCE, to_percent
from ..errors import (
    ConfigurationMissing,
    DetectionError,
    MalformedResponse,
    ProviderRateLimited,
    ProviderTimeout,
)
from ..veto import VETO_SKIP_DETAILS
from .base import ContentCheck

logger = structlog.get_logger(__name__)

_SPAM_TOKEN = re.compile(r"\bSPAM\b")

BASE_TECHNICAL_PROMPT = """You must respond with valid JSON in this exact format:
{
  "result": "spam" | "clean" | "review",
  "reason": "clear explanation of your decision",
  "confidence": 0.0-1.0
}

Result types:
- "spam": Message is definitely spam/scam/unwanted
- "clean": Message is legitimate conversation
- "review": Uncertain - requires human review"""

DEFAULT_RULES_PROMPT = """SPAM indicators (mark as "spam"):
- Personal testimonials promoting paid services or individuals
- Direct solicitation or selling of services
- Get-rich-quick schemes or unrealistic profit promises
- Requests to contact someone for trading or investment advice
- Unsolicited financial advice with calls-to-action
- Adult content, obvious scams, repetitive spam patterns

LEGITIMATE content (mark as "clean"):
- Genuine discussion, questions and answers
- Educational content, news, research or analysis
- Sharing legitimate tools, resources or links for discussion

Key distinction: sharing knowledge is legitimate, promoting services is spam."""

VETO_GUIDANCE = """MODE: Spam Verification (Veto)
Other filters have flagged this message as potential spam. Verify whether it is actually spam.
Return "spam" to confirm, "clean" to override a false positive, "review" when human judgment is needed.
Only override when you are confident it is a false positive."""

DETECTION_GUIDANCE = """MODE: Spam Detection
Return "spam" for promotional, solicitation or scam content.
Return "clean" for legitimate conversation; when in doubt lean toward "clean".
Return "review" for borderline cases that need human judgment."""


def build_system_prompt(veto_mode: bool, rules_prompt: Optional[str] = None) -> str:
    guidance = VETO_GUIDANCE if veto_mode else DETECTION_GUIDANCE
    return "\n\n".join(
        [
            BASE_TECHNICAL_PROMPT,
            rules_prompt or DEFAULT_RULES_PROMPT,
            guidance,
            "Consider the message context and conversation flow. Always respond with valid JSON.",
        ]
    )


def build_user_prompt(request: DetectionCheckRequest, history: list[HistoryMessage], *, veto_mode: bool) -> str:
    lines = [
        "Analyze this message that was flagged by other spam filters. Is it actually spam?"
        if veto_mode
        else "Analyze this message for spam content."
    ]
    if history:
        lines.extend(["", "Recent message history for context:"])
        for item in history:
            status = "[SPAM]" if item.was_spam else "[OK]"
            lines.append(f"{status} {item.user_name or item.user_id}: {item.text[:100]}")
    lines.extend(
        [
            "",
            f"Message from user {request.user.display()} (ID: {request.user.id}):",
            f'"{request.message}"',
            "",
            'Respond with JSON: {"result": "spam" or "clean" or "review", "reason": "explanation", "confidence": 0.0-1.0}',
        ]
    )
    return "\n".join(lines)


class OpenAIContentCheck(ContentCheck):
    name = "openai"

    def __init__(
        self,
        client: GPTClient,
        cache: DetectionCache[DetectionCheckResponse],
        settings: DetectionSettings,
        *,
        model: str = "gpt-4o-mini",
        max_tokens: int = 500,
        history: Optional[MessageHistoryRepository] = None,
        concurrency_limit: int = 4,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings
        self._model = model
        self._max_tokens = max_tokens
        self._history = history
        self._semaphore = asyncio.Semaphore(concurrency_limit)
        self.veto_mode = settings.veto_mode
        self.weight = settings.weights.get(self.name, 1.0)

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        if not self._settings.openai_enabled:
            return False
        if not request.message or not request.message.strip():
            return False
        return not (request.is_user_trusted or request.is_user_admin)

    def _options(self, request: DetectionCheckRequest) -> dict[str, Any]:
        options: dict[str, Any] = {
            "veto_mode": self.veto_mode,
            "min_message_length": self._settings.min_message_length,
            "check_short_messages": self._settings.check_short_messages,
            "system_prompt": self._settings.system_prompt,
        }
        options.update(request.config_for(self.name))
        return options

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        options = self._options(request)
        text = request.message
        min_length = options["min_message_length"]
        veto_mode = options["veto_mode"]

        if len(text) < min_length and not options["check_short_messages"]:
            return DetectionCheckResponse.abstain(self.name, f"Message too short (< {min_length} chars)")

        if veto_mode and not request.has_spam_flags:
            logger.debug("openai_veto_skip", message_id=request.message_id)
            return DetectionCheckResponse.abstain(self.name, VETO_SKIP_DETAILS)

        system_prompt = build_system_prompt(veto_mode, options["system_prompt"])
        cache_key = DetectionCache.fingerprint(
            text,
            namespace=self.name,
            model=self._model,
            system_prompt=system_prompt,
        )
        cached = await self._cache.get(cache_key)
        if cached is not None:
            logger.debug("openai_cache_hit", message_id=request.message_id)
            return dataclasses.replace(cached, details=f"{cached.details} (cached)")

        if not self._client.configured:
            raise ConfigurationMissing("OpenAI API key not configured", provider="openai")

        history = await self._load_history(request)
        completion_request = ChatCompletionRequest(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": build_user_prompt(request, history, veto_mode=veto_mode)},
            ],
            temperature=0.1,
            max_completion_tokens=self._max_tokens,
            response_format={"type": "json_object"},
        )
        async with self._semaphore:
            completion = await self._client.complete(completion_request)
        if completion.finish_reason == "length":
            logger.warning("openai_response_truncated", message_id=request.message_id, tokens=completion.tokens)

        response = self._parse(completion.content, veto_mode=veto_mode)
        await self._cache.set(cache_key, response)
        logger.info(
            "openai_verdict",
            message_id=request.message_id,
            user_id=request.user.id,
            result=response.result.value,
            confidence=response.confidence,
            veto_mode=veto_mode,
        )
        return response

    async def _load_history(self, request: DetectionCheckRequest) -> list[HistoryMessage]:
        if not (self._settings.history_context and self._history and self._settings.history_count):
            return []
        try:
            return await self._history.get_recent_messages(request.chat.id, self._settings.history_count)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("openai_history_unavailable", chat_id=request.chat.id, error=str(exc))
            return []

    def _parse(self, content: str, *, veto_mode: bool) -> DetectionCheckResponse:
        try:
            data = _extract_json(content)
        except json.JSONDecodeError:
            return self._parse_legacy(content, veto_mode=veto_mode)

        result = str(data.get("result", "")).strip().lower()
        reason = str(data.get("reason") or "no reason given")
        raw_confidence = data.get("confidence")
        try:
            confidence = to_percent(None if raw_confidence is None else float(raw_confidence))
        except (TypeError, ValueError):
            confidence = to_percent(None)

        if result == "spam":
            return DetectionCheckResponse(self.name, CheckResult.SPAM, confidence, f"OpenAI detected spam: {reason}")
        if result == "review":
            return DetectionCheckResponse(
                self.name, CheckResult.REVIEW, confidence, f"OpenAI flagged for review: {reason}"
            )
        if result == "clean":
            return DetectionCheckResponse.clean(
                self.name,
                f"OpenAI: Clean - {reason}",
                confidence=confidence if veto_mode else 0,
            )
        raise MalformedResponse(f"Unexpected OpenAI result: {result!r}", provider="openai")

    def _parse_legacy(self, content: str, *, veto_mode: bool) -> DetectionCheckResponse:
        has_not_spam = "NOT_SPAM" in content
        if _SPAM_TOKEN.search(content) and not has_not_spam:
            logger.debug("openai_legacy_response", verdict="spam")
            return DetectionCheckResponse(
                self.name,
                CheckResult.SPAM,
                LEGACY_FALLBACK_CONFIDENCE,
                "OpenAI detected spam (legacy response)",
            )
        if has_not_spam:
            logger.debug("openai_legacy_response", verdict="clean")
            return DetectionCheckResponse.clean(
                self.name,
                "OpenAI: Clean (legacy response)",
                confidence=LEGACY_FALLBACK_CONFIDENCE if veto_mode else 0,
            )
        raise MalformedResponse("Invalid OpenAI response", provider="openai")

    def failure_details(self, exc: DetectionError) -> str:
        if isinstance(exc, ProviderRateLimited):
            return "OpenAI API rate limited - allowing message"
        if isinstance(exc, ProviderTimeout):
            return "OpenAI check timed out - allowing message"
        if isinstance(exc, ConfigurationMissing):
            return "OpenAI API key not configured"
        return f"OpenAI check failed: {exc} - allowing message"


def _extract_json(content: str) -> dict[str, Any]:
    stripped = (content or "").strip()
    if not stripped:
        raise json.JSONDecodeError("Empty response", stripped, 0)
    try:
        data = json.loads(stripped.strip("` \n"))
    except json.JSONDecodeError:
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start == -1 or end <= start:
            raise
        data = json.loads(stripped[start : end + 1])
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", stripped, 0)
    return data
