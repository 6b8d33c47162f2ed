from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..detection.errors import (
    ConfigurationMissing,
    MalformedResponse,
    ProviderRateLimited,
    ProviderServerError,
    ProviderTimeout,
)

logger = structlog.get_logger(__name__)

PROVIDER = "openai"


class _RetryableServerError(ProviderServerError):
    pass


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenAIAdapter:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 15.0,
        max_attempts: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout, headers=headers)
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise ConfigurationMissing("OpenAI API key not configured", provider=PROVIDER)

        retry = AsyncRetrying(
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5.0),
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ReadError, _RetryableServerError)),
            reraise=True,
        )
        try:
            async for attempt in retry:
                with attempt:
                    logger.debug("openai_request", path=path, attempt=attempt.retry_state.attempt_number)
                    response = await self._client.post(path, json=payload)
                    return self._decode(path, response)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"OpenAI request to {path} timed out", provider=PROVIDER) from exc
        except httpx.TransportError as exc:
            raise ProviderServerError(f"OpenAI transport error: {exc}", provider=PROVIDER) from exc
        raise ProviderServerError("Retry exhausted", provider=PROVIDER)

    def _decode(self, path: str, response: httpx.Response) -> dict[str, Any]:
        status = response.status_code
        if status == 429:
            raise ProviderRateLimited(
                "OpenAI API rate limited",
                provider=PROVIDER,
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise _RetryableServerError(f"API error: {status}", provider=PROVIDER, status_code=status)
        if status >= 400:
            raise ProviderServerError(f"API error: {status} {response.text}", provider=PROVIDER, status_code=status)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponse("OpenAI returned a non-JSON body", provider=PROVIDER) from exc
        logger.debug("openai_response", path=path, status=status)
        return data

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass(slots=True)
class ChatCompletionRequest:
    model: str
    messages: list[dict[str, Any]]
    temperature: Optional[float] = None
    max_completion_tokens: Optional[int] = 256
    response_format: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class ChatCompletionResult:
    content: str
    finish_reason: Literal["stop", "length", "content_filter"]
    tokens: int
    prompt_tokens: int
    completion_tokens: int


class GPTClient(OpenAIAdapter):
    async def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.response_format is not None:
            payload["response_format"] = request.response_format
        if request.max_completion_tokens is not None:
            payload["max_completion_tokens"] = request.max_completion_tokens
        logger.debug("gpt_api_call", model=request.model, messages_count=len(request.messages))
        data = await self.post("/chat/completions", payload)
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("Chat completion without choices", provider=PROVIDER) from exc
        usage = data.get("usage") or {}
        return ChatCompletionResult(
            content=content,
            finish_reason=choice.get("finish_reason", "stop"),
            tokens=usage.get("total_tokens", 0),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )


@dataclass(slots=True)
class OmniModerationResult:
    flagged: bool
    categories: dict[str, bool]
    category_scores: dict[str, float]

    def top_category(self) -> tuple[Optional[str], float]:
        if not self.category_scores:
            return None, 0.0
        name = max(self.category_scores, key=self.category_scores.__getitem__)
        return name, self.category_scores[name]


class OmniModerationClient(OpenAIAdapter):
    async def classify(self, text: str, *, model: str = "omni-moderation-latest") -> OmniModerationResult:
        payload = {
            "model": model,
            "input": [{"type": "text", "text": text}],
        }
        logger.debug("omni_api_call", model=model, text_preview=text[:60])
        data = await self.post("/moderations", payload)
        try:
            result = data["results"][0]
            flagged = bool(result["flagged"])
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("Moderation response without results", provider=PROVIDER) from exc
        return OmniModerationResult(
            flagged=flagged,
            categories=result.get("categories", {}),
            category_scores=result.get("category_scores", {}),
        )
