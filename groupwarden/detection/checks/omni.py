from __future__ import annotations

import structlog

from ...adapters.openai import OmniModerationClient
from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from ..confidence import to_percent
from .base import ContentCheck

logger = structlog.get_logger(__name__)


class OmniModerationCheck(ContentCheck):
    name = "omni"

    def __init__(
        self,
        client: OmniModerationClient,
        *,
        model: str = "omni-moderation-latest",
        weight: float = 1.0,
    ) -> None:
        self._client = client
        self._model = model
        self.weight = weight

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        return self._client.configured and super().should_execute(request)

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        result = await self._client.classify(request.message, model=self._model)
        category, score = result.top_category()
        if not result.flagged:
            return DetectionCheckResponse.clean(self.name, "OpenAI moderation: not flagged")
        flagged = sorted(name for name, value in result.categories.items() if value)
        logger.info(
            "omni_flagged",
            message_id=request.message_id,
            user_id=request.user.id,
            categories=flagged,
            top_category=category,
        )
        return DetectionCheckResponse(
            self.name,
            CheckResult.SPAM,
            to_percent(score),
            f"OpenAI moderation flagged: {', '.join(flagged) or category}",
        )
