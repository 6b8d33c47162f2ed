from __future__ import annotations

import structlog

from ...adapters.cas import CasClient, CasLookup
from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from ..cache import DetectionCache
from .base import ContentCheck

logger = structlog.get_logger(__name__)


class CasCheck(ContentCheck):
    """Combot Anti-Spam reputation lookup. A listed user is a hard signal."""

    name = "cas"

    def __init__(self, client: CasClient, cache: DetectionCache[CasLookup], *, weight: float = 1.0) -> None:
        self._client = client
        self._cache = cache
        self.weight = weight

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        return not (request.is_user_trusted or request.is_user_admin)

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        key = f"cas:{request.user.id}"
        lookup = await self._cache.get(key)
        cached = lookup is not None
        if lookup is None:
            lookup = await self._client.check_user(request.user.id)
            await self._cache.set(key, lookup)

        suffix = " (cached)" if cached else ""
        if lookup.banned:
            logger.info("cas_listed_user", user_id=request.user.id, offenses=lookup.offenses)
            return DetectionCheckResponse(self.name, CheckResult.SPAM, 100, f"{lookup.reason}{suffix}")
        return DetectionCheckResponse.clean(self.name, f"User not in CAS database{suffix}")
