from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from ..detection.errors import MalformedResponse, ProviderRateLimited, ProviderServerError, ProviderTimeout

logger = structlog.get_logger(__name__)

PROVIDER = "cas"


@dataclass(slots=True)
class CasLookup:
    user_id: int
    banned: bool
    offenses: int = 0
    reason: Optional[str] = None


class CasClient:
    """Combot Anti-Spam lookup: ``GET /check?user_id=N``; ``ok=true`` means the user is listed."""

    def __init__(
        self,
        *,
        api_url: str = "https://api.cas.chat",
        timeout: float = 5.0,
        user_agent: str = "groupwarden",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=timeout,
            headers={"User-Agent": user_agent},
        )
        self._owns_client = client is None

    async def check_user(self, user_id: int) -> CasLookup:
        try:
            response = await self._client.get("/check", params={"user_id": user_id})
        except httpx.TimeoutException as exc:
            raise ProviderTimeout("CAS lookup timed out", provider=PROVIDER) from exc
        except httpx.TransportError as exc:
            raise ProviderServerError(f"CAS transport error: {exc}", provider=PROVIDER) from exc

        if response.status_code == 429:
            raise ProviderRateLimited("CAS rate limited", provider=PROVIDER)
        if response.status_code >= 400:
            raise ProviderServerError(
                f"CAS error: {response.status_code}",
                provider=PROVIDER,
                status_code=response.status_code,
            )
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise MalformedResponse("CAS returned a non-JSON body", provider=PROVIDER) from exc

        if not data.get("ok"):
            logger.debug("cas_user_not_listed", user_id=user_id)
            return CasLookup(user_id=user_id, banned=False)

        result = data.get("result") or {}
        offenses = int(result.get("offenses", 0) or 0)
        logger.info("cas_user_listed", user_id=user_id, offenses=offenses)
        return CasLookup(
            user_id=user_id,
            banned=True,
            offenses=offenses,
            reason=f"CAS banned ({offenses} offense{'s' if offenses != 1 else ''})",
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
