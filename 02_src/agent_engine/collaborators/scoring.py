"""Scoring service client (pool recommendations)."""

from typing import Protocol, Sequence

import httpx

from ..errors import TransientCollaboratorError
from ..logging_config import get_logger
from ..models import PoolRecommendation

logger = get_logger(__name__)


class IScoringClient(Protocol):
    """Pool-recommendation lookup. Each call may fail independently."""

    async def get_pool_recommendations(
        self, pool_address: str
    ) -> PoolRecommendation | None:
        """Get the recommendation for one pool, or None if the pool is unknown."""
        ...

    async def get_candidate_pools(
        self, pool_types: Sequence[str], limit: int
    ) -> list[PoolRecommendation]:
        """Get pools worth deploying into, best first."""
        ...


def _unwrap(payload):
    """Accept both bare payloads and {success, data} envelopes."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class HttpScoringClient:
    """Scoring service over HTTP."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_pool_recommendations(
        self, pool_address: str
    ) -> PoolRecommendation | None:
        """Get the recommendation for one pool, or None if the pool is unknown."""
        try:
            response = await self._client.get(
                f"{self._base_url}/pools/{pool_address}/recommendation"
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientCollaboratorError("scoring", str(e)) from e

        data = _unwrap(response.json())
        if not data:
            return None
        data.setdefault("pool_address", pool_address)
        return PoolRecommendation.from_dict(data)

    async def get_candidate_pools(
        self, pool_types: Sequence[str], limit: int
    ) -> list[PoolRecommendation]:
        """Get pools worth deploying into, best first."""
        params: dict[str, str | int] = {"limit": limit}
        if pool_types:
            params["types"] = ",".join(pool_types)

        try:
            response = await self._client.get(
                f"{self._base_url}/pools/recommendations", params=params
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientCollaboratorError("scoring", str(e)) from e

        items = _unwrap(response.json()) or []
        recommendations = []
        for item in items:
            try:
                recommendations.append(PoolRecommendation.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed pool recommendation: %s", e)
        return recommendations
