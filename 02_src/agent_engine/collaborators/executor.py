"""Transaction pipeline client."""

from dataclasses import asdict
from typing import Protocol

import httpx

from ..errors import TransientCollaboratorError
from ..models import TransactionRequest, TransactionResult


class ITransactionExecutor(Protocol):
    """Black-box transaction pipeline."""

    async def execute(self, request: TransactionRequest) -> TransactionResult:
        """Submit one request and report its outcome."""
        ...


class HttpTransactionExecutor:
    """Transaction service over HTTP."""

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

    async def execute(self, request: TransactionRequest) -> TransactionResult:
        """POST the request; 4xx is a rejected transaction, 5xx/transport is transient."""
        body = asdict(request)
        body["type"] = request.type.value

        try:
            response = await self._client.post(
                f"{self._base_url}/transactions", json=body
            )
        except httpx.HTTPError as e:
            raise TransientCollaboratorError("transactions", str(e)) from e

        if response.status_code >= 500:
            raise TransientCollaboratorError(
                "transactions", f"HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_success:
            return TransactionResult(
                success=bool(payload.get("success", True)),
                message=payload.get("message", ""),
            )

        return TransactionResult(
            success=False,
            message=payload.get("error")
            or payload.get("message")
            or f"HTTP {response.status_code}",
        )
