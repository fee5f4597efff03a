"""
Base client for XRPC calls to sibling services (trusted-users, user-keys).
"""

from typing import Any

import httpx

from app.errors import UpstreamServiceError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class InterServiceClient:
    """Thin httpx wrapper: one base URL, bearer API key, JSON in and out."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._client = client

    async def open(self) -> None:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _xrpc(
        self,
        method: str,
        nsid: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError(f"{self.service_name} client not opened. Call open() first.")

        try:
            response = await self._client.request(
                method, f"/xrpc/{nsid}", params=params, json=body
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Inter-service request failed", service=self.service_name, nsid=nsid, error=str(e)
            )
            raise UpstreamServiceError(f"{self.service_name} request {nsid} failed: {e}") from e

        if response.is_error:
            logger.warning(
                "Inter-service request rejected",
                service=self.service_name,
                nsid=nsid,
                status_code=response.status_code,
            )
            raise UpstreamServiceError(
                f"{self.service_name} request {nsid} returned HTTP {response.status_code}"
            )

        return response.json()
