"""
Identity resolver backed by the AT Protocol profile endpoint.

Resolves a DID to its current handle with one XRPC call. There is no retry
here; the cache warmer job decides what a failure means.
"""

import httpx

from app.errors import ResolutionError
from app.features.identity_cache.domain import ResolvedIdentity
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GET_PROFILE_PATH = "/xrpc/app.bsky.actor.getProfile"


class BlueskyIdentityResolver:
    """Resolves DIDs to handles via app.bsky.actor.getProfile."""

    def __init__(self, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None):
        self._timeout = timeout_seconds
        self._client = client

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._timeout)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def open(self) -> None:
        if self._client is None:
            self._client = self._create_client()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def resolve(self, did: str, host: str) -> ResolvedIdentity:
        """
        Look up the handle for a DID on the given AppView host.

        Raises:
            ResolutionError: unknown DID, HTTP failure, or a response without a handle.
        """
        if self._client is None:
            raise RuntimeError("Identity resolver not opened. Call open() first.")

        url = f"{host.rstrip('/')}{GET_PROFILE_PATH}"
        try:
            response = await self._client.get(url, params={"actor": did})
        except httpx.HTTPError as e:
            logger.warning("Identity lookup request failed", did=did, host=host, error=str(e))
            raise ResolutionError(f"Lookup for {did} failed: {e}", failed_dids=[did]) from e

        if response.status_code != 200:
            logger.warning(
                "Identity lookup rejected", did=did, host=host, status_code=response.status_code
            )
            raise ResolutionError(
                f"Lookup for {did} returned HTTP {response.status_code}", failed_dids=[did]
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ResolutionError(f"Lookup for {did} returned invalid JSON", failed_dids=[did]) from e

        handle = body.get("handle") if isinstance(body, dict) else None

        if not handle:
            raise ResolutionError(f"Lookup for {did} returned no handle", failed_dids=[did])

        return ResolvedIdentity(did=did, handle=handle)
