"""
Identity cache warmer job.

Handles populate-did-cache: resolves every DID in the batch that is not
cached yet and stores its handle. DIDs are resolved independently; when some
fail, the successes are still cached and the job raises so the queue
redelivers it. A redelivery skips whatever is cached by then.
"""

from app.errors import ResolutionError
from app.features.identity_cache.domain import ResolvedIdentity
from app.features.identity_cache.repository.did_cache_repository import DidCacheRepository
from app.features.identity_cache.services.identity_resolver import BlueskyIdentityResolver
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.jobs import PopulateDidCacheJob
from app.infrastructure.queue.models import JobOutcome

logger = get_logger(__name__)


class DidCacheWarmerHandler:
    """Queue handler for populate-did-cache jobs."""

    def __init__(
        self,
        repository: DidCacheRepository,
        resolver: BlueskyIdentityResolver,
        default_host: str = "https://public.api.bsky.app",
    ):
        self._repository = repository
        self._resolver = resolver
        self._default_host = default_host

    async def __call__(self, payload: PopulateDidCacheJob) -> JobOutcome:
        host = payload.host or self._default_host
        requested = list(dict.fromkeys(payload.dids))
        cached = await self._repository.fetch_entries(requested)
        uncached = [did for did in requested if did not in cached]

        resolved: list[ResolvedIdentity] = []
        failed: list[str] = []
        for did in uncached:
            try:
                resolved.append(await self._resolver.resolve(did, host))
            except ResolutionError as e:
                failed.append(did)
                logger.warning("DID resolution failed", did=did, host=host, error=str(e))

        await self._repository.insert_entries(resolved)

        logger.info(
            "DID cache batch processed",
            requested=len(requested),
            already_cached=len(cached),
            resolved=len(resolved),
            failed=len(failed),
        )

        if failed:
            raise ResolutionError(
                f"Could not resolve {len(failed)} of {len(uncached)} DIDs",
                failed_dids=failed,
                operation="populate_did_cache",
            )

        return JobOutcome(details={"resolved": len(resolved), "already_cached": len(cached)})
