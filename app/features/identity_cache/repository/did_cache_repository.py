"""
Repository helpers for the DID handle cache.
"""

from collections.abc import Iterable, Sequence

from app.db.helpers import fetch_all, storage_errors
from app.db.pool import DatabasePoolManager
from app.features.identity_cache.domain import DidCacheEntry, ResolvedIdentity
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DidCacheRepository:
    """Persistence helpers for user_did_cache."""

    def __init__(self, db_pool: DatabasePoolManager):
        self._db = db_pool

    async def fetch_entries(self, dids: Sequence[str]) -> dict[str, DidCacheEntry]:
        if not dids:
            return {}

        query = """
            SELECT user_did, handle, created_at
            FROM user_did_cache
            WHERE user_did = ANY(%s)
        """
        with storage_errors("fetch_did_cache_entries"):
            async with self._db.connection() as conn:
                rows = await fetch_all(conn, query, (list(dids),))

        return {
            row["user_did"]: DidCacheEntry(
                user_did=row["user_did"],
                handle=row["handle"],
                created_at=row.get("created_at"),
            )
            for row in rows
        }

    async def insert_entries(self, identities: Iterable[ResolvedIdentity]) -> None:
        """Insert cache rows; a DID cached concurrently by another worker is left as is."""
        payload = [(identity.did, identity.handle) for identity in identities]

        if not payload:
            return

        query = """
            INSERT INTO user_did_cache (user_did, handle)
            VALUES (%s, %s)
            ON CONFLICT (user_did) DO NOTHING
        """
        with storage_errors("insert_did_cache_entries"):
            async with self._db.transaction() as conn:
                async with conn.cursor() as cur:
                    await cur.executemany(query, payload)

        logger.info("DID cache entries inserted", record_count=len(payload))
