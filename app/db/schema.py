"""
Schema for the session/key store.

The partial unique index on sessions is what makes "one active session per
author" hold under concurrent creates.
"""

from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ACTIVE_SESSION_INDEX = "sessions_one_active_per_author"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        author_did TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        revoked_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_SESSION_INDEX}
        ON sessions (author_did)
        WHERE revoked_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS session_keys (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        session_id UUID NOT NULL REFERENCES sessions (id) ON DELETE CASCADE,
        recipient_did TEXT NOT NULL,
        user_key_pair_id TEXT NOT NULL,
        encrypted_dek TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT session_keys_session_recipient_key UNIQUE (session_id, recipient_did)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS session_keys_recipient_did_idx
        ON session_keys (recipient_did)
    """,
    """
    CREATE TABLE IF NOT EXISTS user_did_cache (
        user_did TEXT PRIMARY KEY,
        handle TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


async def ensure_schema(db_pool: DatabasePoolManager) -> None:
    """Create tables and indexes if they are missing."""
    async with db_pool.transaction() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)

    logger.info("Database schema ensured", statements=len(SCHEMA_STATEMENTS))
