"""
Persistence layer for sessions and session keys.

Each public method runs in its own transaction, so a caller never observes
a partially applied operation. Rows are locked with FOR SHARE while keys are
written, which serializes key writes against a concurrent revoke.
"""

from collections.abc import Sequence

from app.db.helpers import execute_query, fetch_all, fetch_one, storage_errors
from app.db.pool import DatabasePoolManager
from app.errors import NotFoundError
from app.features.sessions.domain import Session, SessionKey, WrappedKey
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SessionRepository:
    """Postgres-backed storage port for sessions and their keys."""

    SESSION_COLUMNS = "id, author_did, created_at, revoked_at"
    KEY_COLUMNS = "id, session_id, recipient_did, user_key_pair_id, encrypted_dek, created_at"

    def __init__(self, db_pool: DatabasePoolManager):
        self._db = db_pool

    @staticmethod
    def _row_to_session(row: dict | None) -> Session | None:
        if not row:
            return None

        return Session(
            id=str(row["id"]),
            author_did=row["author_did"],
            created_at=row["created_at"],
            revoked_at=row.get("revoked_at"),
        )

    @staticmethod
    def _row_to_key(row: dict | None) -> SessionKey | None:
        if not row:
            return None

        return SessionKey(
            id=str(row["id"]),
            session_id=str(row["session_id"]),
            recipient_did=row["recipient_did"],
            user_key_pair_id=row["user_key_pair_id"],
            encrypted_dek=row["encrypted_dek"],
            created_at=row.get("created_at"),
        )

    async def _lock_active_session(self, conn, session_id: str) -> None:
        row = await fetch_one(
            conn,
            "SELECT id, revoked_at FROM sessions WHERE id = %s FOR SHARE",
            (session_id,),
        )
        if not row:
            raise NotFoundError(f"Session {session_id} not found", operation="lock_session")
        if row["revoked_at"] is not None:
            raise NotFoundError(f"Session {session_id} is inactive", operation="lock_session")

    async def get_session(self, session_id: str) -> Session | None:
        query = f"SELECT {self.SESSION_COLUMNS} FROM sessions WHERE id = %s"
        with storage_errors("get_session"):
            async with self._db.connection() as conn:
                row = await fetch_one(conn, query, (session_id,))
        return self._row_to_session(row)

    async def get_active_session(self, author_did: str) -> Session | None:
        query = f"""
            SELECT {self.SESSION_COLUMNS}
            FROM sessions
            WHERE author_did = %s AND revoked_at IS NULL
        """
        with storage_errors("get_active_session"):
            async with self._db.connection() as conn:
                row = await fetch_one(conn, query, (author_did,))
        return self._row_to_session(row)

    async def get_sessions(self, session_ids: Sequence[str]) -> list[Session]:
        query = f"SELECT {self.SESSION_COLUMNS} FROM sessions WHERE id = ANY(%s)"
        with storage_errors("get_sessions"):
            async with self._db.connection() as conn:
                rows = await fetch_all(conn, query, (list(session_ids),))
        return [self._row_to_session(row) for row in rows]

    async def insert_session(self, author_did: str, recipients: Sequence[WrappedKey] = ()) -> Session:
        """
        Insert a new active session together with its initial recipient keys.

        Raises UniqueConstraintError when the author already has one; no key
        is written in that case.
        """
        session_query = f"""
            INSERT INTO sessions (author_did)
            VALUES (%s)
            RETURNING {self.SESSION_COLUMNS}
        """
        key_query = """
            INSERT INTO session_keys (session_id, recipient_did, user_key_pair_id, encrypted_dek)
            VALUES (%s, %s, %s, %s)
        """
        with storage_errors("insert_session"):
            async with self._db.transaction() as conn:
                row = await fetch_one(conn, session_query, (author_did,))
                for key in recipients:
                    await execute_query(
                        conn,
                        key_query,
                        (row["id"], key.recipient_did, key.user_key_pair_id, key.encrypted_dek),
                    )

        session = self._row_to_session(row)
        logger.info(
            "Session created",
            session_id=session.id,
            author_did=author_did,
            key_count=len(recipients),
        )
        return session

    async def get_session_key(self, session_id: str, recipient_did: str) -> SessionKey | None:
        query = f"""
            SELECT {self.KEY_COLUMNS}
            FROM session_keys
            WHERE session_id = %s AND recipient_did = %s
        """
        with storage_errors("get_session_key"):
            async with self._db.connection() as conn:
                row = await fetch_one(conn, query, (session_id, recipient_did))
        return self._row_to_key(row)

    async def list_session_keys(self, session_id: str) -> list[SessionKey]:
        query = f"""
            SELECT {self.KEY_COLUMNS}
            FROM session_keys
            WHERE session_id = %s
            ORDER BY created_at ASC, recipient_did ASC
        """
        with storage_errors("list_session_keys"):
            async with self._db.connection() as conn:
                rows = await fetch_all(conn, query, (session_id,))
        return [self._row_to_key(row) for row in rows]

    async def insert_session_key(self, session_id: str, key: WrappedKey) -> SessionKey:
        """
        Insert a key for an active session, or return the recipient's existing key.

        Raises NotFoundError if the session is missing or revoked.
        """
        insert_query = f"""
            INSERT INTO session_keys (session_id, recipient_did, user_key_pair_id, encrypted_dek)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (session_id, recipient_did) DO NOTHING
            RETURNING {self.KEY_COLUMNS}
        """
        select_query = f"""
            SELECT {self.KEY_COLUMNS}
            FROM session_keys
            WHERE session_id = %s AND recipient_did = %s
        """
        with storage_errors("insert_session_key"):
            async with self._db.transaction() as conn:
                await self._lock_active_session(conn, session_id)
                row = await fetch_one(
                    conn,
                    insert_query,
                    (session_id, key.recipient_did, key.user_key_pair_id, key.encrypted_dek),
                )
                created = row is not None
                if not created:
                    row = await fetch_one(conn, select_query, (session_id, key.recipient_did))

        if created:
            logger.info(
                "Session key created", session_id=session_id, recipient_did=key.recipient_did
            )
        else:
            logger.info(
                "Session key already present", session_id=session_id, recipient_did=key.recipient_did
            )
        return self._row_to_key(row)

    async def replace_session_keys(
        self, session_id: str, keys: Sequence[WrappedKey]
    ) -> list[SessionKey]:
        """
        Rotate keys for existing recipients in one transaction.

        Every recipient must already hold a key; otherwise NotFoundError is
        raised and nothing is applied.
        """
        delete_query = """
            DELETE FROM session_keys
            WHERE session_id = %s AND recipient_did = %s
            RETURNING id
        """
        insert_query = f"""
            INSERT INTO session_keys (session_id, recipient_did, user_key_pair_id, encrypted_dek)
            VALUES (%s, %s, %s, %s)
            RETURNING {self.KEY_COLUMNS}
        """
        updated: list[SessionKey] = []
        with storage_errors("replace_session_keys"):
            async with self._db.transaction() as conn:
                await self._lock_active_session(conn, session_id)
                for key in keys:
                    removed = await fetch_one(conn, delete_query, (session_id, key.recipient_did))
                    if not removed:
                        raise NotFoundError(
                            f"Recipient {key.recipient_did} has no key on session {session_id}",
                            operation="replace_session_keys",
                        )
                    row = await fetch_one(
                        conn,
                        insert_query,
                        (session_id, key.recipient_did, key.user_key_pair_id, key.encrypted_dek),
                    )
                    updated.append(self._row_to_key(row))

        logger.info("Session keys rotated", session_id=session_id, key_count=len(updated))
        return updated

    async def revoke_session(self, session_id: str) -> Session | None:
        """
        Mark the session revoked (first call wins) and drop its keys.

        Returns the session as stored afterwards, or None if it does not exist.
        """
        update_query = """
            UPDATE sessions
            SET revoked_at = NOW()
            WHERE id = %s AND revoked_at IS NULL
        """
        delete_keys_query = "DELETE FROM session_keys WHERE session_id = %s"
        select_query = f"SELECT {self.SESSION_COLUMNS} FROM sessions WHERE id = %s"

        with storage_errors("revoke_session"):
            async with self._db.transaction() as conn:
                revoked = await execute_query(conn, update_query, (session_id,))
                removed = await execute_query(conn, delete_keys_query, (session_id,))
                row = await fetch_one(conn, select_query, (session_id,))

        if revoked:
            logger.info("Session revoked", session_id=session_id, keys_removed=removed)
        return self._row_to_session(row)

    async def delete_session_keys(self, session_id: str, recipient_dids: Sequence[str]) -> int:
        query = """
            DELETE FROM session_keys
            WHERE session_id = %s AND recipient_did = ANY(%s)
        """
        with storage_errors("delete_session_keys"):
            async with self._db.transaction() as conn:
                removed = await execute_query(conn, query, (session_id, list(recipient_dids)))

        logger.info("Session keys deleted", session_id=session_id, removed=removed)
        return removed

    async def delete_recipient_keys_for_author(self, author_did: str, recipient_did: str) -> int:
        query = """
            DELETE FROM session_keys sk
            USING sessions s
            WHERE sk.session_id = s.id
              AND s.author_did = %s
              AND sk.recipient_did = %s
        """
        with storage_errors("delete_recipient_keys_for_author"):
            async with self._db.transaction() as conn:
                removed = await execute_query(conn, query, (author_did, recipient_did))

        logger.info(
            "Recipient keys deleted for author",
            author_did=author_did,
            recipient_did=recipient_did,
            removed=removed,
        )
        return removed
