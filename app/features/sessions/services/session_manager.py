"""
Session/Key manager.

Owns the session state machine: one active session per author, idempotent
recipient keys, revocation that drops every key. Every mutating operation
checks current state before writing so a redelivered job that already
succeeded turns into a no-op; the database constraints are the backstop for
concurrent writers.
"""

import uuid
from collections.abc import Sequence

from app.db.helpers import UniqueConstraintError
from app.errors import ConflictError, NotFoundError, ValidationError
from app.features.sessions.domain import Session, SessionKey, WrappedKey
from app.features.sessions.repository.session_repository import SessionRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _require_text(value: str | None, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


def _require_session_id(session_id: str | None) -> str:
    _require_text(session_id, "session_id")
    try:
        return str(uuid.UUID(session_id))
    except ValueError as e:
        raise ValidationError(f"session_id is not a valid identifier: {session_id}") from e


def _validate_wrapped_key(key: WrappedKey) -> None:
    _require_text(key.recipient_did, "recipient_did")
    _require_text(key.user_key_pair_id, "user_key_pair_id")
    _require_text(key.encrypted_dek, "encrypted_dek")


def _validate_key_batch(keys: Sequence[WrappedKey], context: str) -> None:
    seen: set[str] = set()
    for key in keys:
        _validate_wrapped_key(key)
        if key.recipient_did in seen:
            raise ValidationError(f"Duplicate recipient in {context}: {key.recipient_did}")
        seen.add(key.recipient_did)


class SessionKeyManager:
    """Manages sessions and per-recipient session keys for authors."""

    def __init__(self, repository: SessionRepository):
        self._repository = repository

    async def create_session(
        self, author_did: str, recipients: Sequence[WrappedKey] = ()
    ) -> Session:
        """
        Start a new session for the author.

        Keys for `recipients` are written in the same transaction as the
        session, so the session never exists without them.

        Raises:
            ValidationError: a recipient key is malformed or repeated.
            ConflictError: the author already has an active session, either
                seen up front or reported by the active-session unique index
                when two creates race.
        """
        _require_text(author_did, "author_did")
        _validate_key_batch(recipients, "session create")

        existing = await self._repository.get_active_session(author_did)
        if existing is not None:
            raise ConflictError(
                f"Author {author_did} already has an active session", operation="create_session"
            )

        try:
            return await self._repository.insert_session(author_did, list(recipients))
        except UniqueConstraintError as e:
            logger.info("Concurrent session create rejected", author_did=author_did)
            raise ConflictError(
                f"Author {author_did} already has an active session", operation="create_session"
            ) from e

    async def get_session(self, session_id: str) -> Session:
        session_id = _require_session_id(session_id)
        session = await self._repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", operation="get_session")
        return session

    async def get_sessions(self, session_ids: Sequence[str]) -> list[Session]:
        """
        Fetch several sessions at once, in the order requested with repeats dropped.

        Raises:
            NotFoundError: any of the ids is unknown; the message lists them all.
        """
        requested = list(dict.fromkeys(_require_session_id(sid) for sid in session_ids))
        if not requested:
            return []

        found = {session.id: session for session in await self._repository.get_sessions(requested)}
        missing = [sid for sid in requested if sid not in found]
        if missing:
            raise NotFoundError(
                f"Sessions not found: {', '.join(missing)}", operation="get_sessions"
            )
        return [found[sid] for sid in requested]

    async def get_active_session(self, author_did: str) -> Session | None:
        _require_text(author_did, "author_did")
        return await self._repository.get_active_session(author_did)

    async def _get_active(self, session_id: str, operation: str) -> Session:
        session = await self._repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", operation=operation)
        if not session.is_active:
            raise NotFoundError(f"Session {session_id} is inactive", operation=operation)
        return session

    async def get_session_key(self, session_id: str, recipient_did: str) -> SessionKey | None:
        session_id = _require_session_id(session_id)
        _require_text(recipient_did, "recipient_did")
        return await self._repository.get_session_key(session_id, recipient_did)

    async def list_session_keys(self, session_id: str) -> list[SessionKey]:
        session_id = _require_session_id(session_id)
        return await self._repository.list_session_keys(session_id)

    async def add_recipient(
        self,
        session_id: str,
        recipient_did: str,
        user_key_pair_id: str,
        encrypted_dek: str,
    ) -> SessionKey:
        """
        Grant a recipient access to an active session.

        Returns the recipient's existing key unchanged when one is already
        present.

        Raises:
            NotFoundError: the session does not exist or has been revoked.
        """
        session_id = _require_session_id(session_id)
        key = WrappedKey(
            recipient_did=recipient_did,
            user_key_pair_id=user_key_pair_id,
            encrypted_dek=encrypted_dek,
        )
        _validate_wrapped_key(key)

        await self._get_active(session_id, "add_recipient")

        existing = await self._repository.get_session_key(session_id, recipient_did)
        if existing is not None:
            logger.debug(
                "Recipient already has a session key",
                session_id=session_id,
                recipient_did=recipient_did,
            )
            return existing

        return await self._repository.insert_session_key(session_id, key)

    async def update_session_keys(
        self, session_id: str, keys: Sequence[WrappedKey]
    ) -> list[SessionKey]:
        """
        Rotate wrapped keys for recipients of an active session.

        The whole batch is applied in one transaction. Returns the new keys in
        the order they were given.

        Raises:
            ValidationError: a key is malformed or a recipient appears twice.
            NotFoundError: the session is inactive, or a recipient has no key
                to rotate. Nothing is applied in that case.
        """
        session_id = _require_session_id(session_id)
        _validate_key_batch(keys, "key update")

        await self._get_active(session_id, "update_session_keys")

        if not keys:
            return []

        return await self._repository.replace_session_keys(session_id, list(keys))

    async def revoke_session(self, session_id: str) -> None:
        """
        Revoke a session and drop its keys. Revoking twice is a no-op.

        Raises:
            NotFoundError: no session with that id was ever created.
        """
        session_id = _require_session_id(session_id)
        session = await self._repository.revoke_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", operation="revoke_session")

    async def revoke_active_session(self, author_did: str) -> Session | None:
        """Revoke the author's active session if there is one and return it."""
        _require_text(author_did, "author_did")
        session = await self._repository.get_active_session(author_did)
        if session is None:
            logger.debug("No active session to revoke", author_did=author_did)
            return None
        return await self._repository.revoke_session(session.id)

    async def delete_session_keys(self, session_id: str, recipient_dids: Sequence[str]) -> int:
        """Remove the given recipients' keys; recipients without a key are ignored."""
        session_id = _require_session_id(session_id)
        for recipient_did in recipient_dids:
            _require_text(recipient_did, "recipient_did")

        if await self._repository.get_session(session_id) is None:
            raise NotFoundError(f"Session {session_id} not found", operation="delete_session_keys")

        if not recipient_dids:
            return 0

        return await self._repository.delete_session_keys(session_id, list(dict.fromkeys(recipient_dids)))

    async def delete_recipient_keys(self, author_did: str, recipient_did: str) -> int:
        """Remove a recipient's keys from every session of the author."""
        _require_text(author_did, "author_did")
        _require_text(recipient_did, "recipient_did")
        return await self._repository.delete_recipient_keys_for_author(author_did, recipient_did)
