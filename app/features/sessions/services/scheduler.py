"""
Producer helpers for session jobs.

Request-path code calls these instead of doing deferred work inline. The
payload is validated here so a malformed job never reaches the queue.
"""

from collections.abc import Sequence

import pydantic

from app.errors import ValidationError
from app.features.sessions.domain import WrappedKey
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.base import JobQueue
from app.infrastructure.queue.jobs import (
    AddRecipientToSessionJob,
    DeleteSessionKeysJob,
    JobName,
    JobPayload,
    PopulateDidCacheJob,
    RevokeSessionJob,
    UpdateSessionKeysJob,
)

logger = get_logger(__name__)


def _build(model: type[JobPayload], **fields) -> JobPayload:
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model.__name__} payload: {e}") from e


class SessionJobScheduler:
    """Enqueues session and identity-cache work onto the job queue."""

    def __init__(self, queue: JobQueue):
        self._queue = queue

    async def _enqueue(self, name: JobName, payload: JobPayload) -> str:
        job_id = await self._queue.enqueue(name.value, payload.to_wire())
        logger.debug("Session job scheduled", job_name=name.value, job_id=job_id)
        return job_id

    async def enqueue_add_recipient(
        self, author_did: str, recipient_did: str, key: WrappedKey | None = None
    ) -> str:
        payload = _build(
            AddRecipientToSessionJob,
            author_did=author_did,
            recipient_did=recipient_did,
            user_key_pair_id=key.user_key_pair_id if key else None,
            encrypted_dek=key.encrypted_dek if key else None,
        )
        return await self._enqueue(JobName.ADD_RECIPIENT_TO_SESSION, payload)

    async def enqueue_populate_did_cache(self, dids: Sequence[str], host: str | None = None) -> str:
        payload = _build(PopulateDidCacheJob, dids=list(dids), host=host)
        return await self._enqueue(JobName.POPULATE_DID_CACHE, payload)

    async def enqueue_update_session_keys(self, session_id: str, keys: Sequence[WrappedKey]) -> str:
        payload = _build(
            UpdateSessionKeysJob,
            session_id=session_id,
            keys=[
                {
                    "recipient_did": key.recipient_did,
                    "user_key_pair_id": key.user_key_pair_id,
                    "encrypted_dek": key.encrypted_dek,
                }
                for key in keys
            ],
        )
        return await self._enqueue(JobName.UPDATE_SESSION_KEYS, payload)

    async def enqueue_revoke_session(self, author_did: str, recipient_did: str | None = None) -> str:
        payload = _build(RevokeSessionJob, author_did=author_did, recipient_did=recipient_did)
        return await self._enqueue(JobName.REVOKE_SESSION, payload)

    async def enqueue_delete_session_keys(self, author_did: str, recipient_did: str) -> str:
        payload = _build(DeleteSessionKeysJob, author_did=author_did, recipient_did=recipient_did)
        return await self._enqueue(JobName.DELETE_SESSION_KEYS, payload)
