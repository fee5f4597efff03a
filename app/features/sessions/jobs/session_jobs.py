"""
Session maintenance jobs: key rotation, revocation, recipient removal.
"""

from app.features.sessions.clients.trusted_users_client import TrustedUsersClient
from app.features.sessions.domain import WrappedKey
from app.features.sessions.services.session_manager import SessionKeyManager
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.jobs import (
    DeleteSessionKeysJob,
    RevokeSessionJob,
    UpdateSessionKeysJob,
)
from app.infrastructure.queue.models import JobOutcome

logger = get_logger(__name__)


class UpdateSessionKeysHandler:
    def __init__(self, manager: SessionKeyManager):
        self._manager = manager

    async def __call__(self, payload: UpdateSessionKeysJob) -> JobOutcome:
        keys = [
            WrappedKey(
                recipient_did=key.recipient_did,
                user_key_pair_id=key.user_key_pair_id,
                encrypted_dek=key.encrypted_dek,
            )
            for key in payload.keys
        ]
        updated = await self._manager.update_session_keys(payload.session_id, keys)
        return JobOutcome(details={"updated": len(updated)})


class RevokeSessionHandler:
    """Revokes the author's active session; optionally strips one recipient everywhere."""

    def __init__(self, manager: SessionKeyManager):
        self._manager = manager

    async def __call__(self, payload: RevokeSessionJob) -> JobOutcome:
        session = await self._manager.revoke_active_session(payload.author_did)

        removed = 0
        if payload.recipient_did:
            removed = await self._manager.delete_recipient_keys(
                payload.author_did, payload.recipient_did
            )

        logger.info(
            "Revoke session job processed",
            author_did=payload.author_did,
            session_id=session.id if session else None,
            recipient_keys_removed=removed,
        )
        return JobOutcome(details={"revoked": session is not None, "keys_removed": removed})


class DeleteSessionKeysHandler:
    """Removes an untrusted recipient's keys from all of the author's sessions."""

    def __init__(self, manager: SessionKeyManager, trust_client: TrustedUsersClient | None = None):
        self._manager = manager
        self._trust_client = trust_client

    async def __call__(self, payload: DeleteSessionKeysJob) -> JobOutcome:
        if self._trust_client is not None:
            if await self._trust_client.is_trusted(payload.author_did, payload.recipient_did):
                return JobOutcome(abort_reason="Recipient has been trusted again")

        removed = await self._manager.delete_recipient_keys(payload.author_did, payload.recipient_did)
        return JobOutcome(details={"keys_removed": removed})
