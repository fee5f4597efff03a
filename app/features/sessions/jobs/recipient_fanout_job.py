"""
Recipient fan-out job.

Handles add-recipient-to-session off the request path. A job that finds
nothing to do (no active session, recipient already has a key, recipient no
longer trusted, session revoked mid-flight) completes as a no-op; only
transient failures are raised back to the queue for a retry.
"""

from app.errors import NotFoundError, ValidationError
from app.features.sessions.clients.trusted_users_client import TrustedUsersClient
from app.features.sessions.clients.user_keys_client import UserKeysClient
from app.features.sessions.domain import WrappedKey
from app.features.sessions.services.session_manager import SessionKeyManager
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.jobs import AddRecipientToSessionJob
from app.infrastructure.queue.models import JobOutcome

logger = get_logger(__name__)


class RecipientFanoutHandler:
    """Queue handler that grants a recipient a key on the author's active session."""

    def __init__(
        self,
        manager: SessionKeyManager,
        key_provider: UserKeysClient | None = None,
        trust_client: TrustedUsersClient | None = None,
    ):
        self._manager = manager
        self._key_provider = key_provider
        self._trust_client = trust_client

    async def __call__(self, payload: AddRecipientToSessionJob) -> JobOutcome:
        author_did, recipient_did = payload.author_did, payload.recipient_did
        log = logger.bind(author_did=author_did, recipient_did=recipient_did)

        if self._trust_client is not None:
            if not await self._trust_client.is_trusted(author_did, recipient_did):
                return JobOutcome(abort_reason="Recipient no longer trusted")

        session = await self._manager.get_active_session(author_did)
        if session is None:
            log.info("No active session for author, nothing to fan out")
            return JobOutcome()

        existing = await self._manager.get_session_key(session.id, recipient_did)
        if existing is not None:
            log.info("Recipient already has a session key", session_id=session.id)
            return JobOutcome()

        key = await self._key_material(payload, session)

        try:
            session_key = await self._manager.add_recipient(
                session.id, recipient_did, key.user_key_pair_id, key.encrypted_dek
            )
        except NotFoundError:
            log.info("Session became inactive before the key was added", session_id=session.id)
            return JobOutcome()

        log.info("Recipient added to session", session_id=session.id, session_key_id=session_key.id)
        return JobOutcome(details={"session_id": session.id, "session_key_id": session_key.id})

    async def _key_material(self, payload: AddRecipientToSessionJob, session) -> WrappedKey:
        if payload.user_key_pair_id and payload.encrypted_dek:
            return WrappedKey(
                recipient_did=payload.recipient_did,
                user_key_pair_id=payload.user_key_pair_id,
                encrypted_dek=payload.encrypted_dek,
            )

        if self._key_provider is None:
            raise ValidationError(
                "Job carries no key material and no user-keys service is configured",
                operation="add_recipient_to_session",
            )

        return await self._key_provider.wrap_for_recipient(session, payload.recipient_did)
