"""
Client for the user-keys service.

The user-keys service holds the key pairs, so it is the one that re-wraps a
session's data-encryption-key for a new recipient. This service only stores
the opaque result.
"""

from app.errors import UpstreamServiceError
from app.features.sessions.clients.service_client import InterServiceClient
from app.features.sessions.domain import Session, WrappedKey


class UserKeysClient(InterServiceClient):
    service_name = "user-keys"

    async def wrap_for_recipient(self, session: Session, recipient_did: str) -> WrappedKey:
        body = await self._xrpc(
            "POST",
            "social.spkeasy.key.wrapSessionKey",
            body={
                "sessionId": session.id,
                "authorDid": session.author_did,
                "recipientDid": recipient_did,
            },
        )

        user_key_pair_id = body.get("userKeyPairId")
        encrypted_dek = body.get("encryptedDek")
        if not user_key_pair_id or not encrypted_dek:
            raise UpstreamServiceError(
                f"user-keys returned incomplete key material for {recipient_did}"
            )

        return WrappedKey(
            recipient_did=recipient_did,
            user_key_pair_id=user_key_pair_id,
            encrypted_dek=encrypted_dek,
        )
