"""
Domain models for private sessions.

A session is referenced by its keys only through `session_id`; nothing here
holds object references between the two.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class Session:
    """The encryption context for one author. Active while revoked_at is None."""

    id: str
    author_did: str
    created_at: datetime
    revoked_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


@dataclass(slots=True, frozen=True)
class SessionKey:
    """A recipient's wrapped copy of the session data-encryption-key."""

    id: str
    session_id: str
    recipient_did: str
    user_key_pair_id: str
    encrypted_dek: str
    created_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class WrappedKey:
    """Key material for one recipient: which key pair it targets and the opaque ciphertext."""

    recipient_did: str
    user_key_pair_id: str
    encrypted_dek: str
