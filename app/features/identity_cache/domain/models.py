"""Domain models for the DID handle cache."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class ResolvedIdentity:
    """What the identity resolver returns for one DID."""

    did: str
    handle: str


@dataclass(slots=True, frozen=True)
class DidCacheEntry:
    """A user_did_cache row. Entries never expire."""

    user_did: str
    handle: str
    created_at: datetime | None = None
