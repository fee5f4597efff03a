import asyncio
import copy
import uuid
from datetime import UTC, datetime

import pytest

from app.config import Settings
from app.db.helpers import UniqueConstraintError
from app.errors import NotFoundError, ResolutionError
from app.features.identity_cache.domain import DidCacheEntry, ResolvedIdentity
from app.features.sessions.domain import Session, SessionKey
from app.features.sessions.services.session_manager import SessionKeyManager
from app.infrastructure.queue.models import Job, JobState, compute_backoff


class FakeSessionRepository:
    """
    In-memory stand-in for SessionRepository.

    Every method yields to the event loop before touching state so concurrent
    callers interleave the way they would against a real database, and each
    method applies its writes atomically like one transaction.
    """

    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.keys: dict[tuple[str, str], SessionKey] = {}
        self.fail_next: Exception | None = None

    async def _io(self):
        await asyncio.sleep(0)
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    def _active_for(self, author_did: str) -> Session | None:
        for session in self.sessions.values():
            if session.author_did == author_did and session.revoked_at is None:
                return session
        return None

    def _require_active(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None or session.revoked_at is not None:
            raise NotFoundError(f"Session {session_id} is inactive")

    async def get_session(self, session_id):
        await self._io()
        return self.sessions.get(session_id)

    async def get_active_session(self, author_did):
        await self._io()
        return self._active_for(author_did)

    async def get_sessions(self, session_ids):
        await self._io()
        return [self.sessions[sid] for sid in session_ids if sid in self.sessions]

    async def insert_session(self, author_did, recipients=()):
        await self._io()
        if self._active_for(author_did) is not None:
            raise UniqueConstraintError(
                "duplicate active session", "sessions_one_active_per_author", operation="insert_session"
            )
        session = Session(id=str(uuid.uuid4()), author_did=author_did, created_at=datetime.now(UTC))
        self.sessions[session.id] = session
        for key in recipients:
            self.keys[(session.id, key.recipient_did)] = SessionKey(
                id=str(uuid.uuid4()),
                session_id=session.id,
                recipient_did=key.recipient_did,
                user_key_pair_id=key.user_key_pair_id,
                encrypted_dek=key.encrypted_dek,
                created_at=datetime.now(UTC),
            )
        return session

    async def get_session_key(self, session_id, recipient_did):
        await self._io()
        return self.keys.get((session_id, recipient_did))

    async def list_session_keys(self, session_id):
        await self._io()
        return [key for (sid, _), key in self.keys.items() if sid == session_id]

    async def insert_session_key(self, session_id, key):
        await self._io()
        self._require_active(session_id)
        existing = self.keys.get((session_id, key.recipient_did))
        if existing is not None:
            return existing
        row = SessionKey(
            id=str(uuid.uuid4()),
            session_id=session_id,
            recipient_did=key.recipient_did,
            user_key_pair_id=key.user_key_pair_id,
            encrypted_dek=key.encrypted_dek,
            created_at=datetime.now(UTC),
        )
        self.keys[(session_id, key.recipient_did)] = row
        return row

    async def replace_session_keys(self, session_id, keys):
        await self._io()
        self._require_active(session_id)
        staged = copy.copy(self.keys)
        updated = []
        for key in keys:
            if staged.pop((session_id, key.recipient_did), None) is None:
                raise NotFoundError(f"Recipient {key.recipient_did} has no key")
            row = SessionKey(
                id=str(uuid.uuid4()),
                session_id=session_id,
                recipient_did=key.recipient_did,
                user_key_pair_id=key.user_key_pair_id,
                encrypted_dek=key.encrypted_dek,
            )
            staged[(session_id, key.recipient_did)] = row
            updated.append(row)
        self.keys = staged
        return updated

    async def revoke_session(self, session_id):
        await self._io()
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if session.revoked_at is None:
            session = Session(
                id=session.id,
                author_did=session.author_did,
                created_at=session.created_at,
                revoked_at=datetime.now(UTC),
            )
            self.sessions[session_id] = session
        self.keys = {k: v for k, v in self.keys.items() if k[0] != session_id}
        return session

    async def delete_session_keys(self, session_id, recipient_dids):
        await self._io()
        removed = 0
        for did in recipient_dids:
            if self.keys.pop((session_id, did), None) is not None:
                removed += 1
        return removed

    async def delete_recipient_keys_for_author(self, author_did, recipient_did):
        await self._io()
        session_ids = {sid for sid, s in self.sessions.items() if s.author_did == author_did}
        doomed = [k for k in self.keys if k[0] in session_ids and k[1] == recipient_did]
        for k in doomed:
            del self.keys[k]
        return len(doomed)


class FakeDidCacheRepository:
    def __init__(self, entries: dict[str, str] | None = None):
        self.entries = {
            did: DidCacheEntry(user_did=did, handle=handle) for did, handle in (entries or {}).items()
        }

    async def fetch_entries(self, dids):
        return {did: self.entries[did] for did in dids if did in self.entries}

    async def insert_entries(self, identities):
        for identity in identities:
            self.entries.setdefault(
                identity.did, DidCacheEntry(user_did=identity.did, handle=identity.handle)
            )


class FakeResolver:
    def __init__(self, handles: dict[str, str], failing: set[str] | None = None):
        self.handles = handles
        self.failing = set(failing or ())
        self.calls: list[tuple[str, str]] = []

    async def resolve(self, did, host):
        self.calls.append((did, host))
        if did in self.failing or did not in self.handles:
            raise ResolutionError(f"cannot resolve {did}", failed_dids=[did])
        return ResolvedIdentity(did=did, handle=self.handles[did])


class FakeJobQueue:
    """
    In-memory queue with the same retry and dead-letter rules as RedisJobQueue.

    Retries are made ready immediately; the computed backoff is recorded in
    `retry_delays` instead of waited on.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 60.0, max_delay: float = 3600.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jobs: dict[str, Job] = {}
        self.ready: dict[str, list[str]] = {}
        self.dead: dict[str, list[str]] = {}
        self.retry_delays: list[float] = []

    async def enqueue(self, name, payload, *, max_attempts=None):
        job_id = uuid.uuid4().hex
        self.jobs[job_id] = Job(
            id=job_id,
            name=name,
            payload=copy.deepcopy(payload),
            attempt=0,
            max_attempts=max_attempts or self.max_attempts,
            state=JobState.ENQUEUED,
        )
        self.ready.setdefault(name, []).append(job_id)
        return job_id

    async def reserve(self, name):
        queue = self.ready.get(name, [])
        if not queue:
            return None
        job = self.jobs[queue.pop(0)]
        job.attempt += 1
        job.state = JobState.ACTIVE
        return copy.copy(job)

    def redeliver(self, job_id):
        """Put a job back as if its acknowledgement had been lost."""
        job = self.jobs[job_id]
        job.state = JobState.ENQUEUED
        self.ready.setdefault(job.name, []).append(job_id)

    async def ack(self, job):
        self.jobs[job.id].state = JobState.COMPLETED

    async def fail(self, job, error, *, retriable=True):
        stored = self.jobs[job.id]
        stored.last_error = error
        if not retriable or stored.attempt >= stored.max_attempts:
            stored.state = JobState.DEAD_LETTERED
            self.dead.setdefault(job.name, []).append(job.id)
            return JobState.DEAD_LETTERED.value
        stored.state = JobState.FAILED
        self.retry_delays.append(compute_backoff(stored.attempt, self.base_delay, self.max_delay))
        self.ready.setdefault(job.name, []).append(job.id)
        return JobState.FAILED.value


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="test",
        DATABASE_URL="postgresql://test/test",
        REDIS_URL="redis://test:6379/0",
    )


@pytest.fixture
def session_repository():
    return FakeSessionRepository()


@pytest.fixture
def manager(session_repository):
    return SessionKeyManager(session_repository)


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def make_did_cache():
    return FakeDidCacheRepository


@pytest.fixture
def make_resolver():
    return FakeResolver
