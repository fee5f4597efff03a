from unittest.mock import AsyncMock

import pytest

from app.errors import TransientStorageError
from app.features.sessions.domain import WrappedKey
from app.features.sessions.jobs.recipient_fanout_job import RecipientFanoutHandler
from app.infrastructure.queue.consumer import JobConsumer
from app.infrastructure.queue.jobs import AddRecipientToSessionJob, JobName
from app.infrastructure.queue.models import JobState

AUTHOR = "did:plc:author"
BOB = "did:plc:bob"


def _payload(**extra):
    return {"authorDid": AUTHOR, "recipientDid": BOB, **extra}


def _consumer(job_queue, handler):
    consumer = JobConsumer(job_queue, concurrency=2, poll_interval=0.01)
    consumer.register(JobName.ADD_RECIPIENT_TO_SESSION, handler)
    return consumer


@pytest.mark.asyncio
async def test_no_active_session_completes_as_noop(manager, session_repository, job_queue):
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager))
    job_id = await job_queue.enqueue(
        JobName.ADD_RECIPIENT_TO_SESSION.value, _payload(userKeyPairId="kp", encryptedDek="dek")
    )

    outcome = await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION)

    assert outcome == "completed"
    assert job_queue.jobs[job_id].state == JobState.COMPLETED
    assert session_repository.keys == {}


@pytest.mark.asyncio
async def test_redelivered_job_creates_single_key(manager, session_repository, job_queue):
    session = await manager.create_session(AUTHOR)
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager))
    job_id = await job_queue.enqueue(
        JobName.ADD_RECIPIENT_TO_SESSION.value, _payload(userKeyPairId="kp", encryptedDek="dek")
    )

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "completed"
    job_queue.redeliver(job_id)
    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "completed"

    keys = await manager.list_session_keys(session.id)
    assert len(keys) == 1
    assert keys[0].recipient_did == BOB


@pytest.mark.asyncio
async def test_uses_payload_key_material(manager):
    session = await manager.create_session(AUTHOR)
    key_provider = AsyncMock()
    handler = RecipientFanoutHandler(manager, key_provider=key_provider)

    payload = AddRecipientToSessionJob.model_validate(_payload(userKeyPairId="kp", encryptedDek="dek"))
    outcome = await handler(payload)

    key = await manager.get_session_key(session.id, BOB)
    assert key.encrypted_dek == "dek"
    assert outcome.details["session_key_id"] == key.id
    key_provider.wrap_for_recipient.assert_not_awaited()


@pytest.mark.asyncio
async def test_fetches_key_material_from_user_keys_service(manager, job_queue):
    session = await manager.create_session(AUTHOR)
    key_provider = AsyncMock()
    key_provider.wrap_for_recipient.return_value = WrappedKey(
        recipient_did=BOB, user_key_pair_id="kp-remote", encrypted_dek="dek-remote"
    )
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager, key_provider=key_provider))
    await job_queue.enqueue(JobName.ADD_RECIPIENT_TO_SESSION.value, _payload())

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "completed"

    key_provider.wrap_for_recipient.assert_awaited_once_with(session, BOB)
    key = await manager.get_session_key(session.id, BOB)
    assert key.user_key_pair_id == "kp-remote"


@pytest.mark.asyncio
async def test_untrusted_recipient_aborts_without_writing(manager, job_queue):
    session = await manager.create_session(AUTHOR)
    trust_client = AsyncMock()
    trust_client.is_trusted.return_value = False
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager, trust_client=trust_client))
    await job_queue.enqueue(
        JobName.ADD_RECIPIENT_TO_SESSION.value, _payload(userKeyPairId="kp", encryptedDek="dek")
    )

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "aborted"
    assert await manager.get_session_key(session.id, BOB) is None


@pytest.mark.asyncio
async def test_missing_key_material_without_provider_dead_letters(manager, job_queue):
    await manager.create_session(AUTHOR)
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager))
    job_id = await job_queue.enqueue(JobName.ADD_RECIPIENT_TO_SESSION.value, _payload())

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "dead_lettered"
    assert job_queue.jobs[job_id].state == JobState.DEAD_LETTERED


@pytest.mark.asyncio
async def test_transient_storage_error_is_retried(manager, session_repository, job_queue):
    session = await manager.create_session(AUTHOR)
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager))
    job_id = await job_queue.enqueue(
        JobName.ADD_RECIPIENT_TO_SESSION.value, _payload(userKeyPairId="kp", encryptedDek="dek")
    )
    session_repository.fail_next = TransientStorageError("connection reset")

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "failed"
    assert job_queue.jobs[job_id].state == JobState.FAILED

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "completed"
    assert (await manager.get_session_key(session.id, BOB)).encrypted_dek == "dek"


@pytest.mark.asyncio
async def test_direct_add_then_job_leaves_one_key(manager, job_queue):
    session = await manager.create_session(AUTHOR)
    direct = await manager.add_recipient(session.id, BOB, "kp", "dek")
    consumer = _consumer(job_queue, RecipientFanoutHandler(manager))
    await job_queue.enqueue(
        JobName.ADD_RECIPIENT_TO_SESSION.value, _payload(userKeyPairId="kp", encryptedDek="dek")
    )

    assert await consumer.process_next(JobName.ADD_RECIPIENT_TO_SESSION) == "completed"

    keys = await manager.list_session_keys(session.id)
    assert [key.id for key in keys] == [direct.id]
