"""
Durable job queue on Redis.

Layout per job name (all under the configured prefix):
    job:{id}          hash with payload, attempt, state, last_error
    {name}:ready      list of ids waiting for a worker (FIFO)
    {name}:delayed    zset of ids waiting for their retry time
    {name}:active     zset of delivered ids scored by ack deadline
    {name}:dead       list of dead-lettered ids

State changes run as Lua scripts so a crash can never leave a job in two
places or in none. The scripts touch job hashes outside KEYS, so the queue
expects a standalone (non-cluster) Redis.
"""

import json
import time
import uuid
from typing import Any

import redis.asyncio as redis

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.queue.models import Job, JobState

logger = get_logger(__name__)

# Reaps expired deliveries, promotes due retries, then pops one ready job.
RESERVE_SCRIPT = """
local ready, delayed, active, dead = KEYS[1], KEYS[2], KEYS[3], KEYS[4]
local now = tonumber(ARGV[1])
local ack_deadline = tonumber(ARGV[2])
local job_prefix = ARGV[3]
local base_delay = tonumber(ARGV[4])
local max_delay = tonumber(ARGV[5])

local expired = redis.call('ZRANGEBYSCORE', active, '-inf', now)
for _, id in ipairs(expired) do
  redis.call('ZREM', active, id)
  local job_key = job_prefix .. id
  local attempt = tonumber(redis.call('HGET', job_key, 'attempt') or '0')
  local max_attempts = tonumber(redis.call('HGET', job_key, 'max_attempts') or '1')
  redis.call('HSET', job_key, 'last_error', 'ack deadline exceeded', 'updated_at', ARGV[1])
  if attempt >= max_attempts then
    redis.call('HSET', job_key, 'state', 'dead_lettered')
    redis.call('LPUSH', dead, id)
  else
    local delay = math.min(max_delay, base_delay * (2 ^ (attempt - 1)))
    redis.call('HSET', job_key, 'state', 'failed')
    redis.call('ZADD', delayed, now + delay, id)
  end
end

local due = redis.call('ZRANGEBYSCORE', delayed, '-inf', now)
for _, id in ipairs(due) do
  redis.call('ZREM', delayed, id)
  redis.call('HSET', job_prefix .. id, 'state', 'enqueued')
  redis.call('LPUSH', ready, id)
end

while true do
  local id = redis.call('RPOP', ready)
  if not id then
    return nil
  end
  local job_key = job_prefix .. id
  if redis.call('EXISTS', job_key) == 1 then
    redis.call('HINCRBY', job_key, 'attempt', 1)
    redis.call('HSET', job_key, 'state', 'active', 'updated_at', ARGV[1])
    redis.call('ZADD', active, now + ack_deadline, id)
    return redis.call('HGETALL', job_key)
  end
end
"""

ACK_SCRIPT = """
local active, delayed, ready, job_key = KEYS[1], KEYS[2], KEYS[3], KEYS[4]
redis.call('ZREM', active, ARGV[1])
redis.call('ZREM', delayed, ARGV[1])
redis.call('LREM', ready, 0, ARGV[1])
redis.call('HSET', job_key, 'state', 'completed', 'updated_at', ARGV[2])
redis.call('EXPIRE', job_key, tonumber(ARGV[3]))
return 1
"""

FAIL_SCRIPT = """
local active, delayed, dead, job_key = KEYS[1], KEYS[2], KEYS[3], KEYS[4]
local id, now = ARGV[1], tonumber(ARGV[2])
if redis.call('ZREM', active, id) == 0 then
  return {'stale', '0'}
end
local attempt = tonumber(redis.call('HGET', job_key, 'attempt') or '0')
local max_attempts = tonumber(redis.call('HGET', job_key, 'max_attempts') or '1')
redis.call('HSET', job_key, 'last_error', ARGV[3], 'updated_at', ARGV[2])
if ARGV[4] ~= '1' or attempt >= max_attempts then
  redis.call('HSET', job_key, 'state', 'dead_lettered')
  redis.call('LPUSH', dead, id)
  return {'dead_lettered', '0'}
end
local delay = math.min(tonumber(ARGV[6]), tonumber(ARGV[5]) * (2 ^ (attempt - 1)))
redis.call('HSET', job_key, 'state', 'failed')
redis.call('ZADD', delayed, now + delay, id)
return {'failed', tostring(delay)}
"""


class RedisJobQueue:
    """JobQueue implementation on a redis.asyncio client (decode_responses=True)."""

    def __init__(self, client: redis.Redis, settings: Settings):
        self._client = client
        self._prefix = settings.QUEUE_PREFIX
        self._default_max_attempts = settings.max_job_attempts
        self._retry_delay = settings.QUEUE_RETRY_DELAY_SECONDS
        self._retry_max_delay = settings.QUEUE_RETRY_MAX_DELAY_SECONDS
        self._ack_deadline = settings.QUEUE_ACK_DEADLINE_SECONDS
        self._completed_retention = settings.QUEUE_COMPLETED_RETENTION_SECONDS

        self._reserve_script = client.register_script(RESERVE_SCRIPT)
        self._ack_script = client.register_script(ACK_SCRIPT)
        self._fail_script = client.register_script(FAIL_SCRIPT)

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _key(self, name: str, kind: str) -> str:
        return f"{self._prefix}:{name}:{kind}"

    @staticmethod
    def _parse_job(raw: dict[str, str]) -> Job:
        return Job(
            id=raw["id"],
            name=raw["name"],
            payload=json.loads(raw["payload"]),
            attempt=int(raw.get("attempt", 0)),
            max_attempts=int(raw.get("max_attempts", 1)),
            state=JobState(raw.get("state", JobState.ENQUEUED)),
            last_error=raw.get("last_error") or None,
        )

    async def enqueue(
        self, name: str, payload: dict[str, Any], *, max_attempts: int | None = None
    ) -> str:
        job_id = uuid.uuid4().hex
        now = time.time()
        record = {
            "id": job_id,
            "name": name,
            "payload": json.dumps(payload),
            "attempt": 0,
            "max_attempts": max_attempts or self._default_max_attempts,
            "state": JobState.ENQUEUED.value,
            "created_at": now,
            "updated_at": now,
        }

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), mapping=record)
            pipe.lpush(self._key(name, "ready"), job_id)
            await pipe.execute()

        logger.info("Job enqueued", job_name=name, job_id=job_id)
        return job_id

    async def reserve(self, name: str) -> Job | None:
        flat = await self._reserve_script(
            keys=[
                self._key(name, "ready"),
                self._key(name, "delayed"),
                self._key(name, "active"),
                self._key(name, "dead"),
            ],
            args=[
                time.time(),
                self._ack_deadline,
                f"{self._prefix}:job:",
                self._retry_delay,
                self._retry_max_delay,
            ],
        )
        if not flat:
            return None

        raw = dict(zip(flat[::2], flat[1::2], strict=True))
        return self._parse_job(raw)

    async def ack(self, job: Job) -> None:
        await self._ack_script(
            keys=[
                self._key(job.name, "active"),
                self._key(job.name, "delayed"),
                self._key(job.name, "ready"),
                self._job_key(job.id),
            ],
            args=[job.id, time.time(), self._completed_retention],
        )
        job.state = JobState.COMPLETED

    async def fail(self, job: Job, error: str, *, retriable: bool = True) -> str:
        state, delay = await self._fail_script(
            keys=[
                self._key(job.name, "active"),
                self._key(job.name, "delayed"),
                self._key(job.name, "dead"),
                self._job_key(job.id),
            ],
            args=[
                job.id,
                time.time(),
                (error or "")[:500],
                "1" if retriable else "0",
                self._retry_delay,
                self._retry_max_delay,
            ],
        )

        if state == "stale":
            logger.warning(
                "Failure reported for a delivery that already expired",
                job_name=job.name,
                job_id=job.id,
            )
            return state

        job.state = JobState(state)
        job.last_error = error
        if job.state == JobState.DEAD_LETTERED:
            logger.error(
                "Job dead-lettered",
                job_name=job.name,
                job_id=job.id,
                attempt=job.attempt,
                error=error,
            )
        else:
            logger.warning(
                "Job scheduled for retry",
                job_name=job.name,
                job_id=job.id,
                attempt=job.attempt,
                retry_in_seconds=float(delay),
                error=error,
            )
        return state

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self._client.hgetall(self._job_key(job_id))
        return self._parse_job(raw) if raw else None

    async def dead_letters(self, name: str, limit: int = 100) -> list[str]:
        return await self._client.lrange(self._key(name, "dead"), 0, limit - 1)

    async def health_check(self, names: list[str]) -> dict[str, Any]:
        try:
            await self._client.ping()
            depths = {}
            for name in names:
                async with self._client.pipeline(transaction=False) as pipe:
                    pipe.llen(self._key(name, "ready"))
                    pipe.zcard(self._key(name, "delayed"))
                    pipe.zcard(self._key(name, "active"))
                    pipe.llen(self._key(name, "dead"))
                    ready, delayed, active, dead = await pipe.execute()
                depths[name] = {"ready": ready, "delayed": delayed, "active": active, "dead": dead}
            return {"healthy": True, "service": "job_queue", "queues": depths}
        except redis.RedisError as e:
            logger.error("Job queue health check failed", error=str(e))
            return {"healthy": False, "service": "job_queue", "error": str(e)}
