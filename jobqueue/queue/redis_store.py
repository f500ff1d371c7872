"""
Redis-backed queue store.

Key layout (``{prefix}`` defaults to ``jobqueue``):

- ``{prefix}:queues:{queue}``          LIST  pending job ids, FIFO
- ``{prefix}:queues:{queue}:delayed``  ZSET  job id -> available_at
- ``{prefix}:queues:{queue}:reserved`` ZSET  job id -> reserved_until
- ``{prefix}:queues:{queue}:failed``   ZSET  job id -> failed_at
- ``{prefix}:jobs:{id}``               HASH  job record

Every state transition runs as a Lua script so that reservation ownership
checks and the matching list/zset moves happen atomically.
"""

import json
import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from jobqueue.constants import JobStatus
from jobqueue.queue.base import QueueSize, QueueStore, StoreUnavailableError
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)

# Moves due delayed jobs and expired reservations back onto the pending list.
# KEYS[1]=pending, KEYS[2]=delayed, KEYS[3]=reserved
# ARGV[1]=now, ARGV[2]=job key prefix
_MIGRATE = """
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, id in ipairs(due) do
  redis.call('ZREM', KEYS[2], id)
  redis.call('RPUSH', KEYS[1], id)
end
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', ARGV[1])
for _, id in ipairs(expired) do
  redis.call('ZREM', KEYS[3], id)
  redis.call('HSET', ARGV[2] .. id,
    'status', 'pending', 'reserved_by', '', 'reserved_until', '', 'available_at', ARGV[1])
  redis.call('RPUSH', KEYS[1], id)
end
"""

# ARGV[3]=worker_id, ARGV[4]=reserved_until
_RESERVE_SCRIPT = (
    _MIGRATE
    + """
local id = redis.call('LPOP', KEYS[1])
if not id then
  return {#expired, false}
end
local key = ARGV[2] .. id
redis.call('HSET', key, 'status', 'reserved', 'reserved_by', ARGV[3], 'reserved_until', ARGV[4])
redis.call('ZADD', KEYS[3], ARGV[4], id)
return {#expired, redis.call('HGETALL', key)}
"""
)

_RECLAIM_SCRIPT = _MIGRATE + "\nreturn #expired\n"

# Ownership guard shared by ack/fail/release/extend.
# KEYS[1]=job key, ARGV[1]=worker_id
_OWNED = """
if redis.call('HGET', KEYS[1], 'status') ~= 'reserved'
   or redis.call('HGET', KEYS[1], 'reserved_by') ~= ARGV[1] then
  return false
end
"""

# KEYS[2]=reserved, ARGV[2]=job id
_ACK_SCRIPT = (
    _OWNED
    + """
redis.call('ZREM', KEYS[2], ARGV[2])
redis.call('DEL', KEYS[1])
return 1
"""
)

# KEYS[2]=reserved, KEYS[3]=pending, KEYS[4]=delayed, KEYS[5]=failed
# ARGV[2]=job id, ARGV[3]=error, ARGV[4]=now, ARGV[5]=available_at, ARGV[6]=failed ttl
_FAIL_SCRIPT = (
    _OWNED
    + """
redis.call('ZREM', KEYS[2], ARGV[2])
local attempts = redis.call('HINCRBY', KEYS[1], 'attempts', 1)
local max_attempts = tonumber(redis.call('HGET', KEYS[1], 'max_attempts'))
redis.call('HSET', KEYS[1], 'last_error', ARGV[3], 'reserved_by', '', 'reserved_until', '')
if attempts >= max_attempts then
  redis.call('HSET', KEYS[1], 'status', 'failed')
  redis.call('ZADD', KEYS[5], ARGV[4], ARGV[2])
  redis.call('ZREMRANGEBYSCORE', KEYS[5], '-inf', tonumber(ARGV[4]) - tonumber(ARGV[6]))
  redis.call('EXPIRE', KEYS[1], ARGV[6])
else
  redis.call('HSET', KEYS[1], 'status', 'pending', 'available_at', ARGV[5])
  if tonumber(ARGV[5]) > tonumber(ARGV[4]) then
    redis.call('ZADD', KEYS[4], ARGV[5], ARGV[2])
  else
    redis.call('RPUSH', KEYS[3], ARGV[2])
  end
end
return redis.call('HGETALL', KEYS[1])
"""
)

# KEYS[2]=reserved, KEYS[3]=pending, KEYS[4]=delayed
# ARGV[2]=job id, ARGV[3]=now, ARGV[4]=available_at
_RELEASE_SCRIPT = (
    _OWNED
    + """
redis.call('ZREM', KEYS[2], ARGV[2])
redis.call('HSET', KEYS[1],
  'status', 'pending', 'reserved_by', '', 'reserved_until', '', 'available_at', ARGV[4])
if tonumber(ARGV[4]) > tonumber(ARGV[3]) then
  redis.call('ZADD', KEYS[4], ARGV[4], ARGV[2])
else
  redis.call('RPUSH', KEYS[3], ARGV[2])
end
return redis.call('HGETALL', KEYS[1])
"""
)

# KEYS[2]=reserved, ARGV[2]=job id, ARGV[3]=reserved_until
_EXTEND_SCRIPT = (
    _OWNED
    + """
redis.call('HSET', KEYS[1], 'reserved_until', ARGV[3])
redis.call('ZADD', KEYS[2], 'XX', ARGV[3], ARGV[2])
return 1
"""
)


@contextmanager
def translate_errors() -> Iterator[None]:
    """Surface connectivity problems as StoreUnavailableError."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise StoreUnavailableError(str(e)) from e


def _epoch(value: datetime) -> str:
    return repr(value.timestamp())


def _from_epoch(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(float(value), timezone.utc)


def _hash_to_job(raw: Any) -> Job:
    # HGETALL from a script comes back as a flat [field, value, ...] list
    if isinstance(raw, list):
        raw = dict(zip(raw[::2], raw[1::2]))
    return Job(
        id=UUID(raw["id"]),
        queue=raw["queue"],
        payload=json.loads(raw["payload"]),
        status=JobStatus(raw["status"]),
        attempts=int(raw.get("attempts") or 0),
        max_attempts=int(raw["max_attempts"]),
        enqueued_at=_from_epoch(raw["enqueued_at"]),
        available_at=_from_epoch(raw["available_at"]),
        reserved_by=raw.get("reserved_by") or None,
        reserved_until=_from_epoch(raw.get("reserved_until")),
        last_error=raw.get("last_error") or None,
    )


class RedisQueueStore(QueueStore):
    """
    Queue store on a Redis-compatible server.

    Args:
        client: An asyncio Redis client created with ``decode_responses=True``.
        prefix: Key namespace shared by every process using the same queues.
        failed_ttl_seconds: How long failed job hashes stay inspectable.
        clock: Returns the current aware datetime. Injectable for tests.
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "jobqueue",
        failed_ttl_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._redis = client
        self._prefix = prefix.strip(":") or "jobqueue"
        self._failed_ttl = failed_ttl_seconds
        self._clock = clock

        self._reserve = client.register_script(_RESERVE_SCRIPT)
        self._reclaim = client.register_script(_RECLAIM_SCRIPT)
        self._ack = client.register_script(_ACK_SCRIPT)
        self._fail = client.register_script(_FAIL_SCRIPT)
        self._release = client.register_script(_RELEASE_SCRIPT)
        self._extend = client.register_script(_EXTEND_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisQueueStore":
        """Create a store with its own client for ``url``."""
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    async def push(
        self,
        queue: str,
        payload: dict[str, Any],
        max_attempts: int = 3,
        delay_seconds: float = 0,
    ) -> Job:
        now = self._clock()
        job = Job(
            id=uuid4(),
            queue=queue,
            payload=payload,
            max_attempts=max_attempts,
            enqueued_at=now,
            available_at=now + timedelta(seconds=delay_seconds),
        )
        job_id = str(job.id)

        with translate_errors():
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(
                    self._job_key(job_id),
                    mapping={
                        "id": job_id,
                        "queue": queue,
                        "payload": json.dumps(payload),
                        "status": JobStatus.PENDING.value,
                        "attempts": 0,
                        "max_attempts": max_attempts,
                        "enqueued_at": _epoch(now),
                        "available_at": _epoch(job.available_at),
                        "reserved_by": "",
                        "reserved_until": "",
                        "last_error": "",
                    },
                )
                if delay_seconds > 0:
                    pipe.zadd(self._delayed_key(queue), {job_id: job.available_at.timestamp()})
                else:
                    pipe.rpush(self._pending_key(queue), job_id)
                await pipe.execute()

        return job

    async def reserve(
        self,
        queues: Sequence[str],
        worker_id: str,
        visibility_timeout: float,
    ) -> Job | None:
        now = self._clock()
        reserved_until = now + timedelta(seconds=visibility_timeout)

        for queue in queues:
            with translate_errors():
                reclaimed, raw = await self._reserve(
                    keys=[
                        self._pending_key(queue),
                        self._delayed_key(queue),
                        self._reserved_key(queue),
                    ],
                    args=[_epoch(now), self._job_key(""), worker_id, _epoch(reserved_until)],
                )
            if reclaimed:
                logger.info(
                    f"Reclaimed {reclaimed} expired reservations",
                    extra={"queue": queue},
                )
            if raw:
                return _hash_to_job(raw)
        return None

    async def ack(self, job_id: UUID, worker_id: str) -> bool:
        key = self._job_key(str(job_id))
        with translate_errors():
            queue = await self._redis.hget(key, "queue")
            if queue is None:
                return False
            result = await self._ack(
                keys=[key, self._reserved_key(queue)],
                args=[worker_id, str(job_id)],
            )
        if not result:
            logger.warning(
                "Worker doesn't hold job reservation",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
        return bool(result)

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        retry_delay: float = 0,
    ) -> Job | None:
        key = self._job_key(str(job_id))
        now = self._clock()
        available_at = now + timedelta(seconds=retry_delay)
        with translate_errors():
            queue = await self._redis.hget(key, "queue")
            if queue is None:
                return None
            raw = await self._fail(
                keys=[
                    key,
                    self._reserved_key(queue),
                    self._pending_key(queue),
                    self._delayed_key(queue),
                    self._failed_key(queue),
                ],
                args=[
                    worker_id,
                    str(job_id),
                    error,
                    _epoch(now),
                    _epoch(available_at),
                    self._failed_ttl,
                ],
            )
        if not raw:
            logger.warning(
                "Worker doesn't hold job reservation",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None
        return _hash_to_job(raw)

    async def release(
        self,
        job_id: UUID,
        worker_id: str,
        delay_seconds: float = 0,
    ) -> Job | None:
        key = self._job_key(str(job_id))
        now = self._clock()
        with translate_errors():
            queue = await self._redis.hget(key, "queue")
            if queue is None:
                return None
            raw = await self._release(
                keys=[
                    key,
                    self._reserved_key(queue),
                    self._pending_key(queue),
                    self._delayed_key(queue),
                ],
                args=[
                    worker_id,
                    str(job_id),
                    _epoch(now),
                    _epoch(now + timedelta(seconds=delay_seconds)),
                ],
            )
        return _hash_to_job(raw) if raw else None

    async def extend(
        self,
        job_id: UUID,
        worker_id: str,
        visibility_timeout: float,
    ) -> bool:
        key = self._job_key(str(job_id))
        reserved_until = self._clock() + timedelta(seconds=visibility_timeout)
        with translate_errors():
            queue = await self._redis.hget(key, "queue")
            if queue is None:
                return False
            result = await self._extend(
                keys=[key, self._reserved_key(queue)],
                args=[worker_id, str(job_id), _epoch(reserved_until)],
            )
        return bool(result)

    async def reclaim_expired(self, queue: str) -> int:
        with translate_errors():
            count = await self._reclaim(
                keys=[
                    self._pending_key(queue),
                    self._delayed_key(queue),
                    self._reserved_key(queue),
                ],
                args=[_epoch(self._clock()), self._job_key("")],
            )
        return int(count or 0)

    async def get(self, job_id: UUID) -> Job | None:
        with translate_errors():
            raw = await self._redis.hgetall(self._job_key(str(job_id)))
        return _hash_to_job(raw) if raw else None

    async def size(self, queue: str) -> QueueSize:
        with translate_errors():
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.llen(self._pending_key(queue))
                pipe.zcard(self._delayed_key(queue))
                pipe.zcard(self._reserved_key(queue))
                pipe.zcard(self._failed_key(queue))
                pending, delayed, reserved, failed = await pipe.execute()
        return QueueSize(
            queue=queue,
            pending=int(pending),
            delayed=int(delayed),
            reserved=int(reserved),
            failed=int(failed),
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    async def close(self) -> None:
        await self._redis.aclose()

    @property
    def client(self) -> redis.Redis:
        """The underlying Redis client."""
        return self._redis

    @property
    def prefix(self) -> str:
        return self._prefix

    def _pending_key(self, queue: str) -> str:
        return f"{self._prefix}:queues:{queue}"

    def _delayed_key(self, queue: str) -> str:
        return f"{self._prefix}:queues:{queue}:delayed"

    def _reserved_key(self, queue: str) -> str:
        return f"{self._prefix}:queues:{queue}:reserved"

    def _failed_key(self, queue: str) -> str:
        return f"{self._prefix}:queues:{queue}:failed"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:jobs:{job_id}"
