"""
Cross-process mutexes for scheduled tasks.

``claim_tick`` backs ``on_one_server``: the first scheduler to claim a
(task, tick) pair runs it. ``acquire``/``release`` back
``without_overlapping``: a run holds the task lock until it finishes or
the lock expires.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import uuid4

import redis.asyncio as redis

from jobqueue.queue.redis_store import translate_errors

# Deletes the lock only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class ScheduleMutex(ABC):
    """Lock primitives shared by scheduler instances."""

    @abstractmethod
    async def claim_tick(self, task: str, tick: datetime, ttl_seconds: int) -> bool:
        """Claim ``task`` for ``tick``. Only the first caller gets True."""

    @abstractmethod
    async def acquire(self, task: str, ttl_seconds: int) -> bool:
        """Take the overlap lock for ``task`` if it is free."""

    @abstractmethod
    async def release(self, task: str) -> None:
        """Release an overlap lock taken by this instance."""


class InMemoryScheduleMutex(ScheduleMutex):
    """Process-local mutex for a single scheduler instance and for tests."""

    def __init__(self) -> None:
        self._claims: dict[tuple[str, datetime], float] = {}
        self._locks: dict[str, float] = {}

    async def claim_tick(self, task: str, tick: datetime, ttl_seconds: int) -> bool:
        now = time.monotonic()
        self._claims = {k: exp for k, exp in self._claims.items() if exp > now}
        if (task, tick) in self._claims:
            return False
        self._claims[(task, tick)] = now + ttl_seconds
        return True

    async def acquire(self, task: str, ttl_seconds: int) -> bool:
        now = time.monotonic()
        expires = self._locks.get(task)
        if expires is not None and expires > now:
            return False
        self._locks[task] = now + ttl_seconds
        return True

    async def release(self, task: str) -> None:
        self._locks.pop(task, None)


class RedisScheduleMutex(ScheduleMutex):
    """
    Mutex stored next to the queues so every scheduler sharing the store
    sees the same claims.

    Keys:
    - ``{prefix}:schedule:{task}:{YYYYmmddHHMM}`` tick claim
    - ``{prefix}:schedule:{task}:running`` overlap lock holding a token
    """

    def __init__(self, client: redis.Redis, prefix: str = "jobqueue"):
        self._redis = client
        self._prefix = prefix.strip(":") or "jobqueue"
        self._tokens: dict[str, str] = {}
        self._release = client.register_script(_RELEASE_SCRIPT)

    async def claim_tick(self, task: str, tick: datetime, ttl_seconds: int) -> bool:
        key = f"{self._prefix}:schedule:{task}:{tick:%Y%m%d%H%M}"
        with translate_errors():
            return bool(await self._redis.set(key, "1", nx=True, ex=ttl_seconds))

    async def acquire(self, task: str, ttl_seconds: int) -> bool:
        token = uuid4().hex
        with translate_errors():
            acquired = await self._redis.set(
                self._lock_key(task), token, nx=True, ex=ttl_seconds
            )
        if acquired:
            self._tokens[task] = token
        return bool(acquired)

    async def release(self, task: str) -> None:
        token = self._tokens.pop(task, None)
        if token is None:
            return
        with translate_errors():
            await self._release(keys=[self._lock_key(task)], args=[token])

    def _lock_key(self, task: str) -> str:
        return f"{self._prefix}:schedule:{task}:running"
