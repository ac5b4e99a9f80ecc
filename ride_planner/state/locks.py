"""ride_planner/state/locks.py — Cross-process mutual exclusion on a Redis key.

    lock:optimizer    held around every optimization call (scheduler and
                      Celery worker alike), so calls never overlap
    lock:assign       held while an assignment checks and writes rides

The key is claimed with SET NX EX and expires on its own, so a crashed
holder cannot block the others for longer than ``ttl_seconds``.
"""
import asyncio
import contextlib
import logging
import time
import uuid
from typing import Optional

import redis as redis_lib

logger = logging.getLogger(__name__)

OPTIMIZER_LOCK = "optimizer"
ASSIGN_LOCK = "assign"


class LockTimeoutError(Exception):
    """The lock stayed held by someone else for the whole wait."""

    def __init__(self, name: str, waited: float) -> None:
        super().__init__(f"Lock '{name}' still held after {waited:.1f}s")
        self.name = name


class RedisLock:
    def __init__(
        self,
        client: redis_lib.Redis,
        name: str,
        ttl_seconds: int = 60,
        poll_seconds: float = 0.1,
    ) -> None:
        self._redis = client
        self.name = name
        self.key = f"lock:{name}"
        self.ttl_seconds = max(1, int(ttl_seconds))
        self.poll_seconds = poll_seconds
        self._token: Optional[str] = None

    def try_acquire(self) -> bool:
        token = uuid.uuid4().hex
        if self._redis.set(self.key, token, nx=True, ex=self.ttl_seconds):
            self._token = token
            return True
        return False

    def release(self) -> None:
        if self._token is None:
            return
        # Only delete our own claim; an expired one may belong to another holder now
        if self._redis.get(self.key) == self._token:
            self._redis.delete(self.key)
        self._token = None

    @contextlib.contextmanager
    def hold(self, blocking_timeout: float):
        """Block (polling) until the lock is ours, then hold it for the block."""
        deadline = time.monotonic() + blocking_timeout
        while not self.try_acquire():
            if time.monotonic() >= deadline:
                raise LockTimeoutError(self.name, blocking_timeout)
            time.sleep(self.poll_seconds)
        try:
            yield self
        finally:
            self.release()

    @contextlib.asynccontextmanager
    async def hold_async(self, blocking_timeout: float):
        """Like hold(), but waits with asyncio.sleep so the event loop keeps running."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + blocking_timeout
        while not self.try_acquire():
            if loop.time() >= deadline:
                raise LockTimeoutError(self.name, blocking_timeout)
            await asyncio.sleep(self.poll_seconds)
        logger.debug("Lock acquired: %s", self.key)
        try:
            yield self
        finally:
            self.release()
