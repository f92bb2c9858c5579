"""
Per-thread leases

Two mentions on the same task must not reconcile and answer at the same
time. A lease keyed by thread id is held for reconciliation, agent
invocation and reply.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import LockError

from agent_bridge.errors import ThreadBusyError

logger = logging.getLogger(__name__)


class LocalThreadLease:
    """In-process lease, for single worker deployments and tests"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, thread_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(thread_id, asyncio.Lock())
        self._holders[thread_id] = self._holders.get(thread_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[thread_id] -= 1
            if self._holders[thread_id] == 0:
                del self._holders[thread_id]
                self._locks.pop(thread_id, None)


class RedisThreadLease:
    """
    Distributed lease backed by a Redis lock

    The lock expires after ttl seconds so a crashed worker cannot block a
    thread forever. Without a connection no locking happens.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        ttl: float = 300.0,
        wait: float = 60.0,
    ):
        self.client = client
        self.ttl = ttl
        self.wait = wait
        self._warned = False

    def generate_key(self, thread_id: str) -> str:
        return f"agent-bridge:lease:{thread_id}"

    @asynccontextmanager
    async def hold(self, thread_id: str) -> AsyncIterator[None]:
        if not self.client:
            if not self._warned:
                logger.warning("Redis unavailable, thread leases disabled")
                self._warned = True
            yield
            return

        lock = self.client.lock(
            self.generate_key(thread_id),
            timeout=self.ttl,
            blocking_timeout=self.wait,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise ThreadBusyError(f"Thread {thread_id} is busy")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held, another worker may own it now
                logger.warning("Lease on %s was lost before release: %s", thread_id, e)
