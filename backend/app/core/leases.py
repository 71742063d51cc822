"""
Per-plan exclusive leases.

Only one dispatch cycle may touch a plan's payout records at a time. Leases
are asyncio locks keyed by plan id; waiting is bounded, and a request that
cannot be granted in time raises ResourceBusyError instead of blocking
forever.

Usage:
    leases = PlanLeaseManager(timeout=5.0)

    async with leases.lease(plan_id):
        await dispatch(plan_id)
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass

from app.core.errors import ResourceBusyError


@dataclass
class LeaseInfo:
    """Information about a held lease."""

    name: str
    holder_id: str
    acquired_at: float


class PlanLeaseManager:
    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}
        self._lease_info: dict[str, LeaseInfo] = {}
        self._instance_id = str(uuid.uuid4())[:8]

    def _get_lock(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    async def acquire(self, name: str, timeout: float | None = None) -> bool:
        """Wait up to timeout seconds for the lease. Returns False on timeout."""
        timeout = self.timeout if timeout is None else timeout
        lock = self._get_lock(name)
        self._waiters[name] = self._waiters.get(name, 0) + 1
        try:
            # Lock.acquire never keeps the lock when cancelled by the deadline.
            async with asyncio.timeout(timeout):
                await lock.acquire()
        except TimeoutError:
            return False
        finally:
            self._waiters[name] -= 1

        task = asyncio.current_task()
        self._lease_info[name] = LeaseInfo(
            name=name,
            holder_id=f"{self._instance_id}:{task.get_name() if task else '?'}",
            acquired_at=time.time(),
        )
        return True

    def release(self, name: str) -> bool:
        lock = self._locks.get(name)
        if lock is None or not lock.locked():
            return False
        lock.release()
        self._lease_info.pop(name, None)
        # Drop idle locks so the table does not grow with every plan ever seen.
        if not lock.locked() and not self._waiters.get(name):
            self._locks.pop(name, None)
            self._waiters.pop(name, None)
        return True

    def is_leased(self, name: str) -> bool:
        return name in self._lease_info

    def get_info(self, name: str) -> LeaseInfo | None:
        return self._lease_info.get(name)

    @asynccontextmanager
    async def lease(self, plan_id, timeout: float | None = None):
        name = str(plan_id)
        if not await self.acquire(name, timeout=timeout):
            raise ResourceBusyError(f"Plan {name} is already being dispatched")
        try:
            yield
        finally:
            self.release(name)
