from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    description: str
    op: Callable[[], Awaitable[None]]
    attempts: int = 0


class DurableWriter:
    """
    Write-behind for store updates.

    A write is attempted in the background as soon as it is submitted; a
    failure is logged and parked for retry_pending(), which the persistence
    scheduler calls on an interval. Live state never waits on the store.
    """

    def __init__(self, *, max_attempts: int) -> None:
        self._max_attempts = max_attempts
        self._pending: list[PendingWrite] = []
        self._inflight: set[asyncio.Task] = set()
        self._retry_lock = asyncio.Lock()
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, description: str, op: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.get_running_loop().create_task(self._attempt(PendingWrite(description, op)), name=f"persist-{description}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _attempt(self, write: PendingWrite) -> bool:
        write.attempts += 1
        try:
            await write.op()
        except Exception as e:
            if write.attempts >= self._max_attempts:
                self.dropped += 1
                logger.error("giving up on %s after %d attempts: %s", write.description, write.attempts, e)
            else:
                logger.warning("store write failed (%s, attempt %d): %s", write.description, write.attempts, e)
                self._pending.append(write)
            return False
        return True

    async def retry_pending(self) -> int:
        """Retry parked writes once each. Returns how many succeeded."""
        async with self._retry_lock:
            batch, self._pending = self._pending, []
            ok = 0
            for write in batch:
                if await self._attempt(write):
                    ok += 1
            return ok

    async def drain(self) -> None:
        """Wait for every in-flight first attempt to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
