from __future__ import annotations

import asyncio
import logging
from time import time

from classsync.core.errors import SessionNotFound
from classsync.core.persistence import DurableWriter
from classsync.core.router import EventRouter
from classsync.core.session_manager import SessionManager
from classsync.core.settings import Settings

logger = logging.getLogger(__name__)


class _IntervalScheduler:
    name = "scheduler"

    def __init__(self, interval_s: float) -> None:
        self._interval_s = interval_s
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await asyncio.wait([self._task], timeout=3.0)
            self._task = None

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("%s tick failed", self.name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> None:
        raise NotImplementedError


class PresenceSweeper(_IntervalScheduler):
    """
    Reconnect grace handling: students away longer than reconnect_grace_s are
    marked offline in the read models. Their records are kept.
    """

    name = "presence-sweeper"

    def __init__(self, *, router: EventRouter, sessions: SessionManager, settings: Settings) -> None:
        super().__init__(settings.presence_sweep_interval_s)
        self._router = router
        self._sessions = sessions
        self._grace_s = settings.reconnect_grace_s

    async def tick(self, now: float | None = None) -> dict[str, list[str]]:
        now = time() if now is None else now
        out: dict[str, list[str]] = {}
        for session_id in await self._sessions.list_ids():
            try:
                expired = await self._router.expire_presence(session_id, grace_s=self._grace_s, now=now)
            except SessionNotFound:
                continue
            if expired:
                out[session_id] = expired
        return out


class PersistenceRetryScheduler(_IntervalScheduler):
    name = "persistence-retry"

    def __init__(self, *, writer: DurableWriter, settings: Settings) -> None:
        super().__init__(settings.persistence_retry_interval_s)
        self._writer = writer

    async def tick(self) -> None:
        if self._writer.pending:
            ok = await self._writer.retry_pending()
            if ok:
                logger.info("persisted %d delayed write(s); %d still pending", ok, self._writer.pending)
