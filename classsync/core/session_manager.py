from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from time import time

from classsync.core.aggregation import Leaderboard, MonitoringView
from classsync.core.errors import InvalidPayload, SessionNotFound
from classsync.core.state_store import SessionState, SessionStateStore


@dataclass
class LiveSession:
    session_id: str
    store: SessionStateStore
    monitoring: MonitoringView
    leaderboard: Leaderboard = field(default_factory=Leaderboard)
    created_at: float = field(default_factory=lambda: time())
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def state(self) -> SessionState:
        return self.store.state


class SessionManager:
    """
    Live sessions held in memory.

    Responsibilities:
    - session lifecycle (open / lookup / drop once ended)
    - the per-session lock that serializes every mutation of that session
    """

    def __init__(self, *, stuck_threshold_s: float) -> None:
        self._sessions: dict[str, LiveSession] = {}
        self._lock = asyncio.Lock()
        self._stuck_threshold_s = stuck_threshold_s

    async def create(self, state: SessionState) -> LiveSession:
        async with self._lock:
            if state.session_id in self._sessions:
                raise InvalidPayload(f"session already live: {state.session_id}")
            s = LiveSession(
                session_id=state.session_id,
                store=SessionStateStore(state),
                monitoring=MonitoringView(self._stuck_threshold_s),
            )
            self._sessions[state.session_id] = s
            return s

    async def get(self, session_id: str) -> LiveSession:
        async with self._lock:
            s = self._sessions.get(session_id)
            if s is None:
                raise SessionNotFound(f"session not found: {session_id}")
            return s

    async def exists(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self._sessions

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def list_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)
