from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from time import time
from typing import Awaitable, Callable
from uuid import uuid4

from classsync.core.errors import SessionNotFound
from classsync.schema.events import EmittedEvent

logger = logging.getLogger(__name__)

TEACHER_SIDE_ROLES = frozenset({"teacher", "monitor"})


class AudienceKind(str, Enum):
    BROADCAST_ALL = "broadcast-all"
    BROADCAST_OTHERS = "broadcast-others"
    UNICAST_STUDENT = "unicast-student"
    UNICAST_TEACHER = "unicast-teacher"
    REPLY = "reply"


@dataclass(frozen=True)
class Audience:
    kind: AudienceKind
    student_id: str | None = None

    @classmethod
    def all(cls) -> Audience:
        return cls(AudienceKind.BROADCAST_ALL)

    @classmethod
    def others(cls, student_id: str | None = None) -> Audience:
        """Everyone but the sender and, when given, every connection of that student."""
        return cls(AudienceKind.BROADCAST_OTHERS, student_id)

    @classmethod
    def student(cls, student_id: str) -> Audience:
        return cls(AudienceKind.UNICAST_STUDENT, student_id)

    @classmethod
    def teacher(cls) -> Audience:
        return cls(AudienceKind.UNICAST_TEACHER)

    @classmethod
    def reply(cls) -> Audience:
        return cls(AudienceKind.REPLY)


@dataclass(frozen=True)
class Delivery:
    audience: Audience
    event: EmittedEvent


@dataclass
class FanoutPlan:
    """Outbound events produced by one routed action, in delivery order."""

    deliveries: list[Delivery] = field(default_factory=list)

    def add(self, audience: Audience, type: str, payload: dict | None = None, *, timestamp: float | None = None) -> None:
        event = EmittedEvent(type=type, timestamp=time() if timestamp is None else timestamp, payload=payload or {})
        self.deliveries.append(Delivery(audience, event))

    def __bool__(self) -> bool:
        return bool(self.deliveries)

    def types(self) -> list[str]:
        return [d.event.type for d in self.deliveries]


_CLOSE = None


@dataclass(eq=False)
class Connection:
    session_id: str
    role: str
    participant_id: str | None = None
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    connected_at: float = field(default_factory=lambda: time())
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=256))
    alive: bool = True

    def offer(self, event: EmittedEvent) -> bool:
        """Enqueue without waiting. False means the connection is dead or its queue is full."""
        if not self.alive:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Stop accepting events and tell the writer to shut the transport down."""
        if not self.alive:
            return
        self.alive = False
        try:
            self.outbox.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # Writer is stalled; dropping the backlog is fine once the connection is closed.
            while not self.outbox.empty():
                self.outbox.get_nowait()
            self.outbox.put_nowait(_CLOSE)

    async def next_event(self) -> EmittedEvent | None:
        """Next outbound event, or None once the connection has been closed."""
        return await self.outbox.get()


class RoomRegistry:
    """
    Which clients are connected to which session.

    Each connection owns a bounded outbound queue; delivering only enqueues,
    so one slow socket never holds up another. A connection whose queue
    overflows is handed to on_dead, which runs the normal disconnect flow.
    """

    def __init__(self, *, outbox_maxsize: int = 256) -> None:
        self._outbox_maxsize = outbox_maxsize
        self._rooms: dict[str, dict[str, Connection]] = {}
        self.on_dead: Callable[[Connection], Awaitable[None]] | None = None
        self._dead: set[str] = set()
        self._reaping: set[asyncio.Task] = set()

    def open_room(self, session_id: str) -> None:
        self._rooms.setdefault(session_id, {})

    def close_room(self, session_id: str) -> list[Connection]:
        members = list(self._rooms.pop(session_id, {}).values())
        for conn in members:
            conn.close()
            self._dead.discard(conn.connection_id)
        return members

    def join(self, session_id: str, role: str, participant_id: str | None = None) -> Connection:
        room = self._rooms.get(session_id)
        if room is None:
            raise SessionNotFound(f"session not found: {session_id}", event_type="join-session")
        conn = Connection(
            session_id=session_id,
            role=role,
            participant_id=participant_id,
            outbox=asyncio.Queue(maxsize=self._outbox_maxsize),
        )
        room[conn.connection_id] = conn
        return conn

    def leave(self, conn: Connection) -> bool:
        """Remove the connection. True when it was the participant's last open connection."""
        conn.close()
        self._dead.discard(conn.connection_id)
        room = self._rooms.get(conn.session_id)
        if room is None or room.pop(conn.connection_id, None) is None:
            return False
        if conn.participant_id is None:
            return False
        return not any(
            c.participant_id == conn.participant_id and c.role == conn.role for c in room.values()
        )

    def contains(self, conn: Connection) -> bool:
        return conn.connection_id in self._rooms.get(conn.session_id, {})

    def members_of(self, session_id: str, roles: frozenset[str] | set[str] | None = None) -> list[Connection]:
        room = self._rooms.get(session_id, {})
        return [c for c in room.values() if roles is None or c.role in roles]

    def connections_for(self, session_id: str, participant_id: str, role: str = "student") -> list[Connection]:
        return [c for c in self._rooms.get(session_id, {}).values() if c.participant_id == participant_id and c.role == role]

    def _resolve(self, session_id: str, audience: Audience, sender: Connection | None) -> list[Connection]:
        kind = audience.kind
        if kind is AudienceKind.BROADCAST_ALL:
            return self.members_of(session_id)
        if kind is AudienceKind.BROADCAST_OTHERS:
            return [
                c
                for c in self.members_of(session_id)
                if (sender is None or c.connection_id != sender.connection_id)
                and not (audience.student_id and c.role == "student" and c.participant_id == audience.student_id)
            ]
        if kind is AudienceKind.UNICAST_STUDENT:
            return self.connections_for(session_id, audience.student_id or "")
        if kind is AudienceKind.UNICAST_TEACHER:
            return self.members_of(session_id, TEACHER_SIDE_ROLES)
        if kind is AudienceKind.REPLY:
            return [sender] if sender is not None and self.contains(sender) else []
        raise ValueError(f"unknown audience: {kind}")

    def deliver(self, session_id: str, plan: FanoutPlan, sender: Connection | None = None) -> int:
        """Enqueue every delivery of the plan. Returns how many enqueues succeeded."""
        sent = 0
        for d in plan.deliveries:
            for conn in self._resolve(session_id, d.audience, sender):
                if conn.offer(d.event):
                    sent += 1
                else:
                    self._reap(conn)
        return sent

    def _reap(self, conn: Connection) -> None:
        if not self.contains(conn) or conn.connection_id in self._dead:
            return
        logger.warning(
            "dropping connection %s (%s) in session %s: outbound queue full",
            conn.connection_id,
            conn.role,
            conn.session_id,
        )
        self._dead.add(conn.connection_id)
        conn.close()
        if self.on_dead is None:
            self.leave(conn)
            return
        task = asyncio.get_running_loop().create_task(self.on_dead(conn), name=f"reap-{conn.connection_id}")
        self._reaping.add(task)
        task.add_done_callback(self._reaping.discard)
