from __future__ import annotations

from fakeredis import aioredis

from classsync.core.app_context import AppContext
from classsync.core.registry import Connection
from classsync.core.router import Actor
from classsync.core.settings import Settings
from classsync.infra.redis_store import RedisSessionStore
from classsync.schema.events import EmittedEvent, JoinSession, parse_event
from classsync.schema.records import DeckRecord
from classsync.schema.session import SessionOpenRequest

SESSION = "s1"
TEACHER = "t1"

DECK = DeckRecord(
    deck_id="deck-1",
    title="Fractions",
    items=[f"slide-{i}" for i in range(1, 9)],
    scored_items=["quiz-1", "quiz-2", "quiz-3"],
)


def make_settings(**overrides) -> Settings:
    values = {
        "reconnect_grace_s": 30.0,
        "stuck_threshold_s": 60.0,
        "presence_sweep_interval_s": 60.0,
        "persistence_retry_interval_s": 60.0,
        "persistence_max_attempts": 5,
        "send_timeout_s": 1.0,
        "heartbeat_timeout_s": 30.0,
        "outbox_maxsize": 64,
    }
    values.update(overrides)
    return Settings(**values)


def make_store() -> RedisSessionStore:
    return RedisSessionStore(aioredis.FakeRedis())


async def open_session(ctx: AppContext, session_id: str = SESSION, teacher_id: str = TEACHER, deck: DeckRecord = DECK) -> None:
    await ctx.put_deck(deck)
    await ctx.open_session(SessionOpenRequest(session_id=session_id, teacher_id=teacher_id, title="Period 3"))


async def join(
    ctx: AppContext,
    role: str,
    participant_id: str | None = None,
    *,
    session_id: str = SESSION,
    name: str | None = None,
) -> Connection:
    if role == "student" and name is None and participant_id is not None:
        name = participant_id.upper()
    req = JoinSession(type="join-session", role=role, participant_id=participant_id, display_name=name)
    return await ctx.connect(session_id, req)


async def teacher(ctx: AppContext, *, session_id: str = SESSION, teacher_id: str = TEACHER, now: float | None = None, **event):
    return await ctx.router.handle(session_id, Actor(role="teacher", participant_id=teacher_id), parse_event(event), now=now)


async def act(ctx: AppContext, conn: Connection, *, now: float | None = None, **event):
    actor = Actor(role=conn.role, participant_id=conn.participant_id, connection=conn)
    return await ctx.router.handle(conn.session_id, actor, parse_event(event), now=now)


def drain(conn: Connection) -> list[EmittedEvent]:
    out = []
    while not conn.outbox.empty():
        e = conn.outbox.get_nowait()
        if e is not None:
            out.append(e)
    return out


def types(events: list[EmittedEvent]) -> list[str]:
    return [e.type for e in events]
