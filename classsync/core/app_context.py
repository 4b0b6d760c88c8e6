from __future__ import annotations

import json
import logging
from time import time

from redis.asyncio import Redis

from classsync.core.errors import InvalidPayload, NotPermitted, SessionNotFound, SyncError
from classsync.core.persistence import DurableWriter
from classsync.core.registry import Connection, FanoutPlan, RoomRegistry
from classsync.core.router import Actor, EventRouter
from classsync.core.schedulers import PersistenceRetryScheduler, PresenceSweeper
from classsync.core.session_manager import SessionManager
from classsync.core.settings import Settings, settings as default_settings
from classsync.core.state_store import SessionState
from classsync.infra.redis_store import RedisSessionStore, SessionStore
from classsync.schema.events import EmittedEvent, JoinSession, parse_event
from classsync.schema.records import DeckRecord, SessionRecord
from classsync.schema.session import SessionOpenRequest

logger = logging.getLogger(__name__)


class AppContext:
    """
    Process-wide wiring of the sync server.

    - live sessions, the room registry and the event router (in memory)
    - the durable store behind a write-behind writer
    - background loops: reconnect grace sweep, persistence retry
    """

    def __init__(self, *, settings: Settings | None = None, store: SessionStore | None = None) -> None:
        self.settings = settings or default_settings
        self.redis: Redis | None = None
        if store is None:
            self.redis = Redis.from_url(self.settings.redis_url, decode_responses=False)
            store = RedisSessionStore(self.redis)
        self.store = store

        self.registry = RoomRegistry(outbox_maxsize=self.settings.outbox_maxsize)
        self.sessions = SessionManager(stuck_threshold_s=self.settings.stuck_threshold_s)
        self.writer = DurableWriter(max_attempts=self.settings.persistence_max_attempts)
        self.router = EventRouter(
            sessions=self.sessions,
            registry=self.registry,
            store=self.store,
            writer=self.writer,
        )
        self.registry.on_dead = self.disconnect

        self.presence_sweeper = PresenceSweeper(router=self.router, sessions=self.sessions, settings=self.settings)
        self.persistence_retry = PersistenceRetryScheduler(writer=self.writer, settings=self.settings)
        self._bg_started = False

    async def start_background(self) -> None:
        if self._bg_started:
            return
        self._bg_started = True
        self.presence_sweeper.start()
        self.persistence_retry.start()

    async def shutdown(self) -> None:
        await self.presence_sweeper.stop()
        await self.persistence_retry.stop()
        await self.writer.drain()
        for session_id in await self.sessions.list_ids():
            self.registry.close_room(session_id)
        if self.redis is not None:
            await self.redis.aclose()

    # Setup actions

    async def put_deck(self, deck: DeckRecord) -> None:
        await self.store.put_deck(deck)

    async def get_deck(self, deck_id: str) -> DeckRecord:
        deck = await self.store.get_deck_by_id(deck_id)
        if deck is None:
            raise InvalidPayload(f"unknown deck: {deck_id}")
        return deck

    async def open_session(self, req: SessionOpenRequest) -> bool:
        """Bring a session live. Returns True when a stored session was reopened."""
        if await self.sessions.exists(req.session_id):
            raise InvalidPayload(f"session already live: {req.session_id}")

        record = await self.store.get_session_by_id(req.session_id)
        reopened = record is not None
        if record is not None:
            if record.teacher_id != req.teacher_id:
                raise NotPermitted("session belongs to another teacher")
            if record.status == "ended":
                raise SessionNotFound(f"session has ended: {req.session_id}")
        else:
            record = SessionRecord(
                session_id=req.session_id,
                teacher_id=req.teacher_id,
                title=req.title,
                created_at=time(),
            )
        record.status = "active"
        await self.store.put_session(record)
        scores = await self.store.list_scores(req.session_id)
        participants = await self.store.list_participants(req.session_id) if reopened else []
        progress = await self.store.list_progress_records(req.session_id) if reopened else []

        live = await self.sessions.create(
            SessionState(
                session_id=record.session_id,
                teacher_id=record.teacher_id,
                title=record.title or req.title,
            )
        )
        # Restored students stay offline until they reconnect.
        for row in participants:
            student_id = row.get("student_id")
            if not student_id:
                continue
            live.store.restore_participant(row, [p for p in progress if p.get("student_id") == student_id])
        live.monitoring.rebuild(live.state.participants.values(), time())
        live.leaderboard.seed(scores)
        self.registry.open_room(req.session_id)
        logger.info(
            "session %s %s by %s (%d participant(s) restored)",
            req.session_id,
            "reopened" if reopened else "opened",
            req.teacher_id,
            len(participants),
        )
        return reopened

    # Client actions

    async def connect(self, session_id: str, join: JoinSession) -> Connection:
        return await self.router.attach(session_id, join)

    async def disconnect(self, conn: Connection) -> None:
        await self.router.detach(conn)

    async def teacher_command(self, session_id: str, teacher_id: str, event) -> FanoutPlan:
        return await self.router.handle(session_id, Actor(role="teacher", participant_id=teacher_id), event)

    async def handle_frame(self, conn: Connection, raw: str) -> None:
        """Route one inbound socket frame. Failures are reported to this connection only."""
        try:
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise InvalidPayload("frame is not valid JSON") from e
            event = parse_event(data)
            actor = Actor(role=conn.role, participant_id=conn.participant_id, connection=conn)
            await self.router.handle(conn.session_id, actor, event)
        except NotPermitted as e:
            logger.info("rejected %s from %s in %s: %s", e.event_type, conn.participant_id or conn.role, conn.session_id, e.message)
            self._reply_error(conn, "not-permitted", e)
        except InvalidPayload as e:
            logger.warning("invalid payload from %s in %s: %s", conn.participant_id or conn.role, conn.session_id, e.message)
            self._reply_error(conn, "invalid-payload", e)
        except SessionNotFound as e:
            self._reply_error(conn, "session-not-found", e)
            conn.close()

    def _reply_error(self, conn: Connection, type: str, e: SyncError) -> None:
        conn.offer(EmittedEvent(type=type, timestamp=time(), payload=e.to_payload()))

    # Reads

    async def snapshot(self, session_id: str, role: str = "monitor", participant_id: str | None = None) -> dict:
        return await self.router.snapshot_for(session_id, role, participant_id)

    async def monitoring(self, session_id: str, *, refresh: bool = False) -> dict:
        return await self.router.monitoring(session_id, refresh=refresh)

    async def leaderboard(self, session_id: str) -> list[dict]:
        return await self.router.leaderboard(session_id)
