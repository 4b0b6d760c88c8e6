from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import time
from typing import Any, Awaitable, Callable
from uuid import uuid4

from classsync.core.errors import InvalidPayload, NotPermitted, SessionNotFound
from classsync.core.modes import (
    PacingMode,
    authorize_student_navigation,
    is_hard_navigation,
    student_limit,
)
from classsync.core.persistence import DurableWriter
from classsync.core.registry import Audience, Connection, FanoutPlan, RoomRegistry
from classsync.core.resync import build_snapshot
from classsync.core.session_manager import LiveSession, SessionManager
from classsync.core.state_store import PRESENCE_AWAY, PRESENCE_OFFLINE, PRESENCE_ONLINE, Change
from classsync.infra.redis_store import SessionStore
from classsync.schema import events as ev
from classsync.schema.events import EmittedEvent
from classsync.schema.records import DeckRecord, ParticipantRecord, ProgressRecordOut, ScoreRecord

logger = logging.getLogger(__name__)

TEACHER = frozenset({"teacher"})
STUDENT = frozenset({"student"})
ANY_ROLE = frozenset({"teacher", "student", "projector", "monitor"})

# Events that need a running presentation.
_NEEDS_PRESENTATION = frozenset({"navigate", "student-navigate"})
# Student events still accepted while the teacher has paused the session.
_ALLOWED_WHILE_PAUSED = frozenset({"request-snapshot", "ping"})


@dataclass(frozen=True)
class Actor:
    """Who is acting: role, durable identity and, for socket clients, the connection."""

    role: str
    participant_id: str | None = None
    connection: Connection | None = None


@dataclass
class _Route:
    live: LiveSession
    actor: Actor
    now: float
    plan: FanoutPlan = field(default_factory=FanoutPlan)
    writes: list[tuple[str, Callable[[], Awaitable[None]]]] = field(default_factory=list)
    after_deliver: list[Callable[[], Awaitable[None]]] = field(default_factory=list)
    deck: DeckRecord | None = None

    @property
    def store(self):
        return self.live.store

    @property
    def state(self):
        return self.live.store.state

    def emit(self, audience: Audience, type: str, payload: dict | None = None) -> None:
        self.plan.add(audience, type, payload, timestamp=self.now)


class EventRouter:
    """
    Single entry point for every client-originated action.

    handle() looks the event type up in one dispatch table, checks the actor's
    role and identity, lets the mode state machine rule on legality, mutates
    the session's state store, updates the read models and enqueues the
    fan-out. All of that happens under the session lock, so events on one
    session are applied and delivered strictly in order. Store writes are
    submitted after the lock is released.
    """

    _DISPATCH: dict[str, tuple[frozenset[str], str]] = {
        "start-presentation": (TEACHER, "_on_start_presentation"),
        "stop-presentation": (TEACHER, "_on_stop_presentation"),
        "navigate": (TEACHER, "_on_navigate"),
        "set-mode": (TEACHER, "_on_set_mode"),
        "set-checkpoints": (TEACHER, "_on_set_checkpoints"),
        "set-lock": (TEACHER, "_on_set_lock"),
        "push-activity": (TEACHER, "_on_push_activity"),
        "clear-confusion": (TEACHER, "_on_clear_confusion"),
        "remove-student": (TEACHER, "_on_remove_student"),
        "pause-session": (TEACHER, "_on_pause_session"),
        "resume-session": (TEACHER, "_on_resume_session"),
        "end-session": (TEACHER, "_on_end_session"),
        "student-navigate": (STUDENT, "_on_student_navigate"),
        "toggle-confusion": (STUDENT, "_on_toggle_confusion"),
        "item-started": (STUDENT, "_on_item_started"),
        "item-completed": (STUDENT, "_on_item_completed"),
        "answer-question": (STUDENT, "_on_answer_question"),
        "request-snapshot": (ANY_ROLE, "_on_request_snapshot"),
        "ping": (ANY_ROLE, "_on_ping"),
    }

    def __init__(
        self,
        *,
        sessions: SessionManager,
        registry: RoomRegistry,
        store: SessionStore,
        writer: DurableWriter,
    ) -> None:
        self.sessions = sessions
        self.registry = registry
        self.store = store
        self.writer = writer

    async def handle(self, session_id: str, actor: Actor, event: Any, *, now: float | None = None) -> FanoutPlan:
        now = time() if now is None else now
        rule = self._DISPATCH.get(getattr(event, "type", ""))
        if rule is None:
            raise InvalidPayload(f"unknown event type: {getattr(event, 'type', None)!r}")
        roles, method = rule
        if actor.role not in roles:
            raise NotPermitted(f"{actor.role} may not send {event.type}", event_type=event.type)

        live = await self.sessions.get(session_id)
        deck = None
        if isinstance(event, ev.StartPresentation):
            deck = await self.store.get_deck_by_id(event.deck_id)
            if deck is None:
                raise InvalidPayload(f"unknown deck: {event.deck_id}", event_type=event.type)

        async with live.lock:
            route = _Route(live=live, actor=actor, now=now, deck=deck)
            self._check_actor(route, event)
            getattr(self, method)(route, event)
            self.registry.deliver(session_id, route.plan, sender=actor.connection)
            for step in route.after_deliver:
                await step()

        for description, op in route.writes:
            self.writer.submit(description, op)
        return route.plan

    def _check_actor(self, route: _Route, event: Any) -> None:
        state = route.state
        actor = route.actor
        if state.status == "ended":
            raise SessionNotFound(f"session has ended: {state.session_id}", event_type=event.type)
        if actor.connection is not None and not self.registry.contains(actor.connection):
            raise NotPermitted("connection is no longer part of the session", event_type=event.type)

        if actor.role == "teacher" and actor.participant_id != state.teacher_id:
            raise NotPermitted("only the session's teacher may do this", event_type=event.type)

        if actor.role == "student":
            p = state.participants.get(actor.participant_id or "")
            if p is None or p.removed:
                raise NotPermitted("student is not part of the session", event_type=event.type)
            if state.status == "paused" and event.type not in _ALLOWED_WHILE_PAUSED:
                raise NotPermitted("session is paused", event_type=event.type)

        if event.type in _NEEDS_PRESENTATION and not state.presenting:
            raise NotPermitted("no presentation is running", event_type=event.type)

    # Join / leave

    async def attach(self, session_id: str, join: ev.JoinSession, *, now: float | None = None) -> Connection:
        """
        Register a new connection and queue its snapshot ahead of anything else.

        The snapshot goes onto the connection's queue while the session lock is
        held, before any later mutation can fan out to it.
        """
        now = time() if now is None else now
        live = await self.sessions.get(session_id)
        writes: list[tuple[str, Callable[[], Awaitable[None]]]] = []

        async with live.lock:
            store = live.store
            state = store.state
            if state.status == "ended":
                raise SessionNotFound(f"session has ended: {session_id}", event_type="join-session")

            participant_id = join.participant_id
            if join.role == "teacher" and participant_id != state.teacher_id:
                raise NotPermitted("only the session's teacher may join as teacher", event_type="join-session")
            if join.role == "student" and participant_id is None:
                participant_id = uuid4().hex

            conn = self.registry.join(session_id, join.role, participant_id)
            plan = FanoutPlan()
            reconnected = False

            if join.role == "student":
                change = store.upsert_participant(
                    participant_id,
                    display_name=join.display_name,
                    device_type=join.device_type,
                    account_id=join.account_id,
                    now=now,
                )
                reconnected = change.previous is not None
                self._place_joining_student(live, participant_id)
                p = state.participants[participant_id]
                live.monitoring.on_join(participant_id, p.display_name, p.position, now)
                if change.previous != PRESENCE_ONLINE:
                    plan.add(
                        Audience.others(),
                        "user-joined",
                        {"role": "student", "student_id": participant_id, "display_name": p.display_name, "reconnected": reconnected},
                        timestamp=now,
                    )
                record = ParticipantRecord(
                    session_id=session_id,
                    student_id=participant_id,
                    display_name=p.display_name,
                    device_type=p.device_type,
                    account_id=p.account_id,
                    joined_at=p.joined_at,
                )
                writes.append((f"participant:{participant_id}", lambda: self.store.upsert_participant(record)))
            else:
                plan.add(Audience.others(), "user-joined", {"role": join.role, "connection_id": conn.connection_id}, timestamp=now)

            snapshot = build_snapshot(
                state,
                role=join.role,
                participant_id=participant_id,
                monitoring=live.monitoring,
                leaderboard=live.leaderboard,
                now=now,
            )
            conn.offer(
                EmittedEvent(
                    type="joined",
                    timestamp=now,
                    payload={
                        "connection_id": conn.connection_id,
                        "role": join.role,
                        "student_id": participant_id if join.role == "student" else None,
                        "reconnected": reconnected,
                        "snapshot": snapshot,
                    },
                )
            )
            self.registry.deliver(session_id, plan, sender=conn)

        for description, op in writes:
            self.writer.submit(description, op)
        logger.info(
            "%s %s session %s as %s",
            participant_id or conn.connection_id,
            "rejoined" if reconnected else "joined",
            session_id,
            join.role,
        )
        return conn

    def _place_joining_student(self, live: LiveSession, student_id: str) -> None:
        store = live.store
        state = store.state
        if not state.presenting:
            return
        if state.mode is PacingMode.TEACHER_PACED:
            store.set_student_position(student_id, state.position)
            return
        limit = student_limit(state.mode, state.checkpoints, state.acknowledged)
        if limit is not None and state.participants[student_id].position > limit:
            store.set_student_position(student_id, limit)

    async def detach(self, conn: Connection, *, now: float | None = None) -> None:
        """Disconnect flow, shared by explicit leave, transport errors and dead connections."""
        now = time() if now is None else now
        try:
            live = await self.sessions.get(conn.session_id)
        except SessionNotFound:
            self.registry.leave(conn)
            return

        async with live.lock:
            if not self.registry.contains(conn):
                conn.close()
                return
            last = self.registry.leave(conn)
            plan = FanoutPlan()
            state = live.state
            if conn.role == "student":
                p = state.participants.get(conn.participant_id or "")
                if last and p is not None and not p.removed:
                    live.store.set_presence(p.student_id, PRESENCE_AWAY, now=now)
                    live.monitoring.on_presence(p.student_id, PRESENCE_AWAY)
                    plan.add(
                        Audience.all(),
                        "user-left",
                        {"role": "student", "student_id": p.student_id, "display_name": p.display_name},
                        timestamp=now,
                    )
            else:
                plan.add(Audience.all(), "user-left", {"role": conn.role, "connection_id": conn.connection_id}, timestamp=now)
            self.registry.deliver(conn.session_id, plan)
        logger.info("%s left session %s (%s)", conn.participant_id or conn.connection_id, conn.session_id, conn.role)

    async def expire_presence(self, session_id: str, *, grace_s: float, now: float | None = None) -> list[str]:
        """Mark students who have been away longer than the grace period as offline."""
        now = time() if now is None else now
        live = await self.sessions.get(session_id)
        expired: list[str] = []
        async with live.lock:
            plan = FanoutPlan()
            for p in live.state.participants.values():
                if p.presence != PRESENCE_AWAY or p.disconnected_at is None:
                    continue
                if now - p.disconnected_at < grace_s:
                    continue
                live.store.set_presence(p.student_id, PRESENCE_OFFLINE, now=now)
                live.monitoring.on_presence(p.student_id, PRESENCE_OFFLINE)
                plan.add(Audience.teacher(), "student-offline", {"student_id": p.student_id, "display_name": p.display_name}, timestamp=now)
                expired.append(p.student_id)
            self.registry.deliver(session_id, plan)
        if expired:
            logger.info("session %s: %d student(s) marked offline after grace period", session_id, len(expired))
        return expired

    # Reads

    async def snapshot_for(self, session_id: str, role: str, participant_id: str | None = None, *, now: float | None = None) -> dict:
        now = time() if now is None else now
        live = await self.sessions.get(session_id)
        async with live.lock:
            return build_snapshot(
                live.state,
                role=role,
                participant_id=participant_id,
                monitoring=live.monitoring,
                leaderboard=live.leaderboard,
                now=now,
            )

    async def monitoring(self, session_id: str, *, refresh: bool = False, now: float | None = None) -> dict:
        now = time() if now is None else now
        live = await self.sessions.get(session_id)
        async with live.lock:
            if refresh:
                live.monitoring.rebuild(live.state.participants.values(), now)
            return live.monitoring.to_dict(now)

    async def leaderboard(self, session_id: str) -> list[dict]:
        live = await self.sessions.get(session_id)
        async with live.lock:
            return live.leaderboard.rows()

    # Teacher handlers

    def _on_start_presentation(self, r: _Route, e: ev.StartPresentation) -> None:
        deck = r.deck
        mode = PacingMode(e.mode)
        r.store.start_presentation(
            deck_id=deck.deck_id,
            total_items=deck.total_items,
            scored_items=deck.scored_items,
            mode=mode,
            position=e.position,
        )
        for change in r.store.converge_students(e.position):
            r.live.monitoring.on_position(change.student_id, change.value, r.now)
        r.emit(
            Audience.all(),
            "presentation-started",
            {
                "deck_id": deck.deck_id,
                "mode": mode.value,
                "position": e.position,
                "total_items": deck.total_items,
                "checkpoints": [],
                "locked": r.state.locked,
            },
        )
        logger.info("session %s: presentation of deck %s started (%s)", r.state.session_id, deck.deck_id, mode.value)

    def _on_stop_presentation(self, r: _Route, e: ev.StopPresentation) -> None:
        if r.store.stop_presentation().changed:
            r.emit(Audience.all(), "presentation-stopped", {"deck_id": r.state.deck_id})

    def _on_navigate(self, r: _Route, e: ev.Navigate) -> None:
        state = r.state
        acked_before = state.acknowledged
        change = r.store.set_position(e.position)
        hard = is_hard_navigation(state.mode)
        moved: list[Change] = []
        if hard:
            moved = r.store.converge_students(e.position)
            for m in moved:
                r.live.monitoring.on_position(m.student_id, m.value, r.now)
        if not (change.changed or moved or acked_before != state.acknowledged):
            return
        r.emit(
            Audience.all(),
            "teacher-navigated",
            {
                "position": e.position,
                "previous": change.previous,
                "hard": hard,
                "acknowledged_checkpoints": sorted(state.acknowledged),
                "checkpoint_limit": student_limit(state.mode, state.checkpoints, state.acknowledged),
            },
        )

    def _on_set_mode(self, r: _Route, e: ev.SetMode) -> None:
        mode = PacingMode(e.mode)
        change = r.store.set_mode(mode)
        if not change.changed:
            return
        state = r.state
        moved: list[Change] = []
        if mode is PacingMode.TEACHER_PACED:
            moved = r.store.converge_students(state.position)
        elif mode is PacingMode.BOUNDED:
            limit = student_limit(mode, state.checkpoints, state.acknowledged)
            if limit is not None:
                moved = r.store.clamp_students(limit)
        r.emit(
            Audience.all(),
            "mode-changed",
            {
                "mode": mode.value,
                "previous": change.previous.value,
                "position": state.position,
                "hard_follow": is_hard_navigation(mode),
                "checkpoint_limit": student_limit(mode, state.checkpoints, state.acknowledged),
            },
        )
        self._emit_position_resets(r, moved, reason="mode-changed")
        logger.info("session %s: mode %s -> %s", state.session_id, change.previous.value, mode.value)

    def _on_set_checkpoints(self, r: _Route, e: ev.SetCheckpoints) -> None:
        change = r.store.set_checkpoints(e.checkpoints)
        if not change.changed:
            return
        state = r.state
        limit = student_limit(state.mode, state.checkpoints, state.acknowledged)
        moved = r.store.clamp_students(limit) if limit is not None else []
        r.emit(
            Audience.all(),
            "checkpoints-updated",
            {
                "checkpoints": list(state.checkpoints),
                "acknowledged_checkpoints": sorted(state.acknowledged),
                "checkpoint_limit": limit,
            },
        )
        self._emit_position_resets(r, moved, reason="checkpoint")

    def _emit_position_resets(self, r: _Route, moved: list[Change], *, reason: str) -> None:
        for m in moved:
            r.live.monitoring.on_position(m.student_id, m.value, r.now)
            r.emit(Audience.student(m.student_id), "position-reset", {"position": m.value, "previous": m.previous, "reason": reason})

    def _on_set_lock(self, r: _Route, e: ev.SetLock) -> None:
        event_type = "screen-locked" if e.locked else "screen-unlocked"
        if e.student_ids is None:
            if r.store.set_lock(e.locked).changed:
                r.emit(Audience.all(), event_type, {"locked": e.locked})
            return
        changes = r.store.set_student_locks(e.student_ids, e.locked)
        for c in changes:
            r.emit(Audience.student(c.student_id), event_type, {"locked": e.locked, "student_id": c.student_id})
        if changes:
            r.emit(
                Audience.teacher(),
                "student-lock-changed",
                {"locked": e.locked, "student_ids": [c.student_id for c in changes]},
            )

    def _on_push_activity(self, r: _Route, e: ev.PushActivity) -> None:
        changes = r.store.push_activity(e.activity, e.student_ids)
        if e.student_ids is None:
            r.emit(Audience.all(), "activity-received", {"activity": e.activity})
            return
        for c in changes:
            r.emit(Audience.student(c.student_id), "activity-received", {"activity": e.activity, "target_student_id": c.student_id})
        r.emit(Audience.teacher(), "activity-pushed", {"activity": e.activity, "student_ids": [c.student_id for c in changes]})

    def _on_clear_confusion(self, r: _Route, e: ev.ClearConfusion) -> None:
        change = r.store.clear_confusion([e.student_id] if e.student_id else None)
        r.emit(Audience.all(), "confusion-cleared", {"student_ids": list(change.value)})
        r.emit(Audience.teacher(), "confusion-count", {"count": len(r.store.confused_ids())})

    def _on_remove_student(self, r: _Route, e: ev.RemoveStudent) -> None:
        was_confused = r.store.participant(e.student_id).confused
        r.store.remove_participant(e.student_id)
        r.live.monitoring.on_removed(e.student_id)
        session_id = r.state.session_id
        student_id = e.student_id
        r.writes.append((f"remove:{student_id}", lambda: self.store.remove_participant(session_id, student_id)))
        r.emit(Audience.student(e.student_id), "force-disconnect", {"message": "You have been removed from the session"})
        r.emit(Audience.others(e.student_id), "student-removed", {"student_id": e.student_id})
        if was_confused:
            r.emit(Audience.teacher(), "confusion-count", {"count": len(r.store.confused_ids())})

        async def _close() -> None:
            for conn in self.registry.connections_for(session_id, e.student_id):
                self.registry.leave(conn)

        r.after_deliver.append(_close)
        logger.info("session %s: student %s removed", session_id, e.student_id)

    def _set_status(self, r: _Route, status: str, event_type: str) -> None:
        if not r.store.set_status(status).changed:
            return
        r.emit(Audience.all(), event_type, {"status": status})
        session_id = r.state.session_id
        r.writes.append((f"session-status:{session_id}", lambda: self.store.set_session_status(session_id, status)))

    def _on_pause_session(self, r: _Route, e: ev.PauseSession) -> None:
        self._set_status(r, "paused", "session-paused")

    def _on_resume_session(self, r: _Route, e: ev.ResumeSession) -> None:
        self._set_status(r, "active", "session-resumed")

    def _on_end_session(self, r: _Route, e: ev.EndSession) -> None:
        self._set_status(r, "ended", "session-ended")
        session_id = r.state.session_id

        async def _close() -> None:
            self.registry.close_room(session_id)
            await self.sessions.remove(session_id)

        r.after_deliver.append(_close)
        logger.info("session %s ended", session_id)

    # Student handlers

    def _move_student(self, r: _Route, student_id: str, position: int, *, event_type: str) -> Change:
        """Every student-initiated position change passes the mode state machine here."""
        state = r.state
        authorize_student_navigation(
            mode=state.mode,
            locked=r.store.is_locked_for(student_id),
            checkpoints=state.checkpoints,
            acknowledged=state.acknowledged,
            target=position,
            event_type=event_type,
        )
        change = r.store.set_student_position(student_id, position)
        if change.changed:
            r.live.monitoring.on_position(student_id, position, r.now)
            r.emit(
                Audience.teacher(),
                "student-position-changed",
                {"student_id": student_id, "position": position, "previous": change.previous},
            )
        return change

    def _on_student_navigate(self, r: _Route, e: ev.StudentNavigate) -> None:
        self._move_student(r, r.actor.participant_id, e.position, event_type=e.type)
        r.emit(Audience.reply(), "position-confirmed", {"position": e.position})

    def _on_toggle_confusion(self, r: _Route, e: ev.ToggleConfusion) -> None:
        student_id = r.actor.participant_id
        if e.student_id is not None and e.student_id != student_id:
            raise NotPermitted("students may only change their own confusion flag", event_type=e.type)
        change = r.store.set_confusion(student_id, e.confused)
        if not change.changed:
            return
        p = r.state.participants[student_id]
        r.emit(
            Audience.teacher(),
            "confusion-updated",
            {"student_id": student_id, "display_name": p.display_name, "confused": e.confused},
        )
        r.emit(Audience.teacher(), "confusion-count", {"count": len(r.store.confused_ids())})
        r.emit(Audience.student(student_id), "confusion-state", {"confused": e.confused})

    def _on_item_started(self, r: _Route, e: ev.ItemStarted) -> None:
        student_id = r.actor.participant_id
        p = r.state.participants[student_id]
        # Outside a presentation the position is only recorded on the progress row.
        if e.position is not None and r.state.presenting and e.position != p.position:
            self._move_student(r, student_id, e.position, event_type=e.type)
        r.store.start_item(student_id, e.item_id, position=e.position, now=r.now)
        r.live.monitoring.on_item_started(student_id, e.item_id, r.now)
        r.emit(
            Audience.teacher(),
            "student-item-started",
            {"student_id": student_id, "item_id": e.item_id, "position": e.position},
        )

    def _on_item_completed(self, r: _Route, e: ev.ItemCompleted) -> None:
        state = r.state
        student_id = r.actor.participant_id
        change = r.store.record_progress(student_id, e.item_id, position=e.position, time_spent=e.time_spent, now=r.now)
        rec = change.value
        p = state.participants[student_id]
        r.live.monitoring.on_item_completed(student_id, e.item_id, r.now)
        completed = len(p.completed_items())
        r.emit(
            Audience.teacher(),
            "student-item-completed",
            {
                "student_id": student_id,
                "display_name": p.display_name,
                "item_id": e.item_id,
                "time_spent": rec.time_spent,
                "completed_items": completed,
            },
        )
        progress = ProgressRecordOut(
            session_id=state.session_id,
            student_id=student_id,
            item_id=e.item_id,
            position=rec.position,
            started_at=rec.started_at,
            completed_at=rec.completed_at,
            time_spent=rec.time_spent,
        )
        r.writes.append((f"progress:{student_id}:{e.item_id}", lambda: self.store.append_progress_record(progress)))

        if e.score is None or (state.scored_items and e.item_id not in state.scored_items):
            return
        update = r.live.leaderboard.record(student_id, p.display_name, e.item_id, e.score)
        r.emit(Audience.student(student_id), "score-recorded", {"item_id": e.item_id, "score": e.score, "entry": update.entry})
        audience = Audience.all() if update.ranks_changed else Audience.teacher()
        r.emit(audience, "leaderboard-updated", {"leaderboard": update.rows, "student_id": student_id})
        score = ScoreRecord(
            session_id=state.session_id,
            student_id=student_id,
            display_name=p.display_name,
            item_id=e.item_id,
            score=e.score,
            recorded_at=r.now,
        )
        r.writes.append((f"score:{student_id}:{e.item_id}", lambda: self.store.record_score(score)))

    def _on_answer_question(self, r: _Route, e: ev.AnswerQuestion) -> None:
        student_id = r.actor.participant_id
        change = r.store.record_answer(
            student_id,
            e.item_id,
            selected_option=e.selected_option,
            response=e.response,
            is_correct=e.is_correct,
            now=r.now,
        )
        r.emit(Audience.reply(), "answer-recorded", {"item_id": e.item_id, **change.value})
        if not change.changed:
            return
        p = r.state.participants[student_id]
        r.live.monitoring.on_answer(student_id, e.item_id, p.answers[e.item_id])
        r.emit(
            Audience.teacher(),
            "student-question-answered",
            {
                "student_id": student_id,
                "display_name": p.display_name,
                "item_id": e.item_id,
                "position": e.position if e.position is not None else p.position,
                **change.value,
                "tally": r.live.monitoring.answer_tally(e.item_id),
            },
        )

    # Any role

    def _on_request_snapshot(self, r: _Route, e: ev.RequestSnapshot) -> None:
        snap = build_snapshot(
            r.state,
            role=r.actor.role,
            participant_id=r.actor.participant_id,
            monitoring=r.live.monitoring,
            leaderboard=r.live.leaderboard,
            now=r.now,
        )
        r.emit(Audience.reply(), "session-snapshot", snap)

    def _on_ping(self, r: _Route, e: ev.Ping) -> None:
        r.emit(Audience.reply(), "pong", {})
