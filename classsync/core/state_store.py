from __future__ import annotations

from dataclasses import dataclass, field
from time import time
from typing import Any, Iterable

from classsync.core.errors import InvalidPayload
from classsync.core.modes import PacingMode, acknowledged_after_navigation

PRESENCE_ONLINE = "online"
PRESENCE_AWAY = "away"
PRESENCE_OFFLINE = "offline"

SESSION_STATUSES = ("active", "paused", "ended")


@dataclass
class ProgressRecord:
    item_id: str
    position: int | None = None
    started_at: float | None = None
    completed_at: float | None = None
    time_spent: float | None = None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "position": self.position,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "time_spent": self.time_spent,
        }


@dataclass
class Participant:
    student_id: str
    display_name: str
    device_type: str | None = None
    account_id: str | None = None
    confused: bool = False
    position: int = 1
    presence: str = PRESENCE_ONLINE
    joined_at: float = field(default_factory=lambda: time())
    disconnected_at: float | None = None
    progress: list[ProgressRecord] = field(default_factory=list)
    removed: bool = False
    locked: bool = False
    activity: dict | None = None
    answers: dict[str, dict] = field(default_factory=dict)

    @property
    def present(self) -> bool:
        """Online, or inside the reconnect grace period."""
        return not self.removed and self.presence != PRESENCE_OFFLINE

    def completed_items(self) -> set[str]:
        return {r.item_id for r in self.progress if r.completed_at is not None}

    def open_record(self, item_id: str) -> ProgressRecord | None:
        for rec in reversed(self.progress):
            if rec.item_id == item_id and rec.completed_at is None:
                return rec
        return None


@dataclass
class SessionState:
    session_id: str
    teacher_id: str
    title: str = ""
    status: str = "active"
    created_at: float = field(default_factory=lambda: time())
    deck_id: str | None = None
    total_items: int | None = None
    scored_items: frozenset[str] = frozenset()
    presenting: bool = False
    mode: PacingMode = PacingMode.STUDENT_PACED
    locked: bool = False
    checkpoints: tuple[int, ...] = ()
    acknowledged: frozenset[int] = frozenset()
    position: int = 1
    version: int = 0
    activity: dict | None = None
    participants: dict[str, Participant] = field(default_factory=dict)


@dataclass(frozen=True)
class Change:
    """Describes one mutation: the new authoritative value and what it replaced."""

    kind: str
    value: Any
    previous: Any = None
    student_id: str | None = None

    @property
    def changed(self) -> bool:
        return self.value != self.previous


class SessionStateStore:
    """
    Authoritative state of one live session.

    Every mutator validates its arguments before touching state and returns a
    Change. Callers hold the session lock; the store itself does no locking.
    """

    def __init__(self, state: SessionState) -> None:
        self._state = state

    @property
    def state(self) -> SessionState:
        return self._state

    def _commit(self, change: Change) -> Change:
        if change.changed:
            self._state.version += 1
        return change

    def _check_position(self, position: int) -> None:
        total = self._state.total_items
        if position < 1 or (total is not None and position > total):
            bound = f"1..{total}" if total is not None else ">= 1"
            raise InvalidPayload(f"position {position} out of range ({bound})")

    def participant(self, student_id: str) -> Participant:
        p = self._state.participants.get(student_id)
        if p is None:
            raise InvalidPayload(f"unknown student: {student_id}")
        return p

    def present_participants(self) -> list[Participant]:
        return [p for p in self._state.participants.values() if p.present]

    def confused_ids(self) -> list[str]:
        return [p.student_id for p in self._state.participants.values() if p.confused and not p.removed]

    # Session-level mutators

    def set_status(self, status: str) -> Change:
        if status not in SESSION_STATUSES:
            raise InvalidPayload(f"unknown session status: {status}")
        prev = self._state.status
        self._state.status = status
        return self._commit(Change("status", status, prev))

    def start_presentation(
        self,
        *,
        deck_id: str,
        total_items: int | None,
        scored_items: Iterable[str],
        mode: PacingMode,
        position: int,
    ) -> Change:
        if position < 1 or (total_items is not None and position > total_items):
            raise InvalidPayload(f"start position {position} is outside the deck")
        prev = {
            "deck_id": self._state.deck_id,
            "presenting": self._state.presenting,
        }
        s = self._state
        s.deck_id = deck_id
        s.total_items = total_items
        s.scored_items = frozenset(scored_items)
        s.presenting = True
        s.mode = mode
        s.position = position
        s.checkpoints = ()
        s.acknowledged = frozenset()
        # Restarting a presentation always produces a fresh broadcast.
        s.version += 1
        return Change("presentation", {"deck_id": deck_id, "presenting": True, "mode": mode.value, "position": position}, prev)

    def stop_presentation(self) -> Change:
        prev = self._state.presenting
        self._state.presenting = False
        return self._commit(Change("presenting", False, prev))

    def set_mode(self, mode: PacingMode) -> Change:
        prev = self._state.mode
        self._state.mode = mode
        return self._commit(Change("mode", mode, prev))

    def set_position(self, position: int) -> Change:
        self._check_position(position)
        s = self._state
        prev = s.position
        acked = acknowledged_after_navigation(s.checkpoints, s.acknowledged, position)
        s.position = position
        if acked != s.acknowledged:
            s.acknowledged = acked
            s.version += 1
        return self._commit(Change("position", position, prev))

    def set_checkpoints(self, checkpoints: Iterable[int]) -> Change:
        new = tuple(sorted(set(checkpoints)))
        for c in new:
            self._check_position(c)
        s = self._state
        prev = s.checkpoints
        s.acknowledged = frozenset(c for c in new if c in s.acknowledged or c < s.position)
        s.checkpoints = new
        return self._commit(Change("checkpoints", new, prev))

    def set_lock(self, locked: bool) -> Change:
        prev = self._state.locked
        self._state.locked = locked
        return self._commit(Change("locked", locked, prev))

    def push_activity(self, activity: dict, student_ids: Iterable[str] | None = None) -> list[Change]:
        """Make an activity current for everyone, or only for the listed students."""
        if student_ids is None:
            prev = self._state.activity
            self._state.activity = activity
            self._state.version += 1
            return [Change("activity", activity, prev)]
        targets = list(dict.fromkeys(student_ids))
        for sid in targets:
            self.participant(sid)
        changes = []
        for sid in targets:
            p = self._state.participants[sid]
            changes.append(Change("activity", activity, p.activity, sid))
            p.activity = activity
        self._state.version += 1
        return changes

    # Participant mutators

    def upsert_participant(
        self,
        student_id: str,
        *,
        display_name: str | None,
        device_type: str | None = None,
        account_id: str | None = None,
        now: float | None = None,
    ) -> Change:
        """Register a student or bring a known one back online. previous is None for a first join."""
        now = time() if now is None else now
        p = self._state.participants.get(student_id)
        if p is None:
            p = Participant(
                student_id=student_id,
                display_name=display_name or f"Student-{student_id[:6]}",
                device_type=device_type,
                account_id=account_id,
                position=self._state.position,
                joined_at=now,
            )
            self._state.participants[student_id] = p
            self._state.version += 1
            return Change("presence", PRESENCE_ONLINE, None, student_id)

        prev = p.presence
        if display_name:
            p.display_name = display_name
        if device_type:
            p.device_type = device_type
        if account_id:
            p.account_id = account_id
        p.removed = False
        p.presence = PRESENCE_ONLINE
        p.disconnected_at = None
        self._state.version += 1
        return Change("presence", PRESENCE_ONLINE, prev, student_id)

    def set_presence(self, student_id: str, presence: str, *, now: float | None = None) -> Change:
        if presence not in (PRESENCE_ONLINE, PRESENCE_AWAY, PRESENCE_OFFLINE):
            raise InvalidPayload(f"unknown presence: {presence}")
        p = self.participant(student_id)
        prev = p.presence
        p.presence = presence
        if presence == PRESENCE_AWAY:
            p.disconnected_at = time() if now is None else now
        elif presence == PRESENCE_ONLINE:
            p.disconnected_at = None
        return self._commit(Change("presence", presence, prev, student_id))

    def restore_participant(self, record: dict, progress: Iterable[dict] = ()) -> Participant:
        """Bring back a stored participant as offline, with their progress and last recorded position."""
        rows = sorted(progress, key=lambda r: r.get("completed_at") or 0.0)
        p = Participant(
            student_id=record["student_id"],
            display_name=record.get("display_name") or record["student_id"],
            device_type=record.get("device_type"),
            account_id=record.get("account_id"),
            presence=PRESENCE_OFFLINE,
            joined_at=record.get("joined_at") or time(),
            progress=[
                ProgressRecord(
                    item_id=r["item_id"],
                    position=r.get("position"),
                    started_at=r.get("started_at"),
                    completed_at=r.get("completed_at"),
                    time_spent=r.get("time_spent"),
                )
                for r in rows
            ],
        )
        positions = [r.position for r in p.progress if r.position is not None]
        if positions:
            p.position = positions[-1]
        self._state.participants[p.student_id] = p
        self._state.version += 1
        return p

    def set_student_locks(self, student_ids: Iterable[str], locked: bool) -> list[Change]:
        """Per-student screen lock, on top of the session-wide one. Only real changes are returned."""
        targets = list(dict.fromkeys(student_ids))
        for sid in targets:
            self.participant(sid)
        changes = []
        for sid in targets:
            p = self._state.participants[sid]
            if p.locked != locked:
                changes.append(self._commit(Change("student-locked", locked, p.locked, sid)))
                p.locked = locked
        return changes

    def is_locked_for(self, student_id: str) -> bool:
        return self._state.locked or self.participant(student_id).locked

    def record_answer(
        self,
        student_id: str,
        item_id: str,
        *,
        selected_option: str | int | None,
        response: str | None,
        is_correct: bool | None,
        now: float | None = None,
    ) -> Change:
        """Latest answer per item wins; repeating the same answer is a no-op."""
        p = self.participant(student_id)
        answer = {"selected_option": selected_option, "response": response, "is_correct": is_correct}
        prev = p.answers.get(item_id)
        prev_answer = None if prev is None else {k: prev[k] for k in answer}
        if prev_answer == answer:
            return Change("answer", answer, prev_answer, student_id)
        p.answers[item_id] = {**answer, "answered_at": time() if now is None else now}
        return self._commit(Change("answer", answer, prev_answer, student_id))

    def remove_participant(self, student_id: str) -> Change:
        p = self.participant(student_id)
        prev = p.removed
        p.removed = True
        p.presence = PRESENCE_OFFLINE
        p.confused = False
        return self._commit(Change("removed", True, prev, student_id))

    def set_confusion(self, student_id: str, confused: bool) -> Change:
        p = self.participant(student_id)
        prev = p.confused
        p.confused = confused
        return self._commit(Change("confused", confused, prev, student_id))

    def clear_confusion(self, student_ids: Iterable[str] | None = None) -> Change:
        targets = self.confused_ids() if student_ids is None else list(student_ids)
        for sid in targets:
            self.participant(sid)
        cleared = []
        for sid in targets:
            p = self._state.participants[sid]
            if p.confused:
                p.confused = False
                cleared.append(sid)
        return self._commit(Change("confusion-cleared", tuple(cleared), ()))

    def set_student_position(self, student_id: str, position: int) -> Change:
        self._check_position(position)
        p = self.participant(student_id)
        prev = p.position
        p.position = position
        return self._commit(Change("student-position", position, prev, student_id))

    def converge_students(self, position: int) -> list[Change]:
        """Move every present student to the given position (hard navigation)."""
        self._check_position(position)
        changes = []
        for p in self.present_participants():
            if p.position != position:
                changes.append(self._commit(Change("student-position", position, p.position, p.student_id)))
                p.position = position
        return changes

    def clamp_students(self, limit: int) -> list[Change]:
        changes = []
        for p in self.present_participants():
            if p.position > limit:
                changes.append(self._commit(Change("student-position", limit, p.position, p.student_id)))
                p.position = limit
        return changes

    def start_item(self, student_id: str, item_id: str, *, position: int | None, now: float | None = None) -> Change:
        if position is not None:
            self._check_position(position)
        p = self.participant(student_id)
        rec = ProgressRecord(item_id=item_id, position=position, started_at=time() if now is None else now)
        p.progress.append(rec)
        self._state.version += 1
        return Change("progress-started", rec, None, student_id)

    def record_progress(
        self,
        student_id: str,
        item_id: str,
        *,
        position: int | None,
        time_spent: float | None,
        now: float | None = None,
    ) -> Change:
        """Complete the student's open record for the item, or append a finished one."""
        if position is not None:
            self._check_position(position)
        p = self.participant(student_id)
        now = time() if now is None else now
        rec = p.open_record(item_id)
        if rec is None:
            started = (now - time_spent) if time_spent is not None else None
            rec = ProgressRecord(item_id=item_id, position=position, started_at=started)
            p.progress.append(rec)
        rec.completed_at = now
        if position is not None:
            rec.position = position
        if time_spent is not None:
            rec.time_spent = time_spent
        elif rec.started_at is not None:
            rec.time_spent = max(0.0, now - rec.started_at)
        self._state.version += 1
        return Change("progress", rec, None, student_id)
