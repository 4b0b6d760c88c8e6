"""Read models derived from the live event stream: monitoring distribution and leaderboard."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from classsync.core.state_store import PRESENCE_OFFLINE, PRESENCE_ONLINE, Participant


@dataclass(slots=True)
class MonitorRow:
    student_id: str
    display_name: str
    position: int
    since: float
    current_item: str | None = None
    completed_current: bool = False
    completed_items: set[str] = field(default_factory=set)
    presence: str = PRESENCE_ONLINE
    removed: bool = False
    answers: dict[str, dict] = field(default_factory=dict)

    @property
    def counted(self) -> bool:
        return not self.removed and self.presence != PRESENCE_OFFLINE


class MonitoringView:
    """
    Where every student is and who looks stuck.

    The per-position distribution is adjusted on each event rather than
    recomputed; rebuild() is the only full recomputation and backs the manual
    refresh. One row per student, so extra connections never double count.
    """

    def __init__(self, stuck_threshold_s: float) -> None:
        if stuck_threshold_s <= 0:
            raise ValueError("stuck_threshold_s must be positive")
        self.stuck_threshold_s = stuck_threshold_s
        self._rows: dict[str, MonitorRow] = {}
        self._distribution: Counter[int] = Counter()

    def _count(self, row: MonitorRow, delta: int) -> None:
        self._distribution[row.position] += delta
        if self._distribution[row.position] <= 0:
            del self._distribution[row.position]

    def _move(self, row: MonitorRow, position: int) -> None:
        if row.position == position:
            return
        if row.counted:
            self._count(row, -1)
        row.position = position
        if row.counted:
            self._count(row, +1)

    def _set_presence(self, row: MonitorRow, presence: str, removed: bool) -> None:
        was = row.counted
        row.presence = presence
        row.removed = removed
        if was and not row.counted:
            self._count(row, -1)
        elif not was and row.counted:
            self._count(row, +1)

    def on_join(self, student_id: str, display_name: str, position: int, now: float) -> None:
        row = self._rows.get(student_id)
        if row is None:
            row = MonitorRow(student_id=student_id, display_name=display_name, position=position, since=now)
            self._rows[student_id] = row
            self._count(row, +1)
            return
        row.display_name = display_name
        self._set_presence(row, PRESENCE_ONLINE, removed=False)
        if row.position != position:
            self._move(row, position)
            row.since = now
            row.completed_current = False
            row.current_item = None

    def on_presence(self, student_id: str, presence: str) -> None:
        row = self._rows.get(student_id)
        if row is not None:
            self._set_presence(row, presence, removed=row.removed)

    def on_removed(self, student_id: str) -> None:
        row = self._rows.get(student_id)
        if row is not None:
            self._set_presence(row, PRESENCE_OFFLINE, removed=True)

    def on_position(self, student_id: str, position: int, now: float) -> None:
        row = self._rows.get(student_id)
        if row is None or row.position == position:
            return
        self._move(row, position)
        row.since = now
        row.current_item = None
        row.completed_current = False

    def on_item_started(self, student_id: str, item_id: str, now: float) -> None:
        # Position moves go through on_position once the router has authorized them.
        row = self._rows.get(student_id)
        if row is None:
            return
        row.current_item = item_id
        row.since = now
        row.completed_current = False

    def on_item_completed(self, student_id: str, item_id: str, now: float) -> None:
        row = self._rows.get(student_id)
        if row is None:
            return
        row.completed_items.add(item_id)
        if row.current_item in (None, item_id):
            row.current_item = item_id
            row.completed_current = True
            row.since = now

    def on_answer(self, student_id: str, item_id: str, answer: dict) -> None:
        row = self._rows.get(student_id)
        if row is not None:
            row.answers[item_id] = dict(answer)

    def answer_tally(self, item_id: str) -> dict:
        """Answer counts for one item across students who are still counted."""
        options: Counter[str] = Counter()
        responses = correct = 0
        for row in self._rows.values():
            answer = row.answers.get(item_id)
            if answer is None or row.removed:
                continue
            responses += 1
            if answer.get("is_correct"):
                correct += 1
            if answer.get("selected_option") is not None:
                options[str(answer["selected_option"])] += 1
        return {"responses": responses, "correct": correct, "options": dict(sorted(options.items()))}

    def distribution(self) -> dict[int, int]:
        return dict(sorted(self._distribution.items()))

    def stuck(self, now: float) -> list[str]:
        return sorted(
            r.student_id
            for r in self._rows.values()
            if r.counted and not r.completed_current and (now - r.since) >= self.stuck_threshold_s
        )

    def rebuild(self, participants: Iterable[Participant], now: float) -> None:
        self._rows.clear()
        self._distribution.clear()
        for p in participants:
            last = p.progress[-1] if p.progress else None
            since = p.joined_at
            if last is not None:
                since = last.completed_at or last.started_at or since
            row = MonitorRow(
                student_id=p.student_id,
                display_name=p.display_name,
                position=p.position,
                since=since,
                current_item=last.item_id if last else None,
                completed_current=bool(last and last.completed_at is not None),
                completed_items=p.completed_items(),
                presence=p.presence,
                removed=p.removed,
                answers={k: dict(v) for k, v in p.answers.items()},
            )
            self._rows[p.student_id] = row
            if row.counted:
                self._count(row, +1)

    def to_dict(self, now: float) -> dict:
        stuck = set(self.stuck(now))
        return {
            "distribution": {str(pos): n for pos, n in self.distribution().items()},
            "stuck": sorted(stuck),
            "stuck_threshold_s": self.stuck_threshold_s,
            "students": [
                {
                    "student_id": r.student_id,
                    "display_name": r.display_name,
                    "position": r.position,
                    "current_item": r.current_item,
                    "completed_items": len(r.completed_items),
                    "presence": r.presence,
                    "removed": r.removed,
                    "answers": len(r.answers),
                    "seconds_on_item": round(max(0.0, now - r.since), 3),
                    "stuck": r.student_id in stuck,
                }
                for r in sorted(self._rows.values(), key=lambda r: r.display_name)
            ],
        }


@dataclass(slots=True)
class LeaderboardEntry:
    """Mutable leaderboard entry used internally."""

    student_id: str
    display_name: str
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def total_score(self) -> float:
        return sum(self.scores.values())

    @property
    def activities_completed(self) -> int:
        return len(self.scores)

    @property
    def average_score(self) -> float:
        return self.total_score / len(self.scores) if self.scores else 0.0


@dataclass(frozen=True)
class LeaderboardUpdate:
    student_id: str
    ranks_changed: bool
    entry: dict
    rows: list[dict]


class Leaderboard:
    """
    Ranked scores per student. A student's latest score per item counts, so a
    repeated delivery of the same response leaves the board unchanged.
    """

    def __init__(self) -> None:
        self._entries: dict[str, LeaderboardEntry] = {}
        self._order: list[str] = []

    def record(self, student_id: str, display_name: str, item_id: str, score: float) -> LeaderboardUpdate:
        before = self._ranks()
        entry = self._entries.get(student_id)
        if entry is None:
            entry = LeaderboardEntry(student_id=student_id, display_name=display_name)
            self._entries[student_id] = entry
            self._order.append(student_id)
        entry.display_name = display_name
        entry.scores[item_id] = float(score)
        self._rerank()
        rows = self.rows()
        return LeaderboardUpdate(
            student_id=student_id,
            ranks_changed=before != self._ranks(),
            entry=next(r for r in rows if r["student_id"] == student_id),
            rows=rows,
        )

    def _rerank(self) -> None:
        # list.sort is stable: equal totals keep their previous relative order.
        self._order.sort(key=lambda sid: -self._entries[sid].total_score)

    def _ranks(self) -> dict[str, int]:
        return {sid: i + 1 for i, sid in enumerate(self._order)}

    def entry_for(self, student_id: str) -> dict | None:
        for row in self.rows():
            if row["student_id"] == student_id:
                return row
        return None

    def rows(self) -> list[dict]:
        out = []
        for i, sid in enumerate(self._order):
            e = self._entries[sid]
            out.append(
                {
                    "rank": i + 1,
                    "student_id": e.student_id,
                    "display_name": e.display_name,
                    "total_score": round(e.total_score, 2),
                    "average_score": round(e.average_score, 2),
                    "activities_completed": e.activities_completed,
                }
            )
        return out

    def seed(self, records: Iterable[dict]) -> None:
        """Rebuild from persisted score records, replayed in recording order."""
        self._entries.clear()
        self._order.clear()
        for r in sorted(records, key=lambda r: r.get("recorded_at", 0.0)):
            self.record(r["student_id"], r.get("display_name") or r["student_id"], r["item_id"], r["score"])
