from __future__ import annotations

from classsync.core.aggregation import Leaderboard, MonitoringView
from classsync.core.modes import student_limit
from classsync.core.registry import TEACHER_SIDE_ROLES
from classsync.core.state_store import SessionState


def build_snapshot(
    state: SessionState,
    *,
    role: str,
    participant_id: str | None,
    monitoring: MonitoringView,
    leaderboard: Leaderboard,
    now: float,
) -> dict:
    """
    Full current state for one client.

    Clients replace whatever they hold with this; nothing is merged or
    replayed. Students get their own position and confusion flag, the teacher
    side gets the roster and both read models.
    """
    snap: dict = {
        "session_id": state.session_id,
        "version": state.version,
        "status": state.status,
        "title": state.title,
        "presenting": state.presenting,
        "deck_id": state.deck_id,
        "total_items": state.total_items,
        "mode": state.mode.value,
        "locked": state.locked,
        "activity": state.activity,
        "position": state.position,
        "checkpoints": list(state.checkpoints),
        "acknowledged_checkpoints": sorted(state.acknowledged),
        "checkpoint_limit": student_limit(state.mode, state.checkpoints, state.acknowledged),
        "confused_count": sum(1 for p in state.participants.values() if p.confused and not p.removed),
    }

    if role == "student" and participant_id is not None:
        me = state.participants.get(participant_id)
        if me is not None:
            snap["me"] = {
                "student_id": me.student_id,
                "display_name": me.display_name,
                "position": me.position,
                "confused": me.confused,
                "locked": state.locked or me.locked,
                "activity": me.activity if me.activity is not None else state.activity,
                "completed_items": sorted(me.completed_items()),
                "answers": {item_id: dict(a) for item_id, a in me.answers.items()},
            }
            snap["my_score"] = leaderboard.entry_for(participant_id)

    if role in TEACHER_SIDE_ROLES:
        snap["students"] = [
            {
                "student_id": p.student_id,
                "display_name": p.display_name,
                "device_type": p.device_type,
                "presence": p.presence,
                "position": p.position,
                "confused": p.confused,
                "locked": p.locked,
            }
            for p in sorted(state.participants.values(), key=lambda p: p.display_name)
            if not p.removed
        ]
        snap["monitoring"] = monitoring.to_dict(now)
        snap["leaderboard"] = leaderboard.rows()

    return snap
