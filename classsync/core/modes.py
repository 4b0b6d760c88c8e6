from __future__ import annotations

from enum import Enum
from typing import Iterable

from classsync.core.errors import NotPermitted


class PacingMode(str, Enum):
    TEACHER_PACED = "teacher-paced"
    STUDENT_PACED = "student-paced"
    BOUNDED = "bounded"


class Action(str, Enum):
    TEACHER_SET_POSITION = "teacher-set-position"
    STUDENT_NAVIGATE = "student-navigate"
    STUDENT_PASS_CHECKPOINT = "student-pass-checkpoint"


# Checkpoints only bind in bounded mode; elsewhere passing one is ordinary navigation.
PERMISSIONS: dict[tuple[Action, PacingMode], bool] = {
    (Action.TEACHER_SET_POSITION, PacingMode.TEACHER_PACED): True,
    (Action.TEACHER_SET_POSITION, PacingMode.STUDENT_PACED): True,
    (Action.TEACHER_SET_POSITION, PacingMode.BOUNDED): True,
    (Action.STUDENT_NAVIGATE, PacingMode.TEACHER_PACED): False,
    (Action.STUDENT_NAVIGATE, PacingMode.STUDENT_PACED): True,
    (Action.STUDENT_NAVIGATE, PacingMode.BOUNDED): True,
    (Action.STUDENT_PASS_CHECKPOINT, PacingMode.TEACHER_PACED): False,
    (Action.STUDENT_PASS_CHECKPOINT, PacingMode.STUDENT_PACED): True,
    (Action.STUDENT_PASS_CHECKPOINT, PacingMode.BOUNDED): False,
}


def is_permitted(action: Action, mode: PacingMode, *, locked: bool = False) -> bool:
    if locked and action is not Action.TEACHER_SET_POSITION:
        return False
    return PERMISSIONS[(action, mode)]


def is_hard_navigation(mode: PacingMode) -> bool:
    """Teacher navigation in teacher-paced mode moves every student; elsewhere it is advisory."""
    return mode is PacingMode.TEACHER_PACED


def checkpoint_limit(checkpoints: Iterable[int], acknowledged: Iterable[int]) -> int | None:
    """Nearest checkpoint the teacher has not moved past yet, or None when nothing binds."""
    acked = set(acknowledged)
    pending = [c for c in checkpoints if c not in acked]
    return min(pending) if pending else None


def student_limit(
    mode: PacingMode, checkpoints: Iterable[int], acknowledged: Iterable[int]
) -> int | None:
    if mode is not PacingMode.BOUNDED:
        return None
    return checkpoint_limit(checkpoints, acknowledged)


def acknowledged_after_navigation(
    checkpoints: Iterable[int], acknowledged: Iterable[int], position: int
) -> frozenset[int]:
    """Checkpoints strictly below the teacher's position count as released; never revoked."""
    return frozenset(acknowledged) | {c for c in checkpoints if c < position}


def authorize_student_navigation(
    *,
    mode: PacingMode,
    locked: bool,
    checkpoints: Iterable[int],
    acknowledged: Iterable[int],
    target: int,
    event_type: str = "student-navigate",
) -> None:
    if locked:
        raise NotPermitted("screen is locked", event_type=event_type)
    if not is_permitted(Action.STUDENT_NAVIGATE, mode):
        raise NotPermitted(f"navigation follows the teacher in {mode.value} mode", event_type=event_type)

    limit = student_limit(mode, checkpoints, acknowledged)
    if limit is not None and target > limit and not is_permitted(Action.STUDENT_PASS_CHECKPOINT, mode):
        raise NotPermitted(
            f"checkpoint at {limit} has not been released by the teacher",
            event_type=event_type,
        )
