from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from classsync.schema.events import PacingModeName


class SessionOpenRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    teacher_id: str = Field(..., min_length=1)
    title: str = ""


class SessionOpenResponse(BaseModel):
    ok: bool
    session_id: str
    reopened: bool = False


class TeacherRequest(BaseModel):
    teacher_id: str = Field(..., min_length=1)


class StartPresentationRequest(TeacherRequest):
    deck_id: str = Field(..., min_length=1)
    mode: PacingModeName = "student-paced"
    position: int = Field(default=1, ge=1)


class NavigateRequest(TeacherRequest):
    position: int = Field(..., ge=1)


class ModeRequest(TeacherRequest):
    mode: PacingModeName


class CheckpointsRequest(TeacherRequest):
    checkpoints: list[Annotated[int, Field(ge=1)]] = Field(default_factory=list)


class LockRequest(TeacherRequest):
    locked: bool
    student_ids: list[str] | None = Field(default=None, min_length=1)


class ActivityRequest(TeacherRequest):
    activity: dict
    student_ids: list[str] | None = Field(default=None, min_length=1)


class ClearConfusionRequest(TeacherRequest):
    student_id: str | None = Field(default=None, min_length=1)


class CommandResponse(BaseModel):
    ok: bool
    session_id: str
    emitted: list[str] = Field(default_factory=list)


class SnapshotResponse(BaseModel):
    ok: bool
    session_id: str
    snapshot: dict


class MonitoringResponse(BaseModel):
    ok: bool
    session_id: str
    monitoring: dict


class LeaderboardResponse(BaseModel):
    ok: bool
    session_id: str
    leaderboard: list[dict] = Field(default_factory=list)


class DeckResponse(BaseModel):
    ok: bool
    deck_id: str
    total_items: int | None = None
