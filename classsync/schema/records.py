from __future__ import annotations

from pydantic import BaseModel, Field


class DeckRecord(BaseModel):
    deck_id: str = Field(..., min_length=1)
    title: str = ""
    items: list[str] = Field(default_factory=list)
    scored_items: list[str] = Field(default_factory=list)

    @property
    def total_items(self) -> int | None:
        return len(self.items) or None


class SessionRecord(BaseModel):
    session_id: str = Field(..., min_length=1)
    teacher_id: str = Field(..., min_length=1)
    title: str = ""
    status: str = "active"
    created_at: float = 0.0


class ParticipantRecord(BaseModel):
    session_id: str
    student_id: str
    display_name: str
    device_type: str | None = None
    account_id: str | None = None
    joined_at: float


class ProgressRecordOut(BaseModel):
    session_id: str
    student_id: str
    item_id: str
    position: int | None = None
    started_at: float | None = None
    completed_at: float
    time_spent: float | None = None


class ScoreRecord(BaseModel):
    session_id: str
    student_id: str
    display_name: str
    item_id: str
    score: float
    recorded_at: float
