from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from classsync.core.errors import InvalidPayload


class EmittedEvent(BaseModel):
    type: str
    timestamp: float
    payload: dict = Field(default_factory=dict)


PacingModeName = Literal["teacher-paced", "student-paced", "bounded"]
Role = Literal["teacher", "student", "projector", "monitor"]


class JoinSession(BaseModel):
    type: Literal["join-session"]
    role: Role
    participant_id: str | None = Field(default=None, min_length=1)
    display_name: str | None = Field(default=None, min_length=1, max_length=120)
    device_type: str | None = None
    account_id: str | None = None


# Teacher events


class StartPresentation(BaseModel):
    type: Literal["start-presentation"]
    deck_id: str = Field(..., min_length=1)
    mode: PacingModeName = "student-paced"
    position: int = Field(default=1, ge=1)


class StopPresentation(BaseModel):
    type: Literal["stop-presentation"]


class Navigate(BaseModel):
    type: Literal["navigate"]
    position: int = Field(..., ge=1)


class SetMode(BaseModel):
    type: Literal["set-mode"]
    mode: PacingModeName


class SetCheckpoints(BaseModel):
    type: Literal["set-checkpoints"]
    checkpoints: list[Annotated[int, Field(ge=1)]] = Field(default_factory=list)


class SetLock(BaseModel):
    type: Literal["set-lock"]
    locked: bool
    # None locks the whole session; a list locks only those students.
    student_ids: list[str] | None = Field(default=None, min_length=1)


class PushActivity(BaseModel):
    type: Literal["push-activity"]
    activity: dict
    student_ids: list[str] | None = Field(default=None, min_length=1)


class ClearConfusion(BaseModel):
    type: Literal["clear-confusion"]
    student_id: str | None = Field(default=None, min_length=1)


class RemoveStudent(BaseModel):
    type: Literal["remove-student"]
    student_id: str = Field(..., min_length=1)


class PauseSession(BaseModel):
    type: Literal["pause-session"]


class ResumeSession(BaseModel):
    type: Literal["resume-session"]


class EndSession(BaseModel):
    type: Literal["end-session"]


# Student events


class StudentNavigate(BaseModel):
    type: Literal["student-navigate"]
    position: int = Field(..., ge=1)


class ToggleConfusion(BaseModel):
    type: Literal["toggle-confusion"]
    confused: bool
    student_id: str | None = Field(default=None, min_length=1)


class ItemStarted(BaseModel):
    type: Literal["item-started"]
    item_id: str = Field(..., min_length=1)
    position: int | None = Field(default=None, ge=1)


class ItemCompleted(BaseModel):
    type: Literal["item-completed"]
    item_id: str = Field(..., min_length=1)
    position: int | None = Field(default=None, ge=1)
    time_spent: float | None = Field(default=None, ge=0)
    score: float | None = Field(default=None, ge=0)


class AnswerQuestion(BaseModel):
    type: Literal["answer-question"]
    item_id: str = Field(..., min_length=1)
    position: int | None = Field(default=None, ge=1)
    selected_option: str | int | None = None
    response: str | None = Field(default=None, max_length=4000)
    is_correct: bool | None = None

    @model_validator(mode="after")
    def _has_answer(self) -> AnswerQuestion:
        if self.selected_option is None and self.response is None:
            raise ValueError("selected_option or response is required")
        return self


# Any role


class RequestSnapshot(BaseModel):
    type: Literal["request-snapshot"]


class Ping(BaseModel):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        StartPresentation,
        StopPresentation,
        Navigate,
        SetMode,
        SetCheckpoints,
        SetLock,
        PushActivity,
        ClearConfusion,
        RemoveStudent,
        PauseSession,
        ResumeSession,
        EndSession,
        StudentNavigate,
        ToggleConfusion,
        ItemStarted,
        ItemCompleted,
        AnswerQuestion,
        RequestSnapshot,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_event(data: object) -> InboundEvent:
    """Validate a decoded client frame into one of the typed inbound events."""
    if not isinstance(data, dict):
        raise InvalidPayload("event must be a JSON object")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidPayload(_describe(e), event_type=_event_type(data)) from e


def parse_join(data: object) -> JoinSession:
    if not isinstance(data, dict):
        raise InvalidPayload("join frame must be a JSON object")
    try:
        return JoinSession.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(_describe(e), event_type="join-session") from e


def _event_type(data: dict) -> str | None:
    t = data.get("type")
    return t if isinstance(t, str) else None


def _describe(e: ValidationError) -> str:
    first = e.errors()[0]
    loc = ".".join(str(x) for x in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
