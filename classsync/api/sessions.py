from __future__ import annotations

from fastapi import APIRouter, Request

from classsync.schema import events as ev
from classsync.schema.session import (
    ActivityRequest,
    CheckpointsRequest,
    ClearConfusionRequest,
    CommandResponse,
    LeaderboardResponse,
    LockRequest,
    ModeRequest,
    MonitoringResponse,
    NavigateRequest,
    SessionOpenRequest,
    SessionOpenResponse,
    SnapshotResponse,
    StartPresentationRequest,
    TeacherRequest,
)

router = APIRouter(tags=["sessions"])


async def _command(request: Request, session_id: str, teacher_id: str, event) -> CommandResponse:
    ctx = request.app.state.ctx
    plan = await ctx.teacher_command(session_id, teacher_id, event)
    return CommandResponse(ok=True, session_id=session_id, emitted=plan.types())


@router.post("/sessions/open", response_model=SessionOpenResponse)
async def open_session(payload: SessionOpenRequest, request: Request) -> SessionOpenResponse:
    ctx = request.app.state.ctx
    reopened = await ctx.open_session(payload)
    return SessionOpenResponse(ok=True, session_id=payload.session_id, reopened=reopened)


@router.get("/sessions/{session_id}", response_model=SnapshotResponse)
async def get_session(session_id: str, request: Request) -> SnapshotResponse:
    ctx = request.app.state.ctx
    snapshot = await ctx.snapshot(session_id)
    return SnapshotResponse(ok=True, session_id=session_id, snapshot=snapshot)


@router.post("/sessions/{session_id}/presentation/start", response_model=CommandResponse)
async def start_presentation(session_id: str, payload: StartPresentationRequest, request: Request) -> CommandResponse:
    event = ev.StartPresentation(type="start-presentation", deck_id=payload.deck_id, mode=payload.mode, position=payload.position)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/presentation/stop", response_model=CommandResponse)
async def stop_presentation(session_id: str, payload: TeacherRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.StopPresentation(type="stop-presentation"))


@router.post("/sessions/{session_id}/navigate", response_model=CommandResponse)
async def navigate(session_id: str, payload: NavigateRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.Navigate(type="navigate", position=payload.position))


@router.post("/sessions/{session_id}/mode", response_model=CommandResponse)
async def set_mode(session_id: str, payload: ModeRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.SetMode(type="set-mode", mode=payload.mode))


@router.post("/sessions/{session_id}/checkpoints", response_model=CommandResponse)
async def set_checkpoints(session_id: str, payload: CheckpointsRequest, request: Request) -> CommandResponse:
    event = ev.SetCheckpoints(type="set-checkpoints", checkpoints=payload.checkpoints)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/lock", response_model=CommandResponse)
async def set_lock(session_id: str, payload: LockRequest, request: Request) -> CommandResponse:
    event = ev.SetLock(type="set-lock", locked=payload.locked, student_ids=payload.student_ids)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/activity", response_model=CommandResponse)
async def push_activity(session_id: str, payload: ActivityRequest, request: Request) -> CommandResponse:
    event = ev.PushActivity(type="push-activity", activity=payload.activity, student_ids=payload.student_ids)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/confusion/clear", response_model=CommandResponse)
async def clear_confusion(session_id: str, payload: ClearConfusionRequest, request: Request) -> CommandResponse:
    event = ev.ClearConfusion(type="clear-confusion", student_id=payload.student_id)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/students/{student_id}/remove", response_model=CommandResponse)
async def remove_student(session_id: str, student_id: str, payload: TeacherRequest, request: Request) -> CommandResponse:
    event = ev.RemoveStudent(type="remove-student", student_id=student_id)
    return await _command(request, session_id, payload.teacher_id, event)


@router.post("/sessions/{session_id}/pause", response_model=CommandResponse)
async def pause_session(session_id: str, payload: TeacherRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.PauseSession(type="pause-session"))


@router.post("/sessions/{session_id}/resume", response_model=CommandResponse)
async def resume_session(session_id: str, payload: TeacherRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.ResumeSession(type="resume-session"))


@router.post("/sessions/{session_id}/end", response_model=CommandResponse)
async def end_session(session_id: str, payload: TeacherRequest, request: Request) -> CommandResponse:
    return await _command(request, session_id, payload.teacher_id, ev.EndSession(type="end-session"))


@router.get("/sessions/{session_id}/monitoring", response_model=MonitoringResponse)
async def get_monitoring(session_id: str, request: Request, refresh: bool = False) -> MonitoringResponse:
    ctx = request.app.state.ctx
    monitoring = await ctx.monitoring(session_id, refresh=refresh)
    return MonitoringResponse(ok=True, session_id=session_id, monitoring=monitoring)


@router.get("/sessions/{session_id}/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(session_id: str, request: Request) -> LeaderboardResponse:
    ctx = request.app.state.ctx
    rows = await ctx.leaderboard(session_id)
    return LeaderboardResponse(ok=True, session_id=session_id, leaderboard=rows)
