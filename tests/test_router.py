from __future__ import annotations

import asyncio
import itertools
import logging
import random

import pytest
from fakeredis import aioredis

from classsync.core.app_context import AppContext
from classsync.core.errors import InvalidPayload, NotPermitted, SessionNotFound
from classsync.core.modes import student_limit
from classsync.core.registry import Connection
from classsync.core.session_manager import SessionManager
from classsync.core.state_store import PRESENCE_AWAY, PRESENCE_OFFLINE, SessionState
from classsync.infra.redis_store import RedisSessionStore
from classsync.schema.events import JoinSession
from classsync.schema.session import SessionOpenRequest
from helpers import DECK, SESSION, TEACHER, act, drain, join, make_settings, open_session, teacher, types


def student_join(pid: str) -> JoinSession:
    return JoinSession(type="join-session", role="student", participant_id=pid, display_name=pid.upper())


async def start(ctx, mode: str = "student-paced", position: int = 1):
    return await teacher(ctx, type="start-presentation", deck_id=DECK.deck_id, mode=mode, position=position)


# Scenarios


async def test_teacher_paced_navigation_moves_every_student(live):
    students = [await join(live, "student", sid) for sid in ("a", "b", "c")]
    t = await join(live, "teacher", TEACHER)
    for c in students + [t]:
        drain(c)

    await start(live, mode="teacher-paced", position=1)
    for c in students:
        events = drain(c)
        assert types(events) == ["presentation-started"]
        assert events[0].payload["position"] == 1

    await teacher(live, type="navigate", position=2)
    state = (await live.sessions.get(SESSION)).state
    for c in students:
        (event,) = drain(c)
        assert event.type == "teacher-navigated"
        assert event.payload["position"] == 2 and event.payload["hard"] is True
        assert state.participants[c.participant_id].position == 2


async def test_bounded_checkpoint_blocks_until_teacher_moves_past(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    await start(live, mode="bounded")
    await teacher(live, type="set-checkpoints", checkpoints=[3])

    await act(live, a, type="student-navigate", position=2)
    await act(live, a, type="student-navigate", position=3)
    for c in (a, b, t):
        drain(c)

    with pytest.raises(NotPermitted):
        await act(live, a, type="student-navigate", position=4)
    state = (await live.sessions.get(SESSION)).state
    assert state.participants["a"].position == 3
    # Rejections never reach anyone else.
    assert drain(b) == [] and drain(t) == []

    await teacher(live, type="navigate", position=4)
    (event,) = drain(a)
    assert event.payload["acknowledged_checkpoints"] == [3]
    assert event.payload["checkpoint_limit"] is None

    plan = await act(live, a, type="student-navigate", position=4)
    assert plan.types() == ["student-position-changed", "position-confirmed"]
    assert state.participants["a"].position == 4


async def test_confusion_survives_reconnect_and_is_cleared(live):
    a = await live.router.attach(SESSION, student_join("a"), now=0.0)
    await act(live, a, now=1.0, type="toggle-confusion", confused=True)
    await live.router.detach(a, now=2.0)

    again = await live.router.attach(SESSION, student_join("a"), now=12.0)
    (joined,) = drain(again)
    assert joined.type == "joined"
    assert joined.payload["reconnected"] is True
    assert joined.payload["snapshot"]["me"]["confused"] is True
    assert joined.payload["snapshot"]["confused_count"] == 1

    await teacher(live, type="clear-confusion")
    events = drain(again)
    assert types(events) == ["confusion-cleared"]
    assert events[0].payload["student_ids"] == ["a"]
    state = (await live.sessions.get(SESSION)).state
    assert state.participants["a"].confused is False


# Ordering


async def test_snapshot_precedes_deltas_for_concurrent_join(live):
    await start(live, mode="teacher-paced")
    session = await live.sessions.get(SESSION)

    async with session.lock:
        tasks = [asyncio.create_task(teacher(live, type="navigate", position=p)) for p in (2, 3)]
        joiner = asyncio.create_task(join(live, "student", "late"))
        tasks += [asyncio.create_task(teacher(live, type="navigate", position=p)) for p in (4, 5)]
        await asyncio.sleep(0)
    await asyncio.gather(*tasks)
    conn = await joiner

    events = drain(conn)
    assert events[0].type == "joined"
    positions = [events[0].payload["snapshot"]["me"]["position"]]
    positions += [e.payload["position"] for e in events[1:] if e.type == "teacher-navigated"]
    assert positions == [3, 4, 5]
    assert session.state.participants["late"].position == 5


async def test_joining_student_lands_on_teacher_position_in_teacher_paced_mode(live):
    await start(live, mode="teacher-paced", position=4)
    conn = await join(live, "student", "a")
    (joined,) = drain(conn)
    assert joined.payload["snapshot"]["me"]["position"] == 4
    assert joined.payload["snapshot"]["mode"] == "teacher-paced"


# Mode matrix through the router


@pytest.mark.parametrize(
    "mode,locked",
    list(itertools.product(["teacher-paced", "student-paced", "bounded"], [False, True])),
)
async def test_student_navigation_follows_mode_and_lock(live, mode, locked):
    a = await join(live, "student", "a")
    await start(live, mode=mode)
    await teacher(live, type="set-lock", locked=locked)

    allowed = mode != "teacher-paced" and not locked
    if allowed:
        await act(live, a, type="student-navigate", position=2)
    else:
        with pytest.raises(NotPermitted):
            await act(live, a, type="student-navigate", position=2)

    # Teacher navigation is never blocked.
    await teacher(live, type="navigate", position=3)
    state = (await live.sessions.get(SESSION)).state
    assert state.position == 3


async def test_checkpoints_only_bind_in_bounded_mode(live):
    a = await join(live, "student", "a")
    await start(live, mode="student-paced")
    await teacher(live, type="set-checkpoints", checkpoints=[2])
    await act(live, a, type="student-navigate", position=5)

    drain(a)
    await teacher(live, type="set-mode", mode="bounded")
    events = drain(a)
    assert types(events) == ["mode-changed", "position-reset"]
    assert events[1].payload == {"position": 2, "previous": 5, "reason": "mode-changed"}

    with pytest.raises(NotPermitted):
        await act(live, a, type="student-navigate", position=3)


async def test_bounded_mode_never_lets_a_student_past_the_limit(live):
    rng = random.Random(7)
    a = await join(live, "student", "a")
    await start(live, mode="bounded")
    await teacher(live, type="set-checkpoints", checkpoints=[3, 6])
    state = (await live.sessions.get(SESSION)).state

    for _ in range(300):
        if rng.random() < 0.1:
            await teacher(live, type="navigate", position=rng.randint(1, 8))
            continue
        before = state.participants["a"].position
        target = rng.randint(1, 8)
        try:
            await act(live, a, type="student-navigate", position=target)
        except NotPermitted:
            assert state.participants["a"].position == before
        limit = student_limit(state.mode, state.checkpoints, state.acknowledged)
        assert limit is None or state.participants["a"].position <= limit


# Identity and roles


async def test_roles_and_identity_are_checked(live):
    a = await join(live, "student", "a")
    await start(live)

    with pytest.raises(NotPermitted):
        await act(live, a, type="navigate", position=2)
    with pytest.raises(NotPermitted):
        await teacher(live, teacher_id="someone-else", type="navigate", position=2)
    with pytest.raises(NotPermitted):
        await teacher(live, type="student-navigate", position=2)
    with pytest.raises(NotPermitted):
        await act(live, a, type="toggle-confusion", confused=True, student_id="b")
    with pytest.raises(SessionNotFound):
        await teacher(live, session_id="missing", type="navigate", position=2)

    with pytest.raises(NotPermitted):
        await live.connect(SESSION, JoinSession(type="join-session", role="teacher", participant_id="impostor"))


async def test_invalid_position_mutates_nothing(live):
    a = await join(live, "student", "a")
    await start(live)
    drain(a)
    state = (await live.sessions.get(SESSION)).state
    version = state.version

    with pytest.raises(InvalidPayload):
        await teacher(live, type="navigate", position=9)
    with pytest.raises(InvalidPayload):
        await teacher(live, type="start-presentation", deck_id="no-such-deck")
    assert state.version == version and state.position == 1
    assert drain(a) == []


async def test_navigation_needs_a_running_presentation(live):
    a = await join(live, "student", "a")
    with pytest.raises(NotPermitted):
        await teacher(live, type="navigate", position=2)
    with pytest.raises(NotPermitted):
        await act(live, a, type="student-navigate", position=2)


async def test_paused_session_only_answers_snapshots(live):
    a = await join(live, "student", "a")
    await start(live)
    await teacher(live, type="pause-session")

    with pytest.raises(NotPermitted):
        await act(live, a, type="toggle-confusion", confused=True)
    plan = await act(live, a, type="request-snapshot")
    assert plan.types() == ["session-snapshot"]
    assert plan.deliveries[0].event.payload["status"] == "paused"

    await teacher(live, type="resume-session")
    await act(live, a, type="toggle-confusion", confused=True)


# Membership


async def test_remove_student_disconnects_them(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    for c in (a, b, t):
        drain(c)

    await teacher(live, type="remove-student", student_id="a")
    assert types(drain(a)) == ["force-disconnect"]
    assert not a.alive and not live.registry.contains(a)
    assert types(drain(b)) == ["student-removed"]
    assert types(drain(t)) == ["student-removed"]

    with pytest.raises(NotPermitted):
        await act(live, a, type="ping")
    monitoring = await live.monitoring(SESSION)
    assert monitoring["distribution"] == {"1": 1}


async def test_duplicate_connections_count_once(live):
    t = await join(live, "teacher", TEACHER)
    first = await join(live, "student", "a")
    second = await join(live, "student", "a")
    assert types(drain(t)) == ["user-joined"]
    assert (await live.monitoring(SESSION))["distribution"] == {"1": 1}

    await live.disconnect(first)
    assert drain(t) == []
    await live.disconnect(second)
    assert types(drain(t)) == ["user-left"]
    state = (await live.sessions.get(SESSION)).state
    assert state.participants["a"].presence == PRESENCE_AWAY


async def test_grace_period_marks_students_offline(live):
    t = await join(live, "teacher", TEACHER)
    a = await live.router.attach(SESSION, student_join("a"), now=0.0)
    await live.router.detach(a, now=100.0)
    drain(t)

    assert await live.router.expire_presence(SESSION, grace_s=30, now=120.0) == []
    assert (await live.router.monitoring(SESSION, now=120.0))["distribution"] == {"1": 1}

    assert await live.presence_sweeper.tick(now=131.0) == {SESSION: ["a"]}
    assert types(drain(t)) == ["student-offline"]
    state = (await live.sessions.get(SESSION)).state
    assert state.participants["a"].presence == PRESENCE_OFFLINE
    assert (await live.router.monitoring(SESSION, now=131.0))["distribution"] == {}

    # Records are kept and a reconnect brings the student back.
    again = await live.router.attach(SESSION, student_join("a"), now=200.0)
    assert drain(again)[0].payload["reconnected"] is True
    assert (await live.router.monitoring(SESSION, now=200.0))["distribution"] == {"1": 1}


async def test_end_session_closes_everything(live):
    a = await join(live, "student", "a")
    t = await join(live, "teacher", TEACHER)
    for c in (a, t):
        drain(c)

    await teacher(live, type="end-session")
    assert types(drain(a)) == ["session-ended"]
    assert not a.alive and not t.alive
    assert not await live.sessions.exists(SESSION)

    with pytest.raises(SessionNotFound):
        await teacher(live, type="navigate", position=2)

    await live.writer.drain()
    record = await live.store.get_session_by_id(SESSION)
    assert record.status == "ended"
    with pytest.raises(SessionNotFound):
        await live.open_session(SessionOpenRequest(session_id=SESSION, teacher_id=TEACHER))


# Socket frames


async def test_frame_errors_go_to_the_sender_only(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    for c in (a, b):
        drain(c)

    await live.handle_frame(a, "{not json")
    await live.handle_frame(a, '{"type": "navigate", "position": 2}')
    await live.handle_frame(a, '{"type": "student-navigate", "position": 0}')
    events = drain(a)
    assert types(events) == ["invalid-payload", "not-permitted", "invalid-payload"]
    assert events[1].payload["code"] == "not_permitted"
    assert events[1].payload["event_type"] == "navigate"
    assert drain(b) == []

    await live.handle_frame(a, '{"type": "ping"}')
    assert types(drain(a)) == ["pong"]


async def test_frame_for_missing_session_closes_connection(live):
    ghost = Connection(session_id="gone", role="student", participant_id="a")
    await live.handle_frame(ghost, '{"type": "ping"}')
    assert types(drain(ghost)) == ["session-not-found"]
    assert not ghost.alive


# Scores and persistence


async def test_scored_items_update_leaderboard(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    await start(live)
    for c in (a, b, t):
        drain(c)

    await act(live, a, type="item-completed", item_id="quiz-1", score=8)
    assert types(drain(a)) == ["score-recorded", "leaderboard-updated"]
    assert types(drain(b)) == ["leaderboard-updated"]

    # Unscored items record progress only.
    await act(live, b, type="item-completed", item_id="slide-2", score=10)
    assert "score-recorded" not in types(drain(b))

    await act(live, b, type="item-completed", item_id="quiz-1", score=5)
    for c in (a, b, t):
        drain(c)

    # a stays first: no rank change, only the teacher side is told.
    await act(live, a, type="item-completed", item_id="quiz-2", score=1)
    assert types(drain(a)) == ["score-recorded"]
    assert "leaderboard-updated" not in types(drain(b))
    assert "leaderboard-updated" in types(drain(t))

    board = await live.leaderboard(SESSION)
    assert [(r["student_id"], r["total_score"]) for r in board] == [("a", 9.0), ("b", 5.0)]

    await live.writer.drain()
    assert len(await live.store.list_scores(SESSION)) == 3
    assert len(await live.store.list_progress_records(SESSION, "b")) == 2

    restarted = AppContext(settings=make_settings(), store=live.store)
    try:
        reopened = await restarted.open_session(SessionOpenRequest(session_id=SESSION, teacher_id=TEACHER))
        assert reopened is True
        assert await restarted.leaderboard(SESSION) == board
    finally:
        await restarted.shutdown()


class FlakyStore(RedisSessionStore):
    def __init__(self, redis, failures: int) -> None:
        super().__init__(redis)
        self.failures = failures

    async def append_progress_record(self, record) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("store unavailable")
        await super().append_progress_record(record)


async def test_store_failures_do_not_block_live_session(caplog):
    store = FlakyStore(aioredis.FakeRedis(), failures=1)
    ctx = AppContext(settings=make_settings(), store=store)
    try:
        await open_session(ctx)
        a = await join(ctx, "student", "a")
        t = await join(ctx, "teacher", TEACHER)
        await start(ctx)
        drain(t)

        with caplog.at_level(logging.WARNING, logger="classsync"):
            await act(ctx, a, type="item-completed", item_id="slide-1", time_spent=4)
            await ctx.writer.drain()
        assert types(drain(t)) == ["student-item-completed"]
        assert ctx.writer.pending == 1
        assert "store write failed" in caplog.text
        assert await store.list_progress_records(SESSION) == []

        await ctx.persistence_retry.tick()
        assert ctx.writer.pending == 0
        (record,) = await store.list_progress_records(SESSION)
        assert record["item_id"] == "slide-1" and record["time_spent"] == 4
    finally:
        await ctx.shutdown()


async def test_writes_are_dropped_after_max_attempts():
    store = FlakyStore(aioredis.FakeRedis(), failures=10)
    ctx = AppContext(settings=make_settings(persistence_max_attempts=2), store=store)
    try:
        await open_session(ctx)
        a = await join(ctx, "student", "a")
        await start(ctx)
        await act(ctx, a, type="item-completed", item_id="slide-1")
        await ctx.writer.drain()

        assert await ctx.writer.retry_pending() == 0
        assert ctx.writer.pending == 0
        assert ctx.writer.dropped == 1
    finally:
        await ctx.shutdown()


# Progress events and navigation


async def test_item_started_cannot_move_a_student_past_the_checkpoint(live):
    a = await join(live, "student", "a")
    t = await join(live, "teacher", TEACHER)
    await start(live, mode="bounded")
    await teacher(live, type="set-checkpoints", checkpoints=[3])
    await act(live, a, type="student-navigate", position=3)
    drain(t)

    with pytest.raises(NotPermitted) as info:
        await act(live, a, type="item-started", item_id="slide-6", position=6)
    assert info.value.event_type == "item-started"
    state = (await live.sessions.get(SESSION)).state
    assert state.participants["a"].position == 3
    assert state.participants["a"].progress == []
    assert drain(t) == []

    incremental = await live.monitoring(SESSION)
    assert incremental["distribution"] == {"3": 1}
    assert (await live.monitoring(SESSION, refresh=True))["distribution"] == incremental["distribution"]

    # A move inside the limit is reported like a navigation.
    plan = await act(live, a, type="item-started", item_id="slide-2", position=2)
    assert plan.types() == ["student-position-changed", "student-item-started"]
    assert state.participants["a"].position == 2
    incremental = await live.monitoring(SESSION)
    assert incremental["distribution"] == {"2": 1}
    assert (await live.monitoring(SESSION, refresh=True))["distribution"] == incremental["distribution"]


async def test_item_started_follows_the_teacher_in_teacher_paced_mode(live):
    a = await join(live, "student", "a")
    await start(live, mode="teacher-paced", position=2)

    with pytest.raises(NotPermitted):
        await act(live, a, type="item-started", item_id="slide-5", position=5)
    plan = await act(live, a, type="item-started", item_id="slide-2", position=2)
    assert plan.types() == ["student-item-started"]
    assert (await live.monitoring(SESSION))["distribution"] == {"2": 1}


# Teacher pushes


async def test_screen_lock_can_target_single_students(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    await start(live)
    for c in (a, b, t):
        drain(c)

    await teacher(live, type="set-lock", locked=True, student_ids=["a"])
    events = drain(a)
    assert types(events) == ["screen-locked"]
    assert events[0].payload == {"locked": True, "student_id": "a"}
    assert drain(b) == []
    (event,) = drain(t)
    assert event.type == "student-lock-changed" and event.payload["student_ids"] == ["a"]

    with pytest.raises(NotPermitted):
        await act(live, a, type="student-navigate", position=2)
    with pytest.raises(NotPermitted):
        await act(live, a, type="item-started", item_id="slide-2", position=2)
    await act(live, b, type="student-navigate", position=2)

    snap = await live.snapshot(SESSION, "student", "a")
    assert snap["me"]["locked"] is True and snap["locked"] is False

    # Locking again changes nothing and tells nobody.
    plan = await teacher(live, type="set-lock", locked=True, student_ids=["a"])
    assert plan.types() == []

    await teacher(live, type="set-lock", locked=False, student_ids=["a"])
    assert types(drain(a)) == ["screen-unlocked"]
    await act(live, a, type="student-navigate", position=2)

    with pytest.raises(InvalidPayload):
        await teacher(live, type="set-lock", locked=True, student_ids=["nobody"])


async def test_activity_push_reaches_everyone_or_selected_students(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    for c in (a, b, t):
        drain(c)

    poll = {"kind": "poll", "question": "Which is bigger, 1/2 or 2/3?", "options": ["1/2", "2/3"]}
    await teacher(live, type="push-activity", activity=poll)
    for c in (a, b, t):
        (event,) = drain(c)
        assert event.type == "activity-received" and event.payload == {"activity": poll}

    hint = {"kind": "hint", "text": "Use a common denominator"}
    await teacher(live, type="push-activity", activity=hint, student_ids=["b"])
    assert drain(a) == []
    (event,) = drain(b)
    assert event.payload == {"activity": hint, "target_student_id": "b"}
    (event,) = drain(t)
    assert event.type == "activity-pushed" and event.payload["student_ids"] == ["b"]

    assert (await live.snapshot(SESSION, "student", "a"))["me"]["activity"] == poll
    assert (await live.snapshot(SESSION, "student", "b"))["me"]["activity"] == hint

    # Late joiners get the current activity in their snapshot.
    c = await join(live, "student", "c")
    (joined,) = drain(c)
    assert joined.payload["snapshot"]["activity"] == poll

    with pytest.raises(NotPermitted):
        await act(live, a, type="push-activity", activity=poll)


async def test_answers_are_forwarded_to_the_teacher_with_a_tally(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    t = await join(live, "teacher", TEACHER)
    await start(live)
    for c in (a, b, t):
        drain(c)

    await act(live, a, type="answer-question", item_id="quiz-1", selected_option="B", is_correct=False)
    (reply,) = drain(a)
    assert reply.type == "answer-recorded"
    assert drain(b) == []
    (event,) = drain(t)
    assert event.type == "student-question-answered"
    assert event.payload["student_id"] == "a" and event.payload["position"] == 1
    assert event.payload["tally"] == {"responses": 1, "correct": 0, "options": {"B": 1}}

    await act(live, b, type="answer-question", item_id="quiz-1", selected_option="A", is_correct=True)
    # A changed answer replaces the earlier one.
    await act(live, a, type="answer-question", item_id="quiz-1", selected_option="A", is_correct=True)
    events = drain(t)
    assert events[-1].payload["tally"] == {"responses": 2, "correct": 2, "options": {"A": 2}}

    # The same answer again is acknowledged but not forwarded.
    plan = await act(live, a, type="answer-question", item_id="quiz-1", selected_option="A", is_correct=True)
    assert plan.types() == ["answer-recorded"]

    await act(live, b, type="answer-question", item_id="quiz-2", response="three quarters")
    (event,) = drain(t)
    assert event.payload["response"] == "three quarters" and event.payload["tally"]["options"] == {}

    snap = await live.snapshot(SESSION, "student", "a")
    assert snap["me"]["answers"]["quiz-1"]["selected_option"] == "A"

    with pytest.raises(InvalidPayload):
        await act(live, a, type="answer-question", item_id="quiz-3")
    with pytest.raises(NotPermitted):
        await teacher(live, type="answer-question", item_id="quiz-1", selected_option="A")


# Reopening


async def test_reopened_session_restores_roster_and_progress(live):
    a = await join(live, "student", "a")
    b = await join(live, "student", "b")
    await start(live)
    await act(live, a, type="student-navigate", position=3)
    await act(live, a, type="item-completed", item_id="quiz-1", position=3, score=8)
    await live.writer.drain()
    await teacher(live, type="remove-student", student_id="b")
    await live.writer.drain()

    restarted = AppContext(settings=make_settings(), store=live.store)
    try:
        assert await restarted.open_session(SessionOpenRequest(session_id=SESSION, teacher_id=TEACHER)) is True
        snap = await restarted.snapshot(SESSION, "teacher")
        assert [(s["student_id"], s["presence"], s["position"]) for s in snap["students"]] == [("a", PRESENCE_OFFLINE, 3)]
        assert snap["monitoring"]["distribution"] == {}
        assert [r["student_id"] for r in snap["leaderboard"]] == ["a"]

        again = await join(restarted, "student", "a")
        (joined,) = drain(again)
        assert joined.payload["reconnected"] is True
        assert joined.payload["snapshot"]["me"]["completed_items"] == ["quiz-1"]
        assert joined.payload["snapshot"]["me"]["position"] == 3
        incremental = await restarted.monitoring(SESSION)
        assert incremental["distribution"] == {"3": 1}
        assert (await restarted.monitoring(SESSION, refresh=True))["distribution"] == incremental["distribution"]
    finally:
        await restarted.shutdown()


async def test_concurrent_opens_let_exactly_one_through(ctx):
    await ctx.put_deck(DECK)
    req = SessionOpenRequest(session_id=SESSION, teacher_id=TEACHER)
    results = await asyncio.gather(ctx.open_session(req), ctx.open_session(req), return_exceptions=True)

    assert sum(isinstance(r, bool) for r in results) == 1
    assert sum(isinstance(r, InvalidPayload) for r in results) == 1
    assert await ctx.sessions.list_ids() == [SESSION]


async def test_session_manager_rejects_a_second_live_copy():
    sessions = SessionManager(stuck_threshold_s=60)
    first = await sessions.create(SessionState(session_id=SESSION, teacher_id=TEACHER))
    with pytest.raises(InvalidPayload):
        await sessions.create(SessionState(session_id=SESSION, teacher_id=TEACHER))
    assert await sessions.get(SESSION) is first
