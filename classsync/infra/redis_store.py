from __future__ import annotations

import json
from typing import Any, Protocol

from redis.asyncio import Redis

from classsync.core.errors import StoreError
from classsync.schema.records import (
    DeckRecord,
    ParticipantRecord,
    ProgressRecordOut,
    ScoreRecord,
    SessionRecord,
)


class SessionStore(Protocol):
    async def get_deck_by_id(self, deck_id: str) -> DeckRecord | None: ...

    async def put_deck(self, deck: DeckRecord) -> None: ...

    async def get_session_by_id(self, session_id: str) -> SessionRecord | None: ...

    async def put_session(self, record: SessionRecord) -> None: ...

    async def set_session_status(self, session_id: str, status: str) -> None: ...

    async def upsert_participant(self, record: ParticipantRecord) -> None: ...

    async def list_participants(self, session_id: str) -> list[dict[str, Any]]: ...

    async def remove_participant(self, session_id: str, student_id: str) -> None: ...

    async def append_progress_record(self, record: ProgressRecordOut) -> None: ...

    async def list_progress_records(self, session_id: str, student_id: str | None = None) -> list[dict[str, Any]]: ...

    async def record_score(self, record: ScoreRecord) -> None: ...

    async def list_scores(self, session_id: str) -> list[dict[str, Any]]: ...


def _decode(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _loads_many(items: list[Any]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for raw in items:
        try:
            out.append(json.loads(_decode(raw)))
        except ValueError:
            continue
    return out


class RedisSessionStore:
    """
    Durable records for sessions, decks, participants, progress and scores (Redis).

    Constraints:
    - stores facts only, the live state lives in memory
    - progress and scores are append-only and read back in time order
    """

    def __init__(self, redis: Redis) -> None:
        self._r = redis

    @staticmethod
    def _k_deck(deck_id: str) -> str:
        return f"classsync:deck:{deck_id}"

    @staticmethod
    def _k_session(session_id: str) -> str:
        return f"classsync:session:{session_id}"

    @staticmethod
    def _k_participants(session_id: str) -> str:
        return f"classsync:session:{session_id}:participants"

    @staticmethod
    def _k_progress(session_id: str) -> str:
        return f"classsync:session:{session_id}:progress"

    @staticmethod
    def _k_scores(session_id: str) -> str:
        return f"classsync:session:{session_id}:scores"

    async def get_deck_by_id(self, deck_id: str) -> DeckRecord | None:
        raw = await self._r.get(self._k_deck(deck_id))
        if raw is None:
            return None
        return DeckRecord.model_validate_json(_decode(raw))

    async def put_deck(self, deck: DeckRecord) -> None:
        await self._r.set(self._k_deck(deck.deck_id), deck.model_dump_json())

    async def get_session_by_id(self, session_id: str) -> SessionRecord | None:
        m = await self._r.hgetall(self._k_session(session_id))
        if not m:
            return None
        fields = {_decode(k): _decode(v) for k, v in m.items()}
        try:
            meta = json.loads(fields["meta"])
        except (KeyError, ValueError) as e:
            raise StoreError(f"session record corrupt: {session_id}") from e
        meta["status"] = fields.get("status", meta.get("status", "active"))
        return SessionRecord.model_validate(meta)

    async def put_session(self, record: SessionRecord) -> None:
        await self._r.hset(
            self._k_session(record.session_id),
            mapping={"meta": record.model_dump_json(), "status": record.status},
        )

    async def set_session_status(self, session_id: str, status: str) -> None:
        k = self._k_session(session_id)
        if not await self._r.exists(k):
            raise StoreError(f"session record missing: {session_id}")
        await self._r.hset(k, mapping={"status": status})

    async def upsert_participant(self, record: ParticipantRecord) -> None:
        await self._r.hset(
            self._k_participants(record.session_id),
            record.student_id,
            record.model_dump_json(),
        )

    async def list_participants(self, session_id: str) -> list[dict[str, Any]]:
        m = await self._r.hgetall(self._k_participants(session_id))
        return _loads_many(list(m.values()))

    async def remove_participant(self, session_id: str, student_id: str) -> None:
        await self._r.hdel(self._k_participants(session_id), student_id)

    async def append_progress_record(self, record: ProgressRecordOut) -> None:
        await self._r.zadd(self._k_progress(record.session_id), {record.model_dump_json(): record.completed_at})

    async def list_progress_records(self, session_id: str, student_id: str | None = None) -> list[dict[str, Any]]:
        items = await self._r.zrange(self._k_progress(session_id), 0, -1)
        out = _loads_many(items)
        if student_id is not None:
            out = [r for r in out if r.get("student_id") == student_id]
        return out

    async def record_score(self, record: ScoreRecord) -> None:
        await self._r.zadd(self._k_scores(record.session_id), {record.model_dump_json(): record.recorded_at})

    async def list_scores(self, session_id: str) -> list[dict[str, Any]]:
        items = await self._r.zrange(self._k_scores(session_id), 0, -1)
        return _loads_many(items)
