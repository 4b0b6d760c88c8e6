"""Manual end-to-end run against a live server: python tests/manual_e2e.py --base-url http://localhost:8000"""

from __future__ import annotations

import argparse
import json
import os
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from websocket import WebSocketTimeoutException, create_connection


def _http_json(url: str, payload: dict[str, Any] | None = None, timeout_s: float = 15.0) -> dict[str, Any]:
    body = None if payload is None else json.dumps(payload, ensure_ascii=False).encode("utf-8")
    method = "GET" if payload is None else "POST"
    req = Request(url, data=body, headers={"Content-Type": "application/json"}, method=method)
    try:
        with urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
            return json.loads(raw) if raw else {}
    except HTTPError as e:
        raw = e.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"HTTP {e.code} {url}: {raw}") from e
    except URLError as e:
        raise RuntimeError(f"Request failed {url}: {e}") from e


@dataclass(frozen=True)
class WsMessage:
    raw: str

    @property
    def type(self) -> str:
        return json.loads(self.raw).get("type", "?")


class WsClient:
    """One joined socket; a background thread collects everything the server sends."""

    def __init__(self, ws_url: str, join: dict[str, Any]) -> None:
        self.ws_url = ws_url
        self.join = join
        self.messages: queue.Queue[WsMessage] = queue.Queue()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._ws = None

    def start(self) -> WsMessage:
        self._ws = create_connection(self.ws_url, timeout=5)
        self._ws.send(json.dumps({"type": "join-session", **self.join}))
        joined = WsMessage(raw=self._ws.recv())
        self._ws.settimeout(0.5)
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return joined

    def send(self, frame: dict[str, Any]) -> None:
        self._ws.send(json.dumps(frame, ensure_ascii=False))

    def stop(self) -> list[WsMessage]:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        if self._ws is not None:
            self._ws.close()
        out: list[WsMessage] = []
        while True:
            try:
                out.append(self.messages.get_nowait())
            except queue.Empty:
                return out

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self._ws.recv()
            except WebSocketTimeoutException:
                continue
            if not msg:
                return
            self.messages.put(WsMessage(raw=str(msg)))


def _print_json(title: str, obj: dict[str, Any]) -> None:
    print(title)
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--session-id", default=os.getenv("SESSION_ID"))
    parser.add_argument("--teacher-id", default="t_1")
    args = parser.parse_args()

    session_id = args.session_id or f"manual_{int(time.time())}"
    api_base = args.base_url.rstrip("/") + "/api/v1"
    ws_base = args.base_url.replace("http://", "ws://").replace("https://", "wss://").rstrip("/")
    ws_url = f"{ws_base}/api/v1/ws/{session_id}"
    teacher = {"teacher_id": args.teacher_id}

    deck = {
        "deck_id": "manual-deck",
        "title": "Present simple",
        "items": [f"slide-{i}" for i in range(1, 7)],
        "scored_items": ["quiz-1"],
    }
    _print_json("1) deck", _http_json(f"{api_base}/decks", deck))
    _print_json(
        "2) open session",
        _http_json(f"{api_base}/sessions/open", {"session_id": session_id, "title": "Manual run", **teacher}),
    )

    monitor = WsClient(ws_url, {"role": "teacher", "participant_id": args.teacher_id})
    student = WsClient(ws_url, {"role": "student", "participant_id": "stu_1", "display_name": "Xiao Ming"})
    print(f"teacher socket: {monitor.start().type}")
    print(f"student socket: {student.start().type}")

    cmd = f"{api_base}/sessions/{session_id}"
    _print_json("3) start (bounded)", _http_json(f"{cmd}/presentation/start", {"deck_id": "manual-deck", "mode": "bounded", **teacher}))
    _print_json("4) checkpoint at 3", _http_json(f"{cmd}/checkpoints", {"checkpoints": [3], **teacher}))

    for position in (2, 3, 4):
        student.send({"type": "student-navigate", "position": position})
    student.send({"type": "toggle-confusion", "confused": True})
    student.send({"type": "answer-question", "item_id": "quiz-1", "position": 3, "selected_option": "B", "is_correct": True})
    student.send({"type": "item-completed", "item_id": "quiz-1", "position": 3, "score": 8})
    time.sleep(0.5)

    _print_json("5) teacher moves past checkpoint", _http_json(f"{cmd}/navigate", {"position": 4, **teacher}))
    student.send({"type": "student-navigate", "position": 4})
    time.sleep(0.5)

    _print_json("5b) push activity", _http_json(f"{cmd}/activity", {"activity": {"kind": "poll", "question": "Ready?"}, **teacher}))
    _print_json("6) monitoring", _http_json(f"{cmd}/monitoring"))
    _print_json("7) leaderboard", _http_json(f"{cmd}/leaderboard"))
    _print_json("8) clear confusion", _http_json(f"{cmd}/confusion/clear", teacher))
    _print_json("9) end session", _http_json(f"{cmd}/end", teacher))

    time.sleep(1.0)
    for name, client in (("teacher", monitor), ("student", student)):
        drained = client.stop()
        print(f"{name} socket messages captured: {len(drained)}")
        for i, msg in enumerate(drained[:30], start=1):
            print(f"[{i}] {msg.raw}")

    print(f"session_id={session_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
