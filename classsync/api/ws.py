from __future__ import annotations

import asyncio
import json
import logging
from time import time

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from classsync.core.errors import ConnectionLost, SyncError
from classsync.core.registry import Connection
from classsync.schema.events import EmittedEvent, parse_join

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


def _dumps(event: EmittedEvent) -> str:
    return json.dumps(event.model_dump(), ensure_ascii=False)


async def _pump(websocket: WebSocket, conn: Connection, send_timeout_s: float) -> None:
    """Writer side: drain the connection's queue; a stalled or failed send ends the connection."""
    while True:
        event = await conn.next_event()
        if event is None:
            try:
                await websocket.close()
            except RuntimeError:
                pass
            return
        try:
            await asyncio.wait_for(websocket.send_text(_dumps(event)), timeout=send_timeout_s)
        except asyncio.TimeoutError as e:
            raise ConnectionLost(f"send timed out after {send_timeout_s:.1f}s") from e
        except (WebSocketDisconnect, RuntimeError) as e:
            raise ConnectionLost(f"send failed: {e}") from e


async def _read(websocket: WebSocket, ctx, conn: Connection, heartbeat_timeout_s: float) -> None:
    try:
        while True:
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=heartbeat_timeout_s)
            await ctx.handle_frame(conn, raw)
    except WebSocketDisconnect:
        return
    except asyncio.TimeoutError:
        logger.info("%s: no frame within %.0fs, treating as lost", conn.connection_id, heartbeat_timeout_s)


@router.websocket("/ws/{session_id}")
async def session_socket(websocket: WebSocket, session_id: str):
    ctx = websocket.app.state.ctx
    settings = ctx.settings
    await websocket.accept()

    try:
        raw = await asyncio.wait_for(websocket.receive_text(), timeout=settings.heartbeat_timeout_s)
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        conn = await ctx.connect(session_id, parse_join(data))
    except WebSocketDisconnect:
        return
    except asyncio.TimeoutError:
        await websocket.close(code=1008)
        return
    except SyncError as e:
        error_type = e.code.replace("_", "-")
        await websocket.send_text(_dumps(EmittedEvent(type=error_type, timestamp=time(), payload=e.to_payload())))
        await websocket.close(code=1008)
        return

    reader = asyncio.create_task(_read(websocket, ctx, conn, settings.heartbeat_timeout_s), name=f"ws-read-{conn.connection_id}")
    writer = asyncio.create_task(_pump(websocket, conn, settings.send_timeout_s), name=f"ws-write-{conn.connection_id}")
    try:
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if isinstance(exc, ConnectionLost):
                logger.warning("%s: %s", conn.connection_id, exc.message)
            elif exc is not None:
                logger.error("%s: socket task failed", conn.connection_id, exc_info=exc)
    finally:
        await ctx.disconnect(conn)
