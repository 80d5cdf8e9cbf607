"""
ITSM Realtime Connection Pumps

Bridges one accepted WebSocket and its hub session:
- read pump: keeps the read deadline alive, notices disconnects
- write pump: drains the session buffer to the socket, sends keepalive pings

Whichever pump ends first tears the session down.
"""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from ..core.config import Settings
from .hub import NotificationHub, Session, encode_message

logger = logging.getLogger(__name__)

FRAME_SEPARATOR = b"\n"


async def serve_session(
    hub: NotificationHub,
    websocket: WebSocket,
    session: Session,
    settings: Settings
) -> None:
    """
    Run both pumps for a registered session until the connection ends.

    Always unregisters the session and closes the socket on the way out.
    """
    reader = asyncio.create_task(read_pump(websocket, session, settings))
    writer = asyncio.create_task(write_pump(websocket, session, settings))
    try:
        await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        hub.unregister(session)
        for task in (reader, writer):
            task.cancel()
        results = await asyncio.gather(reader, writer, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                logger.warning(
                    "WebSocket pump error: user_id=%s error=%r",
                    session.user_id, result
                )
        await _close_quietly(websocket)


async def read_pump(websocket: WebSocket, session: Session, settings: Settings) -> None:
    """
    Consume inbound frames until disconnect or read deadline.

    Inbound content is ignored, text or binary; any frame (including a
    client pong) refreshes the deadline.
    """
    while True:
        try:
            message = await asyncio.wait_for(websocket.receive(), timeout=settings.ws_pong_wait)
        except asyncio.TimeoutError:
            logger.info("WebSocket read deadline exceeded: user_id=%s", session.user_id)
            return
        except WebSocketDisconnect:
            return

        if message["type"] == "websocket.disconnect":
            return

        size = _frame_size(message)
        if size > settings.ws_max_message_size:
            logger.warning(
                "WebSocket frame too large: user_id=%s size=%d",
                session.user_id, size
            )
            await _close_quietly(websocket, code=status.WS_1009_MESSAGE_TOO_BIG)
            return


async def write_pump(websocket: WebSocket, session: Session, settings: Settings) -> None:
    """
    Drain the session buffer to the socket.

    Pending messages are coalesced into one text frame separated by
    newlines. A closed buffer (unregister or eviction) closes the socket.
    """
    buffer = session.buffer
    while True:
        try:
            message = await asyncio.wait_for(buffer.get(), timeout=settings.ws_ping_period)
        except asyncio.TimeoutError:
            await asyncio.wait_for(
                websocket.send_text(_ping_frame()),
                timeout=settings.ws_write_wait
            )
            continue

        if message is None:
            await _close_quietly(websocket)
            return

        frame = FRAME_SEPARATOR.join([message, *buffer.drain_nowait()])
        try:
            text = frame.decode("utf-8")
        except UnicodeDecodeError:
            logger.error(
                "WebSocket frame is not UTF-8, dropping session: user_id=%s",
                session.user_id
            )
            await _close_quietly(websocket, code=status.WS_1011_INTERNAL_ERROR)
            return
        await asyncio.wait_for(websocket.send_text(text), timeout=settings.ws_write_wait)


def _frame_size(message: dict) -> int:
    text = message.get("text")
    if text is not None:
        return len(text.encode("utf-8"))
    return len(message.get("bytes") or b"")


def _ping_frame() -> str:
    return encode_message({
        "type": "ping",
        "timestamp": datetime.now(timezone.utc),
    }).decode("utf-8")


async def _close_quietly(websocket: WebSocket, code: int = status.WS_1000_NORMAL_CLOSURE) -> None:
    if websocket.application_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.close(code=code)
    except (RuntimeError, OSError, WebSocketDisconnect):
        # Peer already gone
        pass
