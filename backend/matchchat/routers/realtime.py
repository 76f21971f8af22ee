"""WebSocket route binding one chat client to one open conversation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from matchchat.schemas.message import SenderRole
from matchchat.services.change_feed import ChannelStatus
from matchchat.services.client import ChatClient
from matchchat.services.errors import MessageNotFoundError, SendFailure, SessionStartError, StoreError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/conversations/{match_id}")
async def conversation_socket(
    websocket: WebSocket,
    match_id: str,
    viewer_id: str = Query(..., min_length=1),
    role: SenderRole | None = Query(default=None),
) -> None:
    """Stream one conversation to one viewer until the socket closes.

    Outgoing frames: ``snapshot``, ``message``, ``update``, ``remove``,
    ``status``, ``sent`` and ``error``. Incoming frames: ``send`` with
    ``content`` and ``delete`` with ``message_id``.
    """

    await websocket.accept()
    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    client = ChatClient(
        websocket.app.state.store,
        websocket.app.state.feed,
        viewer_id=viewer_id,
        viewer_role=role,
    )
    client.on_message(match_id, lambda m: outbox.put_nowait({"type": "message", "data": m.model_dump(mode="json")}))
    client.on_update(match_id, lambda m: outbox.put_nowait({"type": "update", "data": m.model_dump(mode="json")}))
    client.on_remove(match_id, lambda message_id: outbox.put_nowait({"type": "remove", "data": {"id": message_id}}))
    client.on_status(match_id, lambda s, detail: outbox.put_nowait(_status_frame(s, detail)))

    try:
        snapshot = await client.enter_conversation(match_id)
    except SessionStartError as exc:
        await websocket.send_json({"type": "error", "code": "load_failed", "detail": str(exc)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.send_json({"type": "snapshot", "data": snapshot.model_dump(mode="json")})
    writer = asyncio.create_task(_drain(websocket, outbox), name=f"ws-writer:{match_id}:{viewer_id}")
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                outbox.put_nowait({"type": "error", "code": "bad_frame", "detail": "Frames must be JSON objects"})
                continue
            await _handle_frame(client, match_id, frame, outbox)
    except WebSocketDisconnect:
        logger.info("ws.disconnected match_id=%s viewer_id=%s", match_id, viewer_id)
    finally:
        writer.cancel()
        await client.aclose()


async def _handle_frame(
    client: ChatClient,
    match_id: str,
    frame: Any,
    outbox: asyncio.Queue[dict[str, Any]],
) -> None:
    frame_type = frame.get("type") if isinstance(frame, dict) else None
    if frame_type == "send":
        content = frame.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            outbox.put_nowait({"type": "error", "code": "bad_frame", "detail": "content must be a string"})
            return
        try:
            message = await client.send(match_id, content)
        except ValidationError as exc:
            outbox.put_nowait({"type": "error", "code": "validation", "detail": str(exc)})
        except SendFailure as exc:
            outbox.put_nowait(
                {
                    "type": "error",
                    "code": "send_failed",
                    "detail": str(exc),
                    "restore_content": exc.restore_content,
                }
            )
        else:
            outbox.put_nowait({"type": "sent", "data": message.model_dump(mode="json")})
    elif frame_type == "delete":
        try:
            await client.delete_for_me(int(frame.get("message_id")))
        except (TypeError, ValueError):
            outbox.put_nowait({"type": "error", "code": "bad_frame", "detail": "message_id must be an integer"})
        except MessageNotFoundError as exc:
            outbox.put_nowait({"type": "error", "code": "not_found", "detail": str(exc)})
        except StoreError as exc:
            outbox.put_nowait({"type": "error", "code": "delete_failed", "detail": str(exc)})
    else:
        outbox.put_nowait({"type": "error", "code": "bad_frame", "detail": f"Unknown frame type: {frame_type!r}"})


async def _drain(websocket: WebSocket, outbox: asyncio.Queue[dict[str, Any]]) -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


def _status_frame(channel_status: ChannelStatus, detail: str | None) -> dict[str, Any]:
    return {"type": "status", "data": {"status": channel_status.value, "detail": detail}}
