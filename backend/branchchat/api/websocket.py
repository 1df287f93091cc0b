from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from branchchat.schemas.message import StreamEventOut
from branchchat.services.streaming import StreamEvent

router = APIRouter()
logger = logging.getLogger(__name__)


class WebSocketManager:
    """Fan conversation events out to every socket watching that conversation."""

    def __init__(self) -> None:
        self._watchers: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, conversation_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._watchers.setdefault(conversation_id, set()).add(websocket)

    async def disconnect(self, conversation_id: str, *websockets: WebSocket) -> None:
        async with self._lock:
            watchers = self._watchers.get(conversation_id, set())
            watchers.difference_update(websockets)
            if not watchers:
                self._watchers.pop(conversation_id, None)

    def watcher_count(self, conversation_id: str) -> int:
        return len(self._watchers.get(conversation_id, ()))

    async def broadcast(self, conversation_id: str, payload: dict) -> None:
        async with self._lock:
            targets = tuple(self._watchers.get(conversation_id, ()))
        dropped = []
        for websocket in targets:
            try:
                await websocket.send_json(payload)
            except Exception:  # noqa: BLE001
                logger.debug("Dropping socket for conversation %s", conversation_id)
                dropped.append(websocket)
        if dropped:
            await self.disconnect(conversation_id, *dropped)

def get_ws_manager(websocket: WebSocket) -> WebSocketManager:
    """Dependency to access the WebSocket manager from app state."""

    return websocket.app.state.ws_manager


def get_ws_conversation_service(websocket: WebSocket):
    """Dependency to access the conversation service from a WebSocket handler."""

    return websocket.app.state.conversation_service


@router.websocket("/ws/conversations/{conversation_id}")
async def ws_conversation(
    websocket: WebSocket,
    conversation_id: str,
    manager: WebSocketManager = Depends(get_ws_manager),
    conversation_service=Depends(get_ws_conversation_service),
) -> None:
    """WebSocket endpoint for conversation mutation events."""

    await manager.connect(conversation_id, websocket)
    active = conversation_service.active_streams(conversation_id)
    await websocket.send_json({"event": "conversation_state", "active_streams": active})
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await manager.disconnect(conversation_id, websocket)


@router.websocket("/ws/streams/{message_id}")
async def ws_stream(
    websocket: WebSocket,
    message_id: str,
    conversation_service=Depends(get_ws_conversation_service),
) -> None:
    """Relay one streaming session's events, then close after the terminal event."""

    await websocket.accept()
    queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
    unsubscribe = conversation_service.subscribe_to_stream(message_id, queue.put_nowait)
    if unsubscribe is None:
        await websocket.send_json({"event": "stream_inactive", "message_id": message_id})
        await websocket.close()
        return

    try:
        while True:
            event = await queue.get()
            await websocket.send_json(StreamEventOut.from_event(event).model_dump(mode="json"))
            if event.is_terminal:
                break
    except WebSocketDisconnect:
        logger.debug("Stream socket for %s disconnected", message_id)
        return
    finally:
        unsubscribe()
    await websocket.close()
