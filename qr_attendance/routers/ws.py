from __future__ import annotations
import asyncio
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ..core.broadcast import ADMIN_GROUP, display_group, hub
from ..core.config import get_settings
from ..deps import match_role

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(tags=["live"])

def _groups_for(role: str, display_id: str) -> tuple[str, ...]:
    if role == "display":
        return (display_group(display_id),)
    if role == "admin":
        return (ADMIN_GROUP,)
    return ()  # scanners receive nothing but `ready`

async def forward_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Send queued hub events to the socket until cancelled or the peer goes away."""
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except Exception as exc:
        logger.info("Live subscriber send failed, stopping forwarder: %s", exc)

# ws://host/ws?role=display&token=<display token>&displayId=kiosk-1
@router.websocket("/ws")
async def live_events(websocket: WebSocket):
    role_claim = websocket.query_params.get("role") or ""
    token = websocket.query_params.get("token")
    display_id = websocket.query_params.get("displayId") or settings.default_display_id

    await websocket.accept()
    role = match_role(token, (role_claim,))
    if role is None:
        await websocket.send_json({"event": "error", "data": "unauthorized"})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    sub = hub.subscribe(*_groups_for(role, display_id))
    logger.info("Live subscriber connected: role=%s display=%s", role, display_id if role == "display" else "-")

    sender: asyncio.Task | None = None
    try:
        await websocket.send_json({"event": "ready", "data": {"role": role, "displayId": display_id}})
        sender = asyncio.create_task(forward_events(websocket, sub.queue))
        while True:
            # client frames are ignored; this only notices the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if sender is not None:
            sender.cancel()
        hub.unsubscribe(sub)
        logger.info("Live subscriber disconnected: role=%s", role)
