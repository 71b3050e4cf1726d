"""
subsync/api/realtime.py
WebSocket endpoint for a user's main stream.

Clients identify with the X-User-Id header (or ?user_id=) and receive
account events such as meUpdated. The socket is receive-only; any text sent
by the client other than "ping" is ignored.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from uuid import uuid4
import logging

from subsync.realtime.hub import hub
from subsync.core.logging import log_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/v1/ws/main")
async def main_stream_endpoint(websocket: WebSocket):
    await websocket.accept()
    request_id = websocket.headers.get("x-request-id") or str(uuid4())
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")

    if not user_id:
        await websocket.send_json({
            "type": "error",
            "body": {"code": "forbidden", "message": "Missing user identity", "request_id": request_id},
        })
        await websocket.close(code=1008)
        log_event("info", "ws.unauthorized", request_id=request_id, event_type="ws.unauthorized")
        return

    await hub.register(user_id, websocket)
    log_event("info", "ws.connected", request_id=request_id, user_id=user_id, event_type="ws.connected")
    await websocket.send_json({"type": "connected", "body": {"user_id": user_id}})

    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_json({"type": "pong", "body": {}})
    except WebSocketDisconnect:
        logger.debug(f"[WS] Disconnected main stream for user {user_id}")
    finally:
        await hub.unregister(user_id, websocket)
        log_event("info", "ws.disconnected", request_id=request_id, user_id=user_id, event_type="ws.disconnected")
