"""Realtime call event channel for the owner console."""
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from frontdesk.api.auth import is_websocket_authorized
from frontdesk.core.dependencies import AppServices
from frontdesk.services.broadcast.events import WILDCARD
from frontdesk.services.security.events import API_KEY_REJECTED

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/call")
async def call_events(websocket: WebSocket):
    """
    Push call events to an observer.

    The client narrows the stream with {"type": "subscribe", "callId": id}
    or widens it again with "*". Each subscribe is acknowledged with
    {"type": "subscribed", "callId": ...}, delivered in order with events.
    """
    services: AppServices = websocket.app.state.services
    if not is_websocket_authorized(websocket, services.settings):
        services.security_log.record(API_KEY_REJECTED, path=websocket.url.path)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unauthorized")
        return

    await websocket.accept()
    broadcaster = services.broadcaster
    connection_id = uuid.uuid4().hex
    broadcaster.register(connection_id, websocket.send_json)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning(f"[REALTIME] Invalid websocket message - Connection: {connection_id}")
                continue
            if not isinstance(message, dict) or message.get("type") != "subscribe":
                continue
            call_filter = str(message.get("callId") or WILDCARD)
            if broadcaster.subscribe(connection_id, call_filter):
                broadcaster.notify(connection_id, {"type": "subscribed", "callId": call_filter})
    except WebSocketDisconnect:
        logger.info(f"[REALTIME] Observer disconnected - Connection: {connection_id}")
    finally:
        broadcaster.unregister(connection_id)
