"""WebSocket channel for live visit events.

Protocol (JSON text frames):

    client → server  {"event": "join-admin"}          optional "token", defaults to the session cookie
    server → client  {"event": "joined"} | {"event": "join-rejected", "reason": "unauthorized"}
    client → server  {"event": "leave-admin"}         → {"event": "left"}
    server → client  {"event": "visit", "data": {...}}  only while joined

Everything sent to a connection goes through its hub outbox, drained by a
single task, so replies and visits stay in order.
"""

from __future__ import annotations

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from beacon.hub.admin_hub import AdminHub, Subscriber

router = APIRouter()

log = structlog.get_logger()


async def _pump(websocket: WebSocket, sub: Subscriber) -> None:
    """Forward the subscriber's outbox to the socket until cancelled."""
    while True:
        message = await sub.outbox.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            log.debug("hub_send_failed", subscriber=sub.subscriber_id)
            return


async def _handle_frame(hub: AdminHub, sub: Subscriber, websocket: WebSocket, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        frame = raw.strip()
    if isinstance(frame, str):
        frame = {"event": frame}
    if not isinstance(frame, dict):
        hub.send(sub, {"event": "error", "reason": "malformed"})
        return

    event = frame.get("event")
    if event == "join-admin":
        from beacon.main import get_config

        token = frame.get("token")
        if not isinstance(token, str):
            token = websocket.cookies.get(get_config().admin.cookie_name)
        if await hub.join(sub, token):
            hub.send(sub, {"event": "joined"})
        else:
            hub.send(sub, {"event": "join-rejected", "reason": "unauthorized"})
    elif event == "leave-admin":
        await hub.leave(sub)
        hub.send(sub, {"event": "left"})
    else:
        hub.send(sub, {"event": "error", "reason": "unknown_event"})


@router.websocket("/ws")
async def admin_socket(websocket: WebSocket) -> None:
    from beacon.main import get_hub

    hub = get_hub()
    await websocket.accept()
    sub = await hub.connect()
    sender = asyncio.create_task(_pump(websocket, sub))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                # Binary frames are not part of the protocol.
                hub.send(sub, {"event": "error", "reason": "malformed"})
                continue
            await _handle_frame(hub, sub, websocket, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(sub)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
