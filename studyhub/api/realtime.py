"""
studyhub/api/realtime.py
WebSocket endpoint streaming the caller's entitlement record.

Implements /api/ws/entitlement. Auth: Authorization: Bearer <token>, or a
?token= query parameter for browser clients that cannot set headers.
Read-only socket: the server pushes one message per record snapshot, the
client may send {"type": "ping"}.
"""

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from studyhub.core.errors import UnauthenticatedError
from studyhub.core.logging import log_event
from studyhub.features.entitlements.gate import AuthorizedIdentity

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/api/ws/entitlement")
async def entitlement_socket(websocket: WebSocket):
    """
    Events Emitted:
    - connected: once, after authentication
    - entitlement: current record, then every change ({"record": null} if none yet)
    - pong: reply to a client ping
    """
    await websocket.accept()
    request_id = websocket.headers.get("x-request-id") or str(uuid4())
    services = websocket.app.state.services

    identity = _authenticate_websocket(websocket, services.gate)
    if identity is None:
        log_event("info", "ws.unauthorized", request_id=request_id, event_type="ws.unauthorized")
        await _reject_and_close(websocket, request_id, "unauthenticated", "Unauthorized")
        return

    await websocket.send_json({
        "type": "connected",
        "subject_id": identity.subject_id,
        "ts": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
    })
    log_event("info", "ws.connected", request_id=request_id, subject_id=identity.subject_id, event_type="ws.connected")

    pump = asyncio.create_task(_pump_snapshots(websocket, services.store, identity.subject_id))
    receiver = asyncio.create_task(_receive_loop(websocket, request_id))
    try:
        done, pending = await asyncio.wait({pump, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                log_event(
                    "error",
                    "ws.loop_error",
                    request_id=request_id,
                    subject_id=identity.subject_id,
                    event_type="ws.loop_error",
                    extra={"error": repr(exc)},
                )
    finally:
        log_event("info", "ws.disconnected", request_id=request_id, subject_id=identity.subject_id, event_type="ws.disconnected")


async def _pump_snapshots(websocket: WebSocket, store, subject_id: str) -> None:
    async with aclosing(store.subscribe(subject_id)) as snapshots:
        async for record in snapshots:
            await websocket.send_json({
                "type": "entitlement",
                "record": record.to_wire() if record is not None else None,
            })


async def _receive_loop(websocket: WebSocket, request_id: str) -> None:
    while True:
        try:
            data = await websocket.receive_json()
        except WebSocketDisconnect:
            return
        except ValueError:
            # Not JSON; ignore and keep the stream open
            continue
        if isinstance(data, dict) and data.get("type") == "ping":
            await websocket.send_json({
                "type": "pong",
                "ts": datetime.now(timezone.utc).isoformat(),
                "request_id": request_id,
            })


def _authenticate_websocket(websocket: WebSocket, gate) -> Optional[AuthorizedIdentity]:
    authorization = websocket.headers.get("authorization")
    if not authorization:
        token = websocket.query_params.get("token")
        authorization = f"Bearer {token}" if token else None
    try:
        return gate.authenticate(authorization)
    except UnauthenticatedError:
        return None


async def _reject_and_close(websocket: WebSocket, request_id: str, code: str, message: str):
    try:
        await websocket.send_json({
            "type": "error",
            "code": code,
            "message": message,
            "request_id": request_id,
        })
        await websocket.close(code=1008, reason=message)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"[WS] close after reject failed: {e}")
