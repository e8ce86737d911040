# app/transport/ws.py
from __future__ import annotations

import asyncio
import ipaddress
import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.domain.common.errors import CoordinatorError
from app.domain.session.registry import SessionRegistry
from app.settings import get_settings
from app.transport.dispatcher import dispatch_message
from app.transport.protocols import OutError, OutGameState, OutHello

router = APIRouter()
logger = logging.getLogger(__name__)


def _is_private_ip(host: str) -> bool:
    """Return True if host is a private IP (192.168.x.x, 10.x.x.x, 172.16-31.x.x)."""
    try:
        ip = ipaddress.ip_address(host)
        return ip.is_private
    except ValueError:
        return False


async def _check_origin_or_close(websocket: WebSocket) -> bool:
    settings = get_settings()
    allowed = {o.strip() for o in settings.WS_ALLOWED_ORIGINS.split(",") if o.strip()}

    origin = websocket.headers.get("origin")
    if origin is not None:
        if origin in allowed:
            return True
        if settings.WS_ALLOW_LAN_ORIGINS:
            o = urlparse(origin)
            host = o.hostname or ""
            port = o.port
            if _is_private_ip(host) and port == 5173:
                return True
        await websocket.close(code=1008)
        return False
    return True


def registry_for(app, user_id: str) -> SessionRegistry:
    """One registry per local user: each connected user is its own replica."""
    registries = app.state.registries
    registry = registries.get(user_id)
    if registry is None:
        registry = SessionRegistry(
            user_id=user_id,
            repo=app.state.repo,
            broadcaster=app.state.broadcaster,
            settings=app.state.settings,
        )
        registries[user_id] = registry
    return registry


def release_registry(app, user_id: str, registry: SessionRegistry) -> None:
    """Forget a user's registry once it holds no rooms."""
    registries = app.state.registries
    if len(registry) == 0 and registries.get(user_id) is registry:
        registries.pop(user_id, None)


async def _drain(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        event = await outbox.get()
        await websocket.send_json(event)


@router.websocket("/ws/{room_id}")
async def ws_room(
    websocket: WebSocket,
    room_id: str,
    user_id: str = Query(..., min_length=1),
    pin: str = Query(""),
):
    # Identity comes from the (external) auth layer in front of the gateway.
    if not await _check_origin_or_close(websocket):
        return

    await websocket.accept()

    registry = registry_for(websocket.app, user_id)
    try:
        machine = await registry.get_or_open(room_id, pin or None)
    except CoordinatorError as e:
        release_registry(websocket.app, user_id, registry)
        await websocket.send_json(OutError(code=e.code, message=e.message).model_dump())
        await websocket.close(code=1008)
        return

    wsman = websocket.app.state.wsman
    await wsman.add(room_id, user_id, websocket)

    outbox: asyncio.Queue = asyncio.Queue()

    def _on_change(m) -> None:
        outbox.put_nowait(OutGameState(state=m.snapshot()).model_dump())

    machine.add_listener(_on_change)
    sender = asyncio.create_task(_drain(websocket, outbox))
    outbox.put_nowait(OutHello(room_id=room_id, user_id=user_id, is_host=machine.is_authority).model_dump())
    outbox.put_nowait(OutGameState(state=machine.snapshot()).model_dump())

    try:
        while True:
            raw = await websocket.receive_json()
            if not isinstance(raw, dict):
                outbox.put_nowait(OutError(code="BAD_MESSAGE", message="Message must be an object").model_dump())
                continue
            for e in await dispatch_message(machine=machine, raw=raw):
                outbox.put_nowait(e)

    except WebSocketDisconnect:
        logger.info("room=%s socket closed for user=%s", room_id, user_id)

    finally:
        machine.remove_listener(_on_change)
        sender.cancel()
        still_open = await wsman.remove(room_id, user_id, websocket)
        # closing the last tab counts as leaving the room
        if still_open == 0 and not machine.closed:
            res = await machine.leave_room()
            if not res.ok:
                logger.warning("room=%s leave on disconnect failed for user=%s: %s", room_id, user_id, res.code)
            await registry.dispose(room_id)
        release_registry(websocket.app, user_id, registry)
