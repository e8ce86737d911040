# app/transport/ws_manager.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List

from fastapi import WebSocket


@dataclass
class Conn:
    user_id: str
    sockets: List[WebSocket] = field(default_factory=list)


class WSManager:
    """
    In-memory UI connection registry.
    - room_id -> user_id -> open websockets (one per tab)
    Transport-only: no Redis, no game rules.
    """
    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, Conn]] = {}
        self._lock = asyncio.Lock()

    async def add(self, room_id: str, user_id: str, ws: WebSocket) -> int:
        """Returns how many sockets the user now holds in the room."""
        async with self._lock:
            conn = self._rooms.setdefault(room_id, {}).setdefault(user_id, Conn(user_id=user_id))
            conn.sockets.append(ws)
            return len(conn.sockets)

    async def remove(self, room_id: str, user_id: str, ws: WebSocket) -> int:
        """Drop one socket. Returns how many sockets the user still holds in the room."""
        async with self._lock:
            room = self._rooms.get(room_id)
            if not room:
                return 0
            conn = room.get(user_id)
            if conn is None:
                return 0
            if ws in conn.sockets:
                conn.sockets.remove(ws)
            left = len(conn.sockets)
            if left == 0:
                room.pop(user_id, None)
            if not room:
                self._rooms.pop(room_id, None)
            return left

    async def close_room(self, room_id: str, code: int = 4000) -> None:
        async with self._lock:
            conns = list(self._rooms.pop(room_id, {}).values())
        for c in conns:
            for ws in c.sockets:
                try:
                    await ws.close(code=code)
                except RuntimeError:
                    # already closed by the client
                    pass

    async def room_size(self, room_id: str) -> int:
        """Connected users (not sockets) in the room."""
        async with self._lock:
            return len(self._rooms.get(room_id, {}))
