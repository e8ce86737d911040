# app/domain/session/registry.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.domain.session.machine import SessionStateMachine
from app.settings import Settings

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    room_id -> SessionStateMachine for one local user (one replica).

    Lifecycle:
    - created on first subscribe (get_or_open)
    - disposed when the room goes inactive (game-end observed) or on dispose()
    """
    def __init__(self, *, user_id: str, repo: Any, broadcaster: Any, settings: Settings, **machine_kwargs: Any) -> None:
        self.user_id = user_id
        self.repo = repo
        self.broadcaster = broadcaster
        self.settings = settings
        self.machine_kwargs = machine_kwargs
        self._sessions: Dict[str, SessionStateMachine] = {}
        self._lock = asyncio.Lock()
        self._disposing: set[asyncio.Task] = set()

    def get(self, room_id: str) -> Optional[SessionStateMachine]:
        return self._sessions.get(room_id)

    def room_ids(self) -> List[str]:
        return list(self._sessions)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def get_or_open(self, room_id: str, pin: Optional[str] = None) -> SessionStateMachine:
        """Raises CoordinatorError(ROOM_NOT_FOUND) for an unknown room or wrong pin."""
        async with self._lock:
            machine = self._sessions.get(room_id)
            if machine is not None and not machine.closed:
                return machine
            machine = await SessionStateMachine.open(
                room_id=room_id,
                pin=pin,
                user_id=self.user_id,
                repo=self.repo,
                broadcaster=self.broadcaster,
                settings=self.settings,
                **self.machine_kwargs,
            )
            machine.add_listener(self._watch_inactive)
            self._sessions[room_id] = machine
            logger.info("user=%s opened room=%s (%s open)", self.user_id, room_id, len(self._sessions))
            return machine

    def _watch_inactive(self, machine: SessionStateMachine) -> None:
        if machine.state.status == "completed" and self._sessions.get(machine.room.id) is machine:
            task = asyncio.get_running_loop().create_task(self.dispose(machine.room.id))
            self._disposing.add(task)
            task.add_done_callback(self._disposing.discard)

    async def dispose(self, room_id: str) -> bool:
        machine = self._sessions.pop(room_id, None)
        if machine is None:
            return False
        machine.remove_listener(self._watch_inactive)
        await machine.close()
        logger.info("user=%s disposed room=%s", self.user_id, room_id)
        return True

    async def close(self) -> None:
        for room_id in list(self._sessions):
            await self.dispose(room_id)
