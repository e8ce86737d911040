# app/domain/session/answer_feed.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, FrozenSet, Iterable, Optional

from pydantic import ValidationError

from app.store.models import AnswerRow
from app.transport.broadcast import Subscription

logger = logging.getLogger(__name__)


class AnswerFeed:
    """
    Answer-insert notifications for one room, filtered to a participant-id set.

    The filter is a versioned input: update() only resubscribes when the
    roster version changes. Each resubscription subscribes first and then
    reads the stored backlog for the new filter, so nothing inserted in
    between is lost (re-delivered rows are deduplicated downstream).
    """
    def __init__(self, repo: Any, room_id: str, on_answer: Callable[[AnswerRow], None]) -> None:
        self.repo = repo
        self.room_id = room_id
        self.on_answer = on_answer
        self.version = -1
        self.participant_ids: FrozenSet[str] = frozenset()
        self._sub: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def update(self, participant_ids: Iterable[str], version: int) -> bool:
        async with self._lock:
            if version == self.version:
                return False

            ids = frozenset(participant_ids)
            sub = await self.repo.subscribe_answers(self.room_id)
            old_sub, old_task = self._sub, self._task

            self._sub = sub
            self.participant_ids = ids
            self.version = version
            self._task = asyncio.create_task(self._pump(sub, ids))

            await self._stop(old_sub, old_task)
            logger.info("room=%s answer feed v%s for %s participant(s)", self.room_id, version, len(ids))

            for row in await self.repo.list_answers(self.room_id, ids):
                self.on_answer(row)
            return True

    async def close(self) -> None:
        async with self._lock:
            await self._stop(self._sub, self._task)
            self._sub, self._task = None, None

    async def _stop(self, sub: Optional[Subscription], task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if sub is not None:
            await sub.close()

    async def _pump(self, sub: Subscription, ids: FrozenSet[str]) -> None:
        async for raw in sub:
            try:
                row = AnswerRow.model_validate(raw)
            except ValidationError as e:
                logger.warning("room=%s malformed answer notification ignored: %s", self.room_id, e.error_count())
                continue
            if row.participant_id not in ids:
                continue
            try:
                self.on_answer(row)
            except Exception:
                logger.exception("room=%s answer handler failed", self.room_id)
