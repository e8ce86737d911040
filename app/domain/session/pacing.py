# app/domain/session/pacing.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.domain.common.errors import CoordinatorError, TransportFailure

logger = logging.getLogger(__name__)

Step = Callable[[], Awaitable[None]]
Guard = Callable[[], bool]


class PacingScheduler:
    """
    Host-side delay timers for phase pacing.

    - One timer per (stage, question index); scheduling an existing key is a no-op
    - When a timer fires the guard re-checks the live state; a mismatch aborts
    - A step that raises TransportFailure is retried after retry_sec, up to max_attempts
    - With reschedule_sec set, an exhausted step starts over after that pause
      for as long as its guard holds
    """
    def __init__(
        self,
        room_id: str,
        *,
        retry_sec: float = 1.0,
        max_attempts: int = 3,
        reschedule_sec: Optional[float] = None,
    ) -> None:
        self.room_id = room_id
        self.retry_sec = retry_sec
        self.max_attempts = max(1, max_attempts)
        self.reschedule_sec = reschedule_sec
        self._tasks: Dict[Tuple[str, int], asyncio.Task] = {}

    def is_scheduled(self, stage: str, index: int) -> bool:
        task = self._tasks.get((stage, index))
        return task is not None and not task.done()

    def schedule(self, stage: str, index: int, delay: float, step: Step, guard: Guard) -> bool:
        key = (stage, index)
        if self.is_scheduled(stage, index):
            logger.debug("[timer-skip] room=%s stage=%s index=%s already scheduled", self.room_id, stage, index)
            return False

        logger.info("[timer-set] room=%s stage=%s index=%s delay=%.2fs", self.room_id, stage, index, delay)
        self._tasks[key] = asyncio.create_task(self._worker(stage, index, delay, step, guard))
        return True

    def cancel(self, stage: str, index: int) -> None:
        task = self._tasks.pop((stage, index), None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def cancel_all(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks.values():
            if not task.done() and task is not current:
                task.cancel()
        self._tasks.clear()

    def pending(self) -> list[Tuple[str, int]]:
        return [k for k, t in self._tasks.items() if not t.done()]

    async def _worker(self, stage: str, index: int, delay: float, step: Step, guard: Guard) -> None:
        await asyncio.sleep(delay)
        while True:
            for attempt in range(1, self.max_attempts + 1):
                if not guard():
                    logger.info("[timer-abort] room=%s stage=%s index=%s state moved on", self.room_id, stage, index)
                    return
                logger.info("[timer-fire] room=%s stage=%s index=%s attempt=%s", self.room_id, stage, index, attempt)
                try:
                    await step()
                    return
                except TransportFailure as e:
                    logger.warning(
                        "room=%s stage=%s index=%s broadcast failed (attempt %s/%s): %s",
                        self.room_id, stage, index, attempt, self.max_attempts, e.message,
                    )
                except CoordinatorError as e:
                    logger.warning("room=%s stage=%s index=%s step failed: %s", self.room_id, stage, index, e.message)
                    return
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_sec)

            if self.reschedule_sec is None:
                logger.error(
                    "room=%s stage=%s index=%s gave up after %s attempts", self.room_id, stage, index, self.max_attempts
                )
                return
            logger.error(
                "[timer-retry] room=%s stage=%s index=%s failed %s attempts, starting over in %.2fs",
                self.room_id, stage, index, self.max_attempts, self.reschedule_sec,
            )
            await asyncio.sleep(self.reschedule_sec)
