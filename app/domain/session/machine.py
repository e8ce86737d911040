# app/domain/session/machine.py
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from app.domain.common.errors import (
    AuthorityViolation,
    CoordinatorError,
    MalformedEvent,
    StoreWriteFailure,
    TransportFailure,
)
from app.domain.common.validation import has_capacity, is_room_open, is_room_owner
from app.domain.game.admission import AnswerLedger, can_submit, everyone_answered_correctly
from app.domain.game.leaderboard import build_final_leaderboard, build_leaderboard
from app.domain.game.scoring import compute_score, remaining_seconds
from app.domain.game.words import build_word_data, is_correct_answer
from app.domain.session.answer_feed import AnswerFeed
from app.domain.session.pacing import PacingScheduler
from app.domain.session.state import GameState, apply_event, record_answer
from app.settings import Settings
from app.store.models import AnswerInsert, AnswerRow, ParticipantRow, QuestionRow, RoomRow
from app.transport.broadcast import Subscription
from app.transport.game_events import (
    EvGameEnd,
    EvGameStart,
    EvNextQuestion,
    EvPlayerJoined,
    EvPlayerLeft,
    EvShowCorrectAnswer,
    EvShowFinalLeaderboard,
    EvShowLeaderboard,
    GameEndPayload,
    GameEvent,
    GameStartPayload,
    NextQuestionPayload,
    PlayerJoinedPayload,
    PlayerLeftPayload,
    ShowCorrectAnswerPayload,
    ShowFinalLeaderboardPayload,
    ShowLeaderboardPayload,
    encode_event,
    game_topic,
    parse_event,
)

logger = logging.getLogger(__name__)

Listener = Callable[["SessionStateMachine"], None]


class ActionResult(BaseModel):
    ok: bool
    code: str = ""
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> "ActionResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: str, message: str) -> "ActionResult":
        return cls(ok=False, code=code, message=message)


def _failure(e: CoordinatorError) -> ActionResult:
    return ActionResult.failure(e.code, e.message)


class SessionStateMachine:
    """
    One replica's view of one room.

    Every replica applies the same broadcast events in delivery order. The
    replica whose user created the room (is_authority) additionally drives
    pacing: it emits next-question / show-correct-answer / show-leaderboard /
    show-final-leaderboard / game-end on timers, never applying them
    locally before they come back over the topic.
    """
    def __init__(
        self,
        *,
        room: RoomRow,
        user_id: str,
        is_authority: bool,
        repo: Any,
        broadcaster: Any,
        settings: Settings,
        questions: List[QuestionRow],
        participants: List[ParticipantRow],
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.room = room
        self.user_id = user_id
        self.is_authority = is_authority
        self.repo = repo
        self.broadcaster = broadcaster
        self.settings = settings
        self.questions = sorted(questions, key=lambda q: q.order_index)
        self.clock = clock
        self.rng = rng

        self.state = GameState(
            room_id=room.id,
            host_user_id=room.created_by,
            total_rounds=min(settings.TOTAL_ROUNDS, len(self.questions)),
            participants=list(participants),
        )
        self.ledger = AnswerLedger()
        self.pacer = PacingScheduler(
            room.id,
            retry_sec=settings.PACING_RETRY_SEC,
            max_attempts=settings.PACING_MAX_ATTEMPTS,
            reschedule_sec=settings.PACING_RESCHEDULE_SEC or None,
        )
        self.feed = AnswerFeed(repo, room.id, self.handle_answer)

        self._seen_event_ids: set[str] = set()
        self._listeners: List[Listener] = []
        self._question_started_at: Optional[float] = None
        self._topic_sub: Optional[Subscription] = None
        self._topic_task: Optional[asyncio.Task] = None
        self._bg: set[asyncio.Task] = set()
        self._closed = False

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @classmethod
    async def open(
        cls,
        *,
        room_id: str,
        pin: Optional[str],
        user_id: str,
        repo: Any,
        broadcaster: Any,
        settings: Settings,
        **kwargs: Any,
    ) -> "SessionStateMachine":
        """Load the room from the store, resolve authority once, and subscribe."""
        room = await repo.get_room(room_id, pin)
        if room is None:
            raise CoordinatorError("Room not found", code="ROOM_NOT_FOUND")
        participants = await repo.list_participants(room_id)
        questions = await repo.list_questions(room_id)
        machine = cls(
            room=room,
            user_id=user_id,
            is_authority=is_room_owner(user_id, room),
            repo=repo,
            broadcaster=broadcaster,
            settings=settings,
            questions=questions,
            participants=participants,
            **kwargs,
        )
        await machine.start()
        return machine

    async def start(self) -> None:
        self._topic_sub = await self.broadcaster.subscribe(game_topic(self.room.id))
        self._topic_task = asyncio.create_task(self._pump_topic(self._topic_sub))
        await self.feed.update([p.id for p in self.state.participants], self.state.roster_version)
        logger.info("room=%s session open for user=%s authority=%s", self.room.id, self.user_id, self.is_authority)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.pacer.cancel_all()
        current = asyncio.current_task()
        # let in-flight store writes (room deactivation, feed refresh) finish first
        pending = [t for t in self._bg if t is not current and not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=1.0)
            for t in still_running:
                t.cancel()
        tasks = [t for t in [self._topic_task, *pending] if t is not None and t is not current and not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._topic_sub is not None:
            await self._topic_sub.close()
        await self.feed.close()
        logger.info("room=%s session closed for user=%s", self.room.id, self.user_id)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, fn: Listener) -> None:
        self._listeners.append(fn)

    def remove_listener(self, fn: Listener) -> None:
        if fn in self._listeners:
            self._listeners.remove(fn)

    def _notify(self) -> None:
        for fn in list(self._listeners):
            try:
                fn(self)
            except Exception:
                logger.exception("room=%s state listener failed", self.room.id)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._bg.add(task)
        task.add_done_callback(self._bg.discard)

    # ----------------------------
    # Derived views
    # ----------------------------
    @property
    def me(self) -> Optional[ParticipantRow]:
        for p in self.state.participants:
            if p.user_id == self.user_id:
                return p
        return None

    def question_open(self) -> bool:
        return self.state.status == "in-progress" and self.state.phase == "question-active"

    def can_answer(self) -> bool:
        me = self.me
        return can_submit(
            self.ledger,
            participant_id=me.id if me else None,
            question_id=self.state.question_id,
            window_open=self.question_open(),
        )

    def everyone_answered(self) -> bool:
        return everyone_answered_correctly(self.ledger, self.state.participants, self.state.question_id)

    def time_remaining(self) -> float:
        total = self.settings.TIME_PER_QUESTION_SEC
        if self._question_started_at is None or not self.question_open():
            return 0.0 if self.state.status != "waiting" else float(total)
        return remaining_seconds(total, self.clock() - self._question_started_at)

    def live_leaderboard(self):
        return build_leaderboard(self.state.participants, self.ledger.rows, self.room.created_by)

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view for rendering collaborators."""
        out = self.state.model_dump(mode="json")
        out.update(
            is_host=self.is_authority,
            can_answer=self.can_answer(),
            time_remaining=self.time_remaining(),
            round=self.state.question_index + 1 if self.state.question_index >= 0 else 0,
            live_leaderboard=[e.model_dump() for e in self.live_leaderboard()],
        )
        return out

    # ----------------------------
    # Inbound: broadcast events
    # ----------------------------
    async def _pump_topic(self, sub: Subscription) -> None:
        async for raw in sub:
            try:
                self.handle_broadcast(raw)
            except Exception:
                logger.exception("room=%s failed applying broadcast", self.room.id)

    def handle_broadcast(self, raw: Dict[str, Any]) -> bool:
        """Decode and apply one received event. Malformed events are logged and ignored."""
        try:
            ev = parse_event(raw)
        except MalformedEvent as e:
            logger.warning("room=%s malformed event ignored: %s", self.room.id, e.message)
            return False
        return self.apply(ev)

    def apply(self, ev: GameEvent) -> bool:
        if ev.id in self._seen_event_ids:
            return False
        self._seen_event_ids.add(ev.id)

        prev_question = self.state.question_id
        prev_roster = self.state.roster_version
        if not apply_event(self.state, ev):
            return False

        if self.state.question_id != prev_question:
            self._question_started_at = self.clock()
        if self.state.roster_version != prev_roster and not self._closed:
            self._spawn(self._refresh_feed())

        if self.is_authority and not self._closed:
            self._pace_after(ev)
        self._notify()
        return True

    async def _refresh_feed(self) -> None:
        try:
            await self.feed.update([p.id for p in self.state.participants], self.state.roster_version)
        except CoordinatorError as e:
            logger.warning("room=%s answer feed refresh failed: %s", self.room.id, e.message)

    # ----------------------------
    # Inbound: answer notifications
    # ----------------------------
    def handle_answer(self, row: AnswerRow) -> bool:
        if not self.ledger.fold(row):
            return False
        record_answer(self.state, row)
        if self.is_authority and not self._closed:
            self._check_round_complete()
        self._notify()
        return True

    # ----------------------------
    # Host pacing
    # ----------------------------
    def _pace_after(self, ev: GameEvent) -> None:
        s = self.settings
        idx = self.state.question_index

        if isinstance(ev, EvGameStart):
            self.pacer.schedule(
                "first-question", 0, 0, self._emit_first_question,
                lambda: self.state.status == "in-progress" and self.state.question_index < 0,
            )
        elif isinstance(ev, EvNextQuestion):
            self.pacer.schedule(
                "question-timer", idx, s.TIME_PER_QUESTION_SEC,
                lambda: self._emit_reveal(idx, "timeout"),
                lambda: self._at(idx, "question-active"),
            )
            self._check_round_complete()
        elif isinstance(ev, EvShowCorrectAnswer):
            self.pacer.cancel("question-timer", idx)
            self.pacer.schedule(
                "leaderboard", idx, s.LEADERBOARD_DELAY_SEC,
                lambda: self._emit_leaderboard(idx),
                lambda: self._at(idx, "reveal-correct-answer"),
            )
        elif isinstance(ev, EvShowLeaderboard):
            self.pacer.schedule(
                "advance", idx, s.NEXT_QUESTION_DELAY_SEC,
                lambda: self._emit_advance(idx),
                lambda: self._at(idx, "show-leaderboard"),
            )
        elif isinstance(ev, EvShowFinalLeaderboard):
            self.pacer.schedule(
                "game-end", idx, s.FINAL_LEADERBOARD_DELAY_SEC,
                lambda: self._emit(EvGameEnd(payload=GameEndPayload(reason="completed"))),
                lambda: self.state.status == "in-progress",
            )
        elif isinstance(ev, EvPlayerLeft):
            self._check_round_complete()
        elif isinstance(ev, EvGameEnd):
            self.pacer.cancel_all()
            self._spawn(self._deactivate_room())

    def _at(self, idx: int, phase: str) -> bool:
        return (
            self.state.status == "in-progress"
            and self.state.question_index == idx
            and self.state.phase == phase
        )

    def _check_round_complete(self) -> None:
        """Everyone on the current roster answered correctly -> start the reveal chain early."""
        if not self.question_open() or not self.everyone_answered():
            return
        idx = self.state.question_index
        # the question timer stays armed until the reveal is actually observed
        self.pacer.schedule(
            "reveal", idx, self.settings.REVEAL_DELAY_SEC,
            lambda: self._emit_reveal(idx, "all-correct"),
            lambda: self._at(idx, "question-active"),
        )

    async def _emit(self, ev: GameEvent) -> None:
        """Publish on the room topic. Raises TransportFailure."""
        await self.broadcaster.publish(game_topic(self.room.id), encode_event(ev))

    def _question_event(self, index: int) -> EvNextQuestion:
        wd = build_word_data(
            self.questions[index],
            index,
            image_base_url=self.settings.IMAGE_BASE_URL,
            rng=self.rng,
        )
        return EvNextQuestion(payload=NextQuestionPayload(word_data=wd))

    async def _emit_first_question(self) -> None:
        if self.state.total_rounds <= 0:
            await self._emit(EvShowFinalLeaderboard(payload=self._final_payload()))
            return
        await self._emit(self._question_event(0))

    async def _emit_reveal(self, idx: int, reason: str) -> None:
        await self._emit(
            EvShowCorrectAnswer(
                payload=ShowCorrectAnswerPayload(
                    question_id=self.state.question_id,
                    answer=self.state.word_data.answer,
                    reason=reason,
                )
            )
        )

    async def _emit_leaderboard(self, idx: int) -> None:
        # computed once here; replicas render the carried snapshot verbatim
        board = self.live_leaderboard()
        await self._emit(
            EvShowLeaderboard(payload=ShowLeaderboardPayload(question_id=self.state.question_id, leaderboard=board))
        )

    async def _emit_advance(self, idx: int) -> None:
        nxt = idx + 1
        if nxt >= self.state.total_rounds:
            await self._emit(EvShowFinalLeaderboard(payload=self._final_payload()))
            return
        await self._emit(self._question_event(nxt))

    def _final_payload(self) -> ShowFinalLeaderboardPayload:
        return ShowFinalLeaderboardPayload(
            leaderboard=build_final_leaderboard(self.state.participants, self.ledger.rows, self.room.created_by)
        )

    async def _deactivate_room(self) -> None:
        try:
            await self.repo.deactivate_room(self.room.id)
        except StoreWriteFailure as e:
            logger.warning("room=%s deactivate failed: %s", self.room.id, e.message)

    # ----------------------------
    # Actions (never raise)
    # ----------------------------
    def _require_authority(self, action: str) -> None:
        if not self.is_authority:
            raise AuthorityViolation(f"Only the host can {action}")

    async def start_game(self) -> ActionResult:
        try:
            self._require_authority("start the game")
            if self.state.status != "waiting":
                return ActionResult.failure("BAD_STATE", f"Cannot start in status {self.state.status}")
            await self._emit(EvGameStart(payload=GameStartPayload(started_by=self.user_id)))
        except CoordinatorError as e:
            return _failure(e)
        return ActionResult.success()

    async def end_game(self) -> ActionResult:
        try:
            self._require_authority("end the game")
            if self.state.status == "completed":
                return ActionResult.failure("BAD_STATE", "Game already completed")
            await self._emit(EvGameEnd(payload=GameEndPayload(reason="host_ended")))
        except CoordinatorError as e:
            return _failure(e)
        return ActionResult.success()

    async def advance_question(self) -> ActionResult:
        """
        Host skip. An open question is revealed now (reason "manual") and the
        usual chain follows; otherwise the next question, or the final
        leaderboard when exhausted, is published immediately.
        """
        try:
            self._require_authority("advance the game")
            if self.state.status != "in-progress":
                return ActionResult.failure("BAD_STATE", f"Cannot advance in status {self.state.status}")
            if self.state.phase == "show-final-leaderboard":
                return ActionResult.failure("NO_MORE_QUESTIONS", "No more questions")
            idx = self.state.question_index
            if self.question_open():
                await self._emit_reveal(idx, "manual")
                return ActionResult.success(index=idx, revealed=True)
            await self._emit_advance(idx)
        except CoordinatorError as e:
            return _failure(e)
        return ActionResult.success(index=idx + 1, revealed=False)

    async def submit_answer(self, text: str) -> ActionResult:
        me = self.me
        if me is None:
            return ActionResult.failure("NOT_JOINED", "Join the room first")
        text = (text or "").strip()
        if not text:
            return ActionResult.failure("EMPTY_ANSWER", "Empty answer")
        if not self.can_answer():
            return ActionResult.failure("NOT_ADMITTED", "Answers are closed for this question")

        started = self._question_started_at if self._question_started_at is not None else self.clock()
        elapsed = max(0.0, self.clock() - started)
        total = self.settings.TIME_PER_QUESTION_SEC
        correct = is_correct_answer(text, self.state.word_data.answer)
        score = compute_score(remaining_seconds(total, elapsed), correct, total)

        try:
            row = await self.repo.insert_answer(
                self.room.id,
                AnswerInsert(
                    participant_id=me.id,
                    question_id=self.state.question_id,
                    answer_text=text,
                    is_correct=correct,
                    score=score,
                    time_taken_ms=int(elapsed * 1000),
                ),
            )
        except StoreWriteFailure as e:
            logger.warning("room=%s answer rejected for user=%s: %s", self.room.id, self.user_id, e.message)
            return _failure(e)
        return ActionResult.success(answer_id=row.id, correct=correct, score=score)

    async def join_room(self, display_name: str) -> ActionResult:
        name = (display_name or "").strip()
        if not name:
            return ActionResult.failure("EMPTY_NAME", "Display name required")
        try:
            room = await self.repo.get_room(self.room.id)
            if room is None:
                return ActionResult.failure("ROOM_NOT_FOUND", "Room not found")
            if not is_room_open(room):
                return ActionResult.failure("ROOM_INACTIVE", "Room is closed")
            participants = await self.repo.list_participants(self.room.id)
            if not has_capacity(room, participants, self.user_id):
                return ActionResult.failure("ROOM_FULL", "Room is full")
            participant = await self.repo.upsert_participant(self.room.id, self.user_id, name)
            await self._emit(EvPlayerJoined(payload=PlayerJoinedPayload(participant=participant)))
        except CoordinatorError as e:
            logger.warning("room=%s join failed for user=%s: %s", self.room.id, self.user_id, e.message)
            return _failure(e)
        return ActionResult.success(participant_id=participant.id)

    async def leave_room(self) -> ActionResult:
        """Announce departure. The host leaving closes the room for everyone."""
        try:
            await self._emit(EvPlayerLeft(payload=PlayerLeftPayload(user_id=self.user_id)))
            if self.is_authority and self.state.status != "completed":
                await self.repo.deactivate_room(self.room.id)
                await self._emit(EvGameEnd(payload=GameEndPayload(reason="host_left")))
        except CoordinatorError as e:
            return _failure(e)
        return ActionResult.success()
