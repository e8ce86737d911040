# app/domain/session/state.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from app.domain.common.fsm import can_transition_phase, can_transition_to
from app.domain.common.types import EventName, GameStatus, LocalEventName, Phase, RevealReason
from app.domain.game.leaderboard import FinalLeaderboardEntry, LeaderboardEntry, build_final_leaderboard
from app.domain.game.words import WordData
from app.store.models import AnswerRow, ParticipantRow
from app.transport.game_events import (
    EvGameEnd,
    EvGameStart,
    EvNextQuestion,
    EvPlayerJoined,
    EvPlayerLeft,
    EvShowCorrectAnswer,
    EvShowFinalLeaderboard,
    EvShowLeaderboard,
    GameEvent,
)
from app.util.timeutil import now_iso

logger = logging.getLogger(__name__)


class GameLogEntry(BaseModel):
    type: Union[EventName, LocalEventName]
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str


class GameState(BaseModel):
    """
    Derived, per-replica view of one room. Never persisted; rebuilt from
    broadcast events and answer notifications.
    """
    room_id: str
    host_user_id: str
    status: GameStatus = "waiting"
    phase: Phase = ""
    total_rounds: int = 10
    word_data: WordData = Field(default_factory=WordData)
    participants: List[ParticipantRow] = Field(default_factory=list)
    answers: List[AnswerRow] = Field(default_factory=list)
    events: List[GameLogEntry] = Field(default_factory=list)
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)
    final_leaderboard: List[FinalLeaderboardEntry] = Field(default_factory=list)
    reveal_reason: Optional[RevealReason] = None
    is_show_correct_answer: bool = False
    is_show_leaderboard: bool = False
    is_show_final_leaderboard: bool = False
    roster_version: int = 0

    @property
    def question_id(self) -> str:
        return self.word_data.id

    @property
    def question_index(self) -> int:
        return self.word_data.word_index


def _log(state: GameState, ev: GameEvent) -> None:
    state.events.append(
        GameLogEntry(type=ev.event, data=ev.payload.model_dump(mode="json", by_alias=True), timestamp=ev.sent_at)
    )


def _set_phase(state: GameState, target: Phase) -> bool:
    if not can_transition_phase(state.phase, target):
        logger.info("room=%s ignoring phase %r -> %r", state.room_id, state.phase, target)
        return False
    state.phase = target
    return True


def apply_event(state: GameState, ev: GameEvent) -> bool:
    """
    Apply one broadcast event in place. Every transition overwrites derived
    fields, so re-applying an event leaves control state unchanged.
    Returns False when the event is ignored (terminal state, stale question).
    """
    if state.status == "completed":
        return False

    if isinstance(ev, EvGameStart):
        if state.status == "waiting":
            state.status = "in-progress"

    elif isinstance(ev, EvNextQuestion):
        wd = ev.payload.word_data
        if wd.word_index < state.question_index:
            return False
        if wd.word_index == state.question_index and state.phase != "question-active":
            # late duplicate of the active question: never rewind the round
            return False
        if not can_transition_to(state.status, "in-progress"):
            return False
        if not _set_phase(state, "question-active"):
            return False
        # a replica that missed game-start still follows the host
        state.status = "in-progress"
        state.word_data = wd
        state.reveal_reason = None
        state.is_show_correct_answer = False
        state.is_show_leaderboard = False

    elif isinstance(ev, EvShowCorrectAnswer):
        if ev.payload.question_id != state.question_id:
            return False
        if state.phase not in ("question-active", "reveal-correct-answer"):
            return False
        _set_phase(state, "reveal-correct-answer")
        state.reveal_reason = ev.payload.reason
        state.is_show_correct_answer = True

    elif isinstance(ev, EvShowLeaderboard):
        if ev.payload.question_id and ev.payload.question_id != state.question_id:
            return False
        if not _set_phase(state, "show-leaderboard"):
            return False
        state.leaderboard = list(ev.payload.leaderboard)
        state.is_show_correct_answer = False
        state.is_show_leaderboard = True

    elif isinstance(ev, EvShowFinalLeaderboard):
        if state.status != "in-progress" or not _set_phase(state, "show-final-leaderboard"):
            return False
        if ev.payload.leaderboard is not None:
            state.final_leaderboard = list(ev.payload.leaderboard)
        else:
            state.final_leaderboard = build_final_leaderboard(
                state.participants, state.answers, state.host_user_id
            )
        state.is_show_correct_answer = False
        state.is_show_leaderboard = False
        state.is_show_final_leaderboard = True

    elif isinstance(ev, EvGameEnd):
        state.status = "completed"
        if not state.final_leaderboard:
            state.final_leaderboard = build_final_leaderboard(
                state.participants, state.answers, state.host_user_id
            )

    elif isinstance(ev, EvPlayerJoined):
        upsert_participant(state, ev.payload.participant)

    elif isinstance(ev, EvPlayerLeft):
        remove_participant(state, ev.payload.user_id)

    else:
        return False

    _log(state, ev)
    return True


def upsert_participant(state: GameState, participant: ParticipantRow) -> None:
    """Same identity replaces in place (keeps join order); new identity appends."""
    for i, p in enumerate(state.participants):
        if p.user_id == participant.user_id:
            if p.id != participant.id:
                state.roster_version += 1
            state.participants[i] = participant
            return
    state.participants.append(participant)
    state.roster_version += 1


def remove_participant(state: GameState, user_id: str) -> bool:
    kept = [p for p in state.participants if p.user_id != user_id]
    if len(kept) == len(state.participants):
        return False
    state.participants = kept
    state.roster_version += 1
    return True


def record_answer(state: GameState, row: AnswerRow) -> None:
    """Append an observed answer row (caller deduplicates)."""
    state.answers.append(row)
    state.events.append(
        GameLogEntry(type="new-answer", data=row.model_dump(mode="json"), timestamp=now_iso())
    )
