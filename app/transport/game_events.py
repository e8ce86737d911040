# app/transport/game_events.py
"""
Broadcast protocol for the room pacing topic ("game:<roomId>").

Wire shape: {"event": <name>, "payload": {...}, "id": <uuid hex>, "sent_at": <iso>}
Only the room owner sends pacing events; any replica sends roster events.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.domain.common.errors import MalformedEvent
from app.domain.common.types import RevealReason
from app.domain.game.leaderboard import FinalLeaderboardEntry, LeaderboardEntry
from app.domain.game.words import WordData
from app.store.models import ParticipantRow
from app.util.timeutil import now_iso


def game_topic(room_id: str) -> str:
    return f"game:{room_id}"


# =========================
# Payloads
# =========================

class GameStartPayload(BaseModel):
    started_by: str = ""
    started_at: str = Field(default_factory=now_iso)


class GameEndPayload(BaseModel):
    ended_at: str = Field(default_factory=now_iso)
    reason: Literal["completed", "host_ended", "host_left"] = "completed"


class NextQuestionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    word_data: WordData = Field(alias="wordData")


class ShowCorrectAnswerPayload(BaseModel):
    question_id: str
    answer: str = ""
    reason: RevealReason = "all-correct"


class ShowLeaderboardPayload(BaseModel):
    question_id: str = ""
    leaderboard: List[LeaderboardEntry]


class ShowFinalLeaderboardPayload(BaseModel):
    # None: replicas fall back to their own aggregation
    leaderboard: Optional[List[FinalLeaderboardEntry]] = None


class PlayerJoinedPayload(BaseModel):
    participant: ParticipantRow


class PlayerLeftPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


# =========================
# Events
# =========================

class EvBase(BaseModel):
    event: str
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sent_at: str = Field(default_factory=now_iso)


class EvGameStart(EvBase):
    event: Literal["game-start"] = "game-start"
    payload: GameStartPayload = Field(default_factory=GameStartPayload)


class EvGameEnd(EvBase):
    event: Literal["game-end"] = "game-end"
    payload: GameEndPayload = Field(default_factory=GameEndPayload)


class EvNextQuestion(EvBase):
    event: Literal["next-question"] = "next-question"
    payload: NextQuestionPayload


class EvShowCorrectAnswer(EvBase):
    event: Literal["show-correct-answer"] = "show-correct-answer"
    payload: ShowCorrectAnswerPayload


class EvShowLeaderboard(EvBase):
    event: Literal["show-leaderboard"] = "show-leaderboard"
    payload: ShowLeaderboardPayload


class EvShowFinalLeaderboard(EvBase):
    event: Literal["show-final-leaderboard"] = "show-final-leaderboard"
    payload: ShowFinalLeaderboardPayload = Field(default_factory=ShowFinalLeaderboardPayload)


class EvPlayerJoined(EvBase):
    event: Literal["player-joined"] = "player-joined"
    payload: PlayerJoinedPayload


class EvPlayerLeft(EvBase):
    event: Literal["player-left"] = "player-left"
    payload: PlayerLeftPayload


GameEvent = Union[
    EvGameStart,
    EvGameEnd,
    EvNextQuestion,
    EvShowCorrectAnswer,
    EvShowLeaderboard,
    EvShowFinalLeaderboard,
    EvPlayerJoined,
    EvPlayerLeft,
]

# =========================
# Codec
# =========================

_EVENTS_BY_NAME = {
    "game-start": EvGameStart,
    "game-end": EvGameEnd,
    "next-question": EvNextQuestion,
    "show-correct-answer": EvShowCorrectAnswer,
    "show-leaderboard": EvShowLeaderboard,
    "show-final-leaderboard": EvShowFinalLeaderboard,
    "player-joined": EvPlayerJoined,
    "player-left": EvPlayerLeft,
}


def parse_event(raw: Any) -> GameEvent:
    """
    Convert a received dict -> validated event model.
    Raises MalformedEvent for unknown names or incomplete payloads.
    """
    if not isinstance(raw, dict):
        raise MalformedEvent("Event must be an object")

    name = raw.get("event")
    if not isinstance(name, str):
        raise MalformedEvent("Missing/invalid event name")

    cls = _EVENTS_BY_NAME.get(name)
    if cls is None:
        raise MalformedEvent(f"Unknown event: {name}")

    try:
        return cls.model_validate(raw)
    except ValidationError as e:
        raise MalformedEvent(f"Bad payload for {name}: {e.error_count()} error(s)") from e


def encode_event(ev: GameEvent) -> Dict[str, Any]:
    return ev.model_dump(mode="json", by_alias=True)
