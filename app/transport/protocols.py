# app/transport/protocols.py
from __future__ import annotations

from typing import Any, Dict, Literal, Union
from pydantic import BaseModel, Field


# =========================
# Incoming (UI client -> gateway)
# =========================

class InBase(BaseModel):
    type: str


class InJoin(InBase):
    type: Literal["join"] = "join"
    name: str = Field(min_length=1, max_length=24)


class InLeave(InBase):
    type: Literal["leave"] = "leave"


class InSnapshot(InBase):
    type: Literal["snapshot"] = "snapshot"


class InStartGame(InBase):
    type: Literal["start_game"] = "start_game"


class InEndGame(InBase):
    type: Literal["end_game"] = "end_game"


class InAdvance(InBase):
    type: Literal["advance"] = "advance"


class InSubmitAnswer(InBase):
    type: Literal["submit_answer"] = "submit_answer"
    text: str = Field(min_length=1, max_length=80)


IncomingMessage = Union[
    InJoin,
    InLeave,
    InSnapshot,
    InStartGame,
    InEndGame,
    InAdvance,
    InSubmitAnswer,
]


# =========================
# Outgoing (gateway -> UI client)
# =========================

class OutBase(BaseModel):
    type: str


class OutError(OutBase):
    type: Literal["error"] = "error"
    code: str
    message: str


class OutHello(OutBase):
    type: Literal["hello"] = "hello"
    room_id: str
    user_id: str
    is_host: bool


class OutGameState(OutBase):
    type: Literal["game_state"] = "game_state"
    state: Dict[str, Any]


class OutActionResult(OutBase):
    type: Literal["action_result"] = "action_result"
    action: str
    ok: bool
    code: str = ""
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


OutgoingEvent = Union[
    OutError,
    OutHello,
    OutGameState,
    OutActionResult,
]


# =========================
# Parser helpers
# =========================

_INCOMING_BY_TYPE = {
    "join": InJoin,
    "leave": InLeave,
    "snapshot": InSnapshot,
    "start_game": InStartGame,
    "end_game": InEndGame,
    "advance": InAdvance,
    "submit_answer": InSubmitAnswer,
}


def parse_incoming(payload: Dict[str, Any]) -> IncomingMessage:
    """
    Convert raw dict -> validated message model.
    Raises ValueError for a missing/unknown type, ValidationError for bad fields.
    """
    t = payload.get("type")
    if not isinstance(t, str):
        raise ValueError("Missing/invalid type")

    cls = _INCOMING_BY_TYPE.get(t)
    if cls is None:
        raise ValueError(f"Unknown message type: {t}")

    return cls.model_validate(payload)
