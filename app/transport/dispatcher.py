# app/transport/dispatcher.py
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import ValidationError

from app.domain.session.machine import ActionResult, SessionStateMachine
from app.transport.protocols import (
    parse_incoming,
    OutActionResult,
    OutError,
    OutGameState,
    InAdvance,
    InEndGame,
    InJoin,
    InLeave,
    InSnapshot,
    InStartGame,
)

DispatchResult = List[Dict[str, Any]]
# to_sender events as JSON dicts; room-wide effects travel over the broadcast topic


async def dispatch_message(*, machine: SessionStateMachine, raw: Dict[str, Any]) -> DispatchResult:
    """
    Gateway calls this for every UI message.
    - Parses + validates raw JSON
    - Routes to the matching session action
    - Returns events for the sender only

    NOTE: This file contains NO Redis usage and NO game rules.
    """
    try:
        msg = parse_incoming(raw)
    except (ValidationError, ValueError) as e:
        return [OutError(code="BAD_MESSAGE", message=str(e)).model_dump()]

    if isinstance(msg, InSnapshot):
        return [OutGameState(state=machine.snapshot()).model_dump()]

    if isinstance(msg, InJoin):
        return _result(msg.type, await machine.join_room(msg.name))

    if isinstance(msg, InLeave):
        return _result(msg.type, await machine.leave_room())

    if isinstance(msg, InStartGame):
        return _result(msg.type, await machine.start_game())

    if isinstance(msg, InEndGame):
        return _result(msg.type, await machine.end_game())

    if isinstance(msg, InAdvance):
        return _result(msg.type, await machine.advance_question())

    # submit_answer: the last routed type
    return _result(msg.type, await machine.submit_answer(msg.text))


def _result(action: str, res: ActionResult) -> DispatchResult:
    return [
        OutActionResult(
            action=action,
            ok=res.ok,
            code=res.code,
            message=res.message,
            data=res.data,
        ).model_dump()
    ]
