from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/sessions")
async def list_sessions(request: Request):
    """
    List open session replicas hosted by this process (debug/admin).
    """
    registries = request.app.state.registries
    wsman = request.app.state.wsman

    sessions = []
    for user_id, registry in sorted(registries.items()):
        for room_id in registry.room_ids():
            machine = registry.get(room_id)
            if machine is None:
                continue
            state = machine.state
            sessions.append(
                {
                    "room_id": room_id,
                    "user_id": user_id,
                    "is_host": machine.is_authority,
                    "status": state.status,
                    "phase": state.phase,
                    "question_index": state.question_index,
                    "total_rounds": state.total_rounds,
                    "participants": len(state.participants),
                    "answers": len(state.answers),
                    "connected": await wsman.room_size(room_id),
                }
            )

    return {"sessions": sessions}


@router.post("/sessions/{room_id}/close")
async def close_sessions(room_id: str, request: Request):
    """
    Force close every local replica of a room and its UI sockets (debug/admin).
    The persisted room is left untouched.
    """
    registries = request.app.state.registries
    wsman = request.app.state.wsman

    closed = 0
    for registry in registries.values():
        if await registry.dispose(room_id):
            closed += 1
    if closed == 0:
        raise HTTPException(status_code=404, detail="No open session for room")

    await wsman.close_room(room_id)
    return {"ok": True, "room_id": room_id, "closed": closed}
