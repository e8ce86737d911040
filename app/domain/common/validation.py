# app/domain/common/validation.py
from __future__ import annotations

from typing import Optional

from app.store.models import ParticipantRow, RoomRow


def is_room_owner(user_id: Optional[str], room: RoomRow) -> bool:
    """Check if the user created the room (the pacing authority)."""
    return bool(user_id) and room.created_by == user_id


def is_room_open(room: Optional[RoomRow]) -> bool:
    return room is not None and room.is_active


def has_capacity(room: RoomRow, participants: list[ParticipantRow], user_id: str) -> bool:
    """A known identity may always rejoin; a new one needs a free seat."""
    if any(p.user_id == user_id for p in participants):
        return True
    if not room.max_players:
        return True
    return len(participants) < room.max_players
