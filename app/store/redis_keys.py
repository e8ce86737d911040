# app/store/redis_keys.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RK:
    """
    Redis Key builder for room-scoped keys and channels.
    """
    room_id: str

    # ---- Core ----
    def room(self) -> str:
        return f"room:{self.room_id}"  # HASH

    def participants(self) -> str:
        return f"room:{self.room_id}:participants"  # HASH user_id -> JSON

    def questions(self) -> str:
        return f"room:{self.room_id}:questions"  # LIST JSON, order_index order

    def answers(self) -> str:
        return f"room:{self.room_id}:answers"  # LIST JSON, append-only

    def correct(self, participant_id: str, question_id: str) -> str:
        # STRING, SET NX: at most one correct answer per (participant, question)
        return f"room:{self.room_id}:correct:{participant_id}:{question_id}"

    # ---- Pub/Sub channels ----
    def answers_channel(self) -> str:
        return f"room:{self.room_id}:answers"  # insert notifications

    # ---- Convenience: all keys to TTL-refresh ----
    def all_room_keys(self) -> list[str]:
        return [
            self.room(),
            self.participants(),
            self.questions(),
            self.answers(),
        ]
