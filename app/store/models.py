# app/store/models.py
from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field

from app.util.timeutil import now_ts


class RoomRow(BaseModel):
    id: str
    category: str = ""
    pin_code: str
    created_by: str
    is_active: bool = True
    max_players: Optional[int] = None
    created_at: int = Field(default_factory=now_ts)  # unix seconds


class ParticipantRow(BaseModel):
    id: str
    room_id: str
    user_id: str
    display_name: str
    joined_at: int  # unix ms, defines join order


class WordRow(BaseModel):
    id: str
    word: str
    definition: str = ""
    image_storage_path: str = ""
    category: Optional[str] = None


class QuestionRow(BaseModel):
    """Room-scoped word entry. Ordered by order_index, fixed at room creation."""
    id: str
    room_id: str
    word_id: str
    order_index: int
    word: WordRow


class AnswerInsert(BaseModel):
    participant_id: str
    question_id: str
    answer_text: str
    is_correct: bool
    score: int = Field(ge=0)
    time_taken_ms: int = Field(ge=0)


class AnswerRow(AnswerInsert):
    id: str
    answered_at: int  # unix ms
