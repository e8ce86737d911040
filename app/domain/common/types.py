# app/domain/common/types.py
from __future__ import annotations

from typing import Literal

GameStatus = Literal["waiting", "in-progress", "completed"]
Phase = Literal["", "question-active", "reveal-correct-answer", "show-leaderboard", "show-final-leaderboard"]

EventName = Literal[
    "game-start",
    "next-question",
    "show-correct-answer",
    "show-leaderboard",
    "show-final-leaderboard",
    "game-end",
    "player-joined",
    "player-left",
]

# Recorded in the local event log only; never broadcast
LocalEventName = Literal["new-answer"]

RevealReason = Literal["all-correct", "timeout", "manual"]
