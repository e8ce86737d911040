# app/domain/common/fsm.py
from __future__ import annotations

from app.domain.common.types import GameStatus, Phase


def can_transition_to(current: GameStatus, target: GameStatus) -> bool:
    """
    Validate status transitions. "completed" is terminal.
    """
    transitions: dict[GameStatus, list[GameStatus]] = {
        "waiting": ["in-progress", "completed", "waiting"],
        "in-progress": ["in-progress", "completed"],
        "completed": [],
    }
    return target in transitions.get(current, [])


def can_transition_phase(current: Phase, target: Phase) -> bool:
    """
    Validate sub-phase transitions within "in-progress".
    Self-transitions are allowed so re-delivered events apply as overwrites.
    """
    transitions: dict[Phase, list[Phase]] = {
        "": ["question-active", "show-final-leaderboard"],
        "question-active": ["question-active", "reveal-correct-answer", "show-leaderboard", "show-final-leaderboard"],
        "reveal-correct-answer": ["reveal-correct-answer", "show-leaderboard", "question-active", "show-final-leaderboard"],
        "show-leaderboard": ["show-leaderboard", "question-active", "show-final-leaderboard"],
        "show-final-leaderboard": ["show-final-leaderboard"],
    }
    return target in transitions.get(current, [])
