# app/domain/game/scoring.py
from __future__ import annotations

import math

BASE_SCORE = 100
SECONDS_PER_MULTIPLIER_STEP = 10


def round_half_up(x: float) -> int:
    """Round a non-negative number, halves going up (2.5 -> 3)."""
    return int(math.floor(x + 0.5))


def score_multiplier(remaining_seconds: float) -> float:
    return max(1.0, remaining_seconds / SECONDS_PER_MULTIPLIER_STEP)


def compute_score(remaining_seconds: float, correct: bool, total_seconds: float | None = None) -> int:
    """
    Points for one answer: 100 * max(1, remaining/10), rounded half-up.
    Incorrect answers score 0. Remaining time is clamped to [0, total_seconds].
    """
    if not correct:
        return 0
    remaining = max(0.0, float(remaining_seconds))
    if total_seconds is not None:
        remaining = min(remaining, float(total_seconds))
    return round_half_up(BASE_SCORE * score_multiplier(remaining))


def remaining_seconds(total_seconds: float, elapsed_seconds: float) -> float:
    """Countdown value shown to players: whole seconds elapsed are subtracted."""
    return max(0.0, total_seconds - math.floor(max(0.0, elapsed_seconds)))
