# app/domain/game/leaderboard.py
from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel

from app.domain.game.scoring import round_half_up
from app.store.models import AnswerRow, ParticipantRow


class LeaderboardEntry(BaseModel):
    id: str                # participant id
    user_id: str
    username: str
    score: int
    is_host: bool = False


class FinalLeaderboardEntry(LeaderboardEntry):
    total_correct: int = 0
    total_incorrect: int = 0
    accuracy: int = 0      # percent


def accuracy_percent(correct: int, incorrect: int) -> int:
    total = correct + incorrect
    if total == 0:
        return 0
    return round_half_up(correct / total * 100)


def _totals(answers: Iterable[AnswerRow]) -> dict[str, list[int]]:
    # participant_id -> [score, correct, incorrect]
    out: dict[str, list[int]] = {}
    for a in answers:
        t = out.setdefault(a.participant_id, [0, 0, 0])
        t[0] += a.score or 0
        if a.is_correct:
            t[1] += 1
        else:
            t[2] += 1
    return out


def build_leaderboard(
    participants: List[ParticipantRow],
    answers: Iterable[AnswerRow],
    host_user_id: Optional[str] = None,
) -> List[LeaderboardEntry]:
    """
    Sum each current participant's answer scores and rank descending.
    sorted() is stable, so ties keep roster (join) order.
    """
    totals = _totals(answers)
    rows = [
        LeaderboardEntry(
            id=p.id,
            user_id=p.user_id,
            username=p.display_name,
            score=totals.get(p.id, [0, 0, 0])[0],
            is_host=p.user_id == host_user_id,
        )
        for p in participants
    ]
    return sorted(rows, key=lambda e: -e.score)


def build_final_leaderboard(
    participants: List[ParticipantRow],
    answers: Iterable[AnswerRow],
    host_user_id: Optional[str] = None,
) -> List[FinalLeaderboardEntry]:
    totals = _totals(answers)
    rows = []
    for p in participants:
        score, correct, incorrect = totals.get(p.id, [0, 0, 0])
        rows.append(
            FinalLeaderboardEntry(
                id=p.id,
                user_id=p.user_id,
                username=p.display_name,
                score=score,
                is_host=p.user_id == host_user_id,
                total_correct=correct,
                total_incorrect=incorrect,
                accuracy=accuracy_percent(correct, incorrect),
            )
        )
    return sorted(rows, key=lambda e: -e.score)
