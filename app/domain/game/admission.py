# app/domain/game/admission.py
from __future__ import annotations

from typing import Iterable, List, Optional

from app.store.models import AnswerRow, ParticipantRow


class AnswerLedger:
    """
    Answers observed so far for one room, deduplicated by row id.
    Keeps an incremental (question -> participants with a correct answer)
    tally so admission and the round-advance check never rescan history.
    """
    def __init__(self, rows: Iterable[AnswerRow] = ()) -> None:
        self._rows: List[AnswerRow] = []
        self._ids: set[str] = set()
        self._correct: dict[str, set[str]] = {}
        for row in rows:
            self.fold(row)

    def fold(self, row: AnswerRow) -> bool:
        """Record a row. Returns False for a re-delivered row."""
        if row.id in self._ids:
            return False
        self._ids.add(row.id)
        self._rows.append(row)
        if row.is_correct:
            self._correct.setdefault(row.question_id, set()).add(row.participant_id)
        return True

    @property
    def rows(self) -> List[AnswerRow]:
        return list(self._rows)

    def has_correct(self, participant_id: str, question_id: str) -> bool:
        return participant_id in self._correct.get(question_id, ())

    def correct_count(self, question_id: str, participant_ids: Iterable[str]) -> int:
        done = self._correct.get(question_id, set())
        return sum(1 for pid in participant_ids if pid in done)

    def __len__(self) -> int:
        return len(self._rows)


def can_submit(
    ledger: AnswerLedger,
    *,
    participant_id: Optional[str],
    question_id: Optional[str],
    window_open: bool,
) -> bool:
    """
    Admission for one (participant, question): the question window must be
    open and no correct answer may exist yet. Wrong answers never block.
    """
    if not participant_id or not question_id or not window_open:
        return False
    return not ledger.has_correct(participant_id, question_id)


def everyone_answered_correctly(
    ledger: AnswerLedger,
    roster: List[ParticipantRow],
    question_id: Optional[str],
) -> bool:
    """
    True when every *current* participant has a correct answer for the
    question. Evaluated against the live roster so a departed player never
    blocks the round.
    """
    if not roster or not question_id:
        return False
    return ledger.correct_count(question_id, [p.id for p in roster]) == len(roster)
