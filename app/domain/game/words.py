# app/domain/game/words.py
from __future__ import annotations

import random
from typing import Optional

from pydantic import BaseModel

from app.store.models import QuestionRow

_MAX_SHUFFLES = 10


class WordData(BaseModel):
    """Question payload carried by next-question."""
    scramble_word: str = ""
    answer: str = ""
    hint: str = ""
    image: str = ""
    word_index: int = -1
    id: str = ""


def normalize_answer(s: str) -> str:
    return "".join((s or "").strip().lower().split())


def is_correct_answer(text: str, answer: str) -> bool:
    expected = normalize_answer(answer)
    return bool(expected) and normalize_answer(text) == expected


def scramble_word(word: str, rng: Optional[random.Random] = None) -> str:
    """
    Shuffle the letters and join them with "/".
    Words whose letters are all the same cannot change; they are returned as-is (slashed).
    """
    rng = rng or random
    letters = list(word)
    for _ in range(_MAX_SHUFFLES):
        rng.shuffle(letters)
        if "".join(letters) != word:
            break
    return "/".join(letters)


def image_url(storage_path: str, base_url: str = "") -> str:
    if not storage_path:
        return ""
    if not base_url or storage_path.startswith(("http://", "https://")):
        return storage_path
    return f"{base_url.rstrip('/')}/{storage_path.lstrip('/')}"


def build_word_data(
    question: QuestionRow,
    index: int,
    *,
    image_base_url: str = "",
    rng: Optional[random.Random] = None,
) -> WordData:
    return WordData(
        scramble_word=scramble_word(question.word.word, rng),
        answer=question.word.word,
        hint=question.word.definition,
        image=image_url(question.word.image_storage_path, image_base_url),
        word_index=index,
        id=question.id,
    )
