import pytest

from app.domain.game.admission import AnswerLedger
from app.domain.session.answer_feed import AnswerFeed
from app.store.models import AnswerInsert

CHANNEL = "room:r1:answers"


def _answer(pid, correct=True):
    return AnswerInsert(
        participant_id=pid,
        question_id="q0",
        answer_text="apple" if correct else "nope",
        is_correct=correct,
        score=100 if correct else 0,
        time_taken_ms=500,
    )


@pytest.mark.asyncio
async def test_same_version_does_not_resubscribe(repo):
    feed = AnswerFeed(repo, "r1", lambda row: None)
    try:
        assert await feed.update(["p1"], 1) is True
        first = repo.notify.subs[CHANNEL][0]

        assert await feed.update(["p1", "p2"], 1) is False
        assert repo.notify.subs[CHANNEL] == [first]
        assert feed.participant_ids == frozenset({"p1"})
    finally:
        await feed.close()
    assert repo.notify.subs[CHANNEL] == []


@pytest.mark.asyncio
async def test_filter_change_replaces_subscription(repo):
    feed = AnswerFeed(repo, "r1", lambda row: None)
    try:
        await feed.update(["p1"], 1)
        first = repo.notify.subs[CHANNEL][0]
        await feed.update(["p1", "p2"], 2)
        assert len(repo.notify.subs[CHANNEL]) == 1
        assert repo.notify.subs[CHANNEL][0] is not first
        assert feed.version == 2
    finally:
        await feed.close()


@pytest.mark.asyncio
async def test_answers_from_new_participant_come_from_backlog(repo, wait_until):
    ledger = AnswerLedger()
    feed = AnswerFeed(repo, "r1", ledger.fold)
    try:
        await feed.update(["p1"], 1)
        await repo.insert_answer("r1", _answer("p1"))
        await wait_until(lambda: len(ledger) == 1)

        # p2 answers before the roster change reaches the feed: filtered out live
        await repo.insert_answer("r1", _answer("p2"))
        await repo.insert_answer("r1", _answer("p3", correct=False))
        assert len(ledger) == 1

        await feed.update(["p1", "p2"], 2)
        # p1's row comes back in the backlog too and folds once
        assert len(ledger) == 2
        assert ledger.has_correct("p2", "q0")

        await repo.insert_answer("r1", _answer("p2", correct=False))
        await wait_until(lambda: len(ledger) == 3)
        assert {r.participant_id for r in ledger.rows} == {"p1", "p2"}
    finally:
        await feed.close()
