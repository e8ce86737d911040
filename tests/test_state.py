from app.domain.game.leaderboard import LeaderboardEntry
from app.domain.game.words import WordData
from app.domain.session.state import GameState, apply_event
from app.store.models import ParticipantRow
from app.transport.game_events import (
    EvGameEnd,
    EvGameStart,
    EvNextQuestion,
    EvPlayerJoined,
    EvPlayerLeft,
    EvShowCorrectAnswer,
    EvShowFinalLeaderboard,
    EvShowLeaderboard,
    NextQuestionPayload,
    PlayerJoinedPayload,
    PlayerLeftPayload,
    ShowCorrectAnswerPayload,
    ShowLeaderboardPayload,
)


def _state():
    return GameState(room_id="r1", host_user_id="u-host", total_rounds=2)


def _question(index):
    wd = WordData(scramble_word="x/y", answer=f"word{index}", hint="", image="", word_index=index, id=f"q{index}")
    return EvNextQuestion(payload=NextQuestionPayload(word_data=wd))


def _participant(user_id, name, pid=None, joined=0):
    return ParticipantRow(id=pid or f"p-{user_id}", room_id="r1", user_id=user_id, display_name=name, joined_at=joined)


def test_game_start_moves_to_in_progress():
    s = _state()
    assert apply_event(s, EvGameStart()) is True
    assert s.status == "in-progress"
    assert s.events[-1].type == "game-start"


def test_next_question_replaces_payload_and_clears_leaderboard_flag():
    s = _state()
    apply_event(s, EvGameStart())
    apply_event(s, _question(0))
    apply_event(s, EvShowLeaderboard(payload=ShowLeaderboardPayload(question_id="q0", leaderboard=[])))
    assert s.is_show_leaderboard is True

    apply_event(s, _question(1))
    assert s.word_data.id == "q1"
    assert s.phase == "question-active"
    assert s.is_show_leaderboard is False


def test_next_question_twice_is_an_overwrite():
    once = _state()
    twice = _state()
    ev = _question(0)
    apply_event(once, ev)
    apply_event(twice, ev)
    apply_event(twice, ev)
    assert once.model_dump(exclude={"events"}) == twice.model_dump(exclude={"events"})


def test_question_index_never_rewinds():
    s = _state()
    apply_event(s, _question(1))
    assert apply_event(s, _question(0)) is False
    assert s.word_data.id == "q1"


def test_late_duplicate_question_does_not_reopen_round():
    s = _state()
    apply_event(s, _question(0))
    apply_event(s, EvShowCorrectAnswer(payload=ShowCorrectAnswerPayload(question_id="q0", answer="word0")))
    assert apply_event(s, _question(0)) is False
    assert s.phase == "reveal-correct-answer"
    assert s.is_show_correct_answer is True


def test_reveal_for_other_question_is_ignored():
    s = _state()
    apply_event(s, _question(1))
    assert apply_event(s, EvShowCorrectAnswer(payload=ShowCorrectAnswerPayload(question_id="q0"))) is False
    assert s.phase == "question-active"


def test_show_leaderboard_stores_carried_snapshot_verbatim():
    s = _state()
    apply_event(s, _question(0))
    board = [LeaderboardEntry(id="p1", user_id="u1", username="Ann", score=300)]
    apply_event(s, EvShowLeaderboard(payload=ShowLeaderboardPayload(question_id="q0", leaderboard=board)))
    # no answers folded locally, yet the host's numbers are shown
    assert s.answers == []
    assert s.leaderboard[0].score == 300
    assert s.phase == "show-leaderboard"


def test_final_leaderboard_falls_back_to_local_aggregation():
    s = _state()
    s.participants = [_participant("u1", "Ann")]
    apply_event(s, EvGameStart())
    apply_event(s, _question(0))
    apply_event(s, EvShowFinalLeaderboard())
    assert s.is_show_final_leaderboard is True
    assert [e.user_id for e in s.final_leaderboard] == ["u1"]
    assert s.final_leaderboard[0].accuracy == 0


def test_game_end_is_terminal():
    s = _state()
    apply_event(s, EvGameStart())
    apply_event(s, _question(0))
    assert apply_event(s, EvGameEnd()) is True
    assert s.status == "completed"
    n = len(s.events)

    assert apply_event(s, _question(1)) is False
    assert apply_event(s, EvPlayerJoined(payload=PlayerJoinedPayload(participant=_participant("u9", "Late")))) is False
    assert s.word_data.id == "q0"
    assert len(s.events) == n


def test_rejoin_updates_name_in_place():
    s = _state()
    apply_event(s, EvPlayerJoined(payload=PlayerJoinedPayload(participant=_participant("u1", "Ann", joined=1))))
    apply_event(s, EvPlayerJoined(payload=PlayerJoinedPayload(participant=_participant("u2", "Bob", joined=2))))
    version = s.roster_version

    apply_event(s, EvPlayerJoined(payload=PlayerJoinedPayload(participant=_participant("u1", "Annie", joined=1))))
    assert [p.display_name for p in s.participants] == ["Annie", "Bob"]
    # same participant id: the answer filter does not change
    assert s.roster_version == version


def test_player_left_removes_from_roster():
    s = _state()
    apply_event(s, EvPlayerJoined(payload=PlayerJoinedPayload(participant=_participant("u1", "Ann"))))
    apply_event(s, EvPlayerLeft(payload=PlayerLeftPayload(user_id="u1")))
    assert s.participants == []
    assert s.roster_version == 2
