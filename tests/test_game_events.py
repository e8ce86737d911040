import pytest

from app.domain.common.errors import MalformedEvent
from app.domain.game.words import WordData
from app.transport.game_events import (
    EvNextQuestion,
    EvPlayerLeft,
    NextQuestionPayload,
    PlayerLeftPayload,
    encode_event,
    game_topic,
    parse_event,
)


def test_topic_is_room_scoped():
    assert game_topic("r1") == "game:r1"


def test_parse_next_question_with_word_data():
    ev = parse_event(
        {
            "event": "next-question",
            "payload": {
                "wordData": {
                    "scramble_word": "l/e/p/p/a",
                    "answer": "apple",
                    "hint": "a fruit",
                    "image": "apple.png",
                    "word_index": 0,
                    "id": "q0",
                }
            },
        }
    )
    assert ev.event == "next-question"
    assert ev.payload.word_data.answer == "apple"
    assert ev.id  # envelope id is filled in when missing


def test_encode_uses_wire_names():
    ev = EvNextQuestion(payload=NextQuestionPayload(word_data=WordData(answer="apple", word_index=0, id="q0")))
    wire = encode_event(ev)
    assert wire["event"] == "next-question"
    assert wire["payload"]["wordData"]["id"] == "q0"

    left = encode_event(EvPlayerLeft(payload=PlayerLeftPayload(user_id="u1")))
    assert left["payload"] == {"userId": "u1"}


def test_player_joined_carries_full_participant():
    ev = parse_event(
        {
            "event": "player-joined",
            "payload": {
                "participant": {
                    "id": "p1",
                    "room_id": "r1",
                    "user_id": "u1",
                    "display_name": "Ann",
                    "joined_at": 5,
                }
            },
        }
    )
    assert ev.payload.participant.display_name == "Ann"


def test_show_leaderboard_requires_snapshot():
    with pytest.raises(MalformedEvent):
        parse_event({"event": "show-leaderboard", "payload": {"question_id": "q0"}})


def test_missing_payload_fields_are_malformed():
    with pytest.raises(MalformedEvent):
        parse_event({"event": "next-question", "payload": {}})
    with pytest.raises(MalformedEvent):
        parse_event({"event": "player-left", "payload": {"userId": ""}})


def test_unknown_or_nameless_events_are_malformed():
    with pytest.raises(MalformedEvent):
        parse_event({"event": "does-not-exist"})
    with pytest.raises(MalformedEvent):
        parse_event({"payload": {}})
    with pytest.raises(MalformedEvent):
        parse_event(["not", "an", "object"])


def test_payloadless_events_have_defaults():
    assert parse_event({"event": "game-start"}).event == "game-start"
    final = parse_event({"event": "show-final-leaderboard"})
    assert final.payload.leaderboard is None
