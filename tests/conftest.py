import asyncio
import copy
import json
import uuid
from collections import defaultdict

import pytest

from app.domain.common.errors import StoreWriteFailure, TransportFailure
from app.settings import Settings
from app.store.models import AnswerRow, ParticipantRow, QuestionRow, RoomRow, WordRow
from app.transport.broadcast import Subscription
from app.util.timeutil import now_ms

_CLOSED = object()


class FakeSubscription(Subscription):
    def __init__(self, channel, owner):
        self.channel = channel
        self._owner = owner
        self._q = asyncio.Queue()

    def push(self, message):
        self._q.put_nowait(message)

    async def messages(self):
        while True:
            item = await self._q.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self):
        self._owner.unsubscribe(self)
        self._q.put_nowait(_CLOSED)


class FakeBus:
    """In-order, in-memory fan-out; the sender receives its own messages."""

    def __init__(self):
        self.subs = defaultdict(list)
        self.sent = []
        self.fail_next = 0

    def unsubscribe(self, sub):
        if sub in self.subs[sub.channel]:
            self.subs[sub.channel].remove(sub)

    async def subscribe(self, topic):
        sub = FakeSubscription(topic, self)
        self.subs[topic].append(sub)
        return sub

    def deliver(self, topic, message):
        wire = json.loads(json.dumps(message))
        for sub in list(self.subs[topic]):
            sub.push(copy.deepcopy(wire))
        return len(self.subs[topic])

    async def publish(self, topic, message):
        if self.fail_next:
            self.fail_next -= 1
            raise TransportFailure(f"fake send to {topic} failed")
        self.sent.append((topic, message))
        receivers = self.deliver(topic, message)
        if receivers == 0:
            raise TransportFailure(f"no subscriber acknowledged {topic}")
        return receivers

    def sent_events(self):
        return [m.get("event") for _, m in self.sent]


class FakeRepo:
    def __init__(self):
        self.rooms = {}
        self.participants = defaultdict(dict)  # room_id -> user_id -> row
        self.questions = defaultdict(list)
        self.answers = defaultdict(list)
        self.correct = set()
        self.notify = FakeBus()
        self.fail_inserts = False
        self._clock = 0

    def seed(self, room, questions):
        self.rooms[room.id] = room
        self.questions[room.id] = sorted(questions, key=lambda q: q.order_index)

    async def get_room(self, room_id, pin=None):
        room = self.rooms.get(room_id)
        if room is None or (pin is not None and room.pin_code != pin):
            return None
        return room.model_copy()

    async def deactivate_room(self, room_id):
        if room_id in self.rooms:
            self.rooms[room_id].is_active = False

    async def list_participants(self, room_id):
        return sorted(self.participants[room_id].values(), key=lambda p: p.joined_at)

    async def upsert_participant(self, room_id, user_id, display_name):
        existing = self.participants[room_id].get(user_id)
        if existing is not None:
            row = existing.model_copy(update={"display_name": display_name})
        else:
            self._clock += 1
            row = ParticipantRow(
                id=f"p-{user_id}",
                room_id=room_id,
                user_id=user_id,
                display_name=display_name,
                joined_at=self._clock,
            )
        self.participants[room_id][user_id] = row
        return row

    async def list_questions(self, room_id):
        return list(self.questions[room_id])

    async def insert_answer(self, room_id, answer):
        if self.fail_inserts:
            raise StoreWriteFailure("fake insert rejected")
        if answer.is_correct:
            key = (answer.participant_id, answer.question_id)
            if key in self.correct:
                raise StoreWriteFailure("duplicate correct", code="DUPLICATE_CORRECT")
            self.correct.add(key)
        row = AnswerRow(id=uuid.uuid4().hex, answered_at=now_ms(), **answer.model_dump())
        self.answers[room_id].append(row)
        self.notify.deliver(f"room:{room_id}:answers", row.model_dump(mode="json"))
        return row

    async def list_answers(self, room_id, participant_ids):
        wanted = set(participant_ids)
        return [a for a in self.answers[room_id] if a.participant_id in wanted]

    async def subscribe_answers(self, room_id):
        return await self.notify.subscribe(f"room:{room_id}:answers")


def make_questions(room_id, words):
    return [
        QuestionRow(
            id=f"q{i}",
            room_id=room_id,
            word_id=f"w{i}",
            order_index=i,
            word=WordRow(id=f"w{i}", word=w, definition=f"hint for {w}", image_storage_path=f"{w}.png"),
        )
        for i, w in enumerate(words)
    ]


@pytest.fixture
def settings():
    return Settings(
        TIME_PER_QUESTION_SEC=0.4,
        REVEAL_DELAY_SEC=0,
        LEADERBOARD_DELAY_SEC=0,
        NEXT_QUESTION_DELAY_SEC=0,
        FINAL_LEADERBOARD_DELAY_SEC=0,
        PACING_RETRY_SEC=0.01,
        PACING_MAX_ATTEMPTS=3,
        PACING_RESCHEDULE_SEC=0.05,
    )


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def repo():
    r = FakeRepo()
    room = RoomRow(id="r1", category="animals", pin_code="1234", created_by="u-host", max_players=4)
    r.seed(room, make_questions("r1", ["apple", "river"]))
    return r


@pytest.fixture
def wait_until():
    async def _wait(pred, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not pred():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait
