# app/store/redis_repo.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.domain.common.errors import StoreReadFailure, StoreWriteFailure
from app.store.models import AnswerInsert, AnswerRow, ParticipantRow, QuestionRow, RoomRow
from app.store.redis_keys import RK
from app.transport.broadcast import Subscription, redis_subscribe
from app.util.timeutil import now_ms

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:10]


class RedisRepo:
    """
    Persisted store: rooms, participants, questions-per-room and answers.
    Every state-changing call is a single row write; answer inserts are
    announced on the room's answer channel.
    """
    def __init__(self, r: Redis, room_ttl_sec: int = 1800):
        self.r = r
        self.room_ttl_sec = room_ttl_sec

    def _dec(self, x):
        """Decode redis bytes -> str; pass through str/int/None safely."""
        if x is None:
            return None
        if isinstance(x, bytes):
            return x.decode("utf-8")
        return x

    def _dec_map(self, d: dict) -> dict:
        return {self._dec(k): self._dec(v) for k, v in d.items()}

    # ----------------------------
    # Helpers
    # ----------------------------
    async def refresh_room_ttl(self, room_id: str) -> None:
        rk = RK(room_id)
        pipe = self.r.pipeline()
        for k in rk.all_room_keys():
            pipe.expire(k, self.room_ttl_sec)
        await pipe.execute()

    async def room_exists(self, room_id: str) -> bool:
        return bool(await self.r.exists(RK(room_id).room()))

    # ----------------------------
    # Rooms
    # ----------------------------
    async def create_room(self, room: RoomRow, questions: Iterable[QuestionRow]) -> None:
        """Seed a room with its fixed question sequence (PIN allocation happens upstream)."""
        rk = RK(room.id)
        mapping: dict[str, Any] = {
            "id": room.id,
            "category": room.category,
            "pin_code": room.pin_code,
            "created_by": room.created_by,
            "is_active": "1" if room.is_active else "0",
            "created_at": room.created_at,
        }
        if room.max_players is not None:
            mapping["max_players"] = room.max_players
        ordered = sorted(questions, key=lambda q: q.order_index)
        try:
            pipe = self.r.pipeline()
            pipe.delete(rk.room(), rk.participants(), rk.questions(), rk.answers())
            pipe.hset(rk.room(), mapping=mapping)
            if ordered:
                pipe.rpush(rk.questions(), *[q.model_dump_json() for q in ordered])
            await pipe.execute()
        except RedisError as e:
            raise StoreWriteFailure(f"create room failed: {e}") from e
        await self.refresh_room_ttl(room.id)

    async def get_room(self, room_id: str, pin: Optional[str] = None) -> Optional[RoomRow]:
        """Room by id (+pin when given). Wrong pin reads as missing."""
        try:
            data = await self.r.hgetall(RK(room_id).room())
        except RedisError as e:
            raise StoreReadFailure(f"read room failed: {e}") from e
        if not data:
            return None
        norm = self._dec_map(data)
        if pin is not None and norm.get("pin_code") != pin:
            return None
        norm["is_active"] = norm.get("is_active") == "1"
        for f in ["max_players", "created_at"]:
            if f in norm and norm[f] != "":
                norm[f] = int(norm[f])
        return RoomRow(**norm)

    async def deactivate_room(self, room_id: str) -> None:
        try:
            await self.r.hset(RK(room_id).room(), "is_active", "0")
        except RedisError as e:
            raise StoreWriteFailure(f"deactivate room failed: {e}") from e

    # ----------------------------
    # Participants
    # ----------------------------
    async def upsert_participant(self, room_id: str, user_id: str, display_name: str) -> ParticipantRow:
        """
        Upsert by (user identity, room): a rejoin keeps id and join order
        and only replaces the display name.
        """
        rk = RK(room_id)
        try:
            raw = await self.r.hget(rk.participants(), user_id)
            if raw:
                p = ParticipantRow.model_validate_json(self._dec(raw))
                p.display_name = display_name
            else:
                p = ParticipantRow(
                    id=_new_id(),
                    room_id=room_id,
                    user_id=user_id,
                    display_name=display_name,
                    joined_at=now_ms(),
                )
            await self.r.hset(rk.participants(), user_id, p.model_dump_json())
        except RedisError as e:
            raise StoreWriteFailure(f"join failed: {e}") from e
        await self.refresh_room_ttl(room_id)
        return p

    async def list_participants(self, room_id: str) -> list[ParticipantRow]:
        try:
            data = await self.r.hgetall(RK(room_id).participants())
        except RedisError as e:
            raise StoreReadFailure(f"read participants failed: {e}") from e
        players = [ParticipantRow.model_validate_json(self._dec(raw)) for raw in data.values()]
        # stable order: joined_at
        players.sort(key=lambda x: x.joined_at)
        return players

    # ----------------------------
    # Questions
    # ----------------------------
    async def list_questions(self, room_id: str) -> list[QuestionRow]:
        try:
            raw = await self.r.lrange(RK(room_id).questions(), 0, -1)
        except RedisError as e:
            raise StoreReadFailure(f"read questions failed: {e}") from e
        questions = [QuestionRow.model_validate_json(self._dec(x)) for x in raw]
        questions.sort(key=lambda q: q.order_index)
        return questions

    # ----------------------------
    # Answers
    # ----------------------------
    async def insert_answer(self, room_id: str, answer: AnswerInsert) -> AnswerRow:
        """
        Append one answer row and announce it. A second correct answer for the
        same (participant, question) is rejected with DUPLICATE_CORRECT.
        A failed append releases the correct-answer claim so the player can retry.
        """
        rk = RK(room_id)
        row = AnswerRow(id=uuid.uuid4().hex, answered_at=now_ms(), **answer.model_dump())
        raw = row.model_dump_json()
        claim_key: Optional[str] = None
        try:
            if row.is_correct:
                key = rk.correct(row.participant_id, row.question_id)
                claimed = await self.r.set(key, row.id, nx=True, ex=self.room_ttl_sec)
                if not claimed:
                    raise StoreWriteFailure(
                        "Correct answer already recorded for this question",
                        code="DUPLICATE_CORRECT",
                    )
                claim_key = key
            pipe = self.r.pipeline(transaction=True)
            pipe.rpush(rk.answers(), raw)
            pipe.publish(rk.answers_channel(), raw)
            pipe.expire(rk.answers(), self.room_ttl_sec)
            await pipe.execute()
        except RedisError as e:
            if claim_key is not None:
                await self._release_claim(claim_key, row.id)
            raise StoreWriteFailure(f"insert answer failed: {e}") from e
        return row

    async def _release_claim(self, key: str, answer_id: str) -> None:
        try:
            # only our own claim; never one a concurrent insert made since
            if self._dec(await self.r.get(key)) == answer_id:
                await self.r.delete(key)
        except RedisError as e:
            logger.warning("could not release %s: %s", key, e)

    async def list_answers(self, room_id: str, participant_ids: Iterable[str]) -> list[AnswerRow]:
        wanted = set(participant_ids)
        try:
            raw = await self.r.lrange(RK(room_id).answers(), 0, -1)
        except RedisError as e:
            raise StoreReadFailure(f"read answers failed: {e}") from e
        rows = [AnswerRow.model_validate_json(self._dec(x)) for x in raw]
        return [a for a in rows if a.participant_id in wanted]

    async def subscribe_answers(self, room_id: str) -> Subscription:
        """Live stream of inserted answer rows for the room."""
        return await redis_subscribe(self.r, RK(room_id).answers_channel())
