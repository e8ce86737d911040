# app/transport/broadcast.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.domain.common.errors import TransportFailure

logger = logging.getLogger(__name__)


class Subscription(ABC):
    """
    One live channel subscription.
    Iterate to receive decoded JSON messages in send order; close() to stop.
    """
    channel: str = ""

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self.messages()

    @abstractmethod
    def messages(self) -> AsyncIterator[Dict[str, Any]]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class RedisSubscription(Subscription):
    def __init__(self, pubsub: PubSub, channel: str) -> None:
        self._pubsub = pubsub
        self.channel = channel

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        async for msg in self._pubsub.listen():
            if msg.get("type") != "message":
                continue
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                decoded = json.loads(data)
            except (TypeError, ValueError):
                logger.warning("dropping non-JSON message on %s", self.channel)
                continue
            if not isinstance(decoded, dict):
                logger.warning("dropping non-object message on %s", self.channel)
                continue
            yield decoded

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe(self.channel)
        except RedisError:
            logger.info("unsubscribe from %s failed; closing anyway", self.channel)
        await self._pubsub.aclose()


async def redis_subscribe(r: Redis, channel: str) -> RedisSubscription:
    pubsub = r.pubsub()
    try:
        await pubsub.subscribe(channel)
    except RedisError as e:
        await pubsub.aclose()
        raise TransportFailure(f"subscribe to {channel} failed: {e}") from e
    return RedisSubscription(pubsub, channel)


class RedisBroadcaster:
    """
    Topic-scoped fan-out over Redis pub/sub.
    In-order per channel, best-effort: offline subscribers miss messages.
    """
    def __init__(self, r: Redis) -> None:
        self.r = r

    async def publish(self, topic: str, message: Dict[str, Any]) -> int:
        """
        Returns the number of receivers. Raises TransportFailure when Redis
        rejects the send or nobody (not even the sender) is listening.
        """
        try:
            receivers = int(await self.r.publish(topic, json.dumps(message)))
        except RedisError as e:
            raise TransportFailure(f"publish to {topic} failed: {e}") from e
        if receivers == 0:
            raise TransportFailure(f"no subscriber acknowledged {topic}")
        return receivers

    async def subscribe(self, topic: str) -> Subscription:
        return await redis_subscribe(self.r, topic)
