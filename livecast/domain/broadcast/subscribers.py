"""Subscriber adapters for the broadcast hub.

Classes:
    - WebSocketSubscriber: a viewer connected to the live websocket endpoint
    - RoomDataSubscriber: a LiveKit room, captions go out on its data channel
    - RedisChannelSubscriber: relays events to Redis pub/sub for other API replicas
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import orjson
from fastapi import WebSocket
from livekit import rtc
from loguru import logger
from redis.asyncio import Redis

REDIS_CHANNEL_PREFIX = "livecast:captions:"


def redis_caption_channel(session_id: str) -> str:
    return f"{REDIS_CHANNEL_PREFIX}{session_id}"


class WebSocketSubscriber:
    """
    Live viewer on a websocket. The language preference only affects
    `displayText` formatting, so switching it takes effect on the next event
    without any replay.
    """

    def __init__(self, websocket: WebSocket, language: str | None = None) -> None:
        self.subscriber_id = f"ws-{uuid4().hex[:12]}"
        self.language = language
        self._websocket = websocket

    def set_language(self, language: str | None) -> None:
        self.language = language or None

    async def send(self, payload: dict[str, Any]) -> None:
        await self._websocket.send_bytes(orjson.dumps({"type": "caption", "data": payload}))


class RoomDataSubscriber:
    """Publishes caption events to every participant of a LiveKit room."""

    TOPIC = "live-transcript"

    def __init__(self, room: rtc.Room, language: str | None = None) -> None:
        self.subscriber_id = f"room-{uuid4().hex[:12]}"
        self.language = language
        self._room = room

    async def send(self, payload: dict[str, Any]) -> None:
        # `rtc.Room` may define `__len__`, so compare with None instead of truthiness.
        if self._room is None:
            return
        local_participant = getattr(self._room, "local_participant", None)
        if local_participant is None:
            logger.debug("Skipping caption publish: local_participant is not available")
            return
        await local_participant.publish_data(orjson.dumps(payload), topic=self.TOPIC)


class RedisChannelSubscriber:
    """Forwards every caption event of a session to a Redis pub/sub channel."""

    def __init__(self, redis: Redis, session_id: str) -> None:
        self.subscriber_id = f"redis-{session_id}"
        self.language: str | None = None
        self.channel = redis_caption_channel(session_id)
        self._redis = redis

    async def send(self, payload: dict[str, Any]) -> None:
        await self._redis.publish(self.channel, orjson.dumps(payload))
