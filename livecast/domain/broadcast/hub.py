"""Live delivery of caption events to connected subscribers.

Delivery is best-effort and at-most-once: nothing is replayed and nothing
survives a disconnect. Each subscriber has one sender task and a small bounded
backlog; when a slow subscriber's backlog is full its oldest undelivered event
is dropped. A subscriber that keeps failing is evicted. `publish` never waits
on a subscriber.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from livecast.domain.captioning.models import CaptionEvent

DEFAULT_MAX_BACKLOG = 16


class Subscriber(Protocol):
    subscriber_id: str
    language: str | None

    async def send(self, payload: dict[str, Any]) -> None: ...


def session_channel(session_id: str) -> str:
    return f"session:{session_id}"


def org_channel(org_id: str) -> str:
    return f"org:{org_id}"


def format_for_subscriber(event: CaptionEvent, language: str | None) -> dict[str, Any]:
    """Full event payload plus the text to display for the subscriber's language."""
    payload = event.to_payload()
    display_text = event.source_text
    if language and language in event.translations:
        display_text = event.translations[language]
    payload["displayText"] = display_text
    payload["language"] = language
    return payload


@dataclass(eq=False)
class _Delivery:
    subscriber: Subscriber
    backlog: deque[CaptionEvent]
    task: asyncio.Task[None] | None = None
    failures: int = 0


@dataclass
class _Channel:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    deliveries: dict[str, _Delivery] = field(default_factory=dict)


class BroadcastHub:
    def __init__(
        self,
        *,
        send_timeout: float = 5.0,
        max_failures: int = 3,
        max_backlog: int = DEFAULT_MAX_BACKLOG,
    ) -> None:
        self._send_timeout = send_timeout
        self._max_failures = max_failures
        self._max_backlog = max_backlog
        self._channels: dict[str, _Channel] = {}
        self.dropped = 0

    def _channel(self, name: str) -> _Channel:
        channel = self._channels.get(name)
        if channel is None:
            channel = self._channels[name] = _Channel()
        return channel

    def subscriber_count(self, channel_name: str) -> int:
        channel = self._channels.get(channel_name)
        return len(channel.deliveries) if channel else 0

    async def subscribe(self, channel_name: str, subscriber: Subscriber) -> None:
        channel = self._channel(channel_name)
        async with channel.lock:
            channel.deliveries[subscriber.subscriber_id] = _Delivery(
                subscriber=subscriber, backlog=deque(maxlen=self._max_backlog)
            )
        logger.debug(f"Subscriber {subscriber.subscriber_id} joined {channel_name}")

    async def unsubscribe(self, channel_name: str, subscriber_id: str) -> bool:
        channel = self._channels.get(channel_name)
        if channel is None:
            return False
        async with channel.lock:
            delivery = channel.deliveries.pop(subscriber_id, None)
            if not channel.deliveries and self._channels.get(channel_name) is channel:
                del self._channels[channel_name]
        if delivery is None:
            return False
        delivery.backlog.clear()
        if delivery.task is not None and not delivery.task.done():
            delivery.task.cancel()
        logger.debug(f"Subscriber {subscriber_id} left {channel_name}")
        return True

    async def publish(self, event: CaptionEvent) -> int:
        """Queue `event` for the subscribers of its session and organization
        channels. Returns the number of subscribers it was queued for."""
        queued = 0
        for channel_name in (session_channel(event.session_id), org_channel(event.org_id)):
            channel = self._channels.get(channel_name)
            if channel is None:
                continue
            async with channel.lock:
                deliveries = list(channel.deliveries.values())
            for delivery in deliveries:
                if len(delivery.backlog) == self._max_backlog:
                    self.dropped += 1
                    logger.debug(
                        f"Subscriber {delivery.subscriber.subscriber_id} is behind, dropping "
                        f"{delivery.backlog[0].session_id}#{delivery.backlog[0].sequence}"
                    )
                delivery.backlog.append(event)
                if delivery.task is None or delivery.task.done():
                    delivery.task = asyncio.create_task(self._deliver(channel_name, delivery))
                queued += 1
        return queued

    async def _deliver(self, channel_name: str, delivery: _Delivery) -> None:
        subscriber = delivery.subscriber
        while delivery.backlog:
            event = delivery.backlog.popleft()
            payload = format_for_subscriber(event, subscriber.language)
            try:
                await asyncio.wait_for(subscriber.send(payload), timeout=self._send_timeout)
            except Exception as exc:
                delivery.failures += 1
                logger.warning(
                    f"Delivery to {subscriber.subscriber_id} failed "
                    f"({delivery.failures}/{self._max_failures}): {exc!r}"
                )
                if delivery.failures >= self._max_failures:
                    await self._evict(channel_name, delivery)
                    return
            else:
                delivery.failures = 0

    async def _evict(self, channel_name: str, delivery: _Delivery) -> None:
        subscriber_id = delivery.subscriber.subscriber_id
        logger.info(f"Evicting subscriber {subscriber_id} from {channel_name}")
        delivery.backlog.clear()
        channel = self._channels.get(channel_name)
        if channel is None:
            return
        async with channel.lock:
            if channel.deliveries.get(subscriber_id) is delivery:
                del channel.deliveries[subscriber_id]

    async def close(self) -> None:
        tasks = []
        for channel in list(self._channels.values()):
            async with channel.lock:
                for delivery in channel.deliveries.values():
                    delivery.backlog.clear()
                    if delivery.task is not None and not delivery.task.done():
                        delivery.task.cancel()
                        tasks.append(delivery.task)
                channel.deliveries.clear()
        self._channels.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
