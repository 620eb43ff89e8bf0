"""
Labelled Redis client manager.

Connection strings come from `REDIS_URL_<LABEL>` keys in the configuration;
the `default` label falls back to `REDIS_URL_DEFAULT`, `REDIS_URL` and finally
localhost.
"""

import threading

from loguru import logger
from redis.asyncio import Redis

from livecast.shared.config import config
from livecast.shared.storage.mongo import hide_password


class RedisManager:
    """
    Simple Redis client manager.

    - Creates and tracks one `redis.asyncio.Redis` client per label
    - Thread-safe singleton
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return

        self._clients: dict[str, Redis] = {}
        self._lock = threading.Lock()
        self._initialized = True

    def get_client(self, label: str | None = None) -> Redis:
        label = label or "default"

        with self._lock:
            if label not in self._clients:
                url = config.get_redis_url(label)
                if not url:
                    raise ValueError(f"No Redis connection string found for label '{label}'")
                logger.info("Open Redis client for label '{}': {}", label, hide_password(url))
                self._clients[label] = Redis.from_url(url)
            return self._clients[label]

    async def close_all(self) -> None:
        with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()

        for label, client in clients:
            try:
                await client.aclose()
                logger.info("Closed Redis client for label '{}'", label)
            except Exception as exc:
                logger.error("Error closing Redis client for label '{}': {}", label, exc)


def get_redis_manager() -> RedisManager:
    return RedisManager()


def get_redis_client(label: str | None = None) -> Redis:
    return get_redis_manager().get_client(label)
