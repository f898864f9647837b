"""Redis utilities for church RBAC.

The permission cache itself lives in process memory (`auth.cache`). Redis
is only used to fan invalidations out to sibling worker processes, so an
admin's save on one worker also drops the stale entry on the others.
Cross-worker delivery is best effort: Redis errors are logged and never
fail a save.
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

import redis.asyncio as redis

from church_rbac.auth.cache import PermissionCache
from church_rbac.config import settings

logger = logging.getLogger("church_rbac.invalidation")

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None

RECONNECT_DELAY_SECONDS = 5


def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class InvalidationBus:
    """Publish local invalidations and apply remote ones.

    Message format (JSON):
        {"kind": "role" | "user" | "all", "key": str | null, "origin": str}

    `origin` identifies the publishing process so a worker ignores its own
    echoes (it already invalidated locally before publishing).
    """

    KINDS = ("role", "user", "all")

    def __init__(
        self,
        redis_client: redis.Redis,
        cache: PermissionCache,
        channel: str = settings.permission_invalidation_channel,
    ) -> None:
        self._redis = redis_client
        self._cache = cache
        self._channel = channel
        self.origin = uuid.uuid4().hex
        self._task: asyncio.Task | None = None

    async def publish(self, kind: str, key: str | None = None) -> None:
        if kind not in self.KINDS:
            raise ValueError(f"Unknown invalidation kind: {kind}")
        message = json.dumps({"kind": kind, "key": key, "origin": self.origin})
        try:
            await self._redis.publish(self._channel, message)
        except redis.RedisError as e:
            logger.warning(f"Failed to publish permission invalidation ({kind}:{key}): {e}")

    def apply(self, raw: str | bytes) -> bool:
        """Apply one remote message to the local cache. Returns True if applied."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            message = None
        if not isinstance(message, dict):
            logger.warning(f"Ignoring malformed invalidation message: {raw!r}")
            return False

        if message.get("origin") == self.origin:
            return False

        kind, key = message.get("kind"), message.get("key")
        if kind == "all":
            self._cache.invalidate_all()
        elif kind == "role" and key:
            self._cache.invalidate_role(key)
        elif kind == "user" and key:
            self._cache.invalidate_user(key)
        else:
            logger.warning(f"Ignoring unknown invalidation message: {message!r}")
            return False
        return True

    async def listen(self) -> None:
        """Consume the channel until cancelled or the connection drops."""
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        logger.info(f"Listening for permission invalidations on {self._channel}")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.apply(message["data"])
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()

    async def _run(self) -> None:
        while True:
            try:
                await self.listen()
            except redis.RedisError as e:
                logger.warning(
                    f"Invalidation listener lost Redis ({e}); "
                    f"retrying in {RECONNECT_DELAY_SECONDS}s"
                )
                # Anything published while disconnected is lost.
                self._cache.invalidate_all()
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
