"""In-process read-through cache for role matrices and user overrides.

One instance per engine (constructed in `auth.engine`), never a module
global, so tests build a fresh cache each time.

Keys are ("role", role_name) and ("user", user_id). Guarantees:
  - Every key carries a generation counter, bumped by invalidation. A
    fetch remembers the generation it started under and only stores its
    result if that generation is still current, so a slow fetch that
    straddles a save can never overwrite the fresher state.
  - Concurrent misses for one key share a single fetch.
  - A failed fetch is propagated to every waiter and is not cached.
  - Optional TTL; `ttl_seconds=0` keeps entries until invalidated.

The cache only changes latency, never the answer: after an invalidation
returns, the next read for that key goes to the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]
Loader = Callable[[str], Awaitable[Any]]


@dataclass
class CacheEntry:
    value: Any
    generation: tuple[int, int]
    stored_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    discarded: int = 0  # fetch results dropped because the key was invalidated meanwhile
    entries: int = 0


class PermissionCache:
    ROLE = "role"
    USER = "user"

    def __init__(
        self,
        ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._generations: dict[CacheKey, int] = {}
        self._epoch = 0  # bumped by invalidate_all
        self._inflight: dict[CacheKey, asyncio.Future] = {}
        self._stats = CacheStats()

    # ── Reads ────────────────────────────────────────────────

    async def get_role(self, role: str, loader: Loader) -> Any:
        return await self._get((self.ROLE, role), loader)

    async def get_user(self, user_id: str, loader: Loader) -> Any:
        return await self._get((self.USER, user_id), loader)

    def peek(self, kind: str, key: str) -> Any | None:
        """Return a fresh cached value without loading (diagnostics/tests)."""
        entry = self._entries.get((kind, key))
        if entry is None or self._expired(entry):
            return None
        return entry.value

    # ── Invalidation ─────────────────────────────────────────

    def invalidate_role(self, role: str) -> None:
        self._invalidate((self.ROLE, role))

    def invalidate_user(self, user_id: str) -> None:
        self._invalidate((self.USER, user_id))

    def invalidate_all(self) -> None:
        """Drop everything (bulk migrations, seed changes)."""
        self._epoch += 1
        self._entries.clear()
        self._inflight.clear()
        self._stats.invalidations += 1
        logger.info("Permission cache cleared")

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            invalidations=self._stats.invalidations,
            discarded=self._stats.discarded,
            entries=len(self._entries),
        )

    # ── Internals ────────────────────────────────────────────

    def _generation(self, key: CacheKey) -> tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def _expired(self, entry: CacheEntry) -> bool:
        if self._ttl <= 0:
            return False
        return self._clock() - entry.stored_at >= self._ttl

    def _invalidate(self, key: CacheKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.pop(key, None)
        # Detach any in-flight fetch: callers arriving from now on start a new one.
        self._inflight.pop(key, None)
        self._stats.invalidations += 1
        logger.debug(f"Permission cache invalidated: {key[0]}:{key[1]}")

    async def _get(self, key: CacheKey, loader: Loader) -> Any:
        entry = self._entries.get(key)
        if entry is not None:
            if not self._expired(entry):
                self._stats.hits += 1
                return entry.value
            del self._entries[key]

        self._stats.misses += 1

        pending = self._inflight.get(key)
        if pending is None:
            # The fetch runs in its own task: a cancelled caller stops
            # waiting but never aborts the fetch other callers share.
            pending = asyncio.ensure_future(self._fetch(key, loader, self._generation(key)))
            # Mark the outcome as retrieved even when nobody else is waiting.
            pending.add_done_callback(lambda f: f.cancelled() or f.exception())
            self._inflight[key] = pending
        return await asyncio.shield(pending)

    async def _fetch(self, key: CacheKey, loader: Loader, generation: tuple[int, int]) -> Any:
        try:
            value = await loader(key[1])
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

        if self._generation(key) == generation:
            self._entries[key] = CacheEntry(value, generation, self._clock())
        else:
            self._stats.discarded += 1
            logger.debug(f"Discarding stale fetch for {key[0]}:{key[1]}")
        return value
