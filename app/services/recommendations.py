"""Rate limiting, caching and orchestration for AI "watch next" picks."""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

from ..config import Settings
from ..errors import RateLimitExceeded
from ..models import Recommendation
from .collection import CollectionStore
from .openai import PROMPT_ITEM_LIMIT, OpenAIClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass(slots=True)
class RateLimitEntry:
    count: int
    window_start: float


@dataclass(slots=True)
class CachedRecommendations:
    expires_at: float
    results: list[Recommendation]


class RateLimiter:
    """Fixed window request counter per identity.

    A window opens on the first request and resets on the first request
    made more than ``window_ms`` after it opened. Bursts straddling a
    window boundary are allowed.
    """

    def __init__(
        self,
        *,
        window_ms: int,
        max_requests: int,
        max_entries: int,
        clock: Clock = monotonic_ms,
    ):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()

    def is_rate_limited(self, key: str) -> bool:
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None or now - entry.window_start > self.window_ms:
            self._entries[key] = RateLimitEntry(count=1, window_start=now)
            self._entries.move_to_end(key)
            self._enforce_bound(now)
            return False

        self._entries.move_to_end(key)
        if entry.count >= self.max_requests:
            return True

        entry.count += 1
        return False

    def sweep(self, now: float | None = None) -> int:
        """Drop entries whose window has already closed."""

        now = self._clock() if now is None else now
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.window_start > self.window_ms
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def _enforce_bound(self, now: float) -> None:
        if len(self._entries) <= self._max_entries:
            return
        self.sweep(now)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class RecommendationCache:
    """Time-to-live cache of generated recommendations per identity."""

    def __init__(self, *, ttl_ms: int, max_entries: int, clock: Clock = monotonic_ms):
        self.ttl_ms = ttl_ms
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CachedRecommendations] = OrderedDict()

    def get(self, key: str) -> list[Recommendation] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return list(entry.results)

    def set(self, key: str, results: list[Recommendation]) -> None:
        now = self._clock()
        self._entries[key] = CachedRecommendations(
            expires_at=now + self.ttl_ms, results=list(results)
        )
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self.sweep(now)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def sweep(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RecommendationState:
    """Process-local state shared by every recommendation request."""

    limiter: RateLimiter
    cache: RecommendationCache
    _locks: weakref.WeakValueDictionary[str, asyncio.Lock] = field(
        default_factory=weakref.WeakValueDictionary
    )

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Clock = monotonic_ms
    ) -> "RecommendationState":
        return cls(
            limiter=RateLimiter(
                window_ms=settings.recommendation_window_ms,
                max_requests=settings.recommendation_max_requests,
                max_entries=settings.recommendation_state_max_entries,
                clock=clock,
            ),
            cache=RecommendationCache(
                ttl_ms=settings.recommendation_cache_ttl_ms,
                max_entries=settings.recommendation_state_max_entries,
                clock=clock,
            ),
        )

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


@dataclass(slots=True)
class RecommendationResult:
    recommendations: list[Recommendation]
    cached: bool

    def to_payload(self) -> dict[str, object]:
        return {
            "recommendations": [
                recommendation.model_dump() for recommendation in self.recommendations
            ],
            "cached": self.cached,
        }


class RecommendationService:
    """Serves recommendations: rate-limit gate first, then cache, then model."""

    def __init__(
        self,
        state: RecommendationState,
        collection: CollectionStore,
        ai_client: OpenAIClient,
    ):
        self._state = state
        self._collection = collection
        self._ai = ai_client

    async def recommend(self, user_id: str) -> RecommendationResult:
        if self._state.limiter.is_rate_limited(user_id):
            logger.info("Recommendation request rate limited for %s", user_id)
            raise RateLimitExceeded("Rate limit exceeded. Try again soon.")

        cached = self._state.cache.get(user_id)
        if cached is not None:
            return RecommendationResult(recommendations=cached, cached=True)

        # Concurrent misses for one identity wait here and reuse the first result.
        async with self._state.lock_for(user_id):
            cached = self._state.cache.get(user_id)
            if cached is not None:
                return RecommendationResult(recommendations=cached, cached=True)

            items = await self._collection.recent(user_id, limit=PROMPT_ITEM_LIMIT)
            recommendations = await self._ai.generate_recommendations(items)
            if recommendations is None:
                return RecommendationResult(recommendations=[], cached=False)

            self._state.cache.set(user_id, recommendations)
            return RecommendationResult(recommendations=recommendations, cached=False)
