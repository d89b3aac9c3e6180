"""
Interaction Summary Cache.

Caches the decayed per-pair interaction scores for one (user, context) so
repeated ranking calls don't re-read the whole interaction log. An entry
is used only while it is younger than the configured max staleness
(default 24 hours) and covers every candidate in the current pool;
otherwise the interaction scorer recomputes and overwrites it.

Supports two backends:
1. InMemory: For development/testing (default)
2. Redis: For production (when REDIS_URL is configured)

Cache failures never fail a ranking call; they are logged and treated as
a miss.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, Iterable, Optional, Tuple

import redis

from core.logging import get_logger
from core.utils import as_utc, parse_timestamp
from matching.models import MatchContext

logger = get_logger(__name__)


@dataclass
class InteractionSummary:
    """Decayed interaction scores from one user toward a set of targets."""
    user_id: str
    context: MatchContext
    computed_at: datetime
    scores: Dict[str, float] = field(default_factory=dict)
    targets: frozenset = field(default_factory=frozenset)

    def covers(self, target_ids: Iterable[str]) -> bool:
        return all(t in self.targets for t in target_ids)

    def is_fresh(self, now: datetime, max_age_seconds: int) -> bool:
        return as_utc(now) - as_utc(self.computed_at) <= timedelta(seconds=max_age_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "context": self.context.value,
            "computed_at": as_utc(self.computed_at).isoformat(),
            "scores": self.scores,
            "targets": sorted(self.targets),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionSummary":
        return cls(
            user_id=data["user_id"],
            context=MatchContext(data["context"]),
            computed_at=parse_timestamp(data["computed_at"]),
            scores={k: float(v) for k, v in data.get("scores", {}).items()},
            targets=frozenset(data.get("targets", [])),
        )


# =============================================================================
# In-Memory Backend (Default)
# =============================================================================

class InMemoryInteractionCacheBackend:
    """
    Dictionary-backed cache.

    Note: entries are lost on restart.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str], InteractionSummary] = {}
        self._lock = Lock()

    def get(self, user_id: str, context: MatchContext) -> Optional[InteractionSummary]:
        with self._lock:
            return self._entries.get((user_id, context.value))

    def put(self, summary: InteractionSummary, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[(summary.user_id, summary.context.value)] = summary

    def delete(self, user_id: str, context: MatchContext) -> None:
        with self._lock:
            self._entries.pop((user_id, context.value), None)

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "in_memory", "entries": len(self._entries)}


# =============================================================================
# Redis Backend (Production)
# =============================================================================

class RedisInteractionCacheBackend:
    """Redis-based cache; entries expire with the staleness window."""

    KEY_PREFIX = "interaction_summary"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self._redis = client or redis.from_url(redis_url, decode_responses=True)
        self._redis.ping()
        logger.info("Interaction cache connected to Redis", host=redis_url.split("@")[-1])

    def _key(self, user_id: str, context: MatchContext) -> str:
        return f"{self.KEY_PREFIX}:{context.value}:{user_id}"

    def get(self, user_id: str, context: MatchContext) -> Optional[InteractionSummary]:
        data = self._redis.get(self._key(user_id, context))
        if not data:
            return None
        return InteractionSummary.from_dict(json.loads(data))

    def put(self, summary: InteractionSummary, ttl_seconds: int) -> None:
        self._redis.setex(
            self._key(summary.user_id, summary.context),
            ttl_seconds,
            json.dumps(summary.to_dict()),
        )

    def delete(self, user_id: str, context: MatchContext) -> None:
        self._redis.delete(self._key(user_id, context))

    def get_stats(self) -> Dict[str, Any]:
        cursor, count = 0, 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self.KEY_PREFIX}:*", count=1000)
            count += len(keys)
            if cursor == 0:
                break
        return {"backend": "redis", "entries": count}


# =============================================================================
# Cache Service (Main Interface)
# =============================================================================

class InteractionSummaryCache:
    """
    High-level interaction summary cache.

    Backend selection:
    - "auto": Redis when ``redis_url`` is given and reachable, else in-memory
    - "redis": Redis, connection errors propagate
    - "memory": in-memory
    """

    def __init__(
        self,
        backend: str = "auto",
        max_age_seconds: int = 86400,
        redis_url: Optional[str] = None,
    ):
        self.max_age_seconds = max_age_seconds
        if backend == "auto":
            if redis_url:
                try:
                    self._backend = RedisInteractionCacheBackend(redis_url)
                except redis.RedisError as e:
                    logger.warning("Redis unavailable, using in-memory interaction cache", error=str(e))
                    self._backend = InMemoryInteractionCacheBackend()
            else:
                self._backend = InMemoryInteractionCacheBackend()
        elif backend == "redis":
            if not redis_url:
                raise ValueError("redis backend requires redis_url")
            self._backend = RedisInteractionCacheBackend(redis_url)
        else:
            self._backend = InMemoryInteractionCacheBackend()

    @classmethod
    def from_settings(cls, settings) -> "InteractionSummaryCache":
        return cls(
            backend="auto" if settings.redis_enabled else "memory",
            max_age_seconds=settings.interaction_cache_ttl_seconds,
            redis_url=settings.redis_url if settings.redis_enabled else None,
        )

    def lookup(
        self,
        user_id: str,
        context: MatchContext,
        target_ids: Iterable[str],
        now: datetime,
    ) -> Optional[InteractionSummary]:
        """Return a usable entry, or None when missing, stale or incomplete."""
        try:
            summary = self._backend.get(user_id, context)
        except redis.RedisError as e:
            logger.warning("Interaction cache read failed", user_id=user_id, error=str(e))
            return None
        if summary is None:
            return None
        if not summary.is_fresh(now, self.max_age_seconds):
            logger.debug("Interaction summary stale", user_id=user_id, context=context.value)
            return None
        if not summary.covers(target_ids):
            return None
        return summary

    def store(self, summary: InteractionSummary) -> None:
        try:
            self._backend.put(summary, self.max_age_seconds)
        except redis.RedisError as e:
            logger.warning("Interaction cache write failed", user_id=summary.user_id, error=str(e))

    def invalidate(self, user_id: str, context: Optional[MatchContext] = None) -> None:
        contexts = [context] if context else list(MatchContext)
        for ctx in contexts:
            try:
                self._backend.delete(user_id, ctx)
            except redis.RedisError as e:
                logger.warning("Interaction cache delete failed", user_id=user_id, error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        stats = self._backend.get_stats()
        stats["max_age_seconds"] = self.max_age_seconds
        return stats
