"""
Caller-local store for in-progress attempts.

An entry keeps the last fetched attempt payload, the answers picked so far and
the questions flagged for review, so a caller can resume after a reload
without refetching. Entries are cleared only after a successful submit.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Set

import redis

from quiz_engine.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CachedAttempt:
    attempt_id: str
    payload: dict
    answers: Dict[int, Optional[str]] = field(default_factory=dict)
    flagged: Set[int] = field(default_factory=set)

    def to_json(self) -> str:
        return json.dumps({
            "attempt_id": self.attempt_id,
            "payload": self.payload,
            "answers": {str(k): v for k, v in self.answers.items()},
            "flagged": sorted(self.flagged),
        })

    @classmethod
    def from_json(cls, raw: str) -> "CachedAttempt":
        data = json.loads(raw)
        return cls(
            attempt_id=data["attempt_id"],
            payload=data["payload"],
            answers={int(k): v for k, v in data.get("answers", {}).items()},
            flagged=set(data.get("flagged", [])),
        )


class AttemptCache(Protocol):
    def get(self, attempt_id: str) -> Optional[CachedAttempt]: ...
    def put(self, entry: CachedAttempt) -> None: ...
    def clear(self, attempt_id: str) -> None: ...


class InMemoryAttemptCache:
    """Process-local cache; entries round-trip through JSON like the Redis one."""

    def __init__(self):
        self._entries: Dict[str, str] = {}

    def get(self, attempt_id: str) -> Optional[CachedAttempt]:
        raw = self._entries.get(attempt_id)
        return CachedAttempt.from_json(raw) if raw is not None else None

    def put(self, entry: CachedAttempt) -> None:
        self._entries[entry.attempt_id] = entry.to_json()

    def clear(self, attempt_id: str) -> None:
        self._entries.pop(attempt_id, None)


class RedisAttemptCache:
    def __init__(self, client: Optional[redis.Redis] = None, ttl: Optional[int] = None, prefix: str = "attempt-cache"):
        self.redis = client if client is not None else redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        self.ttl = ttl or settings.ATTEMPT_CACHE_TTL
        self.prefix = prefix

    def _key(self, attempt_id: str) -> str:
        return f"{self.prefix}:{attempt_id}"

    def get(self, attempt_id: str) -> Optional[CachedAttempt]:
        raw = self.redis.get(self._key(attempt_id))
        if raw is None:
            return None
        try:
            return CachedAttempt.from_json(raw)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            # a corrupt entry is dropped and refetched from the API
            logger.warning(f"Discarding unreadable cache entry for attempt {attempt_id}: {e}")
            self.redis.delete(self._key(attempt_id))
            return None

    def put(self, entry: CachedAttempt) -> None:
        self.redis.set(self._key(entry.attempt_id), entry.to_json(), ex=self.ttl)

    def clear(self, attempt_id: str) -> None:
        self.redis.delete(self._key(attempt_id))
