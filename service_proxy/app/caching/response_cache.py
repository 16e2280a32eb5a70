"""
In-process response cache with per-entry expiry.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from transit_shared.logging import get_logger


Clock = Callable[[], float]


@dataclass(frozen=True)
class ResponseEnvelope:
    """A relayable upstream response with its absolute expiry."""

    status: int
    content_type: str
    body: bytes
    expires_at: float

    @classmethod
    def create(
        cls,
        status: int,
        content_type: str,
        body: bytes,
        ttl_seconds: float,
        *,
        clock: Clock = time.time,
    ) -> "ResponseEnvelope":
        """Build an envelope that expires ``ttl_seconds`` from now."""
        return cls(
            status=status,
            content_type=content_type,
            body=body,
            expires_at=clock() + ttl_seconds,
        )

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class ResponseCache:
    """
    Keyed store of response envelopes.

    Entries are only visible while ``now < expires_at``. Expired entries are
    dropped lazily by the read that observes them, by ``sweep()``, or when a
    write pushes the store past ``max_entries``. Every operation is
    synchronous, so on the event loop a read or write of one key can never
    interleave with another operation.
    """

    def __init__(self, *, clock: Clock = time.time, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self._clock = clock
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, ResponseEnvelope]" = OrderedDict()
        self.logger = get_logger("proxy.response_cache")

        self.hits = 0
        self.misses = 0
        self.expirations = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[ResponseEnvelope]:
        """Return the live envelope for ``key`` or None, evicting it if expired."""
        envelope = self._entries.get(key)
        if envelope is None:
            self.misses += 1
            return None

        if not envelope.is_fresh(self._clock()):
            del self._entries[key]
            self.expirations += 1
            self.misses += 1
            return None

        self.hits += 1
        return envelope

    def put(self, key: str, envelope: ResponseEnvelope) -> None:
        """Store ``envelope`` under ``key``, replacing any previous entry."""
        self._entries[key] = envelope
        # Insertion order doubles as write order for capacity eviction
        self._entries.move_to_end(key)

        if self.max_entries is not None and len(self._entries) > self.max_entries:
            self._enforce_capacity()

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, envelope in self._entries.items() if not envelope.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        self.expirations += len(expired)
        return len(expired)

    def _enforce_capacity(self) -> None:
        swept = self.sweep()
        evicted = 0
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        self.evictions += evicted

        if evicted:
            self.logger.info(
                "Response cache over capacity",
                max_entries=self.max_entries,
                expired_removed=swept,
                evicted=evicted,
            )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Counters describing cache behaviour since start-up."""
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "evictions": self.evictions,
        }
