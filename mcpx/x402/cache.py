"""
Requirement Cache for mcpx x402 Payments
Short-lived cache of resolved requirements across the 402 round-trip
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .models import ToolPaymentRequirements
from .monitoring import requirement_cache_hits_total, requirement_cache_misses_total

logger = logging.getLogger(__name__)

DEFAULT_REQUIREMENT_TTL = 60.0
ANONYMOUS_SESSION = 'anonymous'


def make_cache_key(session_id: Optional[str], body: Any) -> str:
    """
    Fingerprint a call by session and JSON-RPC body

    The body is serialized canonically so key order does not matter.
    """
    body_key = json.dumps(body if body is not None else {}, sort_keys=True, separators=(',', ':'), default=str)
    digest = hashlib.sha256(f"{session_id or ANONYMOUS_SESSION}:{body_key}".encode('utf-8')).hexdigest()
    return f"x402:requirement:{digest}"


@dataclass
class _CacheEntry:
    requirement: ToolPaymentRequirements
    timer: Optional[asyncio.TimerHandle] = None


class RequirementCache:
    """
    In-memory requirement cache with timer based expiry

    Features:
    - One entry per key; set() cancels the previous entry's timer
    - Entries expire on their own after the TTL
    - consume() removes an entry once a call's outcome is final

    Must be used from the event loop thread.
    """

    def __init__(self, ttl: float = DEFAULT_REQUIREMENT_TTL):
        self.ttl = ttl
        self._entries: Dict[str, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[ToolPaymentRequirements]:
        """Get cached requirement without removing it"""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            requirement_cache_misses_total.inc()
            return None

        self.hits += 1
        requirement_cache_hits_total.inc()
        return entry.requirement

    def set(self, key: str, requirement: ToolPaymentRequirements, ttl: Optional[float] = None) -> None:
        """Cache requirement, replacing any existing entry and its timer"""
        loop = asyncio.get_running_loop()

        existing = self._entries.pop(key, None)
        if existing is not None:
            existing.timer.cancel()

        entry = _CacheEntry(requirement=requirement)
        entry.timer = loop.call_later(ttl if ttl is not None else self.ttl, self._expire, key, entry)
        self._entries[key] = entry

    def consume(self, key: str) -> Optional[ToolPaymentRequirements]:
        """Remove and return a cached requirement"""
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        entry.timer.cancel()
        return entry.requirement

    def _expire(self, key: str, entry: _CacheEntry) -> None:
        # A newer entry may own this key by now
        if self._entries.get(key) is entry:
            del self._entries[key]
            logger.debug(f"Requirement cache entry expired: {key}")

    def clear(self) -> None:
        for entry in self._entries.values():
            entry.timer.cancel()
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self._calculate_hit_rate(self.hits, self.misses),
        }

    @staticmethod
    def _calculate_hit_rate(hits: int, misses: int) -> float:
        """Calculate cache hit rate percentage"""
        total = hits + misses
        if total == 0:
            return 0.0
        return (hits / total) * 100
