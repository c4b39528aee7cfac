"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class CacheSource(Enum):
    """How a read was satisfied."""
    FRESH = "fresh"       # Within TTL, no network call
    STALE = "stale"       # Past TTL, live fetch failed, served as fallback
    UPSTREAM = "upstream" # Fetched live and stored


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached upstream response with freshness metadata.

    ``updated_at`` is epoch seconds at the time of the upsert.
    """
    key: str
    body: bytes
    status: int
    updated_at: int

    def age_seconds(self, now: float) -> float:
        """Seconds since the entry was written."""
        return now - self.updated_at

    def is_fresh(self, ttl_seconds: int, now: float) -> bool:
        """Fresh means strictly younger than the TTL; a TTL of 0 is never fresh."""
        return self.age_seconds(now) < ttl_seconds


@dataclass
class CacheStats:
    """Counters exposed on /cache/stats."""
    hits_fresh: int = 0
    hits_stale: int = 0
    misses: int = 0
    upstream_failures: int = 0
    write_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        total_hits = self.hits_fresh + self.hits_stale
        total_requests = total_hits + self.misses
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0
        return {
            "hits_fresh": self.hits_fresh,
            "hits_stale": self.hits_stale,
            "misses": self.misses,
            "upstream_failures": self.upstream_failures,
            "write_failures": self.write_failures,
            "hit_rate_percent": round(hit_rate, 1),
        }
