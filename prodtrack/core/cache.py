"""
Shift Tonnage Cache

In-memory store for per-shift tonnage keyed by (production day, shift).
Entries expire a fixed TTL after they are written (16 hours by default);
an expired entry is deleted on lookup and never returned.

Each process owns its own cache. Access is serialized with a lock, and
concurrent writers to the same key resolve as last-write-wins.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Dict, Optional, Tuple

from .models import CacheEntry, Shift

logger = logging.getLogger(__name__)

TONNAGE_CACHE_TTL = timedelta(hours=16)

CacheKey = Tuple[date, Shift]


class TonnageCache:
    """Thread-safe TTL cache for shift tonnage."""

    def __init__(self, ttl: Optional[timedelta] = None):
        """
        Initialize the cache.

        Args:
            ttl: Entry lifetime; defaults to TONNAGE_CACHE_TTL (16 hours)
        """
        self.ttl = ttl if ttl is not None else TONNAGE_CACHE_TTL
        if self.ttl <= timedelta(0):
            raise ValueError(f"Cache TTL must be positive, got {self.ttl}")

        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "writes": 0,
            "invalidations": 0,
        }

    def get(self, production_day: date, shift: Shift, now: datetime) -> Optional[float]:
        """
        Look up cached tonnage.

        Returns:
            Cached tonnes, or None on miss. Expired entries are removed.
        """
        key = (production_day, shift)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return None

            if not entry.is_valid(now):
                del self._entries[key]
                self.stats["expired"] += 1
                self.stats["misses"] += 1
                logger.debug(f"Cache entry expired: {production_day} {shift.value}")
                return None

            self.stats["hits"] += 1
            return entry.value

    def put(self, production_day: date, shift: Shift, value: float, now: datetime) -> CacheEntry:
        """Store tonnage for a shift, expiring at now + ttl"""
        entry = CacheEntry(value=value, created_at=now, expires_at=now + self.ttl)
        with self._lock:
            self._entries[(production_day, shift)] = entry
            self.stats["writes"] += 1
        logger.debug(
            f"Cached {shift.value} tonnage for {production_day}: {value:.6f} t "
            f"(expires {entry.expires_at.isoformat()})"
        )
        return entry

    def clear(self, production_day: date, shift: Shift) -> bool:
        """
        Remove one entry, e.g. after new production was reported for the shift.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._entries.pop((production_day, shift), None) is not None
            if removed:
                self.stats["invalidations"] += 1
        return removed

    def clear_day(self, production_day: date) -> int:
        """Remove all entries of a production day. Returns number removed."""
        with self._lock:
            keys = [key for key in self._entries if key[0] == production_day]
            for key in keys:
                del self._entries[key]
            self.stats["invalidations"] += len(keys)
        return len(keys)

    def clear_all(self):
        """Remove all entries"""
        with self._lock:
            self._entries.clear()

    def peek(self, production_day: date, shift: Shift) -> Optional[CacheEntry]:
        """Return the raw entry (valid or not) without touching stats"""
        with self._lock:
            return self._entries.get((production_day, shift))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
