# backend/bbox_cache.py
"""
バウンディングボックス単位の TTL キャッシュ

Overpass の応答を (south, west, north, east) をキーに保持する。
期限切れのエントリは get() 時に捨てる。
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from constants import OSM_CACHE_TTL_SEC

logger = logging.getLogger(__name__)

BBoxKey = Tuple[float, float, float, float]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class BoundingBoxCache:
    def __init__(
        self,
        ttl_sec: float = OSM_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: Dict[BBoxKey, _Entry] = {}
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(south: float, west: float, north: float, east: float) -> BBoxKey:
        return (float(south), float(west), float(north), float(east))

    def get(self, key: BBoxKey) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            # 期限切れ
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(self, key: BBoxKey, value: Any) -> None:
        now = self._clock()
        self._purge_expired(now)
        self._entries[key] = _Entry(value=value, expires_at=now + self.ttl_sec)

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, entry in self._entries.items() if now >= entry.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))

    def clear(self) -> None:
        self._entries = {}
        self._hits = 0
        self._misses = 0
        logger.info("Railway tracks cache cleared")

    def keys(self) -> List[str]:
        """期限内のキーを "s,w,n,e" 形式で返す"""
        now = self._clock()
        return [
            ",".join(str(v) for v in key)
            for key, entry in self._entries.items()
            if now < entry.expires_at
        ]

    def stats(self) -> Dict[str, Any]:
        keys = self.keys()
        return {
            "keys": keys,
            "stats": {
                "hits": self._hits,
                "misses": self._misses,
                "keys": len(keys),
            },
        }
