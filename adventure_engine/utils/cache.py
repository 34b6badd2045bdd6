"""
Memoisation cache for choice evaluations.

Entries are keyed by a hash of everything an evaluation depends on and are
dropped wholesale when the game state version changes.
"""

import hashlib
import json
from typing import Any, Dict, Optional

from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)


class EvaluationCache:
    """
    Simple in-memory cache with a bounded size.

    Insertion order doubles as age: when the cache is full the oldest
    quarter of entries is dropped.
    """

    def __init__(self, max_size: int = 1000):
        """
        Initialize the evaluation cache.

        Args:
            max_size: Maximum number of items to cache
        """
        self.cache: Dict[str, Any] = {}
        self.max_size = max_size
        self.hits = 0
        self.misses = 0

    def make_key(self, *args, **kwargs) -> str:
        """Generate a cache key from arguments."""
        key_data = {"args": args, "kwargs": kwargs}

        # Convert to JSON string for consistent hashing
        key_str = json.dumps(key_data, sort_keys=True, default=str)

        return hashlib.sha256(key_str.encode()).hexdigest()[:16]

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve an item by key.

        Returns:
            Cached item or None if not found
        """
        if key in self.cache:
            self.hits += 1
            logger.debug(f"Evaluation cache hit for key: {key[:8]}...")
            return self.cache[key]

        self.misses += 1
        return None

    def set(self, key: str, value: Any) -> None:
        """Store an item, trimming the oldest entries when full."""
        if key not in self.cache and len(self.cache) >= self.max_size:
            oldest_keys = list(self.cache.keys())[: max(1, len(self.cache) // 4)]
            for old_key in oldest_keys:
                del self.cache[old_key]
            logger.debug(f"Evaluation cache trimmed {len(oldest_keys)} entries")

        self.cache[key] = value

    def clear(self) -> None:
        """Clear all cached items."""
        self.cache.clear()
        self.hits = 0
        self.misses = 0
        logger.debug("Evaluation cache cleared")

    def __len__(self) -> int:
        return len(self.cache)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "size": len(self.cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": hit_rate,
            "total_requests": total_requests,
        }
