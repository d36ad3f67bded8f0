"""Explicit memo object for layout results."""

import logging

from stemma.config import DisplayPolicy, LayoutConfig, SelectionPolicy
from stemma.layout_types import LayoutResult

logger = logging.getLogger(__name__)

CacheEntryKey = tuple[str, str, SelectionPolicy, LayoutConfig, DisplayPolicy]


class LayoutCache:
    """
    Layout results keyed by (cache key, focus, policy, config, display).

    The cache key identifies the data set (for example a tree ID plus a
    revision counter); callers pass the cache by reference and invalidate it
    when their data changes.
    """

    def __init__(self):
        self._entries: dict[CacheEntryKey, LayoutResult] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(
        cache_key: str,
        focus_person_id: str,
        policy: SelectionPolicy,
        config: LayoutConfig,
        display_policy: DisplayPolicy,
    ) -> CacheEntryKey:
        return (cache_key, focus_person_id, policy, config, display_policy)

    def get(self, key: CacheEntryKey) -> LayoutResult | None:
        result = self._entries.get(key)
        if result is None:
            self.misses += 1
        else:
            self.hits += 1
        return result

    def put(self, key: CacheEntryKey, result: LayoutResult) -> None:
        self._entries[key] = result

    def invalidate(self) -> None:
        logger.debug("Clearing %d cached layouts", len(self._entries))
        self._entries.clear()

    def invalidate_for_key(self, cache_key: str) -> int:
        """Drop every entry of one data set; returns how many were removed."""
        stale = [k for k in self._entries if k[0] == cache_key]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheEntryKey) -> bool:
        return key in self._entries
