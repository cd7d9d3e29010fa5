"""Bounded LRU cache shared by artifact lookups and bundle archives."""

import logging
from collections import OrderedDict
from typing import Any, Callable, Hashable, List, Optional

logger = logging.getLogger(__name__)


class LRUCache:
    """Least-recently-used cache with a fixed capacity and no TTL.

    ``get`` refreshes recency; ``set`` inserts (or refreshes) then evicts
    the least recently accessed entries while over capacity. Entries are
    assumed immutable once published, so there is no expiry.
    """

    def __init__(self, max_size: int = 200,
                 on_evict: Optional[Callable[[Hashable, Any], None]] = None):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.on_evict = on_evict
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Any:
        if key not in self._entries:
            return default
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
            replaced = self._entries[key]
            self._entries[key] = value
            if replaced is not value:
                self._notify_evict(key, replaced)
        else:
            self._entries[key] = value

        while len(self._entries) > self.max_size:
            old_key, old_value = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry: {old_key}")
            self._notify_evict(old_key, old_value)

    def pop(self, key: Hashable, default: Any = None) -> Any:
        return self._entries.pop(key, default)

    def clear(self) -> None:
        """Drop every entry (evict callback runs for each)."""
        entries = list(self._entries.items())
        self._entries.clear()
        for key, value in entries:
            self._notify_evict(key, value)

    def keys(self) -> List[Hashable]:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    def _notify_evict(self, key: Hashable, value: Any) -> None:
        if self.on_evict:
            try:
                self.on_evict(key, value)
            except Exception as e:
                logger.warning(f"Error in cache evict callback for {key}: {e}")

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
