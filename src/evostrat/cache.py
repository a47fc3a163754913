"""Thread-safe LRU cache for indicator columns shared across a population."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    capacity: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class IndicatorCache:
    """Bounded column cache keyed by ``(dataset identity, subexpression key)``.

    Values are frozen before insertion, so a reader never sees a partially
    written column. Two workers missing on the same key both compute it and
    the later write simply replaces an identical value.
    """

    def __init__(self, capacity: int = 512) -> None:
        if capacity <= 0:
            raise ValueError("cache capacity must be positive")
        self.capacity = capacity
        self._entries: "OrderedDict[CacheKey, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, dataset_id: str, key: str) -> np.ndarray | None:
        with self._lock:
            value = self._entries.get((dataset_id, key))
            if value is None:
                self._misses += 1
                return None
            self._entries.move_to_end((dataset_id, key))
            self._hits += 1
            return value

    def put(self, dataset_id: str, key: str, value: np.ndarray) -> np.ndarray:
        frozen = np.array(value, copy=True)
        frozen.setflags(write=False)
        with self._lock:
            self._entries[(dataset_id, key)] = frozen
            self._entries.move_to_end((dataset_id, key))
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
        return frozen

    def get_or_compute(self, dataset_id: str, key: str, compute: Callable[[], np.ndarray]) -> np.ndarray:
        cached = self.get(dataset_id, key)
        if cached is not None:
            return cached
        return self.put(dataset_id, key, compute())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                capacity=self.capacity,
            )
