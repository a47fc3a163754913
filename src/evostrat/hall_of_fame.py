"""Bounded archive of the best strategies seen across generations."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterator, List, Set

from .backtest import StrategyResult


class HallOfFame:
    """Strategies kept sorted by fitness, best first, one entry per tree."""

    def __init__(self, capacity: int = 50, min_fitness: float | None = None) -> None:
        if capacity <= 0:
            raise ValueError("Hall of fame capacity must be positive")
        self.capacity = capacity
        self.min_fitness = min_fitness
        self._entries: List[StrategyResult] = []
        self._signatures: Set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[StrategyResult]:
        return iter(list(self._entries))

    def __contains__(self, item: object) -> bool:
        if isinstance(item, StrategyResult):
            return item.canonical in self._signatures
        if isinstance(item, str):
            return item in self._signatures
        return False

    @property
    def best(self) -> StrategyResult | None:
        return self._entries[0] if self._entries else None

    def try_add(self, result: StrategyResult) -> bool:
        """Admit ``result`` unless it is a duplicate, failed, or below the floor."""

        if result.error is not None or not math.isfinite(result.fitness):
            return False
        if self.min_fitness is not None and result.fitness < self.min_fitness:
            return False
        signature = result.canonical
        if signature in self._signatures:
            return False
        if len(self._entries) >= self.capacity and result.fitness <= self._entries[-1].fitness:
            return False

        position = len(self._entries)
        for index, entry in enumerate(self._entries):
            if result.fitness > entry.fitness:
                position = index
                break
        self._entries.insert(position, result)
        self._signatures.add(signature)
        while len(self._entries) > self.capacity:
            evicted = self._entries.pop()
            self._signatures.discard(evicted.canonical)
        return True

    def update(self, results: Iterator[StrategyResult] | List[StrategyResult]) -> int:
        return sum(1 for result in results if self.try_add(result))

    def top(self, n: int) -> List[StrategyResult]:
        return list(self._entries[: max(0, n)])

    def filter_by_threshold(self, min_fitness: float) -> List[StrategyResult]:
        return [entry for entry in self._entries if entry.fitness >= min_fitness]

    def snapshot(self) -> List[StrategyResult]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._signatures.clear()

    def replace_entries(self, entries: List[StrategyResult]) -> None:
        """Swap stored results in place, e.g. after attaching hold-out metrics."""

        if [e.canonical for e in entries] != [e.canonical for e in self._entries]:
            raise ValueError("Replacement entries must match the current strategies in order")
        self._entries = list(entries)

    # Serialization ---------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "min_fitness": self.min_fitness,
            "entries": [entry.to_dict() for entry in self._entries],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "HallOfFame":
        hof = cls(
            capacity=int(payload.get("capacity", 50)),
            min_fitness=payload.get("min_fitness"),
        )
        for record in payload.get("entries", []):
            hof.try_add(StrategyResult.from_dict(record))
        return hof
