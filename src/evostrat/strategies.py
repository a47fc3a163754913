"""Utilities for persisting and replaying evolved strategies."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from .backtest import StrategyResult, run_backtest
from .config import EvolutionConfig
from .data import OhlcvDataset
from .expressions import Rule, node_from_dict
from .hall_of_fame import HallOfFame


@dataclass
class SavedStrategy:
    """Snapshot of a strategy tree with the context it was found in."""

    tree: Rule
    name: str = "strategy"
    generation: int = 0
    fitness: float | None = None
    training_length: int = 0
    metrics: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: StrategyResult, name: str = "strategy", generation: int = 0) -> "SavedStrategy":
        return cls(
            tree=result.tree,
            name=name,
            generation=generation,
            fitness=result.fitness if result.error is None else None,
            training_length=len(result.equity_curve),
            metrics=dict(result.metrics),
        )

    @property
    def formula(self) -> str:
        return self.tree.to_formula()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "generation": self.generation,
            "fitness": self.fitness,
            "training_length": self.training_length,
            "formula": self.formula,
            "canonical": self.tree.key,
            "metrics": dict(self.metrics),
            "tree": self.tree.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "SavedStrategy":
        tree = node_from_dict(payload["tree"])
        if not isinstance(tree, Rule):
            raise ValueError("Saved strategy must hold a Rule tree")
        fitness = payload.get("fitness")
        return cls(
            tree=tree,
            name=str(payload.get("name", "strategy")),
            generation=int(payload.get("generation", 0)),
            fitness=None if fitness is None else float(fitness),
            training_length=int(payload.get("training_length", 0)),
            metrics={k: float(v) for k, v in payload.get("metrics", {}).items()},
        )


def _write_json(path: str | Path, payload: Dict[str, Any]) -> Path:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
    return output


def _read_json(path: str | Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return payload


def save_strategy(path: str | Path, strategy: SavedStrategy) -> Path:
    """Serialize a saved strategy to ``path`` and return the resulting :class:`Path`."""

    return _write_json(path, strategy.to_dict())


def load_strategy(path: str | Path) -> SavedStrategy:
    """Load a saved strategy from ``path``."""

    return SavedStrategy.from_dict(_read_json(path))


def save_hall_of_fame(path: str | Path, hall_of_fame: HallOfFame) -> Path:
    return _write_json(path, hall_of_fame.to_dict())


def load_hall_of_fame(path: str | Path) -> HallOfFame:
    return HallOfFame.from_dict(_read_json(path))


def replay_strategy(
    strategy: SavedStrategy,
    data: OhlcvDataset,
    config: EvolutionConfig | None = None,
) -> StrategyResult:
    """Backtest the saved tree over ``data``."""

    return run_backtest(strategy.tree, data, config)


def forward_result(
    strategy: SavedStrategy,
    data: OhlcvDataset,
    config: EvolutionConfig | None = None,
) -> StrategyResult | None:
    """Backtest only the bars after the original training window."""

    if len(data) <= strategy.training_length:
        return None
    return run_backtest(strategy.tree, data.slice(strategy.training_length), config)
