"""Single-strategy evaluation: compile, simulate and score."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

import numpy as np

from .cache import IndicatorCache
from .catalog import FunctionRegistry, default_registry
from .compiler import compile_tree
from .config import EvolutionConfig
from .data import OhlcvDataset
from .errors import EvaluationError, ValidationError
from .expressions import ExpressionNode, Rule, node_from_dict, to_formula_short
from .metrics import MetricsEngine
from .simulator import Trade, TradeSimulator
from .validator import validate

logger = logging.getLogger(__name__)

WORST_FITNESS = float("-inf")


def compute_fitness(metrics: Mapping[str, float], weights: Mapping[str, float], min_trades: int = 0) -> float:
    """Weighted sum of metric objectives; missing metrics contribute nothing."""

    if metrics.get("num_trades", 0.0) < min_trades:
        return WORST_FITNESS
    total = 0.0
    for name, weight in weights.items():
        value = metrics.get(name)
        if value is not None and math.isfinite(value):
            total += weight * value
    return total


@dataclass
class StrategyResult:
    """Outcome of evaluating one strategy tree on one dataset."""

    tree: Rule
    trades: Tuple[Trade, ...] = ()
    equity_curve: np.ndarray = field(default_factory=lambda: np.zeros(0))
    metrics: Dict[str, float] = field(default_factory=dict)
    initial_capital: float = 10_000.0
    fitness: float = WORST_FITNESS
    error: str | None = None
    in_sample: bool = True
    holdout_metrics: Dict[str, float] | None = None

    @classmethod
    def failed(cls, tree: Rule, error: str, initial_capital: float = 10_000.0) -> "StrategyResult":
        return cls(tree=tree, initial_capital=initial_capital, error=error)

    @property
    def canonical(self) -> str:
        return self.tree.key

    @property
    def formula(self) -> str:
        return self.tree.to_formula()

    @property
    def failed_evaluation(self) -> bool:
        return self.error is not None

    @property
    def final_equity(self) -> float:
        if len(self.equity_curve) == 0:
            return self.initial_capital
        return float(self.equity_curve[-1])

    def describe(self, max_len: int = 80) -> str:
        return f"{self.fitness:.4f} | {to_formula_short(self.tree, max_len)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tree": self.tree.to_dict(),
            "canonical": self.canonical,
            "formula": self.formula,
            "fitness": None if not math.isfinite(self.fitness) else self.fitness,
            "metrics": dict(self.metrics),
            "holdout_metrics": None if self.holdout_metrics is None else dict(self.holdout_metrics),
            "trades": [trade.to_dict() for trade in self.trades],
            "equity_curve": [float(v) for v in self.equity_curve],
            "initial_capital": self.initial_capital,
            "error": self.error,
            "in_sample": self.in_sample,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StrategyResult":
        tree = node_from_dict(payload["tree"])
        if not isinstance(tree, Rule):
            raise ValueError("Stored strategy tree must be a Rule")
        fitness = payload.get("fitness")
        holdout = payload.get("holdout_metrics")
        return cls(
            tree=tree,
            trades=tuple(Trade.from_dict(t) for t in payload.get("trades", [])),
            equity_curve=np.asarray(payload.get("equity_curve", []), dtype=float),
            metrics={k: float(v) for k, v in payload.get("metrics", {}).items()},
            initial_capital=float(payload.get("initial_capital", 10_000.0)),
            fitness=WORST_FITNESS if fitness is None else float(fitness),
            error=payload.get("error"),
            in_sample=bool(payload.get("in_sample", True)),
            holdout_metrics=None if holdout is None else {k: float(v) for k, v in holdout.items()},
        )


class Backtester:
    """Evaluate strategy trees against datasets with shared registry and cache."""

    def __init__(
        self,
        config: EvolutionConfig | None = None,
        registry: FunctionRegistry | None = None,
        cache: IndicatorCache | None = None,
        metrics_engine: MetricsEngine | None = None,
    ) -> None:
        self.config = config or EvolutionConfig()
        self.registry = registry or default_registry()
        self.cache = cache
        self.metrics_engine = metrics_engine or MetricsEngine()
        self.simulator = TradeSimulator(self.config.risk, self.config.initial_capital)

    def signal_for(self, tree: Rule, dataset: OhlcvDataset) -> np.ndarray:
        plan = compile_tree(tree, self.registry)
        return plan.execute(dataset, self.cache).signal

    def evaluate(self, tree: Rule, dataset: OhlcvDataset, *, in_sample: bool = True) -> StrategyResult:
        """Compile, simulate and score ``tree``; raises :class:`EvaluationError` on failure."""

        try:
            signal = self.signal_for(tree, dataset)
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(f"Signal computation failed: {exc}") from exc
        return self.evaluate_signal(tree, signal, dataset, in_sample=in_sample)

    def evaluate_signal(
        self,
        tree: Rule,
        signal: np.ndarray,
        dataset: OhlcvDataset,
        *,
        in_sample: bool = True,
    ) -> StrategyResult:
        try:
            simulation = self.simulator.run(signal, dataset)
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(f"Simulation failed: {exc}") from exc
        metrics = self.metrics_engine.calculate_all(simulation, periods_per_year=self.config.periods_per_year)
        fitness = compute_fitness(metrics, self.config.fitness_weights, self.config.min_trades)
        return StrategyResult(
            tree=tree,
            trades=simulation.trades,
            equity_curve=simulation.equity_curve,
            metrics=metrics,
            initial_capital=simulation.initial_capital,
            fitness=fitness,
            in_sample=in_sample,
        )

    def safe_evaluate(self, tree: Rule, dataset: OhlcvDataset, *, in_sample: bool = True) -> StrategyResult:
        """Like :meth:`evaluate`, but failures become a worst-fitness result."""

        try:
            return self.evaluate(tree, dataset, in_sample=in_sample)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Evaluation failed for %s: %s", to_formula_short(tree), exc)
            result = StrategyResult.failed(tree, f"{type(exc).__name__}: {exc}", self.config.initial_capital)
            result.in_sample = in_sample
            return result


def run_backtest(
    tree: ExpressionNode,
    dataset: OhlcvDataset,
    config: EvolutionConfig | None = None,
    *,
    registry: FunctionRegistry | None = None,
    cache: IndicatorCache | None = None,
) -> StrategyResult:
    """Evaluate a single strategy tree for inspection.

    The tree is type-checked first; depth is not limited here so hand-written
    strategies deeper than the evolution limit can still be inspected.
    """

    config = config or EvolutionConfig()
    config.validate()
    registry = registry or default_registry()
    if not isinstance(tree, Rule):
        raise ValidationError("Strategy root must be a Rule")
    validate(tree, registry, max(config.max_depth, tree.depth()))
    return Backtester(config, registry, cache).evaluate(tree, dataset)
