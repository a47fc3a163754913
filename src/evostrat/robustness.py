"""Post-hoc stress tests for evolved strategies.

Every test takes a finished strategy and asks whether its result survives a
perturbation: a reordering of its trades, nudged parameters, or a delayed
execution. None of them modify the strategy they are given.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence, Tuple

import numpy as np

from .backtest import Backtester, StrategyResult
from .cache import IndicatorCache
from .catalog import FunctionRegistry
from .config import EvolutionConfig
from .data import OhlcvDataset
from .expressions import Const, NodePath, Rule, SemanticType, iter_nodes, replace_in_rule
from .simulator import Trade

logger = logging.getLogger(__name__)

DEFAULT_METRIC = "total_return_pct"


@dataclass
class TestResult:
    __test__ = False

    test_name: str
    passed: bool
    score: float
    details: Dict[str, Any] = field(default_factory=dict)
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_name": self.test_name,
            "passed": self.passed,
            "score": self.score,
            "details": dict(self.details),
            "interpretation": self.interpretation,
        }


@dataclass
class RobustnessReport:
    strategy: str
    timestamp: str
    test_results: List[TestResult]
    overall_score: float
    passed_all: bool
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "timestamp": self.timestamp,
            "test_results": [result.to_dict() for result in self.test_results],
            "overall_score": self.overall_score,
            "passed_all": self.passed_all,
            "summary": self.summary,
        }


class RobustnessTest(Protocol):
    name: str

    def run(self, strategy: Rule, dataset: OhlcvDataset, backtester: Backtester) -> TestResult: ...


def degradation_pct(original: float, perturbed: float) -> float:
    """Relative drop from ``original`` to ``perturbed`` in percent; zero when undefined."""

    if original == 0:
        return 0.0
    return (original - perturbed) / abs(original) * 100.0


def _degradation_score(drop_pct: float, max_degradation: float) -> float:
    return float(min(1.0, max(0.0, (max_degradation - drop_pct) / max_degradation)))


def _metric(result: StrategyResult, name: str) -> float:
    return float(result.metrics.get(name, 0.0))


# Monte Carlo ---------------------------------------------------------------------


def trade_returns(trades: Sequence[Trade], initial_capital: float) -> np.ndarray:
    """Each trade's profit as a fraction of the balance it was opened with."""

    balance = initial_capital
    fractions: List[float] = []
    for trade in trades:
        fractions.append(trade.profit / balance if balance > 0 else 0.0)
        balance += trade.profit
    return np.asarray(fractions, dtype=float)


@dataclass
class MonteCarloTest:
    """Replay realized trade returns in random order, compounding from the start capital.

    Each trade contributes its profit as a fraction of the balance it was opened
    with. Returns are drawn with replacement by default; a plain reshuffle keeps
    the final equity fixed and only moves the drawdown. A path counts as
    surviving when it ends above the starting capital and its worst drawdown
    stays within ``max_drawdown_pct``.
    """

    permutations: int = 1000
    seed: int = 42
    max_drawdown_pct: float = 50.0
    min_pass_rate: float = 0.9
    resample: bool = True
    name: str = "Monte Carlo Trade Permutation"

    def run(self, strategy: Rule, dataset: OhlcvDataset, backtester: Backtester) -> TestResult:
        result = backtester.evaluate(strategy, dataset)
        capital = result.initial_capital
        returns = trade_returns(result.trades, capital)
        if len(returns) == 0:
            return TestResult(
                test_name=self.name,
                passed=False,
                score=0.0,
                details={"num_trades": 0},
                interpretation="Strategy produced no trades to permute",
            )

        rng = np.random.default_rng(self.seed)
        finals = np.empty(self.permutations)
        drawdowns = np.empty(self.permutations)
        for i in range(self.permutations):
            if self.resample:
                sample = rng.choice(returns, size=len(returns), replace=True)
            else:
                sample = rng.permutation(returns)
            path = capital * np.cumprod(1.0 + sample)
            path = np.concatenate([[capital], path])
            peaks = np.maximum.accumulate(path)
            with np.errstate(divide="ignore", invalid="ignore"):
                dd = np.where(peaks > 0, (peaks - path) / peaks, 0.0)
            finals[i] = path[-1]
            drawdowns[i] = float(dd.max()) * 100.0

        survived = (finals > capital) & (drawdowns <= self.max_drawdown_pct)
        score = float(survived.mean())
        passed = score >= self.min_pass_rate
        if passed:
            interpretation = (
                f"{score:.0%} of {self.permutations} trade orderings stay profitable "
                f"with drawdown under {self.max_drawdown_pct:.1f}%"
            )
        else:
            interpretation = (
                f"WARNING: only {score:.0%} of trade orderings stay profitable "
                f"with drawdown under {self.max_drawdown_pct:.1f}%"
            )
        return TestResult(
            test_name=self.name,
            passed=passed,
            score=score,
            details={
                "num_trades": int(len(returns)),
                "permutations": self.permutations,
                "resampled": self.resample,
                "final_equity_mean": float(finals.mean()),
                "final_equity_p5": float(np.percentile(finals, 5)),
                "final_equity_p95": float(np.percentile(finals, 95)),
                "max_drawdown_pct_mean": float(drawdowns.mean()),
                "max_drawdown_pct_p95": float(np.percentile(drawdowns, 95)),
                "original_max_drawdown_pct": result.metrics.get("max_drawdown_pct"),
            },
            interpretation=interpretation,
        )


# Parameter stability -------------------------------------------------------------


def numeric_literals(tree: Rule) -> List[Tuple[NodePath, Const]]:
    """Integer and float literals inside the condition, in pre-order."""

    found: List[Tuple[NodePath, Const]] = []
    for path, node in iter_nodes(tree):
        if path[:1] != (0,) or not isinstance(node, Const):
            continue
        if node.literal_type() in (SemanticType.INTEGER, SemanticType.FLOAT):
            found.append((path, node))
    return found


def perturb_literal(node: Const, multiplier: float) -> Const:
    if node.literal_type() is SemanticType.INTEGER:
        return Const(max(1, int(round(node.value * multiplier))))
    return Const(round(float(node.value) * multiplier, 4))


@dataclass
class ParameterStabilityTest:
    """Scale each numeric literal and measure the average loss of ``metric_name``."""

    metric_name: str = DEFAULT_METRIC
    variations: Sequence[float] = (0.7, 0.8, 0.9, 1.1, 1.2, 1.3)
    max_degradation: float = 30.0
    name: str = "Parameter Stability"

    def run(self, strategy: Rule, dataset: OhlcvDataset, backtester: Backtester) -> TestResult:
        literals = numeric_literals(strategy)
        if not literals:
            return TestResult(
                test_name=self.name,
                passed=True,
                score=1.0,
                details={"note": "No numeric parameters found in strategy"},
                interpretation="Strategy has no parameters to perturb",
            )

        original = _metric(backtester.evaluate(strategy, dataset), self.metric_name)
        trials: List[Dict[str, Any]] = []
        for path, node in literals:
            for multiplier in self.variations:
                variant = replace_in_rule(strategy, path, perturb_literal(node, multiplier))
                outcome = backtester.safe_evaluate(variant, dataset)
                value = _metric(outcome, self.metric_name)
                trials.append(
                    {
                        "path": list(path),
                        "multiplier": multiplier,
                        "value": value,
                        "drop_pct": degradation_pct(original, value),
                        "error": outcome.error,
                    }
                )

        drops = [trial["drop_pct"] for trial in trials]
        average_drop = float(np.mean(drops))
        worst = max(trials, key=lambda trial: trial["drop_pct"])
        passed = average_drop <= self.max_degradation
        score = _degradation_score(average_drop, self.max_degradation)
        if passed:
            interpretation = (
                f"Strategy is stable under parameter variations. Average drop: "
                f"{average_drop:.1f}% (threshold: {self.max_degradation:.1f}%)"
            )
        else:
            interpretation = (
                f"WARNING: Strategy is sensitive to parameter changes. Average drop: "
                f"{average_drop:.1f}%, worst at path {worst['path']} x{worst['multiplier']} "
                f"(threshold: {self.max_degradation:.1f}%)"
            )
        return TestResult(
            test_name=self.name,
            passed=passed,
            score=score,
            details={
                "metric_name": self.metric_name,
                "original_metric": original,
                "average_drop_pct": average_drop,
                "max_drop_pct": worst["drop_pct"],
                "parameters_tested": len(literals),
                "variations_per_param": len(self.variations),
                "results": trials,
            },
            interpretation=interpretation,
        )


# Friction ------------------------------------------------------------------------


def delay_signal(signal: np.ndarray, bars: int) -> np.ndarray:
    """Shift ``signal`` later by ``bars``, filling the head with flat."""

    delayed = np.zeros_like(signal, dtype=float)
    if bars <= 0:
        delayed[:] = signal
    elif bars < len(signal):
        delayed[bars:] = signal[:-bars]
    return delayed


@dataclass
class FrictionTest:
    """Re-simulate with every signal executed ``delay_bars`` later."""

    metric_name: str = DEFAULT_METRIC
    delay_bars: int = 1
    max_degradation: float = 20.0
    name: str = "Friction (Delayed Execution)"

    def run(self, strategy: Rule, dataset: OhlcvDataset, backtester: Backtester) -> TestResult:
        signal = backtester.signal_for(strategy, dataset)
        original = _metric(backtester.evaluate_signal(strategy, signal, dataset), self.metric_name)
        delayed_result = backtester.evaluate_signal(
            strategy, delay_signal(signal, self.delay_bars), dataset
        )
        delayed = _metric(delayed_result, self.metric_name)
        drop = degradation_pct(original, delayed)
        passed = drop <= self.max_degradation
        score = _degradation_score(drop, self.max_degradation)
        prefix = "Strategy survives" if passed else "WARNING: Strategy is sensitive to"
        interpretation = (
            f"{prefix} a {self.delay_bars}-bar execution delay. Performance drop: "
            f"{drop:.1f}% (threshold: {self.max_degradation:.1f}%)"
        )
        return TestResult(
            test_name=self.name,
            passed=passed,
            score=score,
            details={
                "metric_name": self.metric_name,
                "original_metric": original,
                "delayed_metric": delayed,
                "drop_pct": drop,
                "delay_bars": self.delay_bars,
            },
            interpretation=interpretation,
        )


def default_tests() -> List[RobustnessTest]:
    return [MonteCarloTest(), ParameterStabilityTest(), FrictionTest()]


def run_robustness_report(
    strategy: Rule | StrategyResult,
    dataset: OhlcvDataset,
    config: EvolutionConfig | None = None,
    *,
    tests: Sequence[RobustnessTest] | None = None,
    registry: FunctionRegistry | None = None,
) -> RobustnessReport:
    """Run every test against ``strategy``; a failing test does not stop the others."""

    tree = strategy.tree if isinstance(strategy, StrategyResult) else strategy
    backtester = Backtester(config, registry, IndicatorCache())
    tests = list(tests) if tests is not None else default_tests()

    results: List[TestResult] = []
    for test in tests:
        try:
            results.append(test.run(tree, dataset, backtester))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Robustness test %s failed: %s", test.name, exc)
            results.append(
                TestResult(
                    test_name=test.name,
                    passed=False,
                    score=0.0,
                    details={"error": f"{type(exc).__name__}: {exc}"},
                    interpretation="Test could not be completed",
                )
            )

    overall = float(np.mean([r.score for r in results])) if results else 0.0
    passed_all = bool(results) and all(r.passed for r in results)
    passed_count = sum(1 for r in results if r.passed)
    if passed_all:
        summary = f"Strategy passed all {len(results)} robustness tests with overall score {overall:.1%}"
    else:
        summary = (
            f"Strategy passed {passed_count} of {len(results)} robustness tests "
            f"with overall score {overall:.1%}"
        )
    return RobustnessReport(
        strategy=tree.to_formula(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        test_results=results,
        overall_score=overall,
        passed_all=passed_all,
        summary=summary,
    )
