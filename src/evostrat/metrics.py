"""Dependency-ordered performance metrics.

Each :class:`Metric` names the values it needs, either raw fields of a
simulation (``trades``, ``equity_curve``, ``initial_capital``,
``periods_per_year``) or other metrics. :class:`MetricsEngine` evaluates
whatever is ready until nothing else can be computed. A metric that raises,
returns ``None`` or never has its inputs satisfied is left out of the result.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

import numpy as np

from .errors import MetricError
from .simulator import Trade

logger = logging.getLogger(__name__)

RAW_FIELDS: Tuple[str, ...] = ("trades", "equity_curve", "initial_capital", "periods_per_year")


@dataclass(frozen=True)
class Metric:
    name: str
    depends_on: Tuple[str, ...]
    compute: Callable[..., Any]
    description: str = ""


# Trade statistics ----------------------------------------------------------------


def _profits(trades: Sequence[Trade]) -> np.ndarray:
    return np.array([trade.profit for trade in trades], dtype=float)


def num_trades(trades: Sequence[Trade]) -> int:
    return len(trades)


def win_rate(trades: Sequence[Trade]) -> float | None:
    if not trades:
        return None
    return sum(1 for t in trades if t.is_win) / len(trades) * 100.0


def avg_win(trades: Sequence[Trade]) -> float | None:
    profits = _profits(trades)
    wins = profits[profits > 0]
    return float(wins.mean()) if len(wins) else None


def avg_loss(trades: Sequence[Trade]) -> float | None:
    profits = _profits(trades)
    losses = profits[profits < 0]
    return float(losses.mean()) if len(losses) else None


def profit_factor(trades: Sequence[Trade]) -> float | None:
    profits = _profits(trades)
    gross_loss = -profits[profits < 0].sum()
    if gross_loss == 0:
        return None
    return float(profits[profits > 0].sum() / gross_loss)


def expectancy(trades: Sequence[Trade]) -> float | None:
    if not trades:
        return None
    return float(_profits(trades).mean())


def largest_win(trades: Sequence[Trade]) -> float | None:
    return float(_profits(trades).max()) if trades else None


def largest_loss(trades: Sequence[Trade]) -> float | None:
    return float(_profits(trades).min()) if trades else None


def avg_bars_held(trades: Sequence[Trade]) -> float | None:
    if not trades:
        return None
    return sum(t.bars_held for t in trades) / len(trades)


def exposure_pct(trades: Sequence[Trade], equity_curve: np.ndarray) -> float:
    if len(equity_curve) == 0:
        return 0.0
    in_market = sum(t.bars_held for t in trades)
    return min(100.0, in_market / len(equity_curve) * 100.0)


# Equity statistics ---------------------------------------------------------------


def returns(equity_curve: np.ndarray) -> np.ndarray:
    equity = np.asarray(equity_curve, dtype=float)
    if len(equity) < 2:
        return np.zeros(0)
    previous = equity[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        changes = np.where(previous != 0, np.diff(equity) / previous, 0.0)
    return np.nan_to_num(changes, nan=0.0, posinf=0.0, neginf=0.0)


def final_balance(equity_curve: np.ndarray) -> float:
    return float(equity_curve[-1])


def net_profit(final_balance: float, initial_capital: float) -> float:
    return final_balance - initial_capital


def total_return_pct(final_balance: float, initial_capital: float) -> float:
    return (final_balance / initial_capital - 1.0) * 100.0


def max_drawdown(equity_curve: np.ndarray) -> float:
    equity = np.asarray(equity_curve, dtype=float)
    peaks = np.maximum.accumulate(equity)
    return float(np.max(peaks - equity))


def max_drawdown_pct(equity_curve: np.ndarray) -> float:
    equity = np.asarray(equity_curve, dtype=float)
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(np.max(drawdowns) * 100.0)


def volatility(returns: np.ndarray, periods_per_year: int) -> float | None:
    if len(returns) < 2:
        return None
    return float(np.std(returns, ddof=1) * math.sqrt(periods_per_year))


def sharpe_ratio(returns: np.ndarray, periods_per_year: int) -> float | None:
    if len(returns) < 2:
        return None
    std = float(np.std(returns, ddof=1))
    if std == 0:
        return None
    return float(np.mean(returns) / std * math.sqrt(periods_per_year))


def sortino_ratio(returns: np.ndarray, periods_per_year: int) -> float | None:
    if len(returns) < 2:
        return None
    downside = np.minimum(returns, 0.0)
    deviation = float(np.sqrt(np.mean(downside**2)))
    if deviation == 0:
        return None
    return float(np.mean(returns) / deviation * math.sqrt(periods_per_year))


def calmar_ratio(total_return_pct: float, max_drawdown_pct: float) -> float | None:
    if max_drawdown_pct == 0:
        return None
    return total_return_pct / max_drawdown_pct


def recovery_factor(net_profit: float, max_drawdown: float) -> float | None:
    if max_drawdown == 0:
        return None
    return net_profit / max_drawdown


def default_metrics() -> List[Metric]:
    return [
        Metric("num_trades", ("trades",), num_trades),
        Metric("win_rate", ("trades",), win_rate, "Share of profitable trades, percent"),
        Metric("avg_win", ("trades",), avg_win),
        Metric("avg_loss", ("trades",), avg_loss),
        Metric("profit_factor", ("trades",), profit_factor, "Gross profit over gross loss"),
        Metric("expectancy", ("trades",), expectancy, "Mean profit per trade"),
        Metric("largest_win", ("trades",), largest_win),
        Metric("largest_loss", ("trades",), largest_loss),
        Metric("avg_bars_held", ("trades",), avg_bars_held),
        Metric("exposure_pct", ("trades", "equity_curve"), exposure_pct),
        Metric("returns", ("equity_curve",), returns, "Per-bar equity returns"),
        Metric("final_balance", ("equity_curve",), final_balance),
        Metric("net_profit", ("final_balance", "initial_capital"), net_profit),
        Metric("total_return_pct", ("final_balance", "initial_capital"), total_return_pct),
        Metric("max_drawdown", ("equity_curve",), max_drawdown),
        Metric("max_drawdown_pct", ("equity_curve",), max_drawdown_pct),
        Metric("volatility", ("returns", "periods_per_year"), volatility, "Annualized std of returns"),
        Metric("sharpe_ratio", ("returns", "periods_per_year"), sharpe_ratio),
        Metric("sortino_ratio", ("returns", "periods_per_year"), sortino_ratio),
        Metric("calmar_ratio", ("total_return_pct", "max_drawdown_pct"), calmar_ratio),
        Metric("recovery_factor", ("net_profit", "max_drawdown"), recovery_factor),
    ]


def _is_scalar(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (Real, np.number)):
        return False
    return math.isfinite(float(value))


class MetricsEngine:
    """Resolve a set of metrics in dependency order."""

    def __init__(self, metrics: Iterable[Metric] | None = None) -> None:
        self.metrics: Tuple[Metric, ...] = tuple(metrics) if metrics is not None else tuple(default_metrics())
        names = [metric.name for metric in self.metrics]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise MetricError(f"Duplicate metric names: {', '.join(duplicates)}")
        clashes = sorted(set(names) & set(RAW_FIELDS))
        if clashes:
            raise MetricError(f"Metric names shadow raw fields: {', '.join(clashes)}")

    def calculate_all(self, result: Any, *, periods_per_year: int = 252) -> Dict[str, float]:
        """Compute every resolvable metric for a simulation or strategy result."""

        raw = {
            "trades": tuple(result.trades),
            "equity_curve": np.asarray(result.equity_curve, dtype=float),
            "initial_capital": float(result.initial_capital),
            "periods_per_year": periods_per_year,
        }
        if len(raw["equity_curve"]) == 0:
            raw.pop("equity_curve")
        return self.resolve(raw)

    def resolve(self, raw: Dict[str, Any]) -> Dict[str, float]:
        available: Dict[str, Any] = dict(raw)
        pending = list(self.metrics)
        progress = True
        while pending and progress:
            progress = False
            waiting: List[Metric] = []
            for metric in pending:
                if not all(dep in available for dep in metric.depends_on):
                    waiting.append(metric)
                    continue
                progress = True
                try:
                    value = metric.compute(*(available[dep] for dep in metric.depends_on))
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Metric %s failed: %s", metric.name, exc)
                    continue
                if value is None:
                    logger.debug("Metric %s is undefined for this result", metric.name)
                    continue
                available[metric.name] = value
            pending = waiting
        for metric in pending:
            missing = [dep for dep in metric.depends_on if dep not in available]
            logger.debug("Skipping metric %s; unresolved dependencies: %s", metric.name, ", ".join(missing))
        return {
            name: float(value)
            for name, value in available.items()
            if name not in raw and _is_scalar(value)
        }


def calculate_all(result: Any, *, periods_per_year: int = 252) -> Dict[str, float]:
    return MetricsEngine().calculate_all(result, periods_per_year=periods_per_year)
