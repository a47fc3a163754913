"""Walk-forward validation of a finished strategy.

The bars are cut into consecutive folds. Each fold backtests the strategy on
an in-sample window and on the out-of-sample window right after it, and the
out-of-sample metrics are then summarized across folds.
"""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

from .backtest import Backtester, StrategyResult
from .cache import IndicatorCache
from .catalog import FunctionRegistry
from .config import EvolutionConfig
from .data import OhlcvDataset
from .errors import ConfigurationError, DatasetError
from .expressions import Rule

logger = logging.getLogger(__name__)

METHOD_NAME = "Walk-Forward Validation"


class WindowType(str, Enum):
    SLIDING = "sliding"
    ANCHORED = "anchored"


@dataclass(frozen=True)
class DataSplit:
    fold: int
    in_sample: OhlcvDataset
    out_of_sample: OhlcvDataset
    in_sample_bars: Tuple[int, int]
    out_of_sample_bars: Tuple[int, int]


@dataclass
class WalkForwardSplitter:
    """Cut a dataset into walk-forward folds.

    Sliding windows divide the bars into ``n_folds + 1`` equal windows and use
    the first ``in_sample_pct`` of each of the first ``n_folds`` windows as the
    in-sample period, with the rest of that window out of sample. Anchored
    windows divide the bars into ``n_folds + 1`` equal blocks; fold ``k`` trains
    on every bar before block ``k + 1`` and tests on that block.
    """

    n_folds: int = 5
    in_sample_pct: float = 0.7
    window_type: WindowType = WindowType.SLIDING

    def validate(self) -> None:
        if self.n_folds <= 0:
            raise ConfigurationError("n_folds must be positive")
        if not 0.0 < self.in_sample_pct < 1.0:
            raise ConfigurationError("in_sample_pct must be between 0 and 1")
        self.window_type = WindowType(self.window_type)

    def bounds(self, length: int) -> List[Tuple[Tuple[int, int], Tuple[int, int]]]:
        """In-sample and out-of-sample ``(start, end)`` bar ranges for each fold."""

        self.validate()
        block = length // (self.n_folds + 1)
        folds: List[Tuple[Tuple[int, int], Tuple[int, int]]] = []
        if self.window_type is WindowType.SLIDING:
            in_size = int(block * self.in_sample_pct)
            out_size = block - in_size
            if in_size == 0 or out_size == 0:
                return folds
            for fold in range(self.n_folds):
                start = fold * block
                folds.append(((start, start + in_size), (start + in_size, start + block)))
        else:
            if block == 0:
                return folds
            for fold in range(self.n_folds):
                cut = (fold + 1) * block
                folds.append(((0, cut), (cut, cut + block)))
        return folds

    def split(self, dataset: OhlcvDataset) -> List[DataSplit]:
        folds = self.bounds(len(dataset))
        if not folds:
            raise DatasetError(
                f"{len(dataset)} bars are too few for {self.n_folds} {self.window_type.value} walk-forward folds"
            )
        return [
            DataSplit(
                fold=fold,
                in_sample=dataset.slice(*in_bars),
                out_of_sample=dataset.slice(*out_bars),
                in_sample_bars=in_bars,
                out_of_sample_bars=out_bars,
            )
            for fold, (in_bars, out_bars) in enumerate(folds)
        ]


@dataclass
class FoldResult:
    fold: int
    in_sample_bars: Tuple[int, int]
    out_of_sample_bars: Tuple[int, int]
    in_sample: StrategyResult
    out_of_sample: StrategyResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fold": self.fold,
            "in_sample_bars": list(self.in_sample_bars),
            "out_of_sample_bars": list(self.out_of_sample_bars),
            "in_sample_metrics": dict(self.in_sample.metrics),
            "out_of_sample_metrics": dict(self.out_of_sample.metrics),
        }


@dataclass
class WalkForwardReport:
    strategy: str
    window_type: WindowType
    folds: List[FoldResult]
    aggregate_metrics: Dict[str, float] = field(default_factory=dict)
    method: str = METHOD_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "strategy": self.strategy,
            "window_type": self.window_type.value,
            "folds": [fold.to_dict() for fold in self.folds],
            "aggregate_metrics": dict(self.aggregate_metrics),
        }


def aggregate_metrics(folds: Sequence[FoldResult]) -> Dict[str, float]:
    """Mean, sample std, min and max of every out-of-sample metric across folds.

    ``consistency_score`` is ``1 / (1 + std)`` of the out-of-sample Sharpe ratio
    when it is available.
    """

    names = sorted({name for fold in folds for name in fold.out_of_sample.metrics})
    aggregated: Dict[str, float] = {}
    for name in names:
        values = [
            fold.out_of_sample.metrics[name]
            for fold in folds
            if name in fold.out_of_sample.metrics and math.isfinite(fold.out_of_sample.metrics[name])
        ]
        if not values:
            continue
        aggregated[f"{name}_mean"] = statistics.fmean(values)
        aggregated[f"{name}_std"] = statistics.stdev(values) if len(values) > 1 else 0.0
        aggregated[f"{name}_min"] = min(values)
        aggregated[f"{name}_max"] = max(values)
    if "sharpe_ratio_std" in aggregated:
        aggregated["consistency_score"] = 1.0 / (1.0 + aggregated["sharpe_ratio_std"])
    return aggregated


def run_walk_forward(
    strategy: Rule | StrategyResult,
    dataset: OhlcvDataset,
    config: EvolutionConfig | None = None,
    *,
    splitter: WalkForwardSplitter | None = None,
    registry: FunctionRegistry | None = None,
) -> WalkForwardReport:
    """Backtest ``strategy`` on every walk-forward fold of ``dataset``."""

    tree = strategy.tree if isinstance(strategy, StrategyResult) else strategy
    splitter = splitter or WalkForwardSplitter()
    backtester = Backtester(config, registry, IndicatorCache())

    folds: List[FoldResult] = []
    for split in splitter.split(dataset):
        folds.append(
            FoldResult(
                fold=split.fold,
                in_sample_bars=split.in_sample_bars,
                out_of_sample_bars=split.out_of_sample_bars,
                in_sample=backtester.evaluate(tree, split.in_sample),
                out_of_sample=backtester.evaluate(tree, split.out_of_sample, in_sample=False),
            )
        )
        logger.debug(
            "Fold %d: %d in-sample and %d out-of-sample trades",
            split.fold,
            len(folds[-1].in_sample.trades),
            len(folds[-1].out_of_sample.trades),
        )

    return WalkForwardReport(
        strategy=tree.to_formula(),
        window_type=splitter.window_type,
        folds=folds,
        aggregate_metrics=aggregate_metrics(folds),
    )
