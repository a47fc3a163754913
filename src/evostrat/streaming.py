"""Bar-by-bar counterparts of selected vectorized indicators.

The classes keep just enough state to emit the next value when a new bar
arrives. They mirror the warm-up and smoothing conventions of
:mod:`evostrat.indicators`, so both paths agree on the same input.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Protocol, Sequence

import numpy as np

from .data import OhlcvDataset

NAN = float("nan")


@dataclass(frozen=True)
class Bar:
    open: float
    high: float
    low: float
    close: float
    volume: float
    value: float
    """Element of the series argument for series-based indicators."""


class StreamingIndicator(Protocol):
    def update(self, bar: Bar) -> float:
        ...


class StreamingSMA:
    def __init__(self, period: int) -> None:
        self.period = max(1, int(period))
        self._window: Deque[float] = deque(maxlen=self.period)

    def update(self, bar: Bar) -> float:
        self._window.append(bar.value)
        if len(self._window) < self.period:
            return NAN
        return sum(self._window) / self.period


class StreamingEMA:
    def __init__(self, period: int) -> None:
        self.period = max(1, int(period))
        self.alpha = 2.0 / (self.period + 1)
        self._value: float | None = None
        self._count = 0

    def update(self, bar: Bar) -> float:
        if self._value is None:
            self._value = bar.value
        else:
            self._value = self.alpha * bar.value + (1 - self.alpha) * self._value
        self._count += 1
        return self._value if self._count >= self.period else NAN


class StreamingRSI:
    def __init__(self, period: int) -> None:
        self.period = max(1, int(period))
        self.alpha = 1.0 / self.period
        self._previous: float | None = None
        self._gain: float | None = None
        self._loss: float | None = None
        self._count = 0

    def update(self, bar: Bar) -> float:
        if self._previous is None:
            self._previous = bar.value
            return NAN
        delta = bar.value - self._previous
        self._previous = bar.value
        gain, loss = max(delta, 0.0), max(-delta, 0.0)
        if self._gain is None or self._loss is None:
            self._gain, self._loss = gain, loss
        else:
            self._gain = (1 - self.alpha) * self._gain + self.alpha * gain
            self._loss = (1 - self.alpha) * self._loss + self.alpha * loss
        self._count += 1
        if self._count < self.period:
            return NAN
        if self._loss == 0:
            return 100.0 if self._gain > 0 else NAN
        return 100.0 - 100.0 / (1.0 + self._gain / self._loss)


class StreamingMomentum:
    def __init__(self, period: int) -> None:
        self.period = max(1, int(period))
        self._window: Deque[float] = deque(maxlen=self.period + 1)

    def update(self, bar: Bar) -> float:
        self._window.append(bar.value)
        if len(self._window) <= self.period:
            return NAN
        return self._window[-1] - self._window[0]


class StreamingStdDev:
    def __init__(self, period: int) -> None:
        self.period = max(2, int(period))
        self._window: Deque[float] = deque(maxlen=self.period)

    def update(self, bar: Bar) -> float:
        self._window.append(bar.value)
        if len(self._window) < self.period:
            return NAN
        mean = sum(self._window) / self.period
        variance = sum((v - mean) ** 2 for v in self._window) / self.period
        return math.sqrt(variance)


class StreamingATR:
    def __init__(self, period: int) -> None:
        self.period = max(1, int(period))
        self.alpha = 1.0 / self.period
        self._previous_close: float | None = None
        self._value: float | None = None
        self._count = 0

    def update(self, bar: Bar) -> float:
        if self._previous_close is None:
            true_range = bar.high - bar.low
        else:
            true_range = max(
                bar.high - bar.low,
                abs(bar.high - self._previous_close),
                abs(bar.low - self._previous_close),
            )
        self._previous_close = bar.close
        if self._value is None:
            self._value = true_range
        else:
            self._value = (1 - self.alpha) * self._value + self.alpha * true_range
        self._count += 1
        return self._value if self._count >= self.period else NAN


class StreamingOBV:
    def __init__(self) -> None:
        self._previous: float | None = None
        self._value = 0.0

    def update(self, bar: Bar) -> float:
        if self._previous is not None:
            if bar.close > self._previous:
                self._value += bar.volume
            elif bar.close < self._previous:
                self._value -= bar.volume
        self._previous = bar.close
        return self._value


def stream_column(
    indicator: StreamingIndicator,
    dataset: OhlcvDataset,
    series: Sequence[float] | None = None,
) -> np.ndarray:
    """Feed every bar of ``dataset`` through ``indicator`` and collect the outputs."""

    values = dataset.close if series is None else np.asarray(series, dtype=float)
    out: List[float] = []
    for i in range(len(dataset)):
        bar = Bar(
            open=float(dataset.open[i]),
            high=float(dataset.high[i]),
            low=float(dataset.low[i]),
            close=float(dataset.close[i]),
            volume=float(dataset.volume[i]),
            value=float(values[i]),
        )
        out.append(indicator.update(bar))
    return np.asarray(out, dtype=float)


StreamingFactory = Callable[..., StreamingIndicator]
