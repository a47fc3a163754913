"""Vectorized technical indicators over whole price columns.

Every function takes the evaluation context (an :class:`~evostrat.data.OhlcvDataset`)
followed by its declared arguments and returns a float column of the same
length. Positions without enough history are ``NaN``; infinities produced by
degenerate inputs are folded into ``NaN`` as well.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from .data import OhlcvDataset


def clean(values: np.ndarray | pd.Series) -> np.ndarray:
    """Return a float array with ``inf`` replaced by ``NaN``."""

    array = np.asarray(values, dtype=float)
    if not np.isfinite(array).all():
        array = np.where(np.isinf(array), np.nan, array)
    return array


def _period(value: int, minimum: int = 1) -> int:
    return max(minimum, int(value))


def _series(values: np.ndarray) -> pd.Series:
    return pd.Series(np.asarray(values, dtype=float))


def _safe_ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.divide(numerator, denominator)
    return clean(ratio)


def _wilder(values: pd.Series, period: int) -> pd.Series:
    return values.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()


def _ema(values: pd.Series, period: int) -> pd.Series:
    return values.ewm(span=period, adjust=False, min_periods=period).mean()


# Trend ---------------------------------------------------------------------------


def sma(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period)
    return clean(_series(series).rolling(period, min_periods=period).mean())


def ema(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    return clean(_ema(_series(series), _period(period)))


def dema(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period)
    first = _ema(_series(series), period)
    second = _ema(first, period)
    return clean(2 * first - second)


def tema(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period)
    first = _ema(_series(series), period)
    second = _ema(first, period)
    third = _ema(second, period)
    return clean(3 * first - 3 * second + third)


def bollinger_upper(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period, 2)
    values = _series(series)
    mean = values.rolling(period, min_periods=period).mean()
    std = values.rolling(period, min_periods=period).std(ddof=0)
    return clean(mean + 2.0 * std)


def bollinger_lower(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period, 2)
    values = _series(series)
    mean = values.rolling(period, min_periods=period).mean()
    std = values.rolling(period, min_periods=period).std(ddof=0)
    return clean(mean - 2.0 * std)


def macd(ctx: OhlcvDataset, series: np.ndarray, fast: int, slow: int) -> np.ndarray:
    fast, slow = sorted((_period(fast), _period(slow)))
    if slow == fast:
        slow = fast + 1
    values = _series(series)
    return clean(_ema(values, fast) - _ema(values, slow))


def parabolic_sar(ctx: OhlcvDataset, step: float = 0.02, max_step: float = 0.2) -> np.ndarray:
    """Parabolic stop-and-reverse; a single pass since each value feeds the next."""

    high, low = ctx.high, ctx.low
    length = len(high)
    sar = np.full(length, np.nan)
    if length < 2:
        return sar
    rising = high[1] >= high[0]
    extreme = high[0] if rising else low[0]
    current = low[0] if rising else high[0]
    factor = step
    for i in range(1, length):
        current = current + factor * (extreme - current)
        if rising:
            current = min(current, low[i - 1], low[i - 2] if i >= 2 else low[i - 1])
            if low[i] < current:
                rising, current, extreme, factor = False, extreme, low[i], step
            elif high[i] > extreme:
                extreme, factor = high[i], min(factor + step, max_step)
        else:
            current = max(current, high[i - 1], high[i - 2] if i >= 2 else high[i - 1])
            if high[i] > current:
                rising, current, extreme, factor = True, extreme, high[i], step
            elif low[i] < extreme:
                extreme, factor = low[i], min(factor + step, max_step)
        sar[i] = current
    return clean(sar)


# Oscillators ---------------------------------------------------------------------


def rsi(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    """Wilder's relative strength index in ``[0, 100]``."""

    period = _period(period)
    delta = _series(series).diff()
    gains = _wilder(delta.clip(lower=0.0), period)
    losses = _wilder((-delta).clip(lower=0.0), period)
    with np.errstate(divide="ignore", invalid="ignore"):
        values = 100.0 - 100.0 / (1.0 + gains.to_numpy() / losses.to_numpy())
    return clean(values)


def stochastic(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period)
    lowest = _series(ctx.low).rolling(period, min_periods=period).min().to_numpy()
    highest = _series(ctx.high).rolling(period, min_periods=period).max().to_numpy()
    return 100.0 * _safe_ratio(ctx.close - lowest, highest - lowest)


def williams_r(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period)
    lowest = _series(ctx.low).rolling(period, min_periods=period).min().to_numpy()
    highest = _series(ctx.high).rolling(period, min_periods=period).max().to_numpy()
    return -100.0 * _safe_ratio(highest - ctx.close, highest - lowest)


def cci(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period, 2)
    typical = (ctx.high + ctx.low + ctx.close) / 3.0
    result = np.full(len(typical), np.nan)
    if len(typical) < period:
        return result
    windows = sliding_window_view(typical, period)
    means = windows.mean(axis=1)
    deviation = np.abs(windows - means[:, None]).mean(axis=1)
    result[period - 1 :] = _safe_ratio(typical[period - 1 :] - means, 0.015 * deviation)
    return result


def momentum(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    values = _series(series)
    return clean(values - values.shift(_period(period)))


def rate_of_change(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    values = _series(series)
    previous = values.shift(_period(period)).to_numpy()
    return 100.0 * _safe_ratio(values.to_numpy() - previous, previous)


def trix(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period)
    triple = _ema(_ema(_ema(_series(series), period), period), period)
    previous = triple.shift(1).to_numpy()
    return 100.0 * _safe_ratio(triple.to_numpy() - previous, previous)


def awesome_oscillator(ctx: OhlcvDataset) -> np.ndarray:
    median = _series((ctx.high + ctx.low) / 2.0)
    return clean(median.rolling(5, min_periods=5).mean() - median.rolling(34, min_periods=34).mean())


def accelerator_oscillator(ctx: OhlcvDataset) -> np.ndarray:
    ao = _series(awesome_oscillator(ctx))
    return clean(ao - ao.rolling(5, min_periods=5).mean())


def demarker(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period)
    high, low = _series(ctx.high), _series(ctx.low)
    demax = (high - high.shift(1)).clip(lower=0.0)
    demin = (low.shift(1) - low).clip(lower=0.0)
    up = demax.rolling(period, min_periods=period).mean().to_numpy()
    down = demin.rolling(period, min_periods=period).mean().to_numpy()
    return _safe_ratio(up, up + down)


def bears_power(ctx: OhlcvDataset, period: int) -> np.ndarray:
    return clean(ctx.low - _ema(_series(ctx.close), _period(period)).to_numpy())


def bulls_power(ctx: OhlcvDataset, period: int) -> np.ndarray:
    return clean(ctx.high - _ema(_series(ctx.close), _period(period)).to_numpy())


# Volatility ----------------------------------------------------------------------


def true_range(ctx: OhlcvDataset) -> np.ndarray:
    previous_close = np.concatenate([[np.nan], ctx.close[:-1]])
    ranges = np.vstack(
        [ctx.high - ctx.low, np.abs(ctx.high - previous_close), np.abs(ctx.low - previous_close)]
    )
    return np.nanmax(ranges, axis=0)


def atr(ctx: OhlcvDataset, period: int) -> np.ndarray:
    return clean(_wilder(_series(true_range(ctx)), _period(period)))


def adx(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period)
    high, low = _series(ctx.high), _series(ctx.low)
    up_move = high.diff()
    down_move = -low.diff()
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)
    smoothed_tr = _wilder(_series(true_range(ctx)), period).to_numpy()
    plus_di = 100.0 * _safe_ratio(_wilder(_series(plus_dm), period).to_numpy(), smoothed_tr)
    minus_di = 100.0 * _safe_ratio(_wilder(_series(minus_dm), period).to_numpy(), smoothed_tr)
    dx = 100.0 * _safe_ratio(np.abs(plus_di - minus_di), plus_di + minus_di)
    return clean(_wilder(_series(dx), period))


def stddev(ctx: OhlcvDataset, series: np.ndarray, period: int) -> np.ndarray:
    period = _period(period, 2)
    return clean(_series(series).rolling(period, min_periods=period).std(ddof=0))


def bw_market_facilitation(ctx: OhlcvDataset) -> np.ndarray:
    return _safe_ratio(ctx.high - ctx.low, ctx.volume)


# Volume --------------------------------------------------------------------------


def on_balance_volume(ctx: OhlcvDataset) -> np.ndarray:
    direction = np.sign(np.diff(ctx.close, prepend=ctx.close[:1]))
    return clean(np.cumsum(direction * ctx.volume))


def money_flow_index(ctx: OhlcvDataset, period: int) -> np.ndarray:
    period = _period(period)
    typical = _series((ctx.high + ctx.low + ctx.close) / 3.0)
    flow = typical * ctx.volume
    change = typical.diff()
    positive = flow.where(change > 0, 0.0).rolling(period, min_periods=period).sum().to_numpy()
    negative = flow.where(change < 0, 0.0).rolling(period, min_periods=period).sum().to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        values = 100.0 - 100.0 / (1.0 + positive / negative)
    values[: period] = np.nan
    return clean(values)


def force_index(ctx: OhlcvDataset, period: int) -> np.ndarray:
    close = _series(ctx.close)
    raw = close.diff() * ctx.volume
    return clean(_ema(raw, _period(period)))


def chaikin_oscillator(ctx: OhlcvDataset, fast: int, slow: int) -> np.ndarray:
    fast, slow = sorted((_period(fast), _period(slow)))
    if slow == fast:
        slow = fast + 1
    spread = ctx.high - ctx.low
    multiplier = np.where(spread > 0, _safe_ratio((ctx.close - ctx.low) - (ctx.high - ctx.close), spread), 0.0)
    line = _series(np.cumsum(np.nan_to_num(multiplier) * ctx.volume))
    return clean(_ema(line, fast) - _ema(line, slow))
