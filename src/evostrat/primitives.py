"""Elementwise primitives: data accessors, arithmetic, comparisons and logic."""

from __future__ import annotations

import numpy as np

from .data import OhlcvDataset
from .indicators import clean


def _as_column(ctx: OhlcvDataset, value: np.ndarray | float | int) -> np.ndarray:
    if np.ndim(value) == 0:
        return np.full(len(ctx), float(value))
    return np.asarray(value, dtype=float)


def _previous(values: np.ndarray) -> np.ndarray:
    shifted = np.empty_like(values, dtype=float)
    shifted[:1] = np.nan
    shifted[1:] = values[:-1]
    return shifted


# Accessors -----------------------------------------------------------------------


def open_(ctx: OhlcvDataset) -> np.ndarray:
    return ctx.open


def high(ctx: OhlcvDataset) -> np.ndarray:
    return ctx.high


def low(ctx: OhlcvDataset) -> np.ndarray:
    return ctx.low


def close(ctx: OhlcvDataset) -> np.ndarray:
    return ctx.close


def volume(ctx: OhlcvDataset) -> np.ndarray:
    return ctx.volume


# Arithmetic ----------------------------------------------------------------------


def add(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    return clean(_as_column(ctx, left) + _as_column(ctx, right))


def subtract(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    return clean(_as_column(ctx, left) - _as_column(ctx, right))


def multiply(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore", invalid="ignore"):
        return clean(_as_column(ctx, left) * _as_column(ctx, right))


def divide(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """Division where a zero denominator yields ``NaN`` instead of a crash."""

    numerator = _as_column(ctx, left)
    denominator = _as_column(ctx, right)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        result = np.where(denominator == 0, np.nan, numerator / denominator)
    return clean(result)


def absolute(ctx: OhlcvDataset, series: np.ndarray) -> np.ndarray:
    return np.abs(_as_column(ctx, series))


def shift(ctx: OhlcvDataset, series: np.ndarray, periods: int) -> np.ndarray:
    values = _as_column(ctx, series)
    periods = max(0, int(periods))
    if periods == 0:
        return values.copy()
    shifted = np.full(len(values), np.nan)
    if periods < len(values):
        shifted[periods:] = values[:-periods]
    return shifted


# Comparisons ---------------------------------------------------------------------
#
# Boolean series are float columns holding 1.0, 0.0 or NaN. NaN marks positions
# where an operand is still undefined, so negation never turns warm-up bars true.


def _truth(condition: np.ndarray, *operands: np.ndarray) -> np.ndarray:
    defined = np.ones(len(condition), dtype=bool)
    for operand in operands:
        defined &= ~np.isnan(operand)
    return np.where(defined, condition.astype(float), np.nan)


def greater_than(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    left_col, right_col = _as_column(ctx, left), _as_column(ctx, right)
    with np.errstate(invalid="ignore"):
        return _truth(left_col > right_col, left_col, right_col)


def less_than(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    left_col, right_col = _as_column(ctx, left), _as_column(ctx, right)
    with np.errstate(invalid="ignore"):
        return _truth(left_col < right_col, left_col, right_col)


def cross_above(ctx: OhlcvDataset, fast: np.ndarray, slow: np.ndarray) -> np.ndarray:
    """True where ``fast`` closes above ``slow`` having been at or below it one bar earlier."""

    fast_col, slow_col = _as_column(ctx, fast), _as_column(ctx, slow)
    prev_fast, prev_slow = _previous(fast_col), _previous(slow_col)
    with np.errstate(invalid="ignore"):
        crossed = (fast_col > slow_col) & (prev_fast <= prev_slow)
    return _truth(crossed, fast_col, slow_col, prev_fast, prev_slow)


def cross_below(ctx: OhlcvDataset, fast: np.ndarray, slow: np.ndarray) -> np.ndarray:
    fast_col, slow_col = _as_column(ctx, fast), _as_column(ctx, slow)
    prev_fast, prev_slow = _previous(fast_col), _previous(slow_col)
    with np.errstate(invalid="ignore"):
        crossed = (fast_col < slow_col) & (prev_fast >= prev_slow)
    return _truth(crossed, fast_col, slow_col, prev_fast, prev_slow)


def greater_than_scalar(ctx: OhlcvDataset, series: np.ndarray, threshold: float) -> np.ndarray:
    return greater_than(ctx, series, threshold)


def less_than_scalar(ctx: OhlcvDataset, series: np.ndarray, threshold: float) -> np.ndarray:
    return less_than(ctx, series, threshold)


# Logic ---------------------------------------------------------------------------


def _as_truth(ctx: OhlcvDataset, value: np.ndarray | bool) -> np.ndarray:
    if np.ndim(value) == 0:
        return np.full(len(ctx), 1.0 if value else 0.0)
    return np.asarray(value, dtype=float)


def logical_and(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    left_col, right_col = _as_truth(ctx, left), _as_truth(ctx, right)
    return _truth((left_col == 1.0) & (right_col == 1.0), left_col, right_col)


def logical_or(ctx: OhlcvDataset, left: np.ndarray, right: np.ndarray) -> np.ndarray:
    left_col, right_col = _as_truth(ctx, left), _as_truth(ctx, right)
    return _truth((left_col == 1.0) | (right_col == 1.0), left_col, right_col)


def logical_not(ctx: OhlcvDataset, operand: np.ndarray) -> np.ndarray:
    column = _as_truth(ctx, operand)
    return _truth(column != 1.0, column)


def is_true(column: np.ndarray) -> np.ndarray:
    """Collapse a boolean series to a plain mask; undefined positions are False."""

    return np.asarray(column, dtype=float) == 1.0
