"""Immutable OHLCV containers shared by every evaluation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import DatasetError

PRICE_COLUMNS: Tuple[str, ...] = ("open", "high", "low", "close", "volume")


def _read_only(values: np.ndarray) -> np.ndarray:
    array = np.array(values, dtype=float, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class OhlcvDataset:
    """Synchronized open/high/low/close/volume columns plus a time column.

    The constructor validates the frame and freezes read-only copies of every
    column, so a dataset can be shared across worker threads by reference.
    """

    frame: pd.DataFrame
    name: str = "dataset"
    _columns: Dict[str, np.ndarray] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        frame = self.frame
        if frame is None or len(frame) == 0:
            raise DatasetError("Dataset must contain at least one bar")
        renamed = frame.rename(columns={col: str(col).lower() for col in frame.columns})
        missing = [col for col in PRICE_COLUMNS if col not in renamed.columns]
        if missing:
            raise DatasetError(f"Dataset is missing required columns: {', '.join(missing)}")

        if "time" in renamed.columns:
            times = pd.Series(renamed["time"]).reset_index(drop=True)
        elif isinstance(renamed.index, pd.DatetimeIndex):
            times = pd.Series(renamed.index)
        else:
            times = pd.Series(np.arange(len(renamed)))
        if not times.is_monotonic_increasing:
            raise DatasetError("Time column must be monotonically increasing")

        columns: Dict[str, np.ndarray] = {}
        for col in PRICE_COLUMNS:
            try:
                values = pd.to_numeric(renamed[col]).to_numpy(dtype=float)
            except (TypeError, ValueError) as exc:
                raise DatasetError(f"Column '{col}' must be numeric") from exc
            columns[col] = _read_only(values)

        normalized = pd.DataFrame({"time": times.to_numpy(), **columns})
        object.__setattr__(self, "frame", normalized)
        object.__setattr__(self, "_columns", columns)

    # Constructors ----------------------------------------------------------------

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, name: str = "dataset") -> "OhlcvDataset":
        return cls(frame=frame, name=name)

    @classmethod
    def from_close(
        cls,
        close: Sequence[float],
        *,
        volume: Sequence[float] | None = None,
        spread: float = 0.0,
        name: str = "dataset",
    ) -> "OhlcvDataset":
        """Build bars from a close series; highs and lows sit ``spread`` away."""

        close_arr = np.asarray(close, dtype=float)
        open_arr = np.concatenate([close_arr[:1], close_arr[:-1]]) if len(close_arr) else close_arr
        high = np.maximum(open_arr, close_arr) * (1 + spread)
        low = np.minimum(open_arr, close_arr) * (1 - spread)
        vol = np.asarray(volume, dtype=float) if volume is not None else np.full(len(close_arr), 1_000.0)
        frame = pd.DataFrame(
            {"time": np.arange(len(close_arr)), "open": open_arr, "high": high, "low": low, "close": close_arr, "volume": vol}
        )
        return cls(frame=frame, name=name)

    # Accessors -------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.frame)

    def column(self, name: str) -> np.ndarray:
        try:
            return self._columns[name.lower()]
        except KeyError:
            raise KeyError(f"Unknown dataset column '{name}'") from None

    @property
    def open(self) -> np.ndarray:
        return self._columns["open"]

    @property
    def high(self) -> np.ndarray:
        return self._columns["high"]

    @property
    def low(self) -> np.ndarray:
        return self._columns["low"]

    @property
    def close(self) -> np.ndarray:
        return self._columns["close"]

    @property
    def volume(self) -> np.ndarray:
        return self._columns["volume"]

    @property
    def time(self) -> np.ndarray:
        return self.frame["time"].to_numpy()

    @cached_property
    def identity(self) -> str:
        """Content hash used to key cached indicator columns."""

        digest = hashlib.sha1()
        digest.update(str(len(self)).encode("ascii"))
        for col in PRICE_COLUMNS:
            digest.update(self._columns[col].tobytes())
        return digest.hexdigest()

    # Slicing ---------------------------------------------------------------------

    def slice(self, start: int, end: int | None = None) -> "OhlcvDataset":
        """Return the bars between ``start`` and ``end`` as a new dataset."""

        if start < 0:
            raise ValueError("start must be non-negative")
        if end is None:
            end = len(self)
        if start >= end:
            raise ValueError("start must be less than end")
        end = min(end, len(self))
        return OhlcvDataset(self.frame.iloc[start:end].reset_index(drop=True), name=self.name)

    def tail(self, length: int) -> "OhlcvDataset":
        if length <= 0:
            raise ValueError("length must be positive")
        length = min(length, len(self))
        return self.slice(len(self) - length)

    def split(self, holdout_fraction: float) -> Tuple["OhlcvDataset", "OhlcvDataset | None"]:
        """Split into leading in-sample bars and trailing hold-out bars."""

        if holdout_fraction <= 0:
            return self, None
        cut = int(round(len(self) * (1 - holdout_fraction)))
        if cut <= 0 or cut >= len(self):
            raise DatasetError("Hold-out fraction leaves one side of the split empty")
        return self.slice(0, cut), self.slice(cut)


def synthetic_bars(
    length: int,
    *,
    seed: int = 0,
    start_price: float = 100.0,
    drift: float = 0.0003,
    volatility: float = 0.01,
    name: str = "synthetic",
) -> OhlcvDataset:
    """Generate a geometric random walk of OHLCV bars for demos and tests."""

    if length <= 0:
        raise DatasetError("length must be positive")
    rng = np.random.default_rng(seed)
    returns = rng.normal(drift, volatility, size=length)
    close = start_price * np.exp(np.cumsum(returns))
    open_ = np.concatenate([[start_price], close[:-1]])
    wick = np.abs(rng.normal(0.0, volatility / 2, size=length))
    high = np.maximum(open_, close) * (1 + wick)
    low = np.minimum(open_, close) * (1 - wick)
    volume = rng.integers(1_000, 10_000, size=length).astype(float)
    frame = pd.DataFrame(
        {
            "time": pd.date_range("2020-01-01", periods=length, freq="D"),
            "open": open_,
            "high": high,
            "low": low,
            "close": close,
            "volume": volume,
        }
    )
    return OhlcvDataset(frame, name=name)


def load_csv(path: str | Path, name: str | None = None) -> OhlcvDataset:
    """Read OHLCV bars from a CSV file with a header row.

    A ``time``, ``date`` or ``datetime`` column is parsed as timestamps and
    rows are sorted by it.
    """

    source = Path(path)
    if not source.exists():
        raise DatasetError(f"CSV file not found: {source}")
    frame = pd.read_csv(source)
    frame.columns = [str(col).strip().lower() for col in frame.columns]
    for candidate in ("time", "date", "datetime", "timestamp"):
        if candidate in frame.columns:
            frame = frame.rename(columns={candidate: "time"})
            frame["time"] = pd.to_datetime(frame["time"])
            frame = frame.sort_values("time").reset_index(drop=True)
            break
    present = [col for col in PRICE_COLUMNS if col in frame.columns]
    return OhlcvDataset(frame.dropna(subset=present).reset_index(drop=True), name=name or source.stem)
