from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from evostrat.data import OhlcvDataset, load_csv, synthetic_bars
from evostrat.errors import DatasetError


def _build_frame(length: int = 5) -> pd.DataFrame:
    close = np.arange(100.0, 100.0 + length)
    return pd.DataFrame(
        {
            "Open": close - 0.5,
            "High": close + 1.0,
            "Low": close - 1.0,
            "Close": close,
            "Volume": np.full(length, 1_000.0),
        }
    )


def test_dataset_rejects_empty_frame():
    with pytest.raises(DatasetError, match="at least one bar"):
        OhlcvDataset(pd.DataFrame(columns=["open", "high", "low", "close", "volume"]))


def test_dataset_requires_price_columns():
    with pytest.raises(DatasetError, match="missing required columns: volume"):
        OhlcvDataset(_build_frame().drop(columns=["Volume"]))


def test_dataset_rejects_unordered_time():
    frame = _build_frame(3)
    frame["time"] = [3, 1, 2]
    with pytest.raises(DatasetError, match="monotonically increasing"):
        OhlcvDataset(frame)


def test_columns_are_read_only_and_case_insensitive():
    dataset = OhlcvDataset(_build_frame())

    assert dataset.close[0] == 100.0
    assert dataset.column("CLOSE") is dataset.close
    with pytest.raises(ValueError):
        dataset.close[0] = 1.0
    with pytest.raises(KeyError, match="Unknown dataset column"):
        dataset.column("vwap")


def test_identity_tracks_content():
    first = OhlcvDataset(_build_frame(), name="a")
    second = OhlcvDataset(_build_frame(), name="b")
    changed = OhlcvDataset(_build_frame(6))

    assert first.identity == second.identity
    assert first.identity != changed.identity


def test_slice_tail_and_split():
    dataset = synthetic_bars(100, seed=1)

    window = dataset.slice(10, 20)
    assert len(window) == 10
    assert window.close[0] == dataset.close[10]
    assert len(dataset.tail(30)) == 30
    assert dataset.tail(30).close[-1] == dataset.close[-1]

    train, holdout = dataset.split(0.2)
    assert len(train) == 80
    assert holdout is not None and len(holdout) == 20
    assert dataset.split(0.0) == (dataset, None)

    with pytest.raises(ValueError):
        dataset.slice(20, 10)


def test_split_rejects_empty_side():
    dataset = synthetic_bars(3, seed=1)
    with pytest.raises(DatasetError, match="empty"):
        dataset.split(0.9)


def test_from_close_builds_consistent_bars():
    dataset = OhlcvDataset.from_close([10.0, 11.0, 10.5], spread=0.01)

    assert list(dataset.open) == [10.0, 10.0, 11.0]
    assert (dataset.high >= np.maximum(dataset.open, dataset.close)).all()
    assert (dataset.low <= np.minimum(dataset.open, dataset.close)).all()


def test_synthetic_bars_are_seeded():
    first = synthetic_bars(50, seed=3)
    second = synthetic_bars(50, seed=3)
    other = synthetic_bars(50, seed=4)

    np.testing.assert_array_equal(first.close, second.close)
    assert not np.array_equal(first.close, other.close)
    assert (first.high >= first.low).all()


def test_load_csv_parses_and_sorts(tmp_path: Path):
    frame = _build_frame(4)
    frame.insert(0, "Date", ["2024-01-04", "2024-01-02", "2024-01-03", "2024-01-05"])
    frame.loc[1, "Close"] = np.nan
    path = tmp_path / "bars.csv"
    frame.to_csv(path, index=False)

    dataset = load_csv(path)

    assert dataset.name == "bars"
    assert len(dataset) == 3
    times = pd.to_datetime(dataset.time)
    assert times.is_monotonic_increasing
    assert dataset.close[0] == 102.0


def test_load_csv_missing_file(tmp_path: Path):
    with pytest.raises(DatasetError, match="not found"):
        load_csv(tmp_path / "missing.csv")
