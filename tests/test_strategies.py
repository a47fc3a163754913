from __future__ import annotations

import json
from pathlib import Path

import pytest

from evostrat.backtest import run_backtest
from evostrat.data import OhlcvDataset, synthetic_bars
from evostrat.hall_of_fame import HallOfFame
from evostrat.presets import get_preset
from evostrat.strategies import (
    SavedStrategy,
    forward_result,
    load_hall_of_fame,
    load_strategy,
    replay_strategy,
    save_hall_of_fame,
    save_strategy,
)


def _build_strategy(dataset: OhlcvDataset) -> SavedStrategy:
    tree = get_preset("sma_crossover")
    assert tree is not None
    result = run_backtest(tree, dataset)
    return SavedStrategy.from_result(result, name="crossover", generation=4)


def test_saved_strategy_round_trip(tmp_path: Path):
    dataset = synthetic_bars(200, seed=8)
    strategy = _build_strategy(dataset)

    path = save_strategy(tmp_path / "strategies" / "best.json", strategy)
    payload = json.loads(path.read_text(encoding="utf-8"))
    restored = load_strategy(path)

    assert payload["formula"] == "IF GreaterThan(SMA(Close, 10), SMA(Close, 50)) THEN LONG"
    assert payload["canonical"] == strategy.tree.key
    assert restored.tree == strategy.tree
    assert restored.name == "crossover"
    assert restored.generation == 4
    assert restored.training_length == 200
    assert restored.metrics == strategy.metrics


def test_replay_and_forward_results():
    base = synthetic_bars(200, seed=8)
    extended = synthetic_bars(260, seed=8)
    strategy = _build_strategy(base)

    replayed = replay_strategy(strategy, base)
    assert replayed.metrics == strategy.metrics

    forward = forward_result(strategy, extended)
    assert forward is not None
    assert len(forward.equity_curve) == 60
    assert forward_result(strategy, base) is None


def test_load_strategy_rejects_non_rule(tmp_path: Path):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"tree": {"kind": "call", "name": "Close", "args": []}}), encoding="utf-8")

    with pytest.raises(ValueError, match="Rule"):
        load_strategy(path)


def test_load_strategy_rejects_non_object(tmp_path: Path):
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError, match="JSON object"):
        load_strategy(path)


def test_hall_of_fame_file_round_trip(tmp_path: Path):
    dataset = synthetic_bars(200, seed=8)
    hof = HallOfFame(capacity=5)
    for name in ("sma_crossover", "trend_following", "rsi_reversion"):
        tree = get_preset(name)
        assert tree is not None
        hof.try_add(run_backtest(tree, dataset))

    path = save_hall_of_fame(tmp_path / "hof.json", hof)
    restored = load_hall_of_fame(path)

    assert [e.canonical for e in restored] == [e.canonical for e in hof]
    assert [e.fitness for e in restored] == [e.fitness for e in hof]
