"""Tests for lowering trees into vectorized plans and for the column cache."""

from __future__ import annotations

import numpy as np
import pytest

from evostrat.cache import IndicatorCache
from evostrat.catalog import default_registry
from evostrat.compiler import PlanStep, VectorizedPlan, compile_tree
from evostrat.data import OhlcvDataset, synthetic_bars
from evostrat.errors import EvaluationError
from evostrat.expressions import LONG, SHORT, Rule, call

CLOSE = call("Close")


def _build_rising(length: int = 20) -> OhlcvDataset:
    return OhlcvDataset.from_close([100.0 + i for i in range(length)])


def test_shared_subexpressions_compile_once() -> None:
    sma = call("SMA", CLOSE, 10)
    tree = Rule(
        call("And", call("GreaterThan", CLOSE, sma), call("LessThan", sma, call("Shift", CLOSE, 1))),
        LONG,
    )

    plan = compile_tree(tree, default_registry())
    keys = [step.key for step in plan.steps]

    assert keys.count(sma.key) == 1
    assert keys.count(CLOSE.key) == 1
    assert len(keys) == len(set(keys))
    assert plan.direction == 1


def test_signal_uses_rule_direction() -> None:
    dataset = _build_rising()
    tree = Rule(call("GreaterThan", CLOSE, call("Shift", CLOSE, 1)), SHORT)

    frame = compile_tree(tree, default_registry()).execute(dataset)

    assert frame.signal[0] == 0.0
    assert (frame.signal[1:] == -1.0).all()
    assert not frame.condition[0]


def test_warm_up_is_never_true() -> None:
    dataset = _build_rising()
    above = call("GreaterThan", CLOSE, call("SMA", CLOSE, 5))
    below = call("Not", call("GreaterThan", CLOSE, call("SMA", CLOSE, 5)))

    above_mask = compile_tree(Rule(above, LONG), default_registry()).execute(dataset).condition
    below_mask = compile_tree(Rule(below, LONG), default_registry()).execute(dataset).condition

    assert not above_mask[:4].any()
    assert not below_mask[:4].any()
    assert above_mask[4:].all()
    assert not below_mask[4:].any()


def test_literal_broadcasts_against_series() -> None:
    dataset = _build_rising()
    tree = Rule(call("GreaterThan", CLOSE, 110.0), LONG)

    signal = compile_tree(tree, default_registry()).execute(dataset).signal

    np.testing.assert_array_equal(signal, (dataset.close > 110.0).astype(float))


def test_division_by_zero_yields_no_signal() -> None:
    dataset = _build_rising()
    zero = call("Subtract", CLOSE, CLOSE)
    tree = Rule(call("GreaterThan", call("Divide", CLOSE, zero), CLOSE), LONG)

    frame = compile_tree(tree, default_registry()).execute(dataset)

    assert not frame.condition.any()


def test_cache_reuses_indicator_columns() -> None:
    dataset = synthetic_bars(120, seed=2)
    cache = IndicatorCache(capacity=16)
    tree = Rule(call("GreaterThan", call("EMA", CLOSE, 10), call("SMA", CLOSE, 20)), LONG)
    plan = compile_tree(tree, default_registry())

    first = plan.execute(dataset, cache).signal
    misses = cache.stats().misses
    second = plan.execute(dataset, cache).signal

    np.testing.assert_array_equal(first, second)
    stats = cache.stats()
    assert stats.misses == misses
    assert stats.hits >= 3
    # accessors are read straight from the dataset
    assert len(cache) == 3


def test_cache_is_keyed_by_dataset() -> None:
    cache = IndicatorCache(capacity=16)
    plan = compile_tree(Rule(call("GreaterThan", CLOSE, call("SMA", CLOSE, 5)), LONG), default_registry())

    plan.execute(synthetic_bars(60, seed=1), cache)
    plan.execute(synthetic_bars(60, seed=2), cache)

    assert cache.stats().hits == 0
    assert len(cache) == 4


def test_cache_evicts_least_recent_and_freezes_values() -> None:
    cache = IndicatorCache(capacity=2)
    cache.put("d", "a", np.ones(3))
    cache.put("d", "b", np.ones(3))
    assert cache.get("d", "a") is not None
    cache.put("d", "c", np.ones(3))

    assert cache.get("d", "b") is None
    stored = cache.get("d", "a")
    assert stored is not None
    with pytest.raises(ValueError):
        stored[0] = 5.0
    with pytest.raises(ValueError, match="positive"):
        IndicatorCache(0)


def test_compile_rejects_non_rule_and_unknown_function() -> None:
    registry = default_registry()

    with pytest.raises(EvaluationError, match="Only Rule trees"):
        compile_tree(call("GreaterThan", CLOSE, CLOSE), registry)
    with pytest.raises(EvaluationError, match="not registered"):
        compile_tree(Rule(call("Mystery", CLOSE), LONG), registry)


def test_step_without_function_is_an_evaluation_error() -> None:
    with pytest.raises(EvaluationError, match="no function"):
        VectorizedPlan._run_step(PlanStep(key="orphan"), [], _build_rising(), None)  # type: ignore[attr-defined]
