"""Tests for structural validation of strategy trees."""

from __future__ import annotations

import pytest

from evostrat.catalog import default_registry
from evostrat.errors import ValidationError
from evostrat.expressions import LONG, Const, Rule, call
from evostrat.presets import PRESET_BUILDERS
from evostrat.validator import check_parameter_diversity, is_valid, validate

CLOSE = call("Close")


def _build_rule(condition, action=LONG) -> Rule:
    return Rule(condition, action)


@pytest.mark.parametrize("name", sorted(PRESET_BUILDERS))
def test_presets_are_valid(name: str) -> None:
    validate(PRESET_BUILDERS[name](), default_registry(), max_depth=6)


def test_root_must_be_rule() -> None:
    with pytest.raises(ValidationError, match="root must be a Rule"):
        validate(call("GreaterThan", CLOSE, CLOSE), default_registry(), 6)


def test_unknown_function_rejected() -> None:
    tree = _build_rule(call("GreaterThan", CLOSE, call("VWAP", 14)))
    with pytest.raises(ValidationError, match="Unknown function 'VWAP'"):
        validate(tree, default_registry(), 6)


def test_arity_mismatch_rejected() -> None:
    tree = _build_rule(call("GreaterThan", CLOSE, call("SMA", CLOSE)))
    with pytest.raises(ValidationError, match="expects 2 arguments"):
        validate(tree, default_registry(), 6)


def test_type_mismatch_rejected() -> None:
    tree = _build_rule(call("And", CLOSE, call("GreaterThan", CLOSE, call("Open"))))
    with pytest.raises(ValidationError, match="must be BoolSeries"):
        validate(tree, default_registry(), 6)


def test_condition_must_be_boolean() -> None:
    with pytest.raises(ValidationError, match="condition must be BoolSeries"):
        validate(_build_rule(call("SMA", CLOSE, 10)), default_registry(), 6)


def test_depth_limit_enforced() -> None:
    deep = call("GreaterThan", call("SMA", call("EMA", call("Shift", CLOSE, 1), 5), 10), CLOSE)
    tree = _build_rule(deep)

    assert tree.depth() == 6
    assert is_valid(tree, default_registry(), 6)
    assert not is_valid(tree, default_registry(), 5)


def test_action_must_be_direction_literal() -> None:
    condition = call("GreaterThan", CLOSE, call("Open"))
    with pytest.raises(ValidationError, match="action"):
        validate(Rule(condition, Const(2.0)), default_registry(), 6)
    with pytest.raises(ValidationError, match="action"):
        validate(Rule(condition, CLOSE), default_registry(), 6)


def test_literal_types_are_strict() -> None:
    registry = default_registry()
    rsi = call("RSI", CLOSE, 14)

    assert is_valid(_build_rule(call("LessThanScalar", rsi, 30.0)), registry, 6)
    # an integer where a Float threshold is expected
    assert not is_valid(_build_rule(call("LessThanScalar", rsi, 30)), registry, 6)
    # a float where an Integer period is expected
    assert not is_valid(_build_rule(call("GreaterThan", CLOSE, call("SMA", CLOSE, 14.0))), registry, 6)


def test_numeric_literal_broadcasts_to_series() -> None:
    tree = _build_rule(call("GreaterThan", CLOSE, 100.0))

    assert is_valid(tree, default_registry(), 6)


def test_nested_rule_rejected() -> None:
    inner = _build_rule(call("GreaterThan", CLOSE, call("Open")))
    with pytest.raises(ValidationError, match="only appear at the root"):
        validate(_build_rule(call("Not", inner)), default_registry(), 6)


def test_parameter_diversity() -> None:
    near = _build_rule(call("GreaterThan", call("SMA", CLOSE, 14), call("SMA", CLOSE, 15)))
    same = _build_rule(call("GreaterThan", call("SMA", CLOSE, 14), call("Shift", call("SMA", CLOSE, 14), 1)))

    with pytest.raises(ValidationError, match="differ by less than 5"):
        check_parameter_diversity(near, 5)
    check_parameter_diversity(near, 1)
    check_parameter_diversity(near, 0)
    check_parameter_diversity(same, 5)
