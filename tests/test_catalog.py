"""Tests for the function registry and the indicator implementations."""

from __future__ import annotations

import numpy as np
import pytest

from evostrat.catalog import (
    BOUNDED_OPERAND,
    SAME_SCALE,
    FunctionDescriptor,
    FunctionKind,
    FunctionRegistry,
    catalog_descriptors,
    default_registry,
)
from evostrat.data import OhlcvDataset, synthetic_bars
from evostrat.expressions import ScaleKind, SemanticType, call
from evostrat.streaming import stream_column

N = SemanticType.NUMERIC_SERIES
B = SemanticType.BOOL_SERIES


def _build_dataset(seed: int = 11, length: int = 300) -> OhlcvDataset:
    return synthetic_bars(length, seed=seed)


def test_registry_lookup_and_types() -> None:
    registry = default_registry()

    assert "SMA" in registry
    assert registry.get("RSI").value_range == (0.0, 100.0)
    assert registry.get("GreaterThan").operand_rule == SAME_SCALE
    assert registry.get("LessThanScalar").operand_rule == BOUNDED_OPERAND
    assert registry.get("Close").kind is FunctionKind.ACCESSOR
    assert all(fd.output_type is B for fd in registry.returning(B))
    assert {"And", "Or", "Not"} <= {fd.name for fd in registry.returning(B)}


def test_registry_unknown_name() -> None:
    with pytest.raises(KeyError, match="not registered"):
        default_registry().get("Nope")


def test_registry_rejects_duplicates() -> None:
    descriptors = catalog_descriptors()
    with pytest.raises(ValueError, match="Duplicate"):
        FunctionRegistry(descriptors + descriptors[:1])


def test_registry_is_shared() -> None:
    assert default_registry() is default_registry()


def test_close_leads_the_catalog() -> None:
    numeric = default_registry().returning(N)

    assert numeric[0].name == "Close"
    assert numeric[1].name == "Open"


def test_scale_inheritance() -> None:
    registry = default_registry()
    close = call("Close")

    assert registry.scale_of(close) is ScaleKind.PRICE
    assert registry.scale_of(call("SMA", close, 20)) is ScaleKind.PRICE
    assert registry.scale_of(call("Shift", call("Volume"), 1)) is ScaleKind.VOLUME
    assert registry.scale_of(call("RSI", close, 14)) is ScaleKind.BOUNDED
    assert registry.scale_of(call("SMA", call("RSI", close, 14), 5)) is ScaleKind.BOUNDED


def test_products_and_quotients_do_not_borrow_a_scale() -> None:
    registry = default_registry()
    close = call("Close")
    ratio = call("Divide", close, call("Volume"))

    assert registry.scale_of(ratio) is ScaleKind.RATIO
    assert registry.scale_of(call("Multiply", close, close)) is ScaleKind.RATIO
    assert registry.scale_of(call("Add", ratio, ratio)) is ScaleKind.RATIO
    assert registry.scale_of(ratio) != registry.scale_of(close)


def test_value_range_inheritance() -> None:
    registry = default_registry()
    rsi = call("RSI", call("Close"), 14)

    assert registry.value_range_of(rsi) == (0.0, 100.0)
    assert registry.value_range_of(call("EMA", rsi, 5)) == (0.0, 100.0)
    assert registry.value_range_of(call("Shift", rsi, 2)) == (0.0, 100.0)
    # arithmetic does not keep the operand's range
    assert registry.value_range_of(call("Add", rsi, rsi)) is None
    assert registry.value_range_of(call("Close")) is None


def test_type_of_literals_and_calls() -> None:
    registry = default_registry()

    assert registry.type_of(call("Close")) is N
    assert registry.type_of(call("Not", call("GreaterThan", call("Close"), call("Open")))) is B
    assert registry.type_of(call("Shift", call("Close"), 1).args[1]) is SemanticType.INTEGER
    assert registry.type_of(call("Missing")) is None


def test_describe_signature() -> None:
    descriptor = default_registry().get("GreaterThanScalar")

    assert descriptor.arity == 2
    assert descriptor.describe_signature() == "GreaterThanScalar(NumericSeries, Float) -> BoolSeries"


def test_custom_registry_accepts_new_descriptor() -> None:
    def double(ctx: OhlcvDataset, series: np.ndarray) -> np.ndarray:
        return np.asarray(series) * 2

    extra = FunctionDescriptor("Double", (N,), N, double)
    registry = FunctionRegistry(catalog_descriptors() + [extra])

    assert registry.get("Double").arity == 1
    assert len(registry) == len(default_registry()) + 1


@pytest.mark.parametrize(
    "name, params, uses_series",
    [
        ("SMA", (14,), True),
        ("EMA", (10,), True),
        ("RSI", (14,), True),
        ("Momentum", (10,), True),
        ("StdDev", (20,), True),
        ("ATR", (14,), False),
        ("OBV", (), False),
    ],
)
def test_streaming_matches_vectorized(name: str, params: tuple, uses_series: bool) -> None:
    dataset = _build_dataset()
    descriptor = default_registry().get(name)
    assert descriptor.streaming is not None

    if uses_series:
        vectorized = descriptor.compute(dataset, dataset.close, *params)
    else:
        vectorized = descriptor.compute(dataset, *params)
    streamed = stream_column(descriptor.streaming(*params), dataset)

    np.testing.assert_allclose(streamed, vectorized, atol=1e-6, equal_nan=True)


def test_indicators_warm_up_with_nan() -> None:
    dataset = _build_dataset()
    sma = default_registry().get("SMA").compute(dataset, dataset.close, 20)

    assert np.isnan(sma[:19]).all()
    assert np.isfinite(sma[19:]).all()
    np.testing.assert_allclose(sma[19], dataset.close[:20].mean())


def test_bounded_indicators_stay_in_range() -> None:
    dataset = _build_dataset(seed=5)
    registry = default_registry()
    for name in ("Stochastic", "WilliamsR", "MFI", "ADX", "DeMarker"):
        descriptor = registry.get(name)
        values = descriptor.compute(dataset, 14)
        finite = values[np.isfinite(values)]
        low, high = descriptor.value_range
        assert finite.size > 0, name
        assert finite.min() >= low - 1e-9, name
        assert finite.max() <= high + 1e-9, name
