"""Function descriptors and the immutable registry used by every component."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Tuple

from . import indicators as ind
from . import primitives as prim
from . import streaming
from .expressions import Call, Const, ExpressionNode, ScaleKind, SemanticType

N = SemanticType.NUMERIC_SERIES
B = SemanticType.BOOL_SERIES
I = SemanticType.INTEGER  # noqa: E741
F = SemanticType.FLOAT

SAME_SCALE = "same_scale"
BOUNDED_OPERAND = "bounded"


class FunctionKind(str, Enum):
    ACCESSOR = "accessor"
    INDICATOR = "indicator"
    PRIMITIVE = "primitive"


@dataclass(frozen=True)
class FunctionDescriptor:
    """Signature and behaviour of one catalog entry.

    ``scale`` of ``None`` means the output inherits the scale of the first
    series argument (moving averages, shifts, sums). Products and quotients mix
    units, so they carry the ``RATIO`` scale and only compare with each other.
    ``preserves_range`` marks inheriting functions that also keep the operand's
    value range, so an ``SMA`` of an ``RSI`` still counts as bounded.
    """

    name: str
    input_types: Tuple[SemanticType, ...]
    output_type: SemanticType
    compute: Callable[..., Any]
    kind: FunctionKind = FunctionKind.PRIMITIVE
    scale: ScaleKind | None = None
    value_range: Tuple[float, float] | None = None
    typical_params: Tuple[int, ...] = ()
    operand_rule: str | None = None
    preserves_range: bool = False
    streaming: Callable[..., Any] | None = None
    description: str = ""

    @property
    def arity(self) -> int:
        return len(self.input_types)

    def describe_signature(self) -> str:
        inputs = ", ".join(t.value for t in self.input_types)
        return f"{self.name}({inputs}) -> {self.output_type.value}"

    def compute_vectorized(self, ctx: Any, *args: Any) -> Any:
        return self.compute(ctx, *args)


class FunctionRegistry:
    """Name-indexed, read-only view of the function catalog."""

    def __init__(self, descriptors: Iterable[FunctionDescriptor]) -> None:
        table: Dict[str, FunctionDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in table:
                raise ValueError(f"Duplicate function name in catalog: {descriptor.name}")
            table[descriptor.name] = descriptor
        self._table: Mapping[str, FunctionDescriptor] = MappingProxyType(table)
        by_output: Dict[SemanticType, Tuple[FunctionDescriptor, ...]] = {}
        for semantic_type in SemanticType:
            by_output[semantic_type] = tuple(
                d for d in table.values() if d.output_type is semantic_type
            )
        self._by_output: Mapping[SemanticType, Tuple[FunctionDescriptor, ...]] = MappingProxyType(by_output)

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __iter__(self) -> Iterator[FunctionDescriptor]:
        return iter(self._table.values())

    @property
    def names(self) -> List[str]:
        return list(self._table)

    def get(self, name: str) -> FunctionDescriptor:
        try:
            return self._table[name]
        except KeyError:
            raise KeyError(f"Function '{name}' is not registered") from None

    def returning(self, semantic_type: SemanticType) -> Tuple[FunctionDescriptor, ...]:
        return self._by_output[semantic_type]

    def indicators(self) -> Tuple[FunctionDescriptor, ...]:
        return tuple(d for d in self._table.values() if d.kind is FunctionKind.INDICATOR)

    # Node inspection -------------------------------------------------------------

    def type_of(self, node: ExpressionNode) -> SemanticType | None:
        if isinstance(node, Const):
            return node.literal_type()
        if isinstance(node, Call) and node.name in self._table:
            return self._table[node.name].output_type
        return None

    def scale_of(self, node: ExpressionNode) -> ScaleKind | None:
        if not isinstance(node, Call) or node.name not in self._table:
            return None
        descriptor = self._table[node.name]
        if descriptor.scale is not None:
            return descriptor.scale
        for arg_type, arg in zip(descriptor.input_types, node.args):
            if arg_type is N:
                return self.scale_of(arg)
        return None

    def value_range_of(self, node: ExpressionNode) -> Tuple[float, float] | None:
        if not isinstance(node, Call) or node.name not in self._table:
            return None
        descriptor = self._table[node.name]
        if descriptor.value_range is not None:
            return descriptor.value_range
        if descriptor.scale is None and descriptor.preserves_range:
            for arg_type, arg in zip(descriptor.input_types, node.args):
                if arg_type is N:
                    return self.value_range_of(arg)
        return None


# Catalog -------------------------------------------------------------------------


def _accessor(name: str, fn: Callable[..., Any], scale: ScaleKind) -> FunctionDescriptor:
    return FunctionDescriptor(
        name=name, input_types=(), output_type=N, compute=fn, kind=FunctionKind.ACCESSOR, scale=scale
    )


def _indicator(
    name: str,
    fn: Callable[..., Any],
    inputs: Tuple[SemanticType, ...],
    scale: ScaleKind | None,
    typical: Tuple[int, ...] = (),
    value_range: Tuple[float, float] | None = None,
    *,
    preserves_range: bool = False,
    streaming_factory: Callable[..., Any] | None = None,
    description: str = "",
) -> FunctionDescriptor:
    return FunctionDescriptor(
        name=name,
        input_types=inputs,
        output_type=N,
        compute=fn,
        kind=FunctionKind.INDICATOR,
        scale=scale,
        value_range=value_range,
        typical_params=typical,
        preserves_range=preserves_range,
        streaming=streaming_factory,
        description=description,
    )


def catalog_descriptors() -> List[FunctionDescriptor]:
    """Return the built-in catalog in a stable order.

    Order matters: the generator falls back to the first legal entry when a
    genome runs out, so ``Close`` leads the accessors.
    """

    descriptors = [
        _accessor("Close", prim.close, ScaleKind.PRICE),
        _accessor("Open", prim.open_, ScaleKind.PRICE),
        _accessor("High", prim.high, ScaleKind.PRICE),
        _accessor("Low", prim.low, ScaleKind.PRICE),
        _accessor("Volume", prim.volume, ScaleKind.VOLUME),
        # Trend
        _indicator("SMA", ind.sma, (N, I), None, (10, 20, 50, 100, 200), preserves_range=True,
                   streaming_factory=streaming.StreamingSMA, description="Simple moving average"),
        _indicator("EMA", ind.ema, (N, I), None, (10, 20, 50, 100, 200), preserves_range=True,
                   streaming_factory=streaming.StreamingEMA, description="Exponential moving average"),
        _indicator("DEMA", ind.dema, (N, I), None, (9, 14, 21), preserves_range=True),
        _indicator("TEMA", ind.tema, (N, I), None, (9, 14, 21), preserves_range=True),
        _indicator("BBUpper", ind.bollinger_upper, (N, I), None, (20,)),
        _indicator("BBLower", ind.bollinger_lower, (N, I), None, (20,)),
        _indicator("SAR", ind.parabolic_sar, (), ScaleKind.PRICE, description="Parabolic SAR"),
        _indicator("MACD", ind.macd, (N, I, I), ScaleKind.ZERO_CENTERED, (12, 26, 9)),
        # Momentum
        _indicator("RSI", ind.rsi, (N, I), ScaleKind.BOUNDED, (9, 14, 21, 25), (0.0, 100.0),
                   streaming_factory=streaming.StreamingRSI),
        _indicator("Stochastic", ind.stochastic, (I,), ScaleKind.BOUNDED, (5, 9, 14), (0.0, 100.0)),
        _indicator("WilliamsR", ind.williams_r, (I,), ScaleKind.BOUNDED, (14,), (-100.0, 0.0)),
        _indicator("DeMarker", ind.demarker, (I,), ScaleKind.BOUNDED, (13, 14), (0.0, 1.0)),
        _indicator("MFI", ind.money_flow_index, (I,), ScaleKind.BOUNDED, (14,), (0.0, 100.0)),
        _indicator("ADX", ind.adx, (I,), ScaleKind.BOUNDED, (14,), (0.0, 100.0)),
        _indicator("CCI", ind.cci, (I,), ScaleKind.ZERO_CENTERED, (14, 20)),
        _indicator("Momentum", ind.momentum, (N, I), ScaleKind.ZERO_CENTERED, (9, 12, 14),
                   streaming_factory=streaming.StreamingMomentum),
        _indicator("ROC", ind.rate_of_change, (N, I), ScaleKind.ZERO_CENTERED, (10, 12, 14)),
        _indicator("TriX", ind.trix, (N, I), ScaleKind.ZERO_CENTERED, (14, 15, 30)),
        _indicator("AO", ind.awesome_oscillator, (), ScaleKind.ZERO_CENTERED),
        _indicator("AC", ind.accelerator_oscillator, (), ScaleKind.ZERO_CENTERED),
        _indicator("Bears", ind.bears_power, (I,), ScaleKind.ZERO_CENTERED, (13, 14)),
        _indicator("Bulls", ind.bulls_power, (I,), ScaleKind.ZERO_CENTERED, (13, 14)),
        # Volatility
        _indicator("ATR", ind.atr, (I,), ScaleKind.VOLATILITY, (7, 14, 21),
                   streaming_factory=streaming.StreamingATR),
        _indicator("StdDev", ind.stddev, (N, I), ScaleKind.VOLATILITY, (20,),
                   streaming_factory=streaming.StreamingStdDev),
        _indicator("BWMFI", ind.bw_market_facilitation, (), ScaleKind.VOLATILITY),
        # Volume
        _indicator("OBV", ind.on_balance_volume, (), ScaleKind.VOLUME,
                   streaming_factory=streaming.StreamingOBV),
        _indicator("Force", ind.force_index, (I,), ScaleKind.VOLUME, (1, 13)),
        _indicator("Chaikin", ind.chaikin_oscillator, (I, I), ScaleKind.VOLUME, (3, 10)),
        # Arithmetic
        FunctionDescriptor("Add", (N, N), N, prim.add, operand_rule=SAME_SCALE),
        FunctionDescriptor("Subtract", (N, N), N, prim.subtract, operand_rule=SAME_SCALE),
        FunctionDescriptor("Multiply", (N, N), N, prim.multiply, scale=ScaleKind.RATIO),
        FunctionDescriptor("Divide", (N, N), N, prim.divide, scale=ScaleKind.RATIO),
        FunctionDescriptor("Abs", (N,), N, prim.absolute),
        FunctionDescriptor("Shift", (N, I), N, prim.shift, typical_params=(1, 2, 3, 5, 10), preserves_range=True),
        # Comparisons
        FunctionDescriptor("GreaterThan", (N, N), B, prim.greater_than, operand_rule=SAME_SCALE),
        FunctionDescriptor("LessThan", (N, N), B, prim.less_than, operand_rule=SAME_SCALE),
        FunctionDescriptor("CrossAbove", (N, N), B, prim.cross_above, operand_rule=SAME_SCALE),
        FunctionDescriptor("CrossBelow", (N, N), B, prim.cross_below, operand_rule=SAME_SCALE),
        FunctionDescriptor("GreaterThanScalar", (N, F), B, prim.greater_than_scalar, operand_rule=BOUNDED_OPERAND),
        FunctionDescriptor("LessThanScalar", (N, F), B, prim.less_than_scalar, operand_rule=BOUNDED_OPERAND),
        # Logic
        FunctionDescriptor("And", (B, B), B, prim.logical_and),
        FunctionDescriptor("Or", (B, B), B, prim.logical_or),
        FunctionDescriptor("Not", (B,), B, prim.logical_not),
    ]
    return descriptors


@lru_cache(maxsize=1)
def default_registry() -> FunctionRegistry:
    """Registry over the built-in catalog, built once per process."""

    return FunctionRegistry(catalog_descriptors())
