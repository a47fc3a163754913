"""Fast structural and type checks run before any data is touched."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Tuple

from .catalog import FunctionRegistry
from .errors import ValidationError
from .expressions import Call, Const, ExpressionNode, Rule, SemanticType, iter_nodes

N = SemanticType.NUMERIC_SERIES
B = SemanticType.BOOL_SERIES

_ACTION_VALUES = (1.0, -1.0, 0.0)


def validate(tree: ExpressionNode, registry: FunctionRegistry, max_depth: int) -> None:
    """Raise :class:`ValidationError` unless ``tree`` is a well-formed strategy."""

    if not isinstance(tree, Rule):
        raise ValidationError("Strategy root must be a Rule")
    depth = tree.depth()
    if depth > max_depth:
        raise ValidationError(f"Tree depth {depth} exceeds maximum of {max_depth}")
    condition_type = _check(tree.condition, registry)
    if condition_type is not B:
        raise ValidationError(f"Rule condition must be {B.value}, got {condition_type.value}")
    action = tree.action
    if not isinstance(action, Const) or action.literal_type() is None:
        raise ValidationError("Rule action must be a numeric direction literal")
    if float(action.value) not in _ACTION_VALUES:
        raise ValidationError(f"Rule action must be one of {_ACTION_VALUES}, got {action.value}")


def is_valid(tree: ExpressionNode, registry: FunctionRegistry, max_depth: int) -> bool:
    try:
        validate(tree, registry, max_depth)
    except ValidationError:
        return False
    return True


def _accepts(expected: SemanticType, actual: SemanticType, node: ExpressionNode) -> bool:
    if expected is actual:
        return True
    # Numeric literals broadcast to a constant series.
    return expected is N and isinstance(node, Const) and actual in (SemanticType.INTEGER, SemanticType.FLOAT)


def _check(node: ExpressionNode, registry: FunctionRegistry) -> SemanticType:
    if isinstance(node, Rule):
        raise ValidationError("Rules may only appear at the root")
    if isinstance(node, Const):
        literal_type = node.literal_type()
        if literal_type is None:
            raise ValidationError(f"Unsupported literal {node.value!r}")
        return literal_type
    if node.name not in registry:
        raise ValidationError(f"Unknown function '{node.name}'")
    descriptor = registry.get(node.name)
    if len(node.args) != descriptor.arity:
        raise ValidationError(
            f"{node.name} expects {descriptor.arity} arguments, got {len(node.args)}"
        )
    for position, (expected, arg) in enumerate(zip(descriptor.input_types, node.args)):
        actual = _check(arg, registry)
        if not _accepts(expected, actual, arg):
            raise ValidationError(
                f"{node.name} argument {position} must be {expected.value}, got {actual.value}"
            )
    return descriptor.output_type


def check_parameter_diversity(tree: ExpressionNode, min_difference: int) -> None:
    """Reject trees that reuse an indicator with nearly identical periods.

    ``SMA(Close, 14)`` next to ``SMA(Close, 15)`` adds a parameter without
    adding information. Identical parameters are allowed; only distinct ones
    closer than ``min_difference`` are rejected.
    """

    if min_difference <= 0:
        return
    params: Dict[str, List[Tuple[int, ...]]] = defaultdict(list)
    for _, node in iter_nodes(tree):
        if not isinstance(node, Call):
            continue
        integers = tuple(
            int(arg.value)
            for arg in node.args
            if isinstance(arg, Const) and arg.literal_type() is SemanticType.INTEGER
        )
        if integers:
            params[node.name].append(integers)
    for name, seen in params.items():
        for i, first in enumerate(seen):
            for second in seen[i + 1 :]:
                if len(first) != len(second) or first == second:
                    continue
                gap = max(abs(a - b) for a, b in zip(first, second))
                if gap < min_difference:
                    raise ValidationError(
                        f"{name} parameters {first} and {second} differ by less than {min_difference}"
                    )
