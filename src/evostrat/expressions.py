"""Typed expression trees describing trading rules."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Dict, Iterator, Tuple, Union


class SemanticType(str, Enum):
    """Closed set of value categories flowing through a strategy tree."""

    NUMERIC_SERIES = "NumericSeries"
    BOOL_SERIES = "BoolSeries"
    INTEGER = "Integer"
    FLOAT = "Float"


class ScaleKind(str, Enum):
    """Value scale of a numeric series, used to keep comparisons meaningful."""

    PRICE = "price"
    BOUNDED = "bounded_oscillator"
    ZERO_CENTERED = "zero_centered_oscillator"
    VOLATILITY = "volatility"
    VOLUME = "volume"
    RATIO = "ratio"


Literal = Union[int, float, bool, str]
NodePath = Tuple[int, ...]


def _format_number(value: float) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        return str(value)
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.4f}"
    return f"{value:.2f}"


# Nodes ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Const:
    """Literal leaf; broadcast to a column when compared against a series."""

    value: Literal

    @property
    def children(self) -> Tuple["ExpressionNode", ...]:
        return ()

    def with_children(self, children: Tuple["ExpressionNode", ...]) -> "Const":
        return self

    def depth(self) -> int:
        return 1

    def size(self) -> int:
        return 1

    def literal_type(self) -> SemanticType | None:
        if isinstance(self.value, bool) or isinstance(self.value, str):
            return None
        if isinstance(self.value, int):
            return SemanticType.INTEGER
        return SemanticType.FLOAT

    def to_formula(self) -> str:
        if isinstance(self.value, str):
            return self.value
        return _format_number(self.value)

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.value, bool):
            value_type = "bool"
        elif isinstance(self.value, int):
            value_type = "int"
        elif isinstance(self.value, float):
            value_type = "float"
        else:
            value_type = "str"
        return {"kind": "const", "type": value_type, "value": self.value}

    @cached_property
    def key(self) -> str:
        return canonical(self)


@dataclass(frozen=True)
class Call:
    """Application of a registered function to an ordered tuple of arguments."""

    name: str
    args: Tuple["ExpressionNode", ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.args, tuple):
            object.__setattr__(self, "args", tuple(self.args))

    @property
    def children(self) -> Tuple["ExpressionNode", ...]:
        return self.args

    def with_children(self, children: Tuple["ExpressionNode", ...]) -> "Call":
        return Call(self.name, tuple(children))

    def depth(self) -> int:
        if not self.args:
            return 1
        return 1 + max(arg.depth() for arg in self.args)

    def size(self) -> int:
        return 1 + sum(arg.size() for arg in self.args)

    def to_formula(self) -> str:
        if not self.args:
            return self.name
        inner = ", ".join(arg.to_formula() for arg in self.args)
        return f"{self.name}({inner})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "call",
            "name": self.name,
            "args": [arg.to_dict() for arg in self.args],
        }

    @cached_property
    def key(self) -> str:
        return canonical(self)


@dataclass(frozen=True)
class Rule:
    """Root of a strategy: when ``condition`` holds, emit ``action``."""

    condition: "ExpressionNode"
    action: "ExpressionNode"

    @property
    def children(self) -> Tuple["ExpressionNode", ...]:
        return (self.condition, self.action)

    def with_children(self, children: Tuple["ExpressionNode", ...]) -> "Rule":
        condition, action = children
        return Rule(condition=condition, action=action)

    def depth(self) -> int:
        return 1 + max(self.condition.depth(), self.action.depth())

    def size(self) -> int:
        return 1 + self.condition.size() + self.action.size()

    @property
    def direction(self) -> int:
        return action_direction(self.action)

    def to_formula(self) -> str:
        label = {1: "LONG", -1: "SHORT", 0: "FLAT"}.get(self.direction, "FLAT")
        return f"IF {self.condition.to_formula()} THEN {label}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "rule",
            "condition": self.condition.to_dict(),
            "action": self.action.to_dict(),
        }

    @cached_property
    def key(self) -> str:
        return canonical(self)


ExpressionNode = Union[Const, Call, Rule]

LONG = Const(1.0)
SHORT = Const(-1.0)
FLAT = Const(0.0)


def action_direction(action: ExpressionNode) -> int:
    """Return +1, -1 or 0 for an action node; anything unrecognised is flat."""

    if isinstance(action, Const) and not isinstance(action.value, (bool, str)):
        if action.value > 0:
            return 1
        if action.value < 0:
            return -1
    return 0


def call(name: str, *args: ExpressionNode | int | float) -> Call:
    """Build a :class:`Call`, wrapping bare numbers in :class:`Const` nodes."""

    wrapped = tuple(arg if isinstance(arg, (Const, Call, Rule)) else Const(arg) for arg in args)
    return Call(name, wrapped)


# Tree utilities -------------------------------------------------------------------


def canonical(node: ExpressionNode) -> str:
    """Deterministic string form used for deduplication and cache keys."""

    return json.dumps(node.to_dict(), sort_keys=True, separators=(",", ":"))


def to_formula_short(node: ExpressionNode, max_len: int = 80) -> str:
    text = node.to_formula()
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."


def iter_nodes(node: ExpressionNode, path: NodePath = ()) -> Iterator[Tuple[NodePath, ExpressionNode]]:
    """Yield ``(path, node)`` pairs in pre-order."""

    yield path, node
    for index, child in enumerate(node.children):
        yield from iter_nodes(child, path + (index,))


def node_at(node: ExpressionNode, path: NodePath) -> ExpressionNode:
    current = node
    for index in path:
        children = current.children
        if index >= len(children):
            raise IndexError(f"path {path} does not exist in tree")
        current = children[index]
    return current


def replace_at(node: ExpressionNode, path: NodePath, replacement: ExpressionNode) -> ExpressionNode:
    """Return a new tree with the node at ``path`` swapped for ``replacement``.

    Only the nodes along ``path`` are rebuilt; every other subtree is shared
    with the original, which stays untouched.
    """

    if not path:
        return replacement
    head, rest = path[0], path[1:]
    children = list(node.children)
    if head >= len(children):
        raise IndexError(f"path {path} does not exist in tree")
    children[head] = replace_at(children[head], rest, replacement)
    return node.with_children(tuple(children))


def replace_in_rule(rule: Rule, path: NodePath, replacement: ExpressionNode) -> Rule:
    """Like :func:`replace_at`, for edits below the root of a strategy."""

    if not path:
        raise ValueError("Cannot replace the root of a strategy rule")
    head, rest = path[0], path[1:]
    children = list(rule.children)
    if head >= len(children):
        raise IndexError(f"path {path} does not exist in tree")
    children[head] = replace_at(children[head], rest, replacement)
    return rule.with_children(tuple(children))


def depth_of_path(path: NodePath) -> int:
    """Depth (1-based) at which the node addressed by ``path`` sits."""

    return len(path) + 1


def node_from_dict(payload: Dict[str, Any]) -> ExpressionNode:
    """Rebuild a tree from the record produced by ``to_dict``."""

    kind = payload.get("kind")
    if kind == "const":
        value_type = payload.get("type")
        value = payload["value"]
        if value_type == "int":
            return Const(int(value))
        if value_type == "float":
            return Const(float(value))
        if value_type == "bool":
            return Const(bool(value))
        return Const(str(value))
    if kind == "call":
        return Call(str(payload["name"]), tuple(node_from_dict(arg) for arg in payload.get("args", [])))
    if kind == "rule":
        return Rule(
            condition=node_from_dict(payload["condition"]),
            action=node_from_dict(payload["action"]),
        )
    raise ValueError(f"Unknown expression node kind: {kind!r}")
