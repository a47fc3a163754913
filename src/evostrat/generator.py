"""Deterministic mapping from integer genomes to typed strategy trees.

The mapper reads genes top-down: every position in the tree asks the genome
for a choice among the functions whose output type fits that position and
whose smallest completion still fits the remaining depth budget. Comparisons
are kept meaningful by scale: series compared against each other share a
scale, and scalar thresholds are only drawn for bounded oscillators, inside
their value range.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Dict, List, Sequence, Tuple, Union

from .catalog import BOUNDED_OPERAND, SAME_SCALE, FunctionDescriptor, FunctionRegistry
from .errors import GenerationError
from .expressions import LONG, SHORT, Call, Const, ExpressionNode, Rule, ScaleKind, SemanticType
from .genome import DEFAULT_GENE_MAX, GeneCursor

if TYPE_CHECKING:  # pragma: no cover
    from .config import EvolutionConfig

N = SemanticType.NUMERIC_SERIES
B = SemanticType.BOOL_SERIES

MIN_TREE_DEPTH = 3
GENERIC_INT_RANGE = (2, 50)
GENERIC_FLOAT_RANGE = (0.0, 100.0)
THRESHOLD_MARGIN = 0.05
_UNREACHABLE = 1_000_000

ScaleKey = Tuple[Union[ScaleKind, None], bool]
ArgKey = Union[ScaleKey, str, None]


class SemanticMapper:
    """Builds type-correct trees from genomes for one registry and depth limit."""

    def __init__(
        self,
        registry: FunctionRegistry,
        max_depth: int,
        gene_max: int = DEFAULT_GENE_MAX,
    ) -> None:
        if max_depth < MIN_TREE_DEPTH:
            raise GenerationError(f"max_depth must be at least {MIN_TREE_DEPTH}")
        self.registry = registry
        self.max_depth = max_depth
        self.gene_max = gene_max
        self._numeric = registry.returning(N)
        self._boolean = registry.returning(B)
        self._floors: Dict[ScaleKey, int] = {}
        self._bool_floor = _UNREACHABLE
        self._compute_floors()
        if self._bool_floor > max_depth - 1:
            raise GenerationError("Registry cannot produce a boolean condition within max_depth")

    # Public API ------------------------------------------------------------------

    def generate(self, genome: Sequence[int]) -> Rule:
        cursor = GeneCursor(genome, self.gene_max)
        condition = self._build_bool(cursor, self.max_depth - 1)
        action = LONG if cursor.choose(2) == 0 else SHORT
        return Rule(condition=condition, action=action)

    def generate_subtree(
        self,
        genome: Sequence[int],
        required: SemanticType,
        budget: int,
        *,
        scale: ScaleKind | None = None,
        ranged: bool = False,
        parent: Call | None = None,
    ) -> ExpressionNode:
        """Build a fresh subtree of type ``required`` no deeper than ``budget``.

        ``parent`` supplies the context for literal positions: typical values
        for integers and the compared operand's range for thresholds.
        """

        cursor = GeneCursor(genome, self.gene_max)
        if budget < 1:
            raise GenerationError("subtree budget must be positive")
        if required is B:
            if budget < self._bool_floor:
                raise GenerationError(f"No boolean expression fits depth {budget}")
            return self._build_bool(cursor, budget)
        if required is N:
            if self._floors[(scale, ranged)] > budget:
                raise GenerationError(f"No {scale} series fits depth {budget}")
            return self._build_numeric(cursor, budget, scale, ranged)
        if parent is None:
            return self._literal(cursor, required, None, None)
        descriptor = self.registry.get(parent.name)
        first_series = next(
            (arg for arg, t in zip(parent.args, descriptor.input_types) if t is N), None
        )
        return self._literal(cursor, required, descriptor, first_series)

    def numeric_floor(self, scale: ScaleKind | None = None, ranged: bool = False) -> int:
        return self._floors[(scale, ranged)]

    @property
    def bool_floor(self) -> int:
        return self._bool_floor

    # Depth table -----------------------------------------------------------------

    def _compute_floors(self) -> None:
        keys: List[ScaleKey] = [(scale, ranged) for scale in (None, *ScaleKind) for ranged in (False, True)]
        self._floors = {key: _UNREACHABLE for key in keys}
        changed = True
        while changed:
            changed = False
            for scale, ranged in keys:
                best = min(
                    (
                        self._call_floor(fd, scale, ranged)
                        for fd in self._numeric
                        if self._admits(fd, scale, ranged)
                    ),
                    default=_UNREACHABLE,
                )
                if best < self._floors[(scale, ranged)]:
                    self._floors[(scale, ranged)] = best
                    changed = True
            best_bool = min((self._call_floor(fd) for fd in self._boolean), default=_UNREACHABLE)
            if best_bool < self._bool_floor:
                self._bool_floor = best_bool
                changed = True

    @staticmethod
    def _admits(fd: FunctionDescriptor, scale: ScaleKind | None, ranged: bool) -> bool:
        if fd.scale is not None:
            if scale is not None and fd.scale is not scale:
                return False
            return not ranged or fd.value_range is not None
        if N not in fd.input_types:
            return False
        return not ranged or fd.preserves_range

    @staticmethod
    def _arg_keys(fd: FunctionDescriptor, scale: ScaleKind | None = None, ranged: bool = False) -> List[ArgKey]:
        keys: List[ArgKey] = []
        seen_series = False
        for arg_type in fd.input_types:
            if arg_type is N:
                if not seen_series:
                    if fd.operand_rule == BOUNDED_OPERAND:
                        keys.append((ScaleKind.BOUNDED, True))
                    elif fd.scale is None and fd.output_type is N:
                        keys.append((scale, ranged))
                    else:
                        keys.append((None, False))
                    seen_series = True
                elif fd.operand_rule == SAME_SCALE and fd.output_type is N:
                    keys.append((scale, False))
                else:
                    keys.append((None, False))
            elif arg_type is B:
                keys.append("bool")
            else:
                keys.append(None)
        return keys

    def _call_floor(self, fd: FunctionDescriptor, scale: ScaleKind | None = None, ranged: bool = False) -> int:
        deepest = 0
        for key in self._arg_keys(fd, scale, ranged):
            if key is None:
                deepest = max(deepest, 1)
            elif key == "bool":
                deepest = max(deepest, self._bool_floor)
            else:
                deepest = max(deepest, self._floors[key])  # type: ignore[index]
        return 1 + deepest

    # Builders --------------------------------------------------------------------

    def _prefers_terminal(self, cursor: GeneCursor, budget: int) -> bool:
        depth_used = self.max_depth - budget
        return cursor.choose(self.max_depth) < depth_used

    def _build_numeric(
        self,
        cursor: GeneCursor,
        budget: int,
        scale: ScaleKind | None = None,
        ranged: bool = False,
        exclude: ExpressionNode | None = None,
    ) -> ExpressionNode:
        candidates = [
            fd
            for fd in self._numeric
            if self._admits(fd, scale, ranged) and self._call_floor(fd, scale, ranged) <= budget
        ]
        if not candidates:
            raise GenerationError(f"No numeric expression of scale {scale} fits depth {budget}")
        terminals = [fd for fd in candidates if fd.arity == 0]
        if exclude is not None:
            distinct = [fd for fd in terminals if Call(fd.name) != exclude]
            if distinct:
                terminals = distinct
        functions = [fd for fd in candidates if fd.arity > 0]

        if cursor.exhausted:
            fallback = terminals[0] if terminals else min(
                functions, key=lambda fd: self._call_floor(fd, scale, ranged)
            )
            return self._build_call(cursor, fallback, budget, scale, ranged)
        if terminals and (not functions or self._prefers_terminal(cursor, budget)):
            pool = terminals
        else:
            pool = functions
        descriptor = pool[cursor.choose(len(pool))]
        return self._build_call(cursor, descriptor, budget, scale, ranged)

    def _build_bool(self, cursor: GeneCursor, budget: int) -> ExpressionNode:
        candidates = [fd for fd in self._boolean if self._call_floor(fd) <= budget]
        if not candidates:
            raise GenerationError(f"No boolean expression fits depth {budget}")
        comparisons = [fd for fd in candidates if B not in fd.input_types]
        if cursor.exhausted:
            fallback = min(comparisons or candidates, key=self._call_floor)
            return self._build_call(cursor, fallback, budget)
        if comparisons and self._prefers_terminal(cursor, budget):
            pool = comparisons
        else:
            pool = candidates
        descriptor = pool[cursor.choose(len(pool))]
        return self._build_call(cursor, descriptor, budget)

    def _build_call(
        self,
        cursor: GeneCursor,
        fd: FunctionDescriptor,
        budget: int,
        scale: ScaleKind | None = None,
        ranged: bool = False,
    ) -> Call:
        args: List[ExpressionNode] = []
        first_series: ExpressionNode | None = None
        for arg_type, key in zip(fd.input_types, self._arg_keys(fd, scale, ranged)):
            if arg_type is N:
                if first_series is None:
                    arg_scale, arg_ranged = key  # type: ignore[misc]
                    node = self._build_numeric(cursor, budget - 1, arg_scale, arg_ranged)
                    first_series = node
                elif fd.operand_rule == SAME_SCALE:
                    node = self._build_numeric(
                        cursor,
                        budget - 1,
                        self.registry.scale_of(first_series),
                        False,
                        exclude=first_series,
                    )
                else:
                    node = self._build_numeric(cursor, budget - 1)
            elif arg_type is B:
                node = self._build_bool(cursor, budget - 1)
            else:
                node = self._literal(cursor, arg_type, fd, first_series)
            args.append(node)
        return Call(fd.name, tuple(args))

    def _literal(
        self,
        cursor: GeneCursor,
        required: SemanticType,
        fd: FunctionDescriptor | None,
        operand: ExpressionNode | None,
    ) -> Const:
        if required is SemanticType.INTEGER:
            if fd is not None and fd.typical_params:
                return Const(fd.typical_params[cursor.choose(len(fd.typical_params))])
            return Const(cursor.int_range(*GENERIC_INT_RANGE))
        value_range = self.registry.value_range_of(operand) if operand is not None else None
        low, high = value_range or GENERIC_FLOAT_RANGE
        margin = (high - low) * THRESHOLD_MARGIN
        return Const(round(cursor.float_range(low + margin, high - margin), 2))


@lru_cache(maxsize=16)
def _mapper_for(registry: FunctionRegistry, max_depth: int, gene_max: int) -> SemanticMapper:
    return SemanticMapper(registry, max_depth, gene_max)


def mapper_for(registry: FunctionRegistry, config: "EvolutionConfig") -> SemanticMapper:
    return _mapper_for(registry, config.max_depth, config.gene_max)


def generate(genome: Sequence[int], registry: FunctionRegistry, config: "EvolutionConfig") -> Rule:
    """Map ``genome`` onto a strategy tree; the same genome always yields the same tree."""

    return mapper_for(registry, config).generate(genome)
