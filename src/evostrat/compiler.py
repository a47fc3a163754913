"""Lowering of strategy trees into vectorized column programs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np

from .cache import IndicatorCache
from .catalog import FunctionDescriptor, FunctionKind, FunctionRegistry
from .data import OhlcvDataset
from .errors import EvaluationError
from .expressions import Call, Const, ExpressionNode, Rule, SemanticType, action_direction
from .primitives import is_true

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanStep:
    """One column operation; ``inputs`` index earlier steps of the plan."""

    key: str
    descriptor: FunctionDescriptor | None = None
    inputs: Tuple[int, ...] = ()
    literal: Any = None
    broadcast: bool = False

    @property
    def is_literal(self) -> bool:
        return self.descriptor is None


@dataclass(frozen=True)
class SignalFrame:
    condition: np.ndarray
    signal: np.ndarray

    def __len__(self) -> int:
        return len(self.signal)


@dataclass(frozen=True)
class VectorizedPlan:
    """Topologically ordered, deduplicated steps for one strategy tree."""

    tree: Rule
    steps: Tuple[PlanStep, ...]
    condition_index: int
    direction: int

    def execute(self, dataset: OhlcvDataset, cache: IndicatorCache | None = None) -> SignalFrame:
        values = self.evaluate_steps(dataset, cache)
        mask = is_true(values[self.condition_index])
        signal = np.where(mask, float(self.direction), 0.0)
        return SignalFrame(condition=mask, signal=signal)

    def evaluate_steps(self, dataset: OhlcvDataset, cache: IndicatorCache | None = None) -> List[Any]:
        length = len(dataset)
        values: List[Any] = []
        with np.errstate(all="ignore"):
            for step in self.steps:
                if step.is_literal:
                    value = np.full(length, float(step.literal)) if step.broadcast else step.literal
                    values.append(value)
                    continue
                args = [values[i] for i in step.inputs]
                values.append(self._run_step(step, args, dataset, cache))
        return values

    @staticmethod
    def _run_step(
        step: PlanStep,
        args: List[Any],
        dataset: OhlcvDataset,
        cache: IndicatorCache | None,
    ) -> np.ndarray:
        descriptor = step.descriptor
        if descriptor is None:
            raise EvaluationError(f"Plan step {step.key} has no function to run")

        def compute() -> np.ndarray:
            try:
                result = descriptor.compute_vectorized(dataset, *args)
            except EvaluationError:
                raise
            except Exception as exc:
                raise EvaluationError(f"{descriptor.name} failed: {exc}") from exc
            column = np.asarray(result, dtype=float)
            if column.shape != (len(dataset),):
                raise EvaluationError(
                    f"{descriptor.name} produced shape {column.shape}, expected ({len(dataset)},)"
                )
            return column

        if cache is None or descriptor.kind is FunctionKind.ACCESSOR:
            return compute()
        return cache.get_or_compute(dataset.identity, step.key, compute)


def compile_tree(tree: ExpressionNode, registry: FunctionRegistry) -> VectorizedPlan:
    """Lower ``tree`` into a :class:`VectorizedPlan`.

    Identical subexpressions (by canonical key) are emitted once and shared by
    every consumer inside the plan.
    """

    if not isinstance(tree, Rule):
        raise EvaluationError("Only Rule trees can be compiled into a signal plan")
    steps: List[PlanStep] = []
    memo: Dict[Tuple[str, bool], int] = {}

    def lower(node: ExpressionNode, broadcast: bool = False) -> int:
        memo_key = (node.key, broadcast and isinstance(node, Const))
        if memo_key in memo:
            return memo[memo_key]
        if isinstance(node, Const):
            steps.append(PlanStep(key=node.key, literal=node.value, broadcast=broadcast))
        elif isinstance(node, Call):
            try:
                descriptor = registry.get(node.name)
            except KeyError as exc:
                raise EvaluationError(str(exc)) from exc
            inputs = tuple(
                lower(arg, broadcast=expected is SemanticType.NUMERIC_SERIES)
                for expected, arg in zip(descriptor.input_types, node.args)
            )
            steps.append(PlanStep(key=node.key, descriptor=descriptor, inputs=inputs))
        else:
            raise EvaluationError("Nested rules cannot be compiled")
        memo[memo_key] = len(steps) - 1
        return memo[memo_key]

    condition_index = lower(tree.condition)
    plan = VectorizedPlan(
        tree=tree,
        steps=tuple(steps),
        condition_index=condition_index,
        direction=action_direction(tree.action),
    )
    logger.debug("Compiled plan with %d steps", len(plan.steps))
    return plan
