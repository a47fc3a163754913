"""Selection, crossover and mutation over strategy trees.

Trees are immutable, so every operator returns new trees that share the
untouched subtrees with their parents.
"""

from __future__ import annotations

import random
from typing import Callable, List, Sequence, Tuple, TypeVar

from .catalog import FunctionRegistry
from .errors import GenerationError
from .expressions import (
    FLAT,
    LONG,
    SHORT,
    Call,
    Const,
    ExpressionNode,
    NodePath,
    Rule,
    SemanticType,
    depth_of_path,
    iter_nodes,
    node_at,
    replace_in_rule,
)
from .generator import SemanticMapper
from .genome import random_genome

T = TypeVar("T")

ACTION_PATH: NodePath = (1,)


def tournament_select(
    population: Sequence[T],
    k: int,
    rng: random.Random,
    key: Callable[[T], float] = lambda member: member.fitness,  # type: ignore[attr-defined]
) -> T:
    """Sample ``k`` members with replacement and return the fittest."""

    if not population:
        raise ValueError("Cannot select from an empty population")
    contenders = [population[rng.randrange(len(population))] for _ in range(max(1, k))]
    return max(contenders, key=key)


# Crossover -----------------------------------------------------------------------


def _condition_points(tree: Rule) -> List[Tuple[NodePath, ExpressionNode]]:
    return [
        (path, node)
        for path, node in iter_nodes(tree)
        if path[:1] == (0,) and isinstance(node, Call)
    ]


def _compatible(registry: FunctionRegistry, first: ExpressionNode, second: ExpressionNode) -> bool:
    node_type = registry.type_of(first)
    if node_type is None or node_type != registry.type_of(second):
        return False
    if node_type is SemanticType.NUMERIC_SERIES:
        return (
            registry.scale_of(first) == registry.scale_of(second)
            and registry.value_range_of(first) == registry.value_range_of(second)
        )
    return True


def _fits(path: NodePath, subtree: ExpressionNode, max_depth: int) -> bool:
    return depth_of_path(path) - 1 + subtree.depth() <= max_depth


def subtree_crossover(
    first: Rule,
    second: Rule,
    registry: FunctionRegistry,
    max_depth: int,
    rng: random.Random,
    attempts: int = 10,
) -> Tuple[Rule, Rule]:
    """Swap one compatible subtree between the conditions of two parents.

    Exchange points carry the same type; numeric points also share scale and
    value range so comparisons and thresholds stay meaningful. When no pair
    fits within ``max_depth`` the parents are returned unchanged.
    """

    points_a = _condition_points(first)
    points_b = _condition_points(second)
    if not points_a or not points_b:
        return first, second
    for _ in range(attempts):
        path_a, node_a = points_a[rng.randrange(len(points_a))]
        matches = [
            (path_b, node_b)
            for path_b, node_b in points_b
            if _compatible(registry, node_a, node_b)
            and _fits(path_a, node_b, max_depth)
            and _fits(path_b, node_a, max_depth)
        ]
        if not matches:
            continue
        path_b, node_b = matches[rng.randrange(len(matches))]
        return replace_in_rule(first, path_a, node_b), replace_in_rule(second, path_b, node_a)
    return first, second


# Mutation ------------------------------------------------------------------------


def flip_action(tree: Rule) -> Rule:
    flipped = SHORT if tree.action == LONG else LONG
    if tree.action == FLAT:
        flipped = LONG
    return Rule(condition=tree.condition, action=flipped)


def _fresh_subtree(
    tree: Rule,
    path: NodePath,
    mapper: SemanticMapper,
    rng: random.Random,
    genome_length: int,
) -> ExpressionNode:
    registry = mapper.registry
    node = node_at(tree, path)
    required = registry.type_of(node)
    if required is None:
        raise GenerationError(f"Cannot mutate untyped node {node!r}")
    genome = random_genome(rng, genome_length, mapper.gene_max)
    budget = mapper.max_depth - depth_of_path(path) + 1
    if isinstance(node, Const):
        parent = node_at(tree, path[:-1])
        if not isinstance(parent, Call):
            raise GenerationError(f"Literal at {path} has no function parent")
        return mapper.generate_subtree(genome, required, budget, parent=parent)
    if required is SemanticType.NUMERIC_SERIES:
        value_range = registry.value_range_of(node)
        replacement = mapper.generate_subtree(
            genome,
            required,
            budget,
            scale=registry.scale_of(node),
            ranged=value_range is not None,
        )
        if registry.value_range_of(replacement) != value_range:
            raise GenerationError("Replacement changes the operand's value range")
        return replacement
    return mapper.generate_subtree(genome, required, budget)


def subtree_mutation(
    tree: Rule,
    mapper: SemanticMapper,
    rng: random.Random,
    *,
    genome_length: int,
    attempts: int = 10,
) -> Rule:
    """Replace one randomly chosen node with a freshly generated subtree.

    Choosing the action flips the trade direction instead. Returns the input
    tree when no attempt yields a fitting replacement.
    """

    paths = [path for path, _ in iter_nodes(tree) if path]
    for _ in range(attempts):
        path = paths[rng.randrange(len(paths))]
        if path == ACTION_PATH:
            return flip_action(tree)
        try:
            replacement = _fresh_subtree(tree, path, mapper, rng, genome_length)
        except GenerationError:
            continue
        return replace_in_rule(tree, path, replacement)
    return tree
