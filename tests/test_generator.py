"""Tests for genome decoding into typed strategy trees."""

from __future__ import annotations

import random

import pytest

from evostrat.catalog import default_registry
from evostrat.config import EvolutionConfig
from evostrat.errors import GenerationError
from evostrat.expressions import LONG, SHORT, Call, Const, Rule, ScaleKind, SemanticType, call, iter_nodes
from evostrat.generator import MIN_TREE_DEPTH, SemanticMapper, generate, mapper_for
from evostrat.genome import GeneCursor, random_genome, take
from evostrat.validator import validate


def _build_mapper(max_depth: int = 6) -> SemanticMapper:
    return SemanticMapper(default_registry(), max_depth)


def test_take_saturates_at_end() -> None:
    assert take((4, 5), 0) == (1, 4)
    assert take((4, 5), 2) == (2, None)
    assert take((-7,), 0) == (1, 7)


def test_gene_cursor_falls_back_when_exhausted() -> None:
    cursor = GeneCursor((9,))

    assert cursor.choose(4) == 1
    assert cursor.exhausted
    assert cursor.choose(4) == 0
    assert cursor.int_range(3, 8) == 3
    assert cursor.float_range(0.5, 2.0) == 0.5


def test_empty_genome_yields_minimal_rule() -> None:
    tree = _build_mapper().generate(())

    assert tree == Rule(call("GreaterThan", call("Close"), call("Open")), LONG)


def test_generation_is_deterministic() -> None:
    mapper = _build_mapper()
    genome = random_genome(random.Random(21), 64)

    first = mapper.generate(genome)
    second = _build_mapper().generate(list(genome))

    assert first == second
    assert first.key == second.key


def test_module_level_generate_uses_config() -> None:
    config = EvolutionConfig(max_depth=4)
    genome = random_genome(random.Random(2), 32)

    tree = generate(genome, default_registry(), config)

    assert tree.depth() <= 4
    assert mapper_for(default_registry(), config) is mapper_for(default_registry(), config)


@pytest.mark.parametrize("max_depth", [3, 4, 6, 8])
def test_generated_trees_always_validate(max_depth: int) -> None:
    registry = default_registry()
    mapper = SemanticMapper(registry, max_depth)
    rng = random.Random(max_depth)

    for _ in range(300):
        genome = random_genome(rng, rng.randint(1, 80))
        tree = mapper.generate(genome)
        validate(tree, registry, max_depth)
        assert tree.depth() <= max_depth
        assert tree.action in (LONG, SHORT)


def test_compared_series_share_scale() -> None:
    registry = default_registry()
    mapper = _build_mapper(7)
    rng = random.Random(5)
    for _ in range(300):
        tree = mapper.generate(random_genome(rng, 64))
        for _, node in iter_nodes(tree):
            if isinstance(node, Call) and node.name in {"GreaterThan", "LessThan", "CrossAbove", "CrossBelow"}:
                left, right = node.args
                assert registry.scale_of(left) is not None
                assert registry.scale_of(left) == registry.scale_of(right), node.to_formula()


def test_thresholds_fall_inside_operand_range() -> None:
    registry = default_registry()
    mapper = _build_mapper(6)
    rng = random.Random(8)
    seen = 0
    for _ in range(400):
        tree = mapper.generate(random_genome(rng, 64))
        for _, node in iter_nodes(tree):
            if isinstance(node, Call) and node.name in {"GreaterThanScalar", "LessThanScalar"}:
                operand, threshold = node.args
                value_range = registry.value_range_of(operand)
                assert value_range is not None, node.to_formula()
                assert isinstance(threshold, Const) and isinstance(threshold.value, float)
                low, high = value_range
                assert low <= threshold.value <= high
                seen += 1
    assert seen > 0


def test_integer_parameters_come_from_typical_values() -> None:
    registry = default_registry()
    mapper = _build_mapper(6)
    rng = random.Random(13)
    for _ in range(200):
        tree = mapper.generate(random_genome(rng, 64))
        for _, node in iter_nodes(tree):
            if not isinstance(node, Call):
                continue
            descriptor = registry.get(node.name)
            for expected, arg in zip(descriptor.input_types, node.args):
                if expected is SemanticType.INTEGER and descriptor.typical_params:
                    assert arg.value in descriptor.typical_params


def test_generate_subtree_respects_budget_and_scale() -> None:
    registry = default_registry()
    mapper = _build_mapper(6)
    rng = random.Random(4)
    for _ in range(100):
        genome = random_genome(rng, 32)
        subtree = mapper.generate_subtree(
            genome, SemanticType.NUMERIC_SERIES, 2, scale=registry.scale_of(call("Close"))
        )
        assert subtree.depth() <= 2
        assert registry.scale_of(subtree) == registry.scale_of(call("Close"))

    condition = mapper.generate_subtree((), SemanticType.BOOL_SERIES, 2)
    assert condition == call("GreaterThan", call("Close"), call("Open"))


def test_generate_subtree_rejects_impossible_budget() -> None:
    mapper = _build_mapper()

    with pytest.raises(GenerationError):
        mapper.generate_subtree((), SemanticType.BOOL_SERIES, 1)
    with pytest.raises(GenerationError):
        mapper.generate_subtree((), SemanticType.NUMERIC_SERIES, 0)


def test_mapper_requires_minimum_depth() -> None:
    with pytest.raises(GenerationError, match="at least"):
        SemanticMapper(default_registry(), MIN_TREE_DEPTH - 1)


def test_ratio_operands_are_only_compared_with_ratios() -> None:
    registry = default_registry()
    mapper = _build_mapper(7)
    rng = random.Random(17)
    for _ in range(300):
        tree = mapper.generate(random_genome(rng, 64))
        for _, node in iter_nodes(tree):
            if isinstance(node, Call) and node.name in {"GreaterThan", "LessThan", "CrossAbove", "CrossBelow"}:
                scales = {registry.scale_of(arg) for arg in node.args}
                assert ScaleKind.RATIO not in scales or scales == {ScaleKind.RATIO}, node.to_formula()
