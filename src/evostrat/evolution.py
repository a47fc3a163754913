"""Generational evolution of strategy trees."""

from __future__ import annotations

import logging
import math
import random
import statistics
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Protocol, Sequence, Set

from .backtest import WORST_FITNESS, Backtester, StrategyResult
from .cache import IndicatorCache
from .catalog import FunctionRegistry, default_registry
from .config import EvolutionConfig
from .data import OhlcvDataset
from .errors import DatasetError, ValidationError
from .expressions import Rule, to_formula_short
from .generator import mapper_for
from .genome import Genome, random_genome
from .hall_of_fame import HallOfFame
from .operators import subtree_crossover, subtree_mutation, tournament_select
from .validator import check_parameter_diversity, validate

logger = logging.getLogger(__name__)

TIMEOUT_MARKER = "timeout"


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class Individual:
    tree: Rule
    genome: Genome | None = None
    fitness: float = WORST_FITNESS
    result: StrategyResult | None = None
    error: str | None = None

    @property
    def canonical(self) -> str:
        return self.tree.key

    @property
    def evaluated(self) -> bool:
        return self.result is not None

    def clone(self) -> "Individual":
        return replace(self)


@dataclass(frozen=True)
class GenerationSummary:
    """Fitness distribution of one evaluated generation."""

    generation: int
    best_fitness: float
    mean_fitness: float
    median_fitness: float
    worst_fitness: float
    std_fitness: float
    failures: int
    hall_of_fame_size: int
    best_formula: str = ""
    elapsed_seconds: float = 0.0

    @classmethod
    def from_population(
        cls,
        generation: int,
        population: Sequence[Individual],
        hall_of_fame_size: int,
        elapsed_seconds: float = 0.0,
    ) -> "GenerationSummary":
        finite = [ind.fitness for ind in population if math.isfinite(ind.fitness)]
        failures = sum(1 for ind in population if ind.error is not None)
        best = max(population, key=lambda ind: ind.fitness, default=None)
        nan = float("nan")
        return cls(
            generation=generation,
            best_fitness=max(finite) if finite else WORST_FITNESS,
            mean_fitness=statistics.fmean(finite) if finite else nan,
            median_fitness=statistics.median(finite) if finite else nan,
            worst_fitness=min(finite) if finite else WORST_FITNESS,
            std_fitness=statistics.pstdev(finite) if finite else nan,
            failures=failures,
            hall_of_fame_size=hall_of_fame_size,
            best_formula=best.tree.to_formula() if best is not None and finite else "",
            elapsed_seconds=elapsed_seconds,
        )


ProgressCallback = Callable[[GenerationSummary], None]


class EvolutionEngine:
    """Evolve a population of strategy trees against one dataset."""

    def __init__(
        self,
        dataset: OhlcvDataset,
        registry: FunctionRegistry | None = None,
        config: EvolutionConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or EvolutionConfig()
        self.config.validate()
        self.registry = registry or default_registry()
        self.rng = rng or random.Random(self.config.seed)
        self.dataset = dataset
        self.train_data, self.holdout_data = dataset.split(self.config.holdout_fraction)
        self.mapper = mapper_for(self.registry, self.config)
        self.cache = IndicatorCache(self.config.cache_size)
        self.backtester = Backtester(self.config, self.registry, self.cache)
        self._hall_of_fame = HallOfFame(
            self.config.hall_of_fame_size, self.config.hall_of_fame_min_fitness
        )
        self._memo: Dict[str, StrategyResult] = {}

    @property
    def hall_of_fame(self) -> HallOfFame:
        return self._hall_of_fame

    # Population management -------------------------------------------------------

    def random_individual(self) -> Individual:
        """Generate a fresh individual, regenerating trees that fail the checks."""

        genome = random_genome(self.rng, self.config.genome_length, self.config.gene_max)
        individual = Individual(tree=self.mapper.generate(genome), genome=genome)
        for _ in range(self.config.max_regeneration_attempts - 1):
            if self._acceptable(individual.tree):
                return individual
            genome = random_genome(self.rng, self.config.genome_length, self.config.gene_max)
            individual = Individual(tree=self.mapper.generate(genome), genome=genome)
        if self._acceptable(individual.tree):
            return individual
        logger.debug("Keeping last generated tree after %d rejected attempts", self.config.max_regeneration_attempts)
        return individual

    def initialize_population(self) -> List[Individual]:
        return [self.random_individual() for _ in range(self.config.population_size)]

    def evaluate_population(self, population: Sequence[Individual]) -> List[Individual]:
        """Score every member; results come back in population order."""

        pending: Dict[str, Rule] = {}
        for individual in population:
            if individual.canonical not in self._memo:
                pending.setdefault(individual.canonical, individual.tree)

        timed_out = self._evaluate_pending(pending)

        evaluated: List[Individual] = []
        for individual in population:
            key = individual.canonical
            if key in timed_out:
                result = StrategyResult.failed(individual.tree, TIMEOUT_MARKER, self.config.initial_capital)
            else:
                result = self._memo[key]
            evaluated.append(
                replace(individual, fitness=result.fitness, result=result, error=result.error)
            )
        return evaluated

    def evolve(self, population: Sequence[Individual]) -> List[Individual]:
        """Breed the next generation from an evaluated population."""

        config = self.config
        ranked = sorted(population, key=lambda ind: ind.fitness, reverse=True)
        next_population = [ind.clone() for ind in ranked[: config.elitism_count]]

        while len(next_population) < config.population_size:
            first = tournament_select(population, config.tournament_size, self.rng)
            second = tournament_select(population, config.tournament_size, self.rng)
            if self.rng.random() < config.crossover_rate:
                children = subtree_crossover(
                    first.tree, second.tree, self.registry, config.max_depth, self.rng
                )
            else:
                children = (first.tree, second.tree)
            for child in children:
                if len(next_population) >= config.population_size:
                    break
                if self.rng.random() < config.mutation_rate:
                    child = subtree_mutation(
                        child, self.mapper, self.rng, genome_length=config.genome_length
                    )
                if self._acceptable(child):
                    next_population.append(Individual(tree=child))
                else:
                    next_population.append(self.random_individual())
        return next_population

    def run(
        self,
        cancel_event: CancelSignal | None = None,
        progress: ProgressCallback | None = None,
    ) -> HallOfFame:
        """Run every configured generation and return the hall of fame."""

        population = self.initialize_population()
        for generation in range(self.config.generations):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Evolution cancelled before generation %d", generation)
                break
            started = time.perf_counter()
            population = self.evaluate_population(population)
            for individual in population:
                if individual.result is not None:
                    self._hall_of_fame.try_add(individual.result)
            self._prune_memo(population)
            summary = GenerationSummary.from_population(
                generation,
                population,
                len(self._hall_of_fame),
                time.perf_counter() - started,
            )
            logger.info(
                "Generation %d: best %.4f, mean %.4f, %d failures",
                generation,
                summary.best_fitness,
                summary.mean_fitness,
                summary.failures,
            )
            if progress is not None:
                progress(summary)
            if generation < self.config.generations - 1:
                population = self.evolve(population)
        self._attach_holdout_metrics()
        return self._hall_of_fame

    # Internal helpers ------------------------------------------------------------

    def _acceptable(self, tree: Rule) -> bool:
        try:
            validate(tree, self.registry, self.config.max_depth)
            check_parameter_diversity(tree, self.config.min_param_difference)
        except ValidationError as exc:
            logger.debug("Rejected %s: %s", to_formula_short(tree), exc)
            return False
        return True

    def _prune_memo(self, population: Sequence[Individual]) -> None:
        """Keep memoized results only for the live population and the hall of fame."""

        live = {individual.canonical for individual in population}
        live.update(entry.canonical for entry in self._hall_of_fame)
        for key in [key for key in self._memo if key not in live]:
            del self._memo[key]

    def _evaluate_pending(self, pending: Dict[str, Rule]) -> Set[str]:
        """Fill the memo for ``pending`` trees and return the keys that timed out."""

        if not pending:
            return set()
        budget = self.config.generation_time_budget
        if self.config.workers <= 1:
            deadline = None if budget is None else time.monotonic() + budget
            timed_out: Set[str] = set()
            for key, tree in pending.items():
                if deadline is not None and time.monotonic() > deadline:
                    timed_out.add(key)
                    continue
                self._memo[key] = self.backtester.safe_evaluate(tree, self.train_data)
            return timed_out

        executor = ThreadPoolExecutor(max_workers=self.config.workers)
        try:
            futures: Dict[Future, str] = {
                executor.submit(self.backtester.safe_evaluate, tree, self.train_data): key
                for key, tree in pending.items()
            }
            done, not_done = wait(futures, timeout=budget)
            for future in done:
                self._memo[futures[future]] = future.result()
            for future in not_done:
                future.cancel()
            if not_done:
                logger.info("%d evaluations exceeded the generation time budget", len(not_done))
            return {futures[future] for future in not_done}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _attach_holdout_metrics(self) -> None:
        if self.holdout_data is None or not len(self._hall_of_fame):
            return
        updated: List[StrategyResult] = []
        for entry in self._hall_of_fame.snapshot():
            outcome = self.backtester.safe_evaluate(entry.tree, self.holdout_data, in_sample=False)
            updated.append(replace(entry, holdout_metrics=dict(outcome.metrics)))
        self._hall_of_fame.replace_entries(updated)


def run_evolution(
    dataset: OhlcvDataset,
    registry: FunctionRegistry | None = None,
    config: EvolutionConfig | None = None,
    *,
    cancel_event: CancelSignal | None = None,
    progress: ProgressCallback | None = None,
) -> HallOfFame:
    """Evolve strategies on ``dataset`` and return the resulting hall of fame."""

    config = config or EvolutionConfig()
    config.validate()
    if dataset is None or len(dataset) == 0:
        raise DatasetError("Cannot evolve strategies on an empty dataset")
    engine = EvolutionEngine(dataset, registry, config)
    return engine.run(cancel_event=cancel_event, progress=progress)
