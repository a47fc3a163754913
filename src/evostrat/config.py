"""Run configuration for evolution and backtesting."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict

from .errors import ConfigurationError
from .genome import DEFAULT_GENE_MAX
from .generator import MIN_TREE_DEPTH


class StopLossKind(str, Enum):
    NONE = "none"
    FIXED_PERCENT = "fixed_percent"
    ATR = "atr"


class TakeProfitKind(str, Enum):
    NONE = "none"
    FIXED_PERCENT = "fixed_percent"
    RISK_REWARD = "risk_reward"


@dataclass
class StopLossPolicy:
    kind: StopLossKind = StopLossKind.NONE
    percent: float = 0.02
    atr_multiplier: float = 2.0
    atr_period: int = 14

    def validate(self) -> None:
        self.kind = StopLossKind(self.kind)
        if self.kind is StopLossKind.FIXED_PERCENT and not 0 < self.percent < 1:
            raise ConfigurationError("stop-loss percent must be in (0, 1)")
        if self.kind is StopLossKind.ATR and (self.atr_multiplier <= 0 or self.atr_period <= 0):
            raise ConfigurationError("ATR stop-loss needs a positive multiplier and period")


@dataclass
class TakeProfitPolicy:
    kind: TakeProfitKind = TakeProfitKind.NONE
    percent: float = 0.04
    risk_reward: float = 2.0

    def validate(self) -> None:
        self.kind = TakeProfitKind(self.kind)
        if self.kind is TakeProfitKind.FIXED_PERCENT and self.percent <= 0:
            raise ConfigurationError("take-profit percent must be positive")
        if self.kind is TakeProfitKind.RISK_REWARD and self.risk_reward <= 0:
            raise ConfigurationError("risk/reward ratio must be positive")


@dataclass
class RiskConfig:
    """Position sizing, protective exits and trading costs."""

    position_fraction: float = 1.0
    stop_loss: StopLossPolicy = field(default_factory=StopLossPolicy)
    take_profit: TakeProfitPolicy = field(default_factory=TakeProfitPolicy)
    commission_pct: float = 0.0
    slippage_pct: float = 0.0
    allow_short: bool = True

    def validate(self) -> None:
        if not 0 < self.position_fraction <= 1:
            raise ConfigurationError("position_fraction must be in (0, 1]")
        if self.commission_pct < 0 or self.slippage_pct < 0:
            raise ConfigurationError("trading costs cannot be negative")
        self.stop_loss.validate()
        self.take_profit.validate()
        if (
            self.take_profit.kind is TakeProfitKind.RISK_REWARD
            and self.stop_loss.kind is StopLossKind.NONE
        ):
            raise ConfigurationError("risk/reward take-profit requires a stop-loss")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RiskConfig":
        payload = dict(payload)
        stop_loss = StopLossPolicy(**payload.pop("stop_loss", {}))
        take_profit = TakeProfitPolicy(**payload.pop("take_profit", {}))
        try:
            return cls(stop_loss=stop_loss, take_profit=take_profit, **payload)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid risk configuration: {exc}") from exc


@dataclass
class EvolutionConfig:
    population_size: int = 100
    generations: int = 20
    mutation_rate: float = 0.15
    crossover_rate: float = 0.85
    tournament_size: int = 7
    elitism_count: int = 2
    genome_length: int = 64
    gene_max: int = DEFAULT_GENE_MAX
    max_depth: int = 6
    hall_of_fame_size: int = 50
    hall_of_fame_min_fitness: float | None = None
    initial_capital: float = 10_000.0
    risk: RiskConfig = field(default_factory=RiskConfig)
    fitness_weights: Dict[str, float] = field(default_factory=lambda: {"sharpe_ratio": 1.0})
    min_trades: int = 1
    periods_per_year: int = 252
    seed: int | None = None
    workers: int = 1
    cache_size: int = 1024
    generation_time_budget: float | None = None
    holdout_fraction: float = 0.0
    min_param_difference: int = 0
    max_regeneration_attempts: int = 25

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` describing the first invalid field."""

        if self.population_size <= 0:
            raise ConfigurationError("population_size must be positive")
        if self.generations < 0:
            raise ConfigurationError("generations cannot be negative")
        for name in ("mutation_rate", "crossover_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1]")
        if self.tournament_size <= 0:
            raise ConfigurationError("tournament_size must be positive")
        if not 0 <= self.elitism_count <= self.population_size:
            raise ConfigurationError("elitism_count must be between 0 and population_size")
        if self.genome_length <= 0:
            raise ConfigurationError("genome_length must be positive")
        if self.gene_max <= 0:
            raise ConfigurationError("gene_max must be positive")
        if self.max_depth < MIN_TREE_DEPTH:
            raise ConfigurationError(f"max_depth must be at least {MIN_TREE_DEPTH}")
        if self.hall_of_fame_size <= 0:
            raise ConfigurationError("hall_of_fame_size must be positive")
        if not math.isfinite(self.initial_capital) or self.initial_capital <= 0:
            raise ConfigurationError("initial_capital must be a positive number")
        if not self.fitness_weights:
            raise ConfigurationError("fitness_weights must name at least one metric")
        if self.min_trades < 0:
            raise ConfigurationError("min_trades cannot be negative")
        if self.periods_per_year <= 0:
            raise ConfigurationError("periods_per_year must be positive")
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")
        if self.cache_size <= 0:
            raise ConfigurationError("cache_size must be positive")
        if self.generation_time_budget is not None and self.generation_time_budget <= 0:
            raise ConfigurationError("generation_time_budget must be positive when set")
        if not 0.0 <= self.holdout_fraction < 1.0:
            raise ConfigurationError("holdout_fraction must be within [0, 1)")
        if self.min_param_difference < 0:
            raise ConfigurationError("min_param_difference cannot be negative")
        if self.max_regeneration_attempts <= 0:
            raise ConfigurationError("max_regeneration_attempts must be positive")
        self.risk.validate()

    # Serialization ---------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["risk"]["stop_loss"]["kind"] = StopLossKind(self.risk.stop_loss.kind).value
        payload["risk"]["take_profit"]["kind"] = TakeProfitKind(self.risk.take_profit.kind).value
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EvolutionConfig":
        payload = dict(payload)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        risk = RiskConfig.from_dict(payload.pop("risk", {}))
        return cls(risk=risk, **payload)


def load_config(path: str | Path) -> EvolutionConfig:
    """Read an :class:`EvolutionConfig` from a JSON file."""

    with Path(path).open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ConfigurationError("Configuration file must contain a JSON object")
    return EvolutionConfig.from_dict(payload)


def save_config(path: str | Path, config: EvolutionConfig) -> Path:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(config.to_dict(), fh, indent=2)
    return output
