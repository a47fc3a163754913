"""Tests for run configuration and logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from evostrat.config import (
    EvolutionConfig,
    RiskConfig,
    StopLossKind,
    StopLossPolicy,
    TakeProfitKind,
    TakeProfitPolicy,
    load_config,
    save_config,
)
from evostrat.errors import ConfigurationError
from evostrat.logging_utils import setup_logging


def test_defaults_validate() -> None:
    config = EvolutionConfig()
    config.validate()

    assert config.fitness_weights == {"sharpe_ratio": 1.0}
    assert config.risk.stop_loss.kind is StopLossKind.NONE


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"population_size": 0}, "population_size"),
        ({"generations": -1}, "generations"),
        ({"mutation_rate": 1.5}, "mutation_rate"),
        ({"elitism_count": 200}, "elitism_count"),
        ({"max_depth": 2}, "max_depth"),
        ({"fitness_weights": {}}, "fitness_weights"),
        ({"workers": 0}, "workers"),
        ({"holdout_fraction": 1.0}, "holdout_fraction"),
        ({"generation_time_budget": 0.0}, "generation_time_budget"),
    ],
)
def test_invalid_fields_rejected(overrides: dict, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        EvolutionConfig(**overrides).validate()


def test_risk_validation() -> None:
    with pytest.raises(ConfigurationError, match="position_fraction"):
        RiskConfig(position_fraction=1.5).validate()
    with pytest.raises(ConfigurationError, match="percent"):
        RiskConfig(stop_loss=StopLossPolicy(kind=StopLossKind.FIXED_PERCENT, percent=1.5)).validate()
    with pytest.raises(ConfigurationError, match="requires a stop-loss"):
        RiskConfig(take_profit=TakeProfitPolicy(kind=TakeProfitKind.RISK_REWARD)).validate()


def test_string_kinds_are_normalized() -> None:
    risk = RiskConfig(stop_loss=StopLossPolicy(kind="atr"))  # type: ignore[arg-type]
    risk.validate()

    assert risk.stop_loss.kind is StopLossKind.ATR


def test_config_file_round_trip(tmp_path: Path) -> None:
    config = EvolutionConfig(
        population_size=30,
        seed=11,
        fitness_weights={"sharpe_ratio": 1.0, "total_return_pct": 0.01},
        risk=RiskConfig(
            stop_loss=StopLossPolicy(kind=StopLossKind.FIXED_PERCENT, percent=0.03),
            take_profit=TakeProfitPolicy(kind=TakeProfitKind.RISK_REWARD, risk_reward=3.0),
            commission_pct=0.001,
        ),
    )

    path = save_config(tmp_path / "config.json", config)
    payload = json.loads(path.read_text(encoding="utf-8"))
    restored = load_config(path)

    assert payload["risk"]["stop_loss"]["kind"] == "fixed_percent"
    assert restored.population_size == 30
    assert restored.seed == 11
    assert restored.fitness_weights == config.fitness_weights
    assert StopLossKind(restored.risk.stop_loss.kind) is StopLossKind.FIXED_PERCENT
    assert restored.risk.take_profit.risk_reward == 3.0
    restored.validate()


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"population": 10}), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Unknown configuration keys: population"):
        load_config(path)


def test_config_must_be_object(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="JSON object"):
        load_config(path)


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "run.log"

    setup_logging("debug", log_file)
    logging.getLogger("evostrat.test").debug("hello from the test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert "hello from the test" in log_file.read_text(encoding="utf-8")
    setup_logging(logging.WARNING)


def test_setup_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging("chatty")
