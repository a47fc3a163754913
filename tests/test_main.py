"""Tests for the command line runner."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from evostrat.main import build_config, load_dataset, main, parse_args, resolve_strategy
from evostrat.presets import get_preset
from evostrat.strategies import SavedStrategy, save_strategy


def test_parse_args_for_evolve() -> None:
    args = parse_args(["evolve", "--synthetic", "120", "--generations", "2", "--population", "8", "--seed", "4"])

    assert args.command == "evolve"
    assert args.synthetic == 120
    config = build_config(args)
    assert config.generations == 2
    assert config.population_size == 8
    assert config.seed == 4


def test_strategy_source_is_required() -> None:
    with pytest.raises(SystemExit):
        parse_args(["backtest", "--synthetic", "50"])


def test_data_sources_are_exclusive(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        parse_args(["backtest", "--preset", "sma_crossover", "--csv", str(tmp_path / "a.csv"), "--synthetic", "50"])


def test_load_dataset_and_resolve_preset() -> None:
    args = parse_args(["backtest", "--synthetic", "80", "--preset", "trend_following"])

    dataset = load_dataset(args, seed=1)

    assert len(dataset) == 80
    assert resolve_strategy(args) == get_preset("trend_following")


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown preset"):
        resolve_strategy(argparse.Namespace(preset="no_such_preset", strategy=None))


def test_config_file_is_applied(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"population_size": 5, "generations": 7}), encoding="utf-8")

    args = parse_args(["evolve", "--config", str(config_path), "--generations", "1"])
    config = build_config(args)

    assert config.population_size == 5
    assert config.generations == 1


def test_backtest_command_prints_report(capsys: pytest.CaptureFixture[str]) -> None:
    main(["backtest", "--synthetic", "150", "--preset", "sma_crossover", "--seed", "2", "--log-level", "WARNING"])

    out = capsys.readouterr().out
    assert "Strategy: IF GreaterThan(SMA(Close, 10), SMA(Close, 50)) THEN LONG" in out
    assert "Final equity:" in out


def test_evolve_command_saves_outputs(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    hof_path = tmp_path / "hof.json"
    best_path = tmp_path / "best.json"

    main(
        [
            "evolve",
            "--synthetic",
            "200",
            "--generations",
            "2",
            "--population",
            "6",
            "--seed",
            "9",
            "--log-level",
            "WARNING",
            "--save",
            str(hof_path),
            "--save-best",
            str(best_path),
        ]
    )

    out = capsys.readouterr().out
    assert "Hall of fame (" in out
    payload = json.loads(hof_path.read_text(encoding="utf-8"))
    assert "entries" in payload
    if payload["entries"]:
        assert best_path.exists()


def test_robustness_command_writes_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "report.json"

    main(
        [
            "robustness",
            "--synthetic",
            "150",
            "--preset",
            "trend_following",
            "--log-level",
            "WARNING",
            "--output",
            str(output),
        ]
    )

    report = json.loads(output.read_text(encoding="utf-8"))
    assert len(report["test_results"]) == 3
    assert "robustness tests" in capsys.readouterr().out


def test_saved_strategy_can_be_backtested(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tree = get_preset("rsi_reversion")
    assert tree is not None
    path = save_strategy(tmp_path / "rsi.json", SavedStrategy(tree=tree, name="rsi"))

    main(["backtest", "--synthetic", "120", "--strategy", str(path), "--log-level", "WARNING"])

    assert "LessThanScalar(RSI(Close, 14), 30)" in capsys.readouterr().out


def test_walk_forward_command_writes_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "wfo.json"

    main(
        [
            "walk-forward",
            "--synthetic",
            "300",
            "--preset",
            "trend_following",
            "--folds",
            "3",
            "--window",
            "anchored",
            "--log-level",
            "WARNING",
            "--output",
            str(output),
        ]
    )

    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["window_type"] == "anchored"
    assert len(report["folds"]) == 3
    assert "Fold 3:" in capsys.readouterr().out
