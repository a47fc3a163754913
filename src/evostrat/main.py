"""Entry point for the evostrat command line runner."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .backtest import run_backtest
from .catalog import default_registry
from .config import EvolutionConfig, load_config
from .data import OhlcvDataset, load_csv, synthetic_bars
from .evolution import EvolutionEngine
from .expressions import Rule
from .logging_utils import setup_logging
from .presets import PRESET_BUILDERS, get_preset
from .robustness import run_robustness_report
from .strategies import SavedStrategy, load_strategy, save_hall_of_fame, save_strategy
from .ui import EvolutionConsoleUI, build_result_lines, plot_equity_curve
from .walk_forward import WalkForwardSplitter, WindowType, run_walk_forward

logger = logging.getLogger(__name__)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", type=Path, default=None, help="OHLCV CSV file with a header row.")
    source.add_argument(
        "--synthetic",
        type=int,
        default=None,
        metavar="N",
        help="Generate N synthetic bars instead of reading a file (default: 500).",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON configuration file.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (overrides configuration).")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file.")


def _add_strategy_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--strategy", type=Path, help="Saved strategy JSON file.")
    target.add_argument("--preset", choices=sorted(PRESET_BUILDERS), help="Named preset strategy.")


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evolve and stress-test rule-based trading strategies")
    commands = parser.add_subparsers(dest="command", required=True)

    evolve = commands.add_parser("evolve", help="Evolve strategies and print the hall of fame.")
    _add_common_arguments(evolve)
    evolve.add_argument("--generations", type=int, default=None, help="Number of generations to run.")
    evolve.add_argument("--population", type=int, default=None, help="Population size.")
    evolve.add_argument("--workers", type=int, default=None, help="Evaluation threads.")
    evolve.add_argument("--holdout", type=float, default=None, help="Fraction of bars kept out of sample.")
    evolve.add_argument("--save", type=Path, default=None, help="Write the hall of fame to this JSON file.")
    evolve.add_argument("--save-best", type=Path, default=None, help="Write the best strategy to this JSON file.")
    evolve.add_argument("--plot", type=Path, default=None, help="Save a fitness-by-generation plot.")
    evolve.add_argument("--interactive", action="store_true", help="Accept pause/resume/quit commands.")

    backtest = commands.add_parser("backtest", help="Backtest a saved or preset strategy.")
    _add_common_arguments(backtest)
    _add_strategy_arguments(backtest)
    backtest.add_argument("--plot", type=Path, default=None, help="Save an equity curve plot.")

    robustness = commands.add_parser("robustness", help="Run robustness tests on a strategy.")
    _add_common_arguments(robustness)
    _add_strategy_arguments(robustness)
    robustness.add_argument("--output", type=Path, default=None, help="Write the report to this JSON file.")

    walk_forward = commands.add_parser("walk-forward", help="Backtest a strategy across walk-forward folds.")
    _add_common_arguments(walk_forward)
    _add_strategy_arguments(walk_forward)
    walk_forward.add_argument("--folds", type=int, default=5, help="Number of folds.")
    walk_forward.add_argument(
        "--window", choices=[w.value for w in WindowType], default=WindowType.SLIDING.value, help="Window layout."
    )
    walk_forward.add_argument("--in-sample", type=float, default=0.7, help="In-sample share of a sliding window.")
    walk_forward.add_argument("--output", type=Path, default=None, help="Write the report to this JSON file.")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EvolutionConfig:
    config = load_config(args.config) if args.config is not None else EvolutionConfig()
    if args.seed is not None:
        config.seed = args.seed
    for attribute, option in (
        ("generations", "generations"),
        ("population_size", "population"),
        ("workers", "workers"),
        ("holdout_fraction", "holdout"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            setattr(config, attribute, value)
    config.validate()
    return config


def load_dataset(args: argparse.Namespace, seed: int | None = None) -> OhlcvDataset:
    if args.csv is not None:
        return load_csv(args.csv)
    return synthetic_bars(args.synthetic or 500, seed=seed or 0)


def resolve_strategy(args: argparse.Namespace) -> Rule:
    if args.preset is not None:
        tree = get_preset(args.preset)
        if tree is None:
            raise ValueError(f"Unknown preset '{args.preset}'")
        return tree
    return load_strategy(args.strategy).tree


def _print_lines(lines: List[str]) -> None:
    for line in lines:
        print(line)


def run_evolve(args: argparse.Namespace, config: EvolutionConfig, dataset: OhlcvDataset) -> None:
    engine = EvolutionEngine(dataset, default_registry(), config)
    ui = EvolutionConsoleUI(engine=engine)
    if args.interactive:
        hall_of_fame = ui.interactive(plot=False)
    else:
        hall_of_fame = ui.run()

    print("=" * 60)
    print(f"Hall of fame ({len(hall_of_fame)} strategies)")
    for idx, entry in enumerate(hall_of_fame.top(10), start=1):
        print(f"  #{idx}: {entry.describe(100)}")
    best = hall_of_fame.best
    if best is not None:
        print("-" * 60)
        _print_lines(build_result_lines(best))

    if args.save is not None:
        print(f"Saved hall of fame to {save_hall_of_fame(args.save, hall_of_fame)}.")
    if args.save_best is not None and best is not None:
        saved = SavedStrategy.from_result(best, name="best", generation=len(ui.history))
        print(f"Saved best strategy to {save_strategy(args.save_best, saved)}.")
    if args.plot is not None:
        ui.plot_history(show=False, save_path=str(args.plot))


def run_backtest_command(args: argparse.Namespace, config: EvolutionConfig, dataset: OhlcvDataset) -> None:
    result = run_backtest(resolve_strategy(args), dataset, config)
    _print_lines(build_result_lines(result))
    if args.plot is not None:
        plot_equity_curve(result, show=False, save_path=str(args.plot))


def run_robustness_command(args: argparse.Namespace, config: EvolutionConfig, dataset: OhlcvDataset) -> None:
    report = run_robustness_report(resolve_strategy(args), dataset, config)
    print(f"Strategy: {report.strategy}")
    for result in report.test_results:
        status = "PASS" if result.passed else "FAIL"
        print(f"  [{status}] {result.test_name} (score {result.score:.2f})")
        print(f"         {result.interpretation}")
    print(report.summary)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with args.output.open("w", encoding="utf-8") as fh:
            json.dump(report.to_dict(), fh, indent=2)
        print(f"Saved robustness report to {args.output}.")


def run_walk_forward_command(args: argparse.Namespace, config: EvolutionConfig, dataset: OhlcvDataset) -> None:
    splitter = WalkForwardSplitter(n_folds=args.folds, in_sample_pct=args.in_sample, window_type=WindowType(args.window))
    report = run_walk_forward(resolve_strategy(args), dataset, config, splitter=splitter)
    print(f"Strategy: {report.strategy}")
    for fold in report.folds:
        print(
            f"  Fold {fold.fold + 1}: in-sample {fold.in_sample.metrics.get('total_return_pct', 0.0):.2f}%, "
            f"out-of-sample {fold.out_of_sample.metrics.get('total_return_pct', 0.0):.2f}%"
        )
    for name in ("total_return_pct_mean", "sharpe_ratio_mean", "consistency_score"):
        if name in report.aggregate_metrics:
            print(f"{name}: {report.aggregate_metrics[name]:.4f}")
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with args.output.open("w", encoding="utf-8") as fh:
            json.dump(report.to_dict(), fh, indent=2)
        print(f"Saved walk-forward report to {args.output}.")


COMMANDS = {
    "evolve": run_evolve,
    "backtest": run_backtest_command,
    "robustness": run_robustness_command,
    "walk-forward": run_walk_forward_command,
}


def main(argv: List[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    config = build_config(args)
    dataset = load_dataset(args, config.seed)
    logger.info("Loaded %d bars from %s", len(dataset), dataset.name)
    COMMANDS[args.command](args, config, dataset)


def cli() -> None:
    try:
        main(sys.argv[1:])
    except KeyboardInterrupt:  # pragma: no cover - graceful shutdown for CLI
        print("Interrupted.")


if __name__ == "__main__":
    cli()
