"""Console utilities for running and visualizing the evolution process."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .backtest import StrategyResult
from .evolution import EvolutionEngine, GenerationSummary
from .expressions import to_formula_short
from .hall_of_fame import HallOfFame


def determine_generation_limit(engine_limit: int, requested_limit: Optional[int]) -> int:
    """Resolve the number of generations to run.

    An explicit request wins; negative requests are clamped to ``0``.
    """

    if requested_limit is not None:
        return max(0, requested_limit)
    return max(0, engine_limit)


def _pluralize(count: int, noun: str, plural: str | None = None) -> str:
    if count == 1:
        return f"{count} {noun}"
    return f"{count} {plural or noun + 's'}"


def _format_fitness(value: float) -> str:
    if math.isnan(value):
        return "n/a"
    if math.isinf(value):
        return "-inf" if value < 0 else "inf"
    return f"{value:,.4f}"


def build_generation_lines(
    summary: GenerationSummary,
    hall_of_fame: HallOfFame | None = None,
    *,
    top: int = 5,
) -> List[str]:
    lines = [
        f"Generation {summary.generation + 1}",
        f"Best fitness: {_format_fitness(summary.best_fitness)}",
        f"Mean fitness: {_format_fitness(summary.mean_fitness)}",
        f"Median fitness: {_format_fitness(summary.median_fitness)}",
        f"Worst finite fitness: {_format_fitness(summary.worst_fitness)}",
        f"Fitness std: {_format_fitness(summary.std_fitness)}",
        f"Failed evaluations: {_pluralize(summary.failures, 'strategy', 'strategies')}",
        f"Hall of fame: {_pluralize(summary.hall_of_fame_size, 'entry', 'entries')}",
        f"Evaluation time: {summary.elapsed_seconds:.2f}s",
    ]
    if summary.best_formula:
        lines.extend(["", "Best strategy this generation:", f"  {_truncate(summary.best_formula)}"])

    if hall_of_fame is None or not len(hall_of_fame):
        return lines
    lines.extend(["", "Hall of fame leaders (sorted by fitness):"])
    entries = hall_of_fame.top(top)
    for idx, entry in enumerate(entries, start=1):
        lines.append(f"  #{idx}: {entry.describe()}")
    if len(hall_of_fame) > top:
        lines.append(f"  ... and {len(hall_of_fame) - top} more entries.")
    return lines


def _truncate(formula: str, max_len: int = 100) -> str:
    if len(formula) <= max_len:
        return formula
    return formula[: max_len - 3] + "..."


def build_result_lines(result: StrategyResult) -> List[str]:
    """Summarize a single backtest for the console."""

    lines = [
        f"Strategy: {to_formula_short(result.tree, 100)}",
        f"Fitness: {_format_fitness(result.fitness)}",
        f"Trades: {len(result.trades)}",
        f"Final equity: {result.final_equity:,.2f}",
    ]
    if result.error is not None:
        lines.append(f"Error: {result.error}")
    if result.metrics:
        lines.extend(["", "Metrics:"])
        for name in sorted(result.metrics):
            lines.append(f"  {name}: {result.metrics[name]:,.4f}")
    if result.holdout_metrics:
        lines.extend(["", "Hold-out metrics:"])
        for name in sorted(result.holdout_metrics):
            lines.append(f"  {name}: {result.holdout_metrics[name]:,.4f}")
    return lines


@dataclass
class EvolutionConsoleUI:
    """Console runner for the strategy evolution engine."""

    engine: EvolutionEngine
    history: List[GenerationSummary] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self._pause_event = threading.Event()
        self._pause_event.set()
        self._stop_event = threading.Event()

    # Control helpers -----------------------------------------------------------------

    def pause(self) -> None:
        """Pause the evolution after the current generation completes."""

        self._pause_event.clear()
        print("Evolution paused. Press 'r' to resume or 'q' to stop.")

    def resume(self) -> None:
        if not self._pause_event.is_set():
            self._pause_event.set()
            print("Resuming evolution...")

    def toggle_pause(self) -> None:
        if self._pause_event.is_set():
            self.pause()
        else:
            self.resume()

    def stop(self) -> None:
        """Stop at the next generation boundary."""

        self._stop_event.set()
        self._pause_event.set()
        print("Stopping evolution...")

    @property
    def is_paused(self) -> bool:
        return not self._pause_event.is_set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # Running -------------------------------------------------------------------------

    def run(
        self,
        max_generations: Optional[int] = None,
        *,
        plot: bool = False,
        show_plot: bool = False,
        save_path: Optional[str] = None,
    ) -> HallOfFame:
        """Run the engine, printing a report after every generation."""

        self.engine.config.generations = determine_generation_limit(
            self.engine.config.generations, max_generations
        )
        hall_of_fame = self.engine.run(cancel_event=self._stop_event, progress=self._on_generation)
        if plot:
            self.plot_history(show=show_plot, save_path=save_path)
        return hall_of_fame

    def interactive(
        self,
        max_generations: Optional[int] = None,
        *,
        plot: bool = True,
        show_plot: bool = False,
        save_path: Optional[str] = "fitness.png",
    ) -> HallOfFame:
        """Run in a worker thread and accept pause/resume commands from stdin."""

        outcome: List[HallOfFame] = []
        thread = threading.Thread(
            target=lambda: outcome.append(self.run(max_generations)),
            daemon=True,
        )
        thread.start()
        try:
            while thread.is_alive():
                command = input("[p]ause/[r]esume/[q]uit> ").strip().lower()
                if command in {"p", "pause"}:
                    self.pause()
                elif command in {"r", "resume"}:
                    self.resume()
                elif command in {"q", "quit"}:
                    self.stop()
                    break
        except (KeyboardInterrupt, EOFError):
            self.stop()
        finally:
            self.resume()
            thread.join()
        if plot:
            self.plot_history(show=show_plot, save_path=save_path)
        return outcome[0] if outcome else self.engine.hall_of_fame

    # Visualization -------------------------------------------------------------------

    def plot_history(self, *, show: bool = True, save_path: Optional[str] = None) -> None:
        """Plot best and mean fitness by generation using matplotlib if available."""

        if not self.history:
            print("No generation history available to plot.")
            return
        try:
            import matplotlib.pyplot as plt
        except ImportError:  # pragma: no cover - optional dependency
            print("matplotlib is not installed; skipping fitness plot.")
            return

        generations = [s.generation + 1 for s in self.history]
        best_values = [s.best_fitness if math.isfinite(s.best_fitness) else float("nan") for s in self.history]
        mean_values = [s.mean_fitness for s in self.history]

        plt.figure(figsize=(8, 4.5))
        plt.plot(generations, best_values, label="Best")
        plt.plot(generations, mean_values, label="Mean")
        plt.xlabel("Generation")
        plt.ylabel("Fitness")
        plt.title("Strategy Fitness by Generation")
        plt.legend()
        plt.tight_layout()

        if save_path:
            plt.savefig(save_path)
            print(f"Saved fitness plot to {save_path}.")
        if show:
            plt.show()
        else:
            plt.close()

    # Internal utilities ---------------------------------------------------------------

    def _on_generation(self, summary: GenerationSummary) -> None:
        self.history.append(summary)
        self._render_report(summary)
        self._wait_if_paused()

    def _wait_if_paused(self) -> None:
        while not self._pause_event.is_set() and not self._stop_event.is_set():
            time.sleep(0.1)

    def _render_report(self, summary: GenerationSummary) -> None:
        print("=" * 60)
        for line in build_generation_lines(summary, self.engine.hall_of_fame):
            print(line)
        print("-" * 60)


def plot_equity_curve(
    result: StrategyResult,
    *,
    show: bool = True,
    save_path: Optional[str] = None,
) -> None:
    """Plot a backtest's equity curve with trade entries marked."""

    if len(result.equity_curve) == 0:
        print("Equity curve is empty; nothing to plot.")
        return
    try:
        import matplotlib.pyplot as plt
    except ImportError:  # pragma: no cover - optional dependency
        print("matplotlib is not installed; skipping equity plot.")
        return

    bars = list(range(len(result.equity_curve)))
    plt.figure(figsize=(8, 4.5))
    plt.plot(bars, result.equity_curve, label="Equity")
    entries = [t.entry_index for t in result.trades]
    if entries:
        plt.scatter(entries, [result.equity_curve[i] for i in entries], marker="^", color="green", label="Entry")
    plt.axhline(result.initial_capital, color="grey", linestyle="--", linewidth=0.8)
    plt.xlabel("Bar")
    plt.ylabel("Equity")
    plt.title(to_formula_short(result.tree, 60))
    plt.legend()
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path)
        print(f"Saved equity plot to {save_path}.")
    if show:
        plt.show()
    else:
        plt.close()
