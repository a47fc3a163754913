"""Tests for the post-hoc robustness checks."""

from __future__ import annotations

import json

import numpy as np
import pytest

from evostrat.backtest import Backtester, run_backtest
from evostrat.data import OhlcvDataset, synthetic_bars
from evostrat.expressions import LONG, Const, Rule, call
from evostrat.presets import get_preset
from evostrat.robustness import (
    FrictionTest,
    MonteCarloTest,
    ParameterStabilityTest,
    TestResult,
    default_tests,
    degradation_pct,
    delay_signal,
    numeric_literals,
    perturb_literal,
    run_robustness_report,
    trade_returns,
)


def _build_rising(length: int = 100) -> OhlcvDataset:
    return OhlcvDataset.from_close([100.0 + i for i in range(length)])


def _trend_following() -> Rule:
    tree = get_preset("trend_following")
    assert tree is not None
    return tree


class _ExplodingTest:
    name = "Exploding"

    def run(self, strategy, dataset, backtester) -> TestResult:
        raise RuntimeError("no data")


def test_degradation_pct() -> None:
    assert degradation_pct(10.0, 8.0) == pytest.approx(20.0)
    assert degradation_pct(10.0, 12.0) == pytest.approx(-20.0)
    assert degradation_pct(-10.0, -12.0) == pytest.approx(20.0)
    assert degradation_pct(0.0, 5.0) == 0.0


def test_delay_signal() -> None:
    signal = np.array([1.0, 1.0, 0.0, -1.0])

    np.testing.assert_array_equal(delay_signal(signal, 1), [0.0, 1.0, 1.0, 0.0])
    np.testing.assert_array_equal(delay_signal(signal, 0), signal)
    np.testing.assert_array_equal(delay_signal(signal, 10), np.zeros(4))


def test_numeric_literals_and_perturbation() -> None:
    tree = Rule(call("And", call("GreaterThan", call("SMA", call("Close"), 14), call("Close")),
                     call("LessThanScalar", call("RSI", call("Close"), 9), 30.0)), LONG)

    literals = numeric_literals(tree)

    assert [node.value for _, node in literals] == [14, 9, 30.0]
    assert perturb_literal(Const(14), 0.7) == Const(10)
    assert isinstance(perturb_literal(Const(14), 0.7).value, int)
    assert perturb_literal(Const(1), 0.7).value == 1
    assert perturb_literal(Const(30.0), 1.1).value == pytest.approx(33.0)


def test_monte_carlo_with_profitable_trades() -> None:
    result = MonteCarloTest(permutations=50).run(_trend_following(), _build_rising(), Backtester())

    assert result.passed
    assert result.score == 1.0
    assert result.details["num_trades"] == 1


def test_monte_carlo_without_trades_fails() -> None:
    never = Rule(call("GreaterThan", call("Close"), 1_000_000.0), LONG)
    result = MonteCarloTest(permutations=10).run(never, _build_rising(), Backtester())

    assert not result.passed
    assert result.score == 0.0
    assert result.details == {"num_trades": 0}


def test_monte_carlo_is_seeded() -> None:
    dataset = synthetic_bars(300, seed=21)
    tree = get_preset("sma_crossover")
    assert tree is not None

    first = MonteCarloTest(permutations=100, seed=5).run(tree, dataset, Backtester())
    second = MonteCarloTest(permutations=100, seed=5).run(tree, dataset, Backtester())

    assert first.score == second.score
    assert first.details == second.details


def _build_zigzag(repeats: int = 3) -> OhlcvDataset:
    return OhlcvDataset.from_close([100.0, 101.0, 110.0, 108.0, 109.0, 100.0, 101.0, 112.0, 111.0, 112.0, 105.0] * repeats)


def test_trade_returns_are_fractions_of_entry_balance() -> None:
    result = run_backtest(_trend_following(), _build_rising())

    returns = trade_returns(result.trades, result.initial_capital)

    assert returns.tolist() == pytest.approx([98.0 / 101.0])


def test_monte_carlo_final_equity_spreads_over_mixed_trades() -> None:
    dataset = _build_zigzag()
    trades = run_backtest(_trend_following(), dataset).trades
    assert len(trades) == 12
    assert any(t.is_win for t in trades) and any(not t.is_win for t in trades)

    result = MonteCarloTest(permutations=200, seed=3).run(_trend_following(), dataset, Backtester())

    assert result.details["resampled"] is True
    assert result.details["final_equity_p5"] < result.details["final_equity_p95"]
    assert 0.0 < result.score < 1.0


def test_monte_carlo_reshuffle_keeps_final_equity() -> None:
    dataset = _build_zigzag()
    final = run_backtest(_trend_following(), dataset).final_equity

    result = MonteCarloTest(permutations=50, resample=False).run(_trend_following(), dataset, Backtester())

    assert result.details["final_equity_p5"] == pytest.approx(final)
    assert result.details["final_equity_p95"] == pytest.approx(final)


def test_parameter_stability_without_literals_passes() -> None:
    tree = Rule(call("GreaterThan", call("Close"), call("Open")), LONG)
    result = ParameterStabilityTest().run(tree, _build_rising(), Backtester())

    assert result.passed
    assert result.score == 1.0


def test_parameter_stability_records_each_variation() -> None:
    tree = get_preset("sma_crossover")
    assert tree is not None
    variations = (0.8, 1.2)

    result = ParameterStabilityTest(variations=variations).run(tree, synthetic_bars(300, seed=2), Backtester())

    assert result.details["parameters_tested"] == 2
    assert len(result.details["results"]) == 4
    assert 0.0 <= result.score <= 1.0
    assert result.passed == (result.details["average_drop_pct"] <= 30.0)


def test_friction_on_steady_trend() -> None:
    result = FrictionTest().run(_trend_following(), _build_rising(), Backtester())

    assert result.passed
    assert 0.0 < result.details["drop_pct"] < 20.0
    assert result.details["delayed_metric"] < result.details["original_metric"]


def test_report_isolates_failing_tests() -> None:
    report = run_robustness_report(
        _trend_following(),
        _build_rising(),
        tests=[_ExplodingTest(), FrictionTest()],
    )

    assert [r.test_name for r in report.test_results] == ["Exploding", "Friction (Delayed Execution)"]
    exploding, friction = report.test_results
    assert not exploding.passed
    assert exploding.details["error"] == "RuntimeError: no data"
    assert friction.passed
    assert not report.passed_all
    assert "1 of 2" in report.summary


def test_default_report_is_serializable() -> None:
    dataset = _build_rising()
    result = run_backtest(_trend_following(), dataset)

    report = run_robustness_report(result, dataset)

    assert len(report.test_results) == len(default_tests())
    assert report.strategy == _trend_following().to_formula()
    assert 0.0 <= report.overall_score <= 1.0
    payload = json.loads(json.dumps(report.to_dict()))
    assert payload["strategy"].startswith("IF GreaterThan")
