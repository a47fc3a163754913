"""Hand-written reference strategies.

Presets give the backtest and robustness commands something to run without a
prior evolution, and serve as known baselines to compare evolved rules with.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from .expressions import LONG, SHORT, Rule, call

CLOSE = call("Close")


def _trend_following() -> Rule:
    return Rule(call("GreaterThan", CLOSE, call("Shift", CLOSE, 1)), LONG)


def _sma_crossover() -> Rule:
    fast = call("SMA", CLOSE, 10)
    slow = call("SMA", CLOSE, 50)
    return Rule(call("GreaterThan", fast, slow), LONG)


def _rsi_reversion() -> Rule:
    return Rule(call("LessThanScalar", call("RSI", CLOSE, 14), 30.0), LONG)


def _rsi_overbought_short() -> Rule:
    return Rule(call("GreaterThanScalar", call("RSI", CLOSE, 14), 70.0), SHORT)


def _bollinger_breakout() -> Rule:
    return Rule(call("CrossAbove", CLOSE, call("BBUpper", CLOSE, 20)), LONG)


def _trend_with_strength() -> Rule:
    trend = call("GreaterThan", call("EMA", CLOSE, 20), call("EMA", CLOSE, 50))
    strong = call("GreaterThanScalar", call("ADX", 14), 25.0)
    return Rule(call("And", trend, strong), LONG)


PRESET_BUILDERS: Dict[str, Callable[[], Rule]] = {
    "trend_following": _trend_following,
    "sma_crossover": _sma_crossover,
    "rsi_reversion": _rsi_reversion,
    "rsi_overbought_short": _rsi_overbought_short,
    "bollinger_breakout": _bollinger_breakout,
    "trend_with_strength": _trend_with_strength,
}


def get_preset(name: str) -> Optional[Rule]:
    """Return the preset rule called ``name`` if one is defined."""

    builder = PRESET_BUILDERS.get(name.lower())
    if builder is None:
        return None
    return builder()


__all__ = ["get_preset", "PRESET_BUILDERS"]
