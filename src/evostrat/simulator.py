"""Single-position trade simulation over a precomputed signal column."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

from .config import RiskConfig, StopLossKind, TakeProfitKind
from .data import OhlcvDataset
from .errors import EvaluationError
from .indicators import atr


class Direction(IntEnum):
    SHORT = -1
    FLAT = 0
    LONG = 1


class ExitReason(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    SIGNAL = "signal"
    END_OF_DATA = "end_of_data"


@dataclass(frozen=True)
class Trade:
    entry_index: int
    exit_index: int
    entry_price: float
    exit_price: float
    direction: Direction
    size: float
    profit: float
    exit_reason: ExitReason
    fees: float = 0.0

    @property
    def bars_held(self) -> int:
        return self.exit_index - self.entry_index

    @property
    def notional(self) -> float:
        return self.entry_price * self.size

    @property
    def return_pct(self) -> float:
        if self.notional == 0:
            return 0.0
        return self.profit / self.notional * 100.0

    @property
    def is_win(self) -> bool:
        return self.profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_index": self.entry_index,
            "exit_index": self.exit_index,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "direction": int(self.direction),
            "size": self.size,
            "profit": self.profit,
            "exit_reason": self.exit_reason.value,
            "fees": self.fees,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Trade":
        return cls(
            entry_index=int(payload["entry_index"]),
            exit_index=int(payload["exit_index"]),
            entry_price=float(payload["entry_price"]),
            exit_price=float(payload["exit_price"]),
            direction=Direction(int(payload["direction"])),
            size=float(payload["size"]),
            profit=float(payload["profit"]),
            exit_reason=ExitReason(payload["exit_reason"]),
            fees=float(payload.get("fees", 0.0)),
        )


@dataclass(frozen=True)
class SimulationResult:
    trades: Tuple[Trade, ...]
    equity_curve: np.ndarray
    initial_capital: float

    @property
    def final_equity(self) -> float:
        if len(self.equity_curve) == 0:
            return self.initial_capital
        return float(self.equity_curve[-1])


@dataclass
class _OpenPosition:
    direction: Direction
    entry_index: int
    entry_price: float
    size: float
    entry_fee: float
    stop: float | None
    target: float | None


class TradeSimulator:
    """Walk a signal column bar by bar and keep at most one position open.

    Entries are edge-triggered: a position opens only on the bar where the
    signal changes into a direction. A position closes when the signal leaves
    its direction, when a protective level is breached, or at the last bar.
    On a single bar, stop-loss is checked before take-profit and both before
    the signal exit.
    """

    def __init__(self, risk: RiskConfig | None = None, initial_capital: float = 10_000.0) -> None:
        self.risk = risk or RiskConfig()
        self.initial_capital = float(initial_capital)

    def run(self, signal: Sequence[float], dataset: OhlcvDataset) -> SimulationResult:
        signal_arr = np.sign(np.nan_to_num(np.asarray(signal, dtype=float), nan=0.0))
        length = len(dataset)
        if signal_arr.shape != (length,):
            raise EvaluationError(
                f"Signal length {signal_arr.shape} does not match dataset length {length}"
            )
        if not self.risk.allow_short:
            signal_arr = np.where(signal_arr < 0, 0.0, signal_arr)

        opens = dataset.open.tolist()
        highs = dataset.high.tolist()
        lows = dataset.low.tolist()
        closes = dataset.close.tolist()
        stop_kind = StopLossKind(self.risk.stop_loss.kind)
        atr_values = (
            atr(dataset, self.risk.stop_loss.atr_period).tolist()
            if stop_kind is StopLossKind.ATR
            else None
        )

        balance = self.initial_capital
        position: _OpenPosition | None = None
        trades: List[Trade] = []
        equity = np.empty(length, dtype=float)
        previous_signal = 0.0
        last_mark = closes[0] if length else 0.0

        for i in range(length):
            sig = float(signal_arr[i])
            close = closes[i]
            if math.isfinite(close):
                last_mark = close

            if position is not None and i > position.entry_index:
                breach = self._protective_exit(position, opens[i], highs[i], lows[i])
                if breach is not None:
                    price, reason = breach
                    balance, trade = self._close(position, i, price, reason, balance)
                    trades.append(trade)
                    position = None

            if position is not None and sig != position.direction:
                balance, trade = self._close(position, i, last_mark, ExitReason.SIGNAL, balance)
                trades.append(trade)
                position = None

            if (
                position is None
                and sig != 0.0
                and sig != previous_signal
                and balance > 0
                and math.isfinite(close)
                and close > 0
            ):
                atr_value = atr_values[i] if atr_values is not None else None
                position, balance = self._open(Direction(int(sig)), i, close, balance, atr_value)

            equity[i] = balance + (self._unrealized(position, last_mark) if position else 0.0)
            previous_signal = sig

        if position is not None and length:
            balance, trade = self._close(position, length - 1, last_mark, ExitReason.END_OF_DATA, balance)
            trades.append(trade)
            equity[length - 1] = balance

        return SimulationResult(trades=tuple(trades), equity_curve=equity, initial_capital=self.initial_capital)

    # Internal helpers ------------------------------------------------------------

    def _open(
        self,
        direction: Direction,
        index: int,
        price: float,
        balance: float,
        atr_value: float | None,
    ) -> Tuple[_OpenPosition, float]:
        fill = price * (1 + self.risk.slippage_pct * direction)
        notional = balance * self.risk.position_fraction
        size = notional / fill
        fee = notional * self.risk.commission_pct
        stop = self._stop_level(direction, fill, atr_value)
        target = self._target_level(direction, fill, stop)
        position = _OpenPosition(
            direction=direction,
            entry_index=index,
            entry_price=fill,
            size=size,
            entry_fee=fee,
            stop=stop,
            target=target,
        )
        return position, balance - fee

    def _close(
        self,
        position: _OpenPosition,
        index: int,
        price: float,
        reason: ExitReason,
        balance: float,
    ) -> Tuple[float, Trade]:
        fill = price * (1 - self.risk.slippage_pct * position.direction)
        gross = (fill - position.entry_price) * position.size * position.direction
        exit_fee = abs(fill * position.size) * self.risk.commission_pct
        trade = Trade(
            entry_index=position.entry_index,
            exit_index=index,
            entry_price=position.entry_price,
            exit_price=fill,
            direction=position.direction,
            size=position.size,
            profit=gross - position.entry_fee - exit_fee,
            exit_reason=reason,
            fees=position.entry_fee + exit_fee,
        )
        return balance + gross - exit_fee, trade

    @staticmethod
    def _unrealized(position: _OpenPosition, price: float) -> float:
        return (price - position.entry_price) * position.size * position.direction

    def _stop_level(self, direction: Direction, fill: float, atr_value: float | None) -> float | None:
        policy = self.risk.stop_loss
        kind = StopLossKind(policy.kind)
        if kind is StopLossKind.FIXED_PERCENT:
            return fill * (1 - policy.percent * direction)
        if kind is StopLossKind.ATR and atr_value is not None and math.isfinite(atr_value):
            return fill - direction * policy.atr_multiplier * atr_value
        return None

    def _target_level(self, direction: Direction, fill: float, stop: float | None) -> float | None:
        policy = self.risk.take_profit
        kind = TakeProfitKind(policy.kind)
        if kind is TakeProfitKind.FIXED_PERCENT:
            return fill * (1 + policy.percent * direction)
        if kind is TakeProfitKind.RISK_REWARD and stop is not None:
            return fill + direction * policy.risk_reward * abs(fill - stop)
        return None

    @staticmethod
    def _protective_exit(
        position: _OpenPosition, open_: float, high: float, low: float
    ) -> Tuple[float, ExitReason] | None:
        if position.direction is Direction.LONG:
            if position.stop is not None and low <= position.stop:
                return min(open_, position.stop), ExitReason.STOP_LOSS
            if position.target is not None and high >= position.target:
                return max(open_, position.target), ExitReason.TAKE_PROFIT
        else:
            if position.stop is not None and high >= position.stop:
                return max(open_, position.stop), ExitReason.STOP_LOSS
            if position.target is not None and low <= position.target:
                return min(open_, position.target), ExitReason.TAKE_PROFIT
        return None


def simulate(
    signal: Sequence[float],
    dataset: OhlcvDataset,
    risk: RiskConfig | None = None,
    initial_capital: float = 10_000.0,
) -> SimulationResult:
    return TradeSimulator(risk=risk, initial_capital=initial_capital).run(signal, dataset)
