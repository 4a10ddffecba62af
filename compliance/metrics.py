"""Drawdown and profit metrics.

Single place where profit and drawdown percentages are derived. Every consumer
(evaluation, history, HTTP views) reads these values instead of recomputing them.
"""
from __future__ import annotations

import math

from .errors import DataIntegrityError
from .models import MetricsSnapshot, TradingAccount


def _usable_base(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _check_amount(name: str, value: float) -> None:
    if value is None or not math.isfinite(value):
        raise DataIntegrityError(f"{name} is not a finite number: {value!r}")
    if value < 0:
        raise DataIntegrityError(f"{name} is negative: {value}")


def drawdown_percent(reference: float, equity: float) -> float:
    """Decline from reference to equity in percent; 0 when there is no decline."""
    if not _usable_base(reference):
        return 0.0
    return max(0.0, (reference - equity) / reference * 100)


def profit_percent(initial_balance: float, equity: float) -> float:
    if not _usable_base(initial_balance):
        return 0.0
    return (equity - initial_balance) / initial_balance * 100


def compute_metrics(
    *,
    initial_balance: float,
    balance: float,
    equity: float,
    max_equity_to_date: float,
    today_start_equity: float,
    trading_days_completed: int = 0,
) -> MetricsSnapshot:
    _check_amount("balance", balance)
    _check_amount("equity", equity)
    if trading_days_completed < 0:
        raise DataIntegrityError(f"trading days cannot be negative: {trading_days_completed}")
    return MetricsSnapshot(
        profit_percent=profit_percent(initial_balance, equity),
        daily_drawdown_percent=drawdown_percent(today_start_equity, equity),
        overall_drawdown_percent=drawdown_percent(max_equity_to_date, equity),
        trading_days_completed=trading_days_completed,
        balance=balance,
        equity=equity,
    )


def snapshot_for(account: TradingAccount) -> MetricsSnapshot:
    return compute_metrics(
        initial_balance=account.initial_balance,
        balance=account.balance,
        equity=account.equity,
        max_equity_to_date=account.max_equity_to_date,
        today_start_equity=account.today_start_equity,
        trading_days_completed=account.trading_days_count,
    )
