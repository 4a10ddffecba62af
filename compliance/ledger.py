"""Equity ledger: applies broker trade and equity events to an account."""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta

from .clock import require_aware
from .errors import DataIntegrityError
from .models import (
    AccountStatus,
    DailyComplianceRecord,
    EquitySnapshot,
    MetricsSnapshot,
    ReconciliationAnomaly,
    Trade,
    TradingAccount,
    Violation,
)


def _finite(name: str, value: float | None) -> float:
    if value is None or not math.isfinite(value):
        raise DataIntegrityError(f"{name} is not a finite number: {value!r}")
    return float(value)


def _non_negative(name: str, value: float | None) -> float:
    number = _finite(name, value)
    if number < 0:
        raise DataIntegrityError(f"{name} is negative: {number}")
    return number


@dataclass(frozen=True)
class EquityPosting:
    """Validated balance/equity change, ready to be written to the account."""

    moment: datetime
    balance: float
    equity: float
    open_trade_ids: frozenset[str]
    closed_trade: Trade | None = None


class EquityLedger:
    """Balance, equity and high-water mark bookkeeping.

    ``prepare_*`` validates an event against the account without touching it;
    ``post`` writes the result. A rejected event therefore leaves the account
    exactly as it was.
    """

    def prepare_trade(
        self,
        account: TradingAccount,
        trade: Trade,
        equity: float | None = None,
    ) -> EquityPosting | None:
        """Returns None for a duplicate delivery of an already-applied event."""
        require_aware(trade.opened_at, "opened_at")
        _non_negative("volume", trade.volume)
        _finite("open_price", trade.open_price)

        if not trade.is_closed:
            if trade.trade_id in account.open_trade_ids or trade.trade_id in account.closed_trades:
                return None
            return EquityPosting(
                moment=trade.opened_at,
                balance=account.balance,
                equity=account.equity,
                open_trade_ids=frozenset(account.open_trade_ids | {trade.trade_id}),
            )

        require_aware(trade.closed_at, "closed_at")
        if trade.closed_at < trade.opened_at:
            raise DataIntegrityError(f"Trade {trade.trade_id} closes before it opens")
        existing = account.closed_trades.get(trade.trade_id)
        if existing is not None:
            if existing == trade:
                return None
            raise DataIntegrityError(f"Trade {trade.trade_id} is already closed and cannot change")

        profit = _finite("profit", trade.profit)
        if trade.close_price is not None:
            _finite("close_price", trade.close_price)
        balance = account.balance + profit
        if balance < 0:
            raise DataIntegrityError(
                f"Closing trade {trade.trade_id} would leave a negative balance: {balance:.2f}"
            )

        remaining = frozenset(account.open_trade_ids - {trade.trade_id})
        if equity is not None:
            new_equity = _non_negative("equity", equity)
        elif remaining:
            # Floating P&L of the remaining positions is stale until the next snapshot.
            new_equity = balance + account.floating_pnl
        else:
            new_equity = balance
        if new_equity < 0:
            raise DataIntegrityError(f"Equity would fall below zero: {new_equity:.2f}")

        return EquityPosting(
            moment=trade.closed_at,
            balance=balance,
            equity=new_equity,
            open_trade_ids=remaining,
            closed_trade=trade,
        )

    def prepare_snapshot(
        self,
        account: TradingAccount,
        snapshot: EquitySnapshot,
        now: datetime,
    ) -> EquityPosting | ReconciliationAnomaly:
        """Stale readings come back as an anomaly and must not be posted."""
        moment = require_aware(snapshot.timestamp)
        equity = _non_negative("equity", snapshot.equity)
        balance = account.balance
        if snapshot.balance is not None:
            balance = _non_negative("balance", snapshot.balance)

        if account.last_equity_at is not None and moment < account.last_equity_at:
            return ReconciliationAnomaly(
                account_id=account.account_id,
                kind="stale_snapshot",
                message=(
                    f"Equity reading from {moment.isoformat()} is older than the last "
                    f"applied reading {account.last_equity_at.isoformat()}"
                ),
                event_time=moment,
                recorded_at=now,
                details={"equity": equity},
            )
        return EquityPosting(
            moment=moment,
            balance=balance,
            equity=equity,
            open_trade_ids=frozenset(account.open_trade_ids),
        )

    def post(self, account: TradingAccount, posting: EquityPosting) -> None:
        account.balance = posting.balance
        account.equity = posting.equity
        account.floating_pnl = posting.equity - posting.balance
        account.open_trade_ids = set(posting.open_trade_ids)
        if posting.closed_trade is not None:
            account.closed_trades[posting.closed_trade.trade_id] = posting.closed_trade
        if account.last_equity_at is None or posting.moment > account.last_equity_at:
            account.last_equity_at = posting.moment
        if account.status == AccountStatus.ACTIVE and not account.is_terminal:
            account.max_equity_to_date = max(account.max_equity_to_date, posting.equity)

    def reset(self, account: TradingAccount, now: datetime) -> None:
        """Administrative restart from the initial balance."""
        account.balance = account.initial_balance
        account.equity = account.initial_balance
        account.floating_pnl = 0.0
        account.max_equity_to_date = account.initial_balance
        account.today_start_equity = account.initial_balance
        account.open_trade_ids = set()
        account.active_alerts = set()
        account.last_equity_at = now

    def record_day(
        self,
        account: TradingAccount,
        metrics: MetricsSnapshot,
        violations: tuple[Violation, ...] = (),
    ) -> DailyComplianceRecord:
        """Fold one evaluation into the current day's record, keeping the worst drawdowns."""
        day = account.current_day
        record = account.daily_records.get(day)
        new_ids = tuple(violation.id for violation in violations)
        if record is None:
            record = DailyComplianceRecord(
                date=day,
                daily_drawdown_percent=metrics.daily_drawdown_percent,
                overall_drawdown_percent=metrics.overall_drawdown_percent,
                profit_percent=metrics.profit_percent,
                violation_ids=new_ids,
            )
        else:
            record = replace(
                record,
                daily_drawdown_percent=max(record.daily_drawdown_percent, metrics.daily_drawdown_percent),
                overall_drawdown_percent=max(
                    record.overall_drawdown_percent, metrics.overall_drawdown_percent
                ),
                profit_percent=metrics.profit_percent,
                violation_ids=record.violation_ids + new_ids,
            )
        account.daily_records[day] = record
        return record

    def history(self, account: TradingAccount, days: int, today: date) -> list[DailyComplianceRecord]:
        """Records for the last ``days`` calendar days, most recent first."""
        if days < 1:
            raise ValueError("days must be at least 1")
        start = today - timedelta(days=days - 1)
        records = [
            record
            for record_day, record in account.daily_records.items()
            if start <= record_day <= today
        ]
        return sorted(records, key=lambda record: record.date, reverse=True)
