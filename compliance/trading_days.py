"""Trading-day boundaries and the trading-days counter."""
from __future__ import annotations

import logging
from datetime import datetime, tzinfo

from .clock import require_aware, trading_date
from .models import ReconciliationAnomaly, Trade, TradingAccount

logger = logging.getLogger(__name__)


class TradingDayAccounting:
    """Keeps ``today_start_equity`` and ``trading_days_count`` in step with the calendar.

    A day is counted the first time a trade lands on it, so the counter moves by
    at most one per calendar day no matter how often the account is polled.
    Days that have already rolled over are never rewritten; late trades are
    reported as anomalies instead.
    """

    def __init__(self, tz: tzinfo) -> None:
        self.tz = tz

    def rollover(self, account: TradingAccount, now: datetime) -> bool:
        """Start a new trading day if ``now`` is past the account's current day."""
        today = trading_date(now, self.tz)
        if today <= account.current_day:
            # Broker timestamps may run ahead of the engine clock.
            return False
        logger.debug(
            "Rolling %s from %s to %s, start-of-day equity %.2f",
            account.account_id,
            account.current_day,
            today,
            account.equity,
        )
        account.current_day = today
        account.today_start_equity = account.equity
        account.current_day_traded = False
        return True

    def observe_trade(
        self,
        account: TradingAccount,
        trade: Trade,
        now: datetime,
    ) -> ReconciliationAnomaly | None:
        """Register trading activity. Returns an anomaly if the trade's day is closed."""
        moment = require_aware(trade.activity_time, "trade time")
        if moment < account.created_at:
            return self._anomaly(
                account,
                "trade_before_account",
                f"Trade {trade.trade_id} at {moment.isoformat()} predates the account",
                moment,
                now,
            )

        day = trading_date(moment, self.tz)
        if day < account.current_day:
            return self._anomaly(
                account,
                "late_trade",
                (
                    f"Trade {trade.trade_id} belongs to {day.isoformat()}, which already "
                    f"rolled over; trading days left at {account.trading_days_count}"
                ),
                moment,
                now,
            )
        if day > account.current_day:
            self.rollover(account, moment)

        if not account.current_day_traded:
            account.current_day_traded = True
            account.trading_days_count += 1
        return None

    def _anomaly(
        self,
        account: TradingAccount,
        kind: str,
        message: str,
        event_time: datetime,
        now: datetime,
    ) -> ReconciliationAnomaly:
        logger.warning("Reconciliation anomaly for %s: %s", account.account_id, message)
        return ReconciliationAnomaly(
            account_id=account.account_id,
            kind=kind,
            message=message,
            event_time=event_time,
            recorded_at=now,
            details={"current_day": account.current_day.isoformat()},
        )
