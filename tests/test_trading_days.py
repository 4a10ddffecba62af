from datetime import date, datetime, timedelta, timezone

from compliance.clock import resolve_timezone
from compliance.models import Trade, TradingAccount
from compliance.trading_days import TradingDayAccounting

CREATED = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def _account() -> TradingAccount:
    return TradingAccount(
        account_id="ACC-1",
        challenge_id="TEST",
        initial_balance=10000.0,
        balance=10000.0,
        equity=10000.0,
        max_equity_to_date=10000.0,
        today_start_equity=10000.0,
        created_at=CREATED,
        phase_started_at=CREATED,
        current_day=date(2024, 1, 1),
    )


def _trade(trade_id: str, moment: datetime) -> Trade:
    return Trade(trade_id=trade_id, open_price=100.0, volume=1.0, opened_at=moment)


def test_counts_each_trading_day_once() -> None:
    days = TradingDayAccounting(timezone.utc)
    account = _account()
    for offset in range(4):
        base = CREATED + timedelta(days=offset, hours=2)
        for index in range(3):
            moment = base + timedelta(minutes=index)
            assert days.observe_trade(account, _trade(f"{offset}-{index}", moment), moment) is None
            days.rollover(account, moment)

    assert account.trading_days_count == 4


def test_rollover_is_idempotent_within_a_day() -> None:
    days = TradingDayAccounting(timezone.utc)
    account = _account()
    account.equity = 10250.0
    moment = datetime(2024, 1, 2, 0, 5, tzinfo=timezone.utc)

    assert days.rollover(account, moment) is True
    account.equity = 10100.0
    assert days.rollover(account, moment + timedelta(hours=5)) is False
    assert account.today_start_equity == 10250.0
    assert account.current_day == date(2024, 1, 2)


def test_days_without_trades_are_not_counted() -> None:
    days = TradingDayAccounting(timezone.utc)
    account = _account()
    days.rollover(account, datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc))

    assert account.trading_days_count == 0


def test_late_trade_is_reported_not_counted() -> None:
    days = TradingDayAccounting(timezone.utc)
    account = _account()
    today = datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)
    days.observe_trade(account, _trade("t1", today), today)

    anomaly = days.observe_trade(account, _trade("late", datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)), today)

    assert anomaly is not None
    assert anomaly.kind == "late_trade"
    assert account.trading_days_count == 1


def test_trade_before_account_creation_is_reported() -> None:
    days = TradingDayAccounting(timezone.utc)
    account = _account()
    anomaly = days.observe_trade(account, _trade("early", CREATED - timedelta(hours=1)), CREATED)

    assert anomaly.kind == "trade_before_account"
    assert account.trading_days_count == 0


def test_day_boundary_uses_trading_timezone() -> None:
    days = TradingDayAccounting(resolve_timezone("Europe/Berlin"))
    account = _account()
    moment = datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc)

    days.observe_trade(account, _trade("t1", moment), moment)

    assert account.current_day == date(2024, 1, 2)
    assert account.trading_days_count == 1
