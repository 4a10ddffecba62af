import math

import pytest

from compliance.errors import DataIntegrityError
from compliance.metrics import compute_metrics, drawdown_percent, profit_percent


def _metrics(**overrides):
    values = {
        "initial_balance": 10000.0,
        "balance": 10000.0,
        "equity": 10000.0,
        "max_equity_to_date": 10000.0,
        "today_start_equity": 10000.0,
    }
    values.update(overrides)
    return compute_metrics(**values)


def test_profit_target_scenario_metrics() -> None:
    metrics = _metrics(equity=10850.0, max_equity_to_date=10850.0, today_start_equity=10700.0)

    assert metrics.profit_percent == pytest.approx(8.5)
    assert metrics.daily_drawdown_percent == 0.0
    assert metrics.overall_drawdown_percent == 0.0


def test_overall_drawdown_from_high_watermark() -> None:
    metrics = _metrics(equity=9400.0, max_equity_to_date=10850.0, today_start_equity=9400.0)

    assert metrics.overall_drawdown_percent == pytest.approx(13.36, abs=0.01)
    assert metrics.daily_drawdown_percent == 0.0


def test_no_drawdown_at_or_above_reference() -> None:
    for equity in (10000.0, 10000.01, 12500.0, 1e9):
        assert drawdown_percent(10000.0, equity) == 0.0


def test_drawdown_stays_within_bounds() -> None:
    for reference in (0.01, 1.0, 10000.0, 1e12):
        for equity in (0.0, reference / 3, reference, reference * 2):
            value = drawdown_percent(reference, equity)
            assert 0.0 <= value <= 100.0


def test_degenerate_reference_short_circuits_to_zero() -> None:
    assert drawdown_percent(0.0, 50.0) == 0.0
    assert drawdown_percent(-10.0, 50.0) == 0.0
    assert drawdown_percent(math.nan, 50.0) == 0.0
    assert profit_percent(math.nan, 50.0) == 0.0
    assert profit_percent(-100.0, 50.0) == 0.0


def test_negative_balance_is_an_integrity_error() -> None:
    with pytest.raises(DataIntegrityError):
        _metrics(balance=-1.0)


def test_non_finite_equity_is_an_integrity_error() -> None:
    with pytest.raises(DataIntegrityError):
        _metrics(equity=math.inf)
