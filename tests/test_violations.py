from datetime import datetime, timezone

from compliance.models import MetricsSnapshot, Phase, RuleSet, Severity, ViolationType
from compliance.rules import evaluate_rules
from compliance.violations import ViolationDetector

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def _ruleset() -> RuleSet:
    return RuleSet(
        challenge_id="TEST",
        phase1_target_percent=8.0,
        phase2_target_percent=5.0,
        daily_drawdown_percent=5.0,
        overall_drawdown_percent=10.0,
        min_trading_days=3,
    )


def _detect(daily: float = 0.0, overall: float = 0.0, days: int = 0, alerts=frozenset()):
    metrics = MetricsSnapshot(
        profit_percent=-overall,
        daily_drawdown_percent=daily,
        overall_drawdown_percent=overall,
        trading_days_completed=days,
        balance=10000.0,
        equity=10000.0,
    )
    ruleset = _ruleset()
    compliance = evaluate_rules(metrics, ruleset, Phase.PHASE1)
    return ViolationDetector().detect("ACC-1", compliance, metrics, ruleset, Phase.PHASE1, alerts, NOW)


def test_breach_is_reported_once() -> None:
    first = _detect(overall=13.36)
    second = _detect(overall=13.4, alerts=first.active_alerts)

    assert [v.type for v in first.violations] == [ViolationType.OVERALL_DRAWDOWN]
    assert second.violations == ()


def test_breach_records_structured_values() -> None:
    violation = _detect(daily=6.2).violations[0]

    assert violation.type == ViolationType.DAILY_DRAWDOWN
    assert violation.is_fatal is True
    assert violation.severity == Severity.CRITICAL
    assert violation.actual_value == 6.2
    assert violation.threshold_value == 5.0
    assert violation.account_id == "ACC-1"


def test_cleared_breach_is_rearmed() -> None:
    first = _detect(daily=6.0)
    cleared = _detect(daily=0.5, alerts=first.active_alerts)
    again = _detect(daily=6.0, alerts=cleared.active_alerts)

    assert cleared.violations == ()
    assert len(again.violations) == 1
    assert again.fatal is not None


def test_warning_near_limit_is_not_fatal() -> None:
    outcome = _detect(daily=4.1)

    assert len(outcome.violations) == 1
    warning = outcome.violations[0]
    assert warning.severity == Severity.WARNING
    assert warning.is_fatal is False
    assert warning.threshold_value == 4.0
    assert outcome.fatal is None
    assert _detect(daily=4.3, alerts=outcome.active_alerts).violations == ()


def test_no_entries_below_warning_ratio() -> None:
    assert _detect(daily=3.9, overall=7.9).violations == ()


def test_min_trading_days_milestone_once_per_phase() -> None:
    first = _detect(days=3)
    second = _detect(days=4, alerts=first.active_alerts)

    assert [v.severity for v in first.violations] == [Severity.INFO]
    assert first.violations[0].type == ViolationType.OTHER
    assert second.violations == ()
