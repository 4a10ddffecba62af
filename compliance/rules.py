"""Rule checks against a metrics snapshot."""
from __future__ import annotations

from .errors import ConfigurationError
from .models import ComplianceResult, MetricsSnapshot, Phase, RuleSet


def evaluate_rules(
    metrics: MetricsSnapshot,
    ruleset: RuleSet | None,
    phase: Phase,
    days_in_phase: int = 0,
) -> ComplianceResult:
    """Compare metrics with the configured limits for the account's phase.

    Drawdown breaches use strict inequality: sitting exactly on a limit is
    still compliant. FUNDED carries no profit target and no trading period.
    """
    if ruleset is None:
        raise ConfigurationError("No rule set available for evaluation")
    ruleset.validate()

    target = ruleset.target_for(phase)
    profit_target_met = target is not None and metrics.profit_percent >= target

    trading_period_exceeded = False
    if (
        target is not None
        and ruleset.max_trading_period_days is not None
        and days_in_phase > ruleset.max_trading_period_days
        and not profit_target_met
    ):
        trading_period_exceeded = True

    return ComplianceResult(
        profit_target_percent=target,
        profit_target_met=profit_target_met,
        daily_drawdown_breached=metrics.daily_drawdown_percent > ruleset.daily_drawdown_percent,
        overall_drawdown_breached=metrics.overall_drawdown_percent > ruleset.overall_drawdown_percent,
        min_trading_days_met=metrics.trading_days_completed >= ruleset.min_trading_days,
        trading_period_exceeded=trading_period_exceeded,
        daily_drawdown_usage=metrics.daily_drawdown_percent / ruleset.daily_drawdown_percent,
        overall_drawdown_usage=metrics.overall_drawdown_percent / ruleset.overall_drawdown_percent,
    )
