"""Advisory risk classification for monitoring and alerting."""
from __future__ import annotations

from dataclasses import dataclass

from .models import MetricsSnapshot, RiskLevel, RuleSet


@dataclass(frozen=True)
class RiskBands:
    critical_usage_ratio: float = 1.0
    critical_overall_pct: float = 8.0
    high_overall_pct: float = 6.0
    high_daily_pct: float = 3.0
    medium_overall_pct: float = 4.0
    medium_daily_pct: float = 2.0


def limit_usage(metrics: MetricsSnapshot, ruleset: RuleSet) -> float:
    """Worse of daily and overall drawdown as a fraction of its configured limit."""
    daily = metrics.daily_drawdown_percent / ruleset.daily_drawdown_percent
    overall = metrics.overall_drawdown_percent / ruleset.overall_drawdown_percent
    return max(daily, overall)


def classify_risk(metrics: MetricsSnapshot, ruleset: RuleSet, bands: RiskBands | None = None) -> RiskLevel:
    """First matching band wins. Never mutates account state."""
    bands = bands or RiskBands()
    overall = metrics.overall_drawdown_percent
    daily = metrics.daily_drawdown_percent

    if limit_usage(metrics, ruleset) >= bands.critical_usage_ratio or overall >= bands.critical_overall_pct:
        return RiskLevel.CRITICAL
    if overall >= bands.high_overall_pct or daily >= bands.high_daily_pct:
        return RiskLevel.HIGH
    if overall >= bands.medium_overall_pct or daily >= bands.medium_daily_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
