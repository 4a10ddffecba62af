"""Configuration for the compliance engine."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .models import RuleSet
from .risk import RiskBands


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineConfig:
    trading_timezone: str = "UTC"
    max_workers: int = 8
    poll_seconds: float = 0.0
    log_dir: Path | None = Path("logs")
    risk_bands: RiskBands = field(default_factory=RiskBands)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        log_dir = os.getenv("COMPLIANCE_LOG_DIR", "logs")
        bands = RiskBands(
            critical_usage_ratio=env_float("COMPLIANCE_RISK_CRITICAL_USAGE_RATIO", 1.0),
            critical_overall_pct=env_float("COMPLIANCE_RISK_CRITICAL_OVERALL_PCT", 8.0),
            high_overall_pct=env_float("COMPLIANCE_RISK_HIGH_OVERALL_PCT", 6.0),
            high_daily_pct=env_float("COMPLIANCE_RISK_HIGH_DAILY_PCT", 3.0),
            medium_overall_pct=env_float("COMPLIANCE_RISK_MEDIUM_OVERALL_PCT", 4.0),
            medium_daily_pct=env_float("COMPLIANCE_RISK_MEDIUM_DAILY_PCT", 2.0),
        )
        return cls(
            trading_timezone=os.getenv("COMPLIANCE_TRADING_TIMEZONE", "UTC"),
            max_workers=max(1, env_int("COMPLIANCE_MAX_WORKERS", 8)),
            poll_seconds=max(0.0, env_float("COMPLIANCE_POLL_SECONDS", 0.0)),
            log_dir=Path(log_dir) if log_dir else None,
            risk_bands=bands,
        )


def default_rulesets() -> dict[str, RuleSet]:
    return {
        "TWO_PHASE_STANDARD": RuleSet(
            challenge_id="TWO_PHASE_STANDARD",
            phase1_target_percent=8.0,
            phase2_target_percent=5.0,
            daily_drawdown_percent=5.0,
            overall_drawdown_percent=10.0,
            min_trading_days=5,
            max_trading_period_days=None,
        ),
        "ONE_PHASE_EXPRESS": RuleSet(
            challenge_id="ONE_PHASE_EXPRESS",
            phase1_target_percent=10.0,
            phase2_target_percent=None,
            daily_drawdown_percent=4.0,
            overall_drawdown_percent=8.0,
            min_trading_days=3,
            max_trading_period_days=30,
        ),
    }
