"""Edge-triggered violation detection."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from .models import (
    ComplianceResult,
    MetricsSnapshot,
    Phase,
    RuleSet,
    Severity,
    Violation,
    ViolationType,
)


def _breach_key(violation_type: ViolationType) -> str:
    return f"breach:{violation_type.value}"


def _warning_key(violation_type: ViolationType) -> str:
    return f"warning:{violation_type.value}"


def _milestone_key(phase: Phase) -> str:
    return f"milestone:min_trading_days:{phase.value}"


@dataclass(frozen=True)
class DetectionOutcome:
    violations: tuple[Violation, ...]
    active_alerts: frozenset[str]

    @property
    def fatal(self) -> Violation | None:
        return next((violation for violation in self.violations if violation.is_fatal), None)


class ViolationDetector:
    """Emits a record only when a condition goes from clear to raised.

    The set of currently raised conditions is carried between calls by the
    caller (stored on the account), so polling the same state twice yields no
    new records. A condition that clears is re-armed.
    """

    def detect(
        self,
        account_id: str,
        compliance: ComplianceResult,
        metrics: MetricsSnapshot,
        ruleset: RuleSet,
        phase: Phase,
        active_alerts: Iterable[str],
        now: datetime,
    ) -> DetectionOutcome:
        previous = set(active_alerts)
        current: set[str] = {key for key in previous if key.startswith("milestone:")}
        emitted: list[Violation] = []

        drawdowns = (
            (
                ViolationType.DAILY_DRAWDOWN,
                "Daily drawdown",
                compliance.daily_drawdown_breached,
                compliance.daily_drawdown_usage,
                metrics.daily_drawdown_percent,
                ruleset.daily_drawdown_percent,
            ),
            (
                ViolationType.OVERALL_DRAWDOWN,
                "Overall drawdown",
                compliance.overall_drawdown_breached,
                compliance.overall_drawdown_usage,
                metrics.overall_drawdown_percent,
                ruleset.overall_drawdown_percent,
            ),
        )
        for violation_type, label, breached, usage, actual, limit in drawdowns:
            breach_key = _breach_key(violation_type)
            if breached:
                current.add(breach_key)
                if breach_key not in previous:
                    emitted.append(
                        Violation(
                            account_id=account_id,
                            type=violation_type,
                            severity=Severity.CRITICAL,
                            is_fatal=True,
                            message=f"{label} {actual:.2f}% exceeded limit {limit:.2f}%",
                            created_at=now,
                            actual_value=actual,
                            threshold_value=limit,
                        )
                    )

            warning_key = _warning_key(violation_type)
            if actual > 0 and usage >= ruleset.warning_threshold_ratio:
                current.add(warning_key)
                if warning_key not in previous and not breached:
                    emitted.append(
                        Violation(
                            account_id=account_id,
                            type=violation_type,
                            severity=Severity.WARNING,
                            is_fatal=False,
                            message=f"{label} {actual:.2f}% is approaching limit {limit:.2f}%",
                            created_at=now,
                            actual_value=actual,
                            threshold_value=limit * ruleset.warning_threshold_ratio,
                        )
                    )

        period_key = _breach_key(ViolationType.MAX_TRADING_DAYS)
        if compliance.trading_period_exceeded:
            current.add(period_key)
            if period_key not in previous:
                emitted.append(
                    Violation(
                        account_id=account_id,
                        type=ViolationType.MAX_TRADING_DAYS,
                        severity=Severity.CRITICAL,
                        is_fatal=True,
                        message=(
                            f"Trading period of {ruleset.max_trading_period_days} days ended "
                            f"at {metrics.profit_percent:.2f}% profit, target "
                            f"{compliance.profit_target_percent:.2f}%"
                        ),
                        created_at=now,
                        actual_value=metrics.profit_percent,
                        threshold_value=compliance.profit_target_percent,
                    )
                )

        milestone_key = _milestone_key(phase)
        if (
            phase in (Phase.PHASE1, Phase.PHASE2)
            and ruleset.min_trading_days > 0
            and compliance.min_trading_days_met
            and milestone_key not in previous
        ):
            current.add(milestone_key)
            emitted.append(
                Violation(
                    account_id=account_id,
                    type=ViolationType.OTHER,
                    severity=Severity.INFO,
                    is_fatal=False,
                    message=(
                        f"Minimum trading days met: {metrics.trading_days_completed} of "
                        f"{ruleset.min_trading_days}"
                    ),
                    created_at=now,
                    actual_value=float(metrics.trading_days_completed),
                    threshold_value=float(ruleset.min_trading_days),
                )
            )

        return DetectionOutcome(violations=tuple(emitted), active_alerts=frozenset(current))
