"""Domain models for challenge compliance evaluation."""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any

from .errors import ConfigurationError


class Phase(str, Enum):
    PHASE1 = "PHASE1"
    PHASE2 = "PHASE2"
    FUNDED = "FUNDED"
    FAILED = "FAILED"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"
    DAILY_LOCKED = "DAILY_LOCKED"
    DISQUALIFIED = "DISQUALIFIED"


class ViolationType(str, Enum):
    DAILY_DRAWDOWN = "DAILY_DRAWDOWN"
    OVERALL_DRAWDOWN = "OVERALL_DRAWDOWN"
    MAX_TRADING_DAYS = "MAX_TRADING_DAYS"
    OTHER = "OTHER"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def new_record_id() -> str:
    return str(uuid.uuid4())


def record_to_dict(record: Any) -> dict[str, Any]:
    """Flatten a record dataclass into JSON-friendly primitives."""
    payload: dict[str, Any] = {}
    for item in fields(record):
        value = getattr(record, item.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, tuple):
            value = list(value)
        payload[item.name] = value
    return payload


@dataclass(frozen=True)
class RuleSet:
    """Per-challenge rule configuration; immutable once an account uses it."""

    challenge_id: str
    phase1_target_percent: float
    phase2_target_percent: float | None
    daily_drawdown_percent: float
    overall_drawdown_percent: float
    min_trading_days: int
    max_trading_period_days: int | None = None
    warning_threshold_ratio: float = 0.8

    @property
    def is_two_phase(self) -> bool:
        return self.phase2_target_percent is not None

    def target_for(self, phase: Phase) -> float | None:
        if phase == Phase.PHASE1:
            return self.phase1_target_percent
        if phase == Phase.PHASE2:
            return self.phase2_target_percent
        return None

    def next_phase(self, phase: Phase) -> Phase | None:
        if phase == Phase.PHASE1:
            return Phase.PHASE2 if self.is_two_phase else Phase.FUNDED
        if phase == Phase.PHASE2:
            return Phase.FUNDED
        return None

    def validate(self) -> None:
        if not self.challenge_id:
            raise ConfigurationError("Rule set is missing a challenge id")
        if not _positive(self.phase1_target_percent):
            raise ConfigurationError(f"{self.challenge_id}: phase 1 target must be positive")
        if self.phase2_target_percent is not None and not _positive(self.phase2_target_percent):
            raise ConfigurationError(f"{self.challenge_id}: phase 2 target must be positive")
        if not _positive(self.daily_drawdown_percent):
            raise ConfigurationError(f"{self.challenge_id}: daily drawdown limit must be positive")
        if not _positive(self.overall_drawdown_percent):
            raise ConfigurationError(f"{self.challenge_id}: overall drawdown limit must be positive")
        if self.min_trading_days is None or self.min_trading_days < 0:
            raise ConfigurationError(f"{self.challenge_id}: minimum trading days cannot be negative")
        if self.max_trading_period_days is not None and self.max_trading_period_days <= 0:
            raise ConfigurationError(f"{self.challenge_id}: trading period must be positive")
        ratio = self.warning_threshold_ratio
        if ratio is None or not math.isfinite(ratio) or not 0 < ratio < 1:
            raise ConfigurationError(f"{self.challenge_id}: warning ratio must be between 0 and 1")


@dataclass(frozen=True)
class Trade:
    trade_id: str
    open_price: float
    volume: float
    opened_at: datetime
    close_price: float | None = None
    profit: float = 0.0
    closed_at: datetime | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def activity_time(self) -> datetime:
        return self.closed_at or self.opened_at


@dataclass(frozen=True)
class TradeEvent:
    account_id: str
    trade: Trade
    equity: float | None = None


@dataclass(frozen=True)
class EquitySnapshot:
    account_id: str
    equity: float
    timestamp: datetime
    balance: float | None = None


@dataclass(frozen=True)
class MetricsSnapshot:
    profit_percent: float
    daily_drawdown_percent: float
    overall_drawdown_percent: float
    trading_days_completed: int
    balance: float
    equity: float


@dataclass(frozen=True)
class ComplianceResult:
    profit_target_percent: float | None
    profit_target_met: bool
    daily_drawdown_breached: bool
    overall_drawdown_breached: bool
    min_trading_days_met: bool
    trading_period_exceeded: bool
    daily_drawdown_usage: float
    overall_drawdown_usage: float

    @property
    def has_violation(self) -> bool:
        return self.daily_drawdown_breached or self.overall_drawdown_breached


@dataclass(frozen=True)
class Violation:
    account_id: str
    type: ViolationType
    severity: Severity
    is_fatal: bool
    message: str
    created_at: datetime
    actual_value: float | None = None
    threshold_value: float | None = None
    id: str = field(default_factory=new_record_id)


@dataclass(frozen=True)
class PhaseTransition:
    account_id: str
    from_phase: Phase
    to_phase: Phase
    reason: str
    occurred_at: datetime
    actor_id: str | None = None
    id: str = field(default_factory=new_record_id)

    @property
    def is_manual(self) -> bool:
        return self.actor_id is not None


@dataclass(frozen=True)
class StatusChange:
    account_id: str
    from_status: AccountStatus
    to_status: AccountStatus
    reason: str
    occurred_at: datetime
    actor_id: str
    id: str = field(default_factory=new_record_id)


@dataclass(frozen=True)
class ReconciliationAnomaly:
    account_id: str
    kind: str
    message: str
    event_time: datetime
    recorded_at: datetime
    details: dict[str, object] = field(default_factory=dict)
    id: str = field(default_factory=new_record_id)


@dataclass(frozen=True)
class DailyComplianceRecord:
    date: date
    daily_drawdown_percent: float
    overall_drawdown_percent: float
    profit_percent: float
    violation_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class EvaluationResult:
    account_id: str
    metrics: MetricsSnapshot
    compliance: ComplianceResult
    new_violations: tuple[Violation, ...]
    transition: PhaseTransition | None
    risk_level: RiskLevel
    evaluated_at: datetime


@dataclass
class TradingAccount:
    """Mutable engine-owned account state.

    Audit lists are append-only; only the engine mutates this object and only
    while holding the account lock.

    ``trading_days_count`` counts distinct trading days within the current
    phase; it restarts at zero whenever the phase changes. ``pending_audit``
    holds audit records not yet written to the trail, oldest first.
    """

    account_id: str
    challenge_id: str
    initial_balance: float
    balance: float
    equity: float
    max_equity_to_date: float
    today_start_equity: float
    created_at: datetime
    phase_started_at: datetime
    current_day: date
    trading_days_count: int = 0
    current_day_traded: bool = False
    phase: Phase = Phase.PHASE1
    status: AccountStatus = AccountStatus.ACTIVE
    floating_pnl: float = 0.0
    last_equity_at: datetime | None = None
    open_trade_ids: set[str] = field(default_factory=set)
    closed_trades: dict[str, Trade] = field(default_factory=dict)
    active_alerts: set[str] = field(default_factory=set)
    violations: list[Violation] = field(default_factory=list)
    transitions: list[PhaseTransition] = field(default_factory=list)
    status_changes: list[StatusChange] = field(default_factory=list)
    anomalies: list[ReconciliationAnomaly] = field(default_factory=list)
    daily_records: dict[date, DailyComplianceRecord] = field(default_factory=dict)
    last_result: EvaluationResult | None = None
    last_error: dict[str, str] | None = None
    pending_audit: list[tuple[str, Any]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.phase == Phase.FAILED or self.status == AccountStatus.DISQUALIFIED
