"""Compliance engine: owns account state and runs the evaluation pipeline.

Every mutation of an account (trade ingestion, equity snapshots, evaluation,
administrative overrides) happens while holding that account's lock, so a
single account is never evaluated twice at once. Different accounts are
independent and ``evaluate_all`` runs them on a thread pool.
"""
from __future__ import annotations

import copy
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from .clock import require_aware, resolve_timezone, trading_date, utc_now
from .config import EngineConfig
from .errors import (
    ConfigurationError,
    DataIntegrityError,
    EvaluationError,
    UnknownAccountError,
)
from .ledger import EquityLedger
from .metrics import snapshot_for
from .models import (
    AccountStatus,
    DailyComplianceRecord,
    EquitySnapshot,
    EvaluationResult,
    Phase,
    PhaseTransition,
    ReconciliationAnomaly,
    RuleSet,
    StatusChange,
    TradeEvent,
    TradingAccount,
    Violation,
)
from .risk import classify_risk
from .rules import evaluate_rules
from .state_machine import PhaseStateMachine
from .storage import AuditLog
from .trading_days import TradingDayAccounting
from .violations import ViolationDetector

logger = logging.getLogger(__name__)


@dataclass
class _AccountSlot:
    account: TradingAccount
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class BatchEvaluation:
    results: dict[str, EvaluationResult] = field(default_factory=dict)
    errors: dict[str, EvaluationError] = field(default_factory=dict)

    @property
    def failed_accounts(self) -> list[str]:
        return sorted(self.errors)


class ComplianceEngine:
    def __init__(
        self,
        rulesets: Mapping[str, RuleSet],
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._rulesets = rulesets
        self._clock = clock or utc_now
        self._tz = resolve_timezone(self.config.trading_timezone)
        if audit is None and self.config.log_dir is not None:
            audit = AuditLog(self.config.log_dir)
        self._audit = audit
        self._days = TradingDayAccounting(self._tz)
        self._ledger = EquityLedger()
        self._detector = ViolationDetector()
        self._machine = PhaseStateMachine()
        self._slots: dict[str, _AccountSlot] = {}
        self._registry_lock = threading.Lock()

    # -- registry ---------------------------------------------------------

    def open_account(
        self,
        account_id: str,
        challenge_id: str,
        initial_balance: float,
        created_at: datetime | None = None,
    ) -> TradingAccount:
        if not account_id:
            raise ValueError("account_id is required")
        self._ruleset(challenge_id)
        if initial_balance is None or not math.isfinite(initial_balance) or initial_balance <= 0:
            raise DataIntegrityError(f"Initial balance must be positive: {initial_balance!r}")
        created = require_aware(created_at or self._clock(), "created_at")
        balance = float(initial_balance)
        account = TradingAccount(
            account_id=account_id,
            challenge_id=challenge_id,
            initial_balance=balance,
            balance=balance,
            equity=balance,
            max_equity_to_date=balance,
            today_start_equity=balance,
            created_at=created,
            phase_started_at=created,
            current_day=trading_date(created, self._tz),
            last_equity_at=created,
        )
        with self._registry_lock:
            if account_id in self._slots:
                raise ValueError(f"Account {account_id} already exists")
            self._slots[account_id] = _AccountSlot(account)
        logger.info("Opened account %s on %s with %.2f", account_id, challenge_id, balance)
        return copy.deepcopy(account)

    def account_ids(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._slots)

    def get_account(self, account_id: str) -> TradingAccount:
        """Consistent copy of the account; the engine's own object is never handed out."""
        slot = self._slot(account_id)
        with slot.lock:
            return copy.deepcopy(slot.account)

    # -- broker events ----------------------------------------------------

    def ingest_trade(self, event: TradeEvent) -> EvaluationResult | None:
        """Apply a trade open or close and evaluate the account against it.

        Returns None for a duplicate delivery. If the evaluation fails the trade
        stays applied and EvaluationError is raised.
        """
        slot = self._slot(event.account_id)
        now = self._clock()
        with slot.lock:
            account = slot.account
            try:
                posting = self._ledger.prepare_trade(account, event.trade, event.equity)
                if posting is None:
                    logger.debug("Ignoring duplicate trade %s for %s", event.trade.trade_id, account.account_id)
                    return None
                if posting.moment >= account.created_at:
                    self._rollover(account, posting.moment, now)
                anomaly = self._days.observe_trade(account, event.trade, now)
                if anomaly is not None:
                    self._record_anomaly(account, anomaly)
                self._ledger.post(account, posting)
                return self._evaluate_reporting(account, now)
            finally:
                self._flush_audit(account)

    def ingest_snapshot(self, snapshot: EquitySnapshot) -> EvaluationResult | None:
        """Apply a broker equity reading and evaluate the account against it.

        Returns None when the reading is stale and was not applied.
        """
        slot = self._slot(snapshot.account_id)
        now = self._clock()
        with slot.lock:
            account = slot.account
            try:
                prepared = self._ledger.prepare_snapshot(account, snapshot, now)
                if isinstance(prepared, ReconciliationAnomaly):
                    logger.warning("Reconciliation anomaly for %s: %s", account.account_id, prepared.message)
                    self._record_anomaly(account, prepared)
                    return None
                if prepared.moment >= account.created_at:
                    self._rollover(account, prepared.moment, now)
                self._ledger.post(account, prepared)
                return self._evaluate_reporting(account, now)
            finally:
                self._flush_audit(account)

    # -- evaluation -------------------------------------------------------

    def evaluate(self, account_id: str) -> EvaluationResult:
        slot = self._slot(account_id)
        with slot.lock:
            account = slot.account
            try:
                return self._evaluate_reporting(account, self._clock())
            finally:
                self._flush_audit(account)

    def evaluate_all(self, account_ids: Iterable[str] | None = None) -> BatchEvaluation:
        """Evaluate many accounts concurrently; one account's failure never blocks another."""
        targets = list(account_ids) if account_ids is not None else self.account_ids()
        batch = BatchEvaluation()
        if not targets:
            return batch
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {executor.submit(self.evaluate, account_id): account_id for account_id in targets}
            for future in as_completed(futures):
                account_id = futures[future]
                try:
                    batch.results[account_id] = future.result()
                except EvaluationError as exc:
                    batch.errors[account_id] = exc
                except Exception as exc:
                    logger.error("Evaluation of %s raised %s: %s", account_id, type(exc).__name__, exc)
                    batch.errors[account_id] = EvaluationError(account_id, exc)
        if batch.errors:
            logger.warning(
                "Batch evaluation: %d of %d accounts failed (%s)",
                len(batch.errors),
                len(targets),
                ", ".join(batch.failed_accounts),
            )
        return batch

    def _evaluate_reporting(self, account: TradingAccount, now: datetime) -> EvaluationResult:
        """Run the pipeline, turning any failure into an EvaluationError on the account."""
        try:
            result = self._evaluate_locked(account, now)
        except Exception as exc:
            error = EvaluationError(account.account_id, exc)
            payload = dict(error.to_dict(), occurred_at=now.isoformat())
            account.last_error = payload
            logger.error("Evaluation failed for %s: %s", account.account_id, exc)
            self._queue_audit(account, "errors", payload)
            raise error from exc
        account.last_error = None
        account.last_result = result
        return result

    def _evaluate_locked(self, account: TradingAccount, now: datetime) -> EvaluationResult:
        ruleset = self._ruleset(account.challenge_id)
        require_aware(now, "clock")
        self._rollover(account, now, now)

        metrics = snapshot_for(account)
        compliance = evaluate_rules(metrics, ruleset, account.phase, self._days_in_phase(account, now))

        new_violations: tuple[Violation, ...] = ()
        transition = None
        changes_before = len(account.status_changes)
        if not account.is_terminal and account.status != AccountStatus.CLOSED:
            outcome = self._detector.detect(
                account.account_id,
                compliance,
                metrics,
                ruleset,
                account.phase,
                account.active_alerts,
                now,
            )
            account.active_alerts = set(outcome.active_alerts)
            new_violations = outcome.violations
            account.violations.extend(new_violations)
            transition = self._machine.advance(account, ruleset, compliance, outcome.fatal, now)

        risk_level = classify_risk(metrics, ruleset, self.config.risk_bands)
        self._ledger.record_day(account, metrics, new_violations)

        for violation in new_violations:
            if violation.is_fatal:
                logger.warning("Fatal violation on %s: %s", account.account_id, violation.message)
        if transition is not None:
            logger.info(
                "%s moved %s -> %s: %s",
                account.account_id,
                transition.from_phase.value,
                transition.to_phase.value,
                transition.reason,
            )
        for violation in new_violations:
            self._queue_audit(account, "violations", violation)
        if transition is not None:
            self._queue_audit(account, "transitions", transition)
        for change in account.status_changes[changes_before:]:
            self._queue_audit(account, "status_changes", change)

        return EvaluationResult(
            account_id=account.account_id,
            metrics=metrics,
            compliance=compliance,
            new_violations=new_violations,
            transition=transition,
            risk_level=risk_level,
            evaluated_at=now,
        )

    def get_compliance_history(self, account_id: str, days: int) -> list[DailyComplianceRecord]:
        slot = self._slot(account_id)
        with slot.lock:
            account = slot.account
            today = max(trading_date(self._clock(), self._tz), account.current_day)
            return self._ledger.history(account, days, today)

    # -- administrative overrides ----------------------------------------

    def force_phase(
        self,
        account_id: str,
        target_phase: Phase | str,
        actor_id: str,
        reason: str,
    ) -> PhaseTransition:
        target = Phase(target_phase)
        slot = self._slot(account_id)
        with slot.lock:
            account = slot.account
            ruleset = self._rulesets.get(account.challenge_id)
            if target == Phase.PHASE2 and ruleset is not None and not ruleset.is_two_phase:
                raise ValueError(f"{account.challenge_id} is a one-phase challenge")
            transition = self._machine.force_phase(account, target, actor_id, reason, self._clock())
            logger.info(
                "%s forced %s from %s to %s: %s",
                transition.actor_id,
                account_id,
                transition.from_phase.value,
                transition.to_phase.value,
                transition.reason,
            )
            self._queue_audit(account, "transitions", transition)
            self._flush_audit(account)
            return transition

    def force_status(
        self,
        account_id: str,
        target_status: AccountStatus | str,
        actor_id: str,
        reason: str,
    ) -> StatusChange:
        target = AccountStatus(target_status)
        slot = self._slot(account_id)
        with slot.lock:
            change = self._machine.force_status(slot.account, target, actor_id, reason, self._clock())
            logger.info(
                "%s forced %s from %s to %s: %s",
                change.actor_id,
                account_id,
                change.from_status.value,
                change.to_status.value,
                change.reason,
            )
            self._queue_audit(slot.account, "status_changes", change)
            self._flush_audit(slot.account)
            return change

    def reset_account(
        self,
        account_id: str,
        actor_id: str,
        reason: str,
    ) -> tuple[PhaseTransition | None, StatusChange | None]:
        slot = self._slot(account_id)
        with slot.lock:
            account = slot.account
            now = self._clock()
            transition, change = self._machine.reset(account, actor_id, reason, now)
            self._ledger.reset(account, now)
            account.current_day = max(account.current_day, trading_date(now, self._tz))
            logger.info("%s reset %s to %.2f: %s", actor_id, account_id, account.initial_balance, reason)
            if transition is not None:
                self._queue_audit(account, "transitions", transition)
            if change is not None:
                self._queue_audit(account, "status_changes", change)
            self._flush_audit(account)
            return transition, change

    # -- audit views ------------------------------------------------------

    def violations(self, account_id: str) -> list[Violation]:
        slot = self._slot(account_id)
        with slot.lock:
            return list(slot.account.violations)

    def transitions(self, account_id: str) -> list[PhaseTransition]:
        slot = self._slot(account_id)
        with slot.lock:
            return list(slot.account.transitions)

    def status_changes(self, account_id: str) -> list[StatusChange]:
        slot = self._slot(account_id)
        with slot.lock:
            return list(slot.account.status_changes)

    def anomalies(self, account_id: str) -> list[ReconciliationAnomaly]:
        slot = self._slot(account_id)
        with slot.lock:
            return list(slot.account.anomalies)

    # -- helpers ----------------------------------------------------------

    def _slot(self, account_id: str) -> _AccountSlot:
        with self._registry_lock:
            slot = self._slots.get(account_id)
        if slot is None:
            raise UnknownAccountError(account_id)
        return slot

    def _ruleset(self, challenge_id: str) -> RuleSet:
        ruleset = self._rulesets.get(challenge_id)
        if ruleset is None:
            raise ConfigurationError(f"No rule set for challenge {challenge_id}")
        ruleset.validate()
        return ruleset

    def _days_in_phase(self, account: TradingAccount, now: datetime) -> int:
        started = trading_date(account.phase_started_at, self._tz)
        return (trading_date(now, self._tz) - started).days + 1

    def _rollover(self, account: TradingAccount, moment: datetime, now: datetime) -> None:
        if not self._days.rollover(account, moment):
            return
        if account.status == AccountStatus.DAILY_LOCKED:
            change = self._machine.change_status(
                account,
                AccountStatus.ACTIVE,
                "Daily lock released at trading-day rollover",
                now,
            )
            self._queue_audit(account, "status_changes", change)

    def _record_anomaly(self, account: TradingAccount, anomaly: ReconciliationAnomaly) -> None:
        account.anomalies.append(anomaly)
        self._queue_audit(account, "anomalies", anomaly)

    def _queue_audit(self, account: TradingAccount, kind: str, record: Any) -> None:
        if self._audit is None:
            return
        account.pending_audit.append((kind, record))

    def _flush_audit(self, account: TradingAccount) -> None:
        """Write queued audit records in order; on failure keep the rest for the next call."""
        if self._audit is None:
            return
        while account.pending_audit:
            kind, record = account.pending_audit[0]
            try:
                self._audit.write(kind, record)
            except OSError as exc:
                logger.error(
                    "Audit write failed for %s, %d records held for retry: %s",
                    account.account_id,
                    len(account.pending_audit),
                    exc,
                )
                return
            account.pending_audit.pop(0)
