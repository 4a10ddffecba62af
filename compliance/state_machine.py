"""Challenge phase state machine."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .models import (
    AccountStatus,
    ComplianceResult,
    Phase,
    PhaseTransition,
    RuleSet,
    StatusChange,
    TradingAccount,
    Violation,
)

SYSTEM_ACTOR = "system"


def _require_text(name: str, value: str | None) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{name} is required for an administrative override")
    return cleaned


@dataclass(frozen=True)
class PhaseStateMachine:
    """Enforces automatic phase transitions and records every phase change."""

    transitions: dict[Phase, set[Phase]] = None

    def __post_init__(self) -> None:
        if self.transitions is None:
            object.__setattr__(
                self,
                "transitions",
                {
                    Phase.PHASE1: {Phase.PHASE2, Phase.FUNDED, Phase.FAILED},
                    Phase.PHASE2: {Phase.FUNDED, Phase.FAILED},
                    Phase.FUNDED: {Phase.FAILED},
                    Phase.FAILED: set(),
                },
            )

    def can_transition(self, current: Phase, target: Phase) -> bool:
        return target in self.transitions.get(current, set())

    def advance(
        self,
        account: TradingAccount,
        ruleset: RuleSet,
        compliance: ComplianceResult,
        fatal: Violation | None,
        now: datetime,
    ) -> PhaseTransition | None:
        """Apply at most one automatic transition for this evaluation."""
        if account.is_terminal or account.status == AccountStatus.CLOSED:
            return None

        if fatal is not None:
            return self._fail(account, fatal.message, now)

        if account.status != AccountStatus.ACTIVE or compliance.has_violation:
            return None
        if not (compliance.profit_target_met and compliance.min_trading_days_met):
            return None

        target = ruleset.next_phase(account.phase)
        if target is None or not self.can_transition(account.phase, target):
            return None
        reason = (
            f"{account.phase.value} completed: profit target "
            f"{compliance.profit_target_percent:.2f}% reached"
        )
        return self._record(account, target, reason, now, actor_id=None)

    def force_phase(
        self,
        account: TradingAccount,
        target: Phase,
        actor_id: str,
        reason: str,
        now: datetime,
    ) -> PhaseTransition:
        actor = _require_text("actor_id", actor_id)
        text = _require_text("reason", reason)
        if target == account.phase:
            raise ValueError(f"Account {account.account_id} is already in {target.value}")
        return self._record(account, target, text, now, actor_id=actor)

    def force_status(
        self,
        account: TradingAccount,
        target: AccountStatus,
        actor_id: str,
        reason: str,
        now: datetime,
    ) -> StatusChange:
        actor = _require_text("actor_id", actor_id)
        text = _require_text("reason", reason)
        if target == account.status:
            raise ValueError(f"Account {account.account_id} is already {target.value}")
        return self.change_status(account, target, text, now, actor)

    def reset(
        self,
        account: TradingAccount,
        actor_id: str,
        reason: str,
        now: datetime,
    ) -> tuple[PhaseTransition | None, StatusChange | None]:
        """Return the account to PHASE1/ACTIVE. Balances are reset by the ledger."""
        actor = _require_text("actor_id", actor_id)
        text = _require_text("reason", reason)
        transition = None
        if account.phase != Phase.PHASE1:
            transition = self._record(account, Phase.PHASE1, text, now, actor_id=actor)
        else:
            account.phase_started_at = now
            account.trading_days_count = 0
            account.current_day_traded = False
        change = None
        if account.status != AccountStatus.ACTIVE:
            change = self.change_status(account, AccountStatus.ACTIVE, text, now, actor)
        return transition, change

    def change_status(
        self,
        account: TradingAccount,
        target: AccountStatus,
        reason: str,
        now: datetime,
        actor_id: str = SYSTEM_ACTOR,
    ) -> StatusChange:
        change = StatusChange(
            account_id=account.account_id,
            from_status=account.status,
            to_status=target,
            reason=reason,
            occurred_at=now,
            actor_id=actor_id,
        )
        account.status = target
        account.status_changes.append(change)
        return change

    def _fail(self, account: TradingAccount, reason: str, now: datetime) -> PhaseTransition:
        transition = self._record(account, Phase.FAILED, reason, now, actor_id=None)
        if account.status != AccountStatus.DISQUALIFIED:
            self.change_status(account, AccountStatus.DISQUALIFIED, reason, now)
        return transition

    def _record(
        self,
        account: TradingAccount,
        target: Phase,
        reason: str,
        now: datetime,
        actor_id: str | None,
    ) -> PhaseTransition:
        transition = PhaseTransition(
            account_id=account.account_id,
            from_phase=account.phase,
            to_phase=target,
            reason=reason,
            occurred_at=now,
            actor_id=actor_id,
        )
        account.phase = target
        account.transitions.append(transition)
        if target in (Phase.PHASE1, Phase.PHASE2, Phase.FUNDED):
            account.phase_started_at = now
            account.trading_days_count = 0
            account.current_day_traded = False
        return transition
