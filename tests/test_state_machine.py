from datetime import date, datetime, timezone

import pytest

from compliance.models import (
    AccountStatus,
    ComplianceResult,
    Phase,
    RuleSet,
    Severity,
    TradingAccount,
    Violation,
    ViolationType,
)
from compliance.state_machine import SYSTEM_ACTOR, PhaseStateMachine

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def _account(**overrides) -> TradingAccount:
    created = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
    values = {
        "account_id": "ACC-1",
        "challenge_id": "TEST",
        "initial_balance": 10000.0,
        "balance": 10900.0,
        "equity": 10900.0,
        "max_equity_to_date": 10900.0,
        "today_start_equity": 10900.0,
        "created_at": created,
        "phase_started_at": created,
        "current_day": date(2024, 1, 10),
        "trading_days_count": 5,
    }
    values.update(overrides)
    return TradingAccount(**values)


def _ruleset(two_phase: bool = True) -> RuleSet:
    return RuleSet(
        challenge_id="TEST",
        phase1_target_percent=8.0,
        phase2_target_percent=5.0 if two_phase else None,
        daily_drawdown_percent=5.0,
        overall_drawdown_percent=10.0,
        min_trading_days=5,
    )


def _compliance(target_met: bool = True, days_met: bool = True, breached: bool = False) -> ComplianceResult:
    return ComplianceResult(
        profit_target_percent=8.0,
        profit_target_met=target_met,
        daily_drawdown_breached=False,
        overall_drawdown_breached=breached,
        min_trading_days_met=days_met,
        trading_period_exceeded=False,
        daily_drawdown_usage=0.0,
        overall_drawdown_usage=1.3 if breached else 0.0,
    )


def _fatal() -> Violation:
    return Violation(
        account_id="ACC-1",
        type=ViolationType.OVERALL_DRAWDOWN,
        severity=Severity.CRITICAL,
        is_fatal=True,
        message="Overall drawdown 13.36% exceeded limit 10.00%",
        created_at=NOW,
    )


def test_phase_one_advances_to_phase_two() -> None:
    account = _account()
    transition = PhaseStateMachine().advance(account, _ruleset(), _compliance(), None, NOW)

    assert transition is not None
    assert (transition.from_phase, transition.to_phase) == (Phase.PHASE1, Phase.PHASE2)
    assert transition.is_manual is False
    assert account.phase == Phase.PHASE2
    assert account.trading_days_count == 0
    assert account.phase_started_at == NOW
    assert account.transitions == [transition]


def test_one_phase_product_goes_straight_to_funded() -> None:
    account = _account()
    transition = PhaseStateMachine().advance(account, _ruleset(two_phase=False), _compliance(), None, NOW)

    assert transition.to_phase == Phase.FUNDED


def test_no_advance_without_every_requirement() -> None:
    machine = PhaseStateMachine()

    assert machine.advance(_account(), _ruleset(), _compliance(target_met=False), None, NOW) is None
    assert machine.advance(_account(), _ruleset(), _compliance(days_met=False), None, NOW) is None
    assert machine.advance(_account(), _ruleset(), _compliance(breached=True), None, NOW) is None
    paused = _account(status=AccountStatus.PAUSED)
    assert machine.advance(paused, _ruleset(), _compliance(), None, NOW) is None


def test_funded_account_does_not_advance() -> None:
    account = _account(phase=Phase.FUNDED)

    assert PhaseStateMachine().advance(account, _ruleset(), _compliance(), None, NOW) is None


def test_fatal_violation_fails_and_disqualifies() -> None:
    account = _account(phase=Phase.FUNDED)
    transition = PhaseStateMachine().advance(account, _ruleset(), _compliance(breached=True), _fatal(), NOW)

    assert transition.to_phase == Phase.FAILED
    assert account.phase == Phase.FAILED
    assert account.status == AccountStatus.DISQUALIFIED
    change = account.status_changes[-1]
    assert change.to_status == AccountStatus.DISQUALIFIED
    assert change.actor_id == SYSTEM_ACTOR


def test_terminal_account_is_left_alone() -> None:
    account = _account(phase=Phase.FAILED, status=AccountStatus.DISQUALIFIED)

    assert PhaseStateMachine().advance(account, _ruleset(), _compliance(), None, NOW) is None
    assert PhaseStateMachine().advance(account, _ruleset(), _compliance(), _fatal(), NOW) is None
    assert account.transitions == []


def test_failed_is_not_reentered_automatically() -> None:
    machine = PhaseStateMachine()

    assert machine.can_transition(Phase.FAILED, Phase.PHASE1) is False
    assert machine.can_transition(Phase.FUNDED, Phase.PHASE1) is False
    assert machine.can_transition(Phase.PHASE2, Phase.FAILED) is True


def test_force_phase_is_audited() -> None:
    account = _account(phase=Phase.FAILED, status=AccountStatus.DISQUALIFIED)
    transition = PhaseStateMachine().force_phase(account, Phase.FUNDED, "admin-7", "manual pass", NOW)

    assert transition.is_manual is True
    assert transition.actor_id == "admin-7"
    assert transition.reason == "manual pass"
    assert account.phase == Phase.FUNDED
    assert account.transitions[-1] is transition


def test_force_phase_requires_actor_and_reason() -> None:
    machine = PhaseStateMachine()

    with pytest.raises(ValueError):
        machine.force_phase(_account(), Phase.FAILED, "", "reason", NOW)
    with pytest.raises(ValueError):
        machine.force_phase(_account(), Phase.FAILED, "admin-7", "   ", NOW)
    with pytest.raises(ValueError):
        machine.force_phase(_account(), Phase.PHASE1, "admin-7", "no-op", NOW)


def test_force_status_is_audited() -> None:
    account = _account()
    change = PhaseStateMachine().force_status(account, AccountStatus.PAUSED, "admin-7", "KYC review", NOW)

    assert account.status == AccountStatus.PAUSED
    assert (change.from_status, change.to_status) == (AccountStatus.ACTIVE, AccountStatus.PAUSED)
    assert account.status_changes == [change]


def test_reset_reopens_failed_account() -> None:
    account = _account(phase=Phase.FAILED, status=AccountStatus.DISQUALIFIED)
    transition, change = PhaseStateMachine().reset(account, "admin-7", "new attempt", NOW)

    assert transition.to_phase == Phase.PHASE1
    assert change.to_status == AccountStatus.ACTIVE
    assert account.is_terminal is False
    assert account.trading_days_count == 0
