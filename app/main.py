from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import (
    ENGINE_CONFIG,
    HISTORY_DAYS_DEFAULT,
    HISTORY_DAYS_MAX,
    LOGS_DIR,
    RULESETS,
    VIOLATIONS_LIMIT_DEFAULT,
)
from app.models import (
    BatchEvaluateRequest,
    EquityRequest,
    OpenAccountRequest,
    PhaseOverrideRequest,
    ResetRequest,
    StatusOverrideRequest,
    TradeRequest,
)
from compliance.engine import ComplianceEngine
from compliance.errors import ComplianceError, EvaluationError, UnknownAccountError
from compliance.models import (
    EquitySnapshot,
    EvaluationResult,
    Trade,
    TradeEvent,
    TradingAccount,
    record_to_dict,
)
from compliance.scheduler import Poller

app = FastAPI()

_engine = ComplianceEngine(RULESETS, ENGINE_CONFIG)
_poller: Optional[Poller] = None


def get_engine() -> ComplianceEngine:
    return _engine


@app.on_event("startup")
def _startup() -> None:
    global _poller
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    if ENGINE_CONFIG.poll_seconds > 0:
        _poller = Poller(_engine, ENGINE_CONFIG.poll_seconds)
        _poller.start()


@app.on_event("shutdown")
def _shutdown() -> None:
    if _poller is not None:
        _poller.stop(timeout=ENGINE_CONFIG.poll_seconds)


@app.exception_handler(UnknownAccountError)
async def _unknown_account(request: Request, exc: UnknownAccountError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"ok": False, "reason": "unknown_account", "detail": str(exc)})


@app.exception_handler(ComplianceError)
async def _compliance_error(request: Request, exc: ComplianceError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "reason": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "reason": "bad_request", "detail": str(exc)})


def _response(accepted: bool, reason: str, **extra: object) -> dict[str, object]:
    payload: dict[str, object] = {"ok": True, "accepted": accepted, "reason": reason}
    payload.update(extra)
    return payload


def _unavailable() -> dict[str, object]:
    return {"available": False, "message": "evaluation unavailable"}


def _account_summary(account: TradingAccount) -> dict[str, object]:
    return {
        "account_id": account.account_id,
        "challenge_id": account.challenge_id,
        "phase": account.phase.value,
        "status": account.status.value,
        "initial_balance": account.initial_balance,
        "balance": account.balance,
        "equity": account.equity,
        "max_equity_to_date": account.max_equity_to_date,
        "today_start_equity": account.today_start_equity,
        "trading_days_count": account.trading_days_count,
        "current_day": account.current_day.isoformat(),
        "created_at": account.created_at.isoformat(),
    }


def _result_payload(result: EvaluationResult) -> dict[str, object]:
    compliance = record_to_dict(result.compliance)
    compliance["has_violation"] = result.compliance.has_violation
    return {
        "account_id": result.account_id,
        "evaluated_at": result.evaluated_at.isoformat(),
        "metrics": record_to_dict(result.metrics),
        "compliance": compliance,
        "new_violations": [record_to_dict(violation) for violation in result.new_violations],
        "transition": record_to_dict(result.transition) if result.transition else None,
        "risk_level": result.risk_level.value,
    }


@app.post("/accounts")
def open_account(payload: OpenAccountRequest, engine: ComplianceEngine = Depends(get_engine)) -> dict[str, object]:
    account = engine.open_account(
        payload.account_id,
        payload.challenge_id,
        payload.initial_balance,
        payload.created_at,
    )
    return _response(True, "opened", account=_account_summary(account))


@app.post("/accounts/{account_id}/trades")
def ingest_trade(
    account_id: str,
    payload: TradeRequest,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    trade = Trade(
        trade_id=payload.trade_id,
        open_price=payload.open_price,
        volume=payload.volume,
        opened_at=payload.opened_at,
        close_price=payload.close_price,
        profit=payload.profit,
        closed_at=payload.closed_at,
    )
    try:
        result = engine.ingest_trade(TradeEvent(account_id=account_id, trade=trade, equity=payload.equity))
    except EvaluationError:
        return _response(True, "applied", evaluation=_unavailable())
    if result is None:
        return _response(False, "duplicate")
    return _response(True, "applied", evaluation={"available": True, **_result_payload(result)})


@app.post("/accounts/{account_id}/equity")
def ingest_equity(
    account_id: str,
    payload: EquityRequest,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    snapshot = EquitySnapshot(
        account_id=account_id,
        equity=payload.equity,
        timestamp=payload.timestamp,
        balance=payload.balance,
    )
    try:
        result = engine.ingest_snapshot(snapshot)
    except EvaluationError:
        return _response(True, "applied", evaluation=_unavailable())
    if result is None:
        return _response(False, "stale")
    return _response(True, "applied", evaluation={"available": True, **_result_payload(result)})


@app.post("/accounts/{account_id}/evaluate")
def evaluate_account(account_id: str, engine: ComplianceEngine = Depends(get_engine)) -> dict[str, object]:
    try:
        result = engine.evaluate(account_id)
    except EvaluationError:
        return _unavailable()
    return {"available": True, **_result_payload(result)}


@app.get("/accounts/{account_id}")
def account_view(account_id: str, engine: ComplianceEngine = Depends(get_engine)) -> dict[str, object]:
    account = engine.get_account(account_id)
    if account.last_error is not None:
        return _unavailable()
    last = _result_payload(account.last_result) if account.last_result else None
    return {"available": True, "account": _account_summary(account), "last_evaluation": last}


@app.get("/accounts/{account_id}/compliance-history")
def compliance_history(
    account_id: str,
    days: int = HISTORY_DAYS_DEFAULT,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    records = engine.get_compliance_history(account_id, min(days, HISTORY_DAYS_MAX))
    return {"account_id": account_id, "records": [record_to_dict(record) for record in records]}


@app.get("/accounts/{account_id}/violations")
def account_violations(
    account_id: str,
    limit: int = VIOLATIONS_LIMIT_DEFAULT,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    violations = engine.violations(account_id)
    trimmed = violations[-limit:] if limit > 0 else violations
    return {"account_id": account_id, "violations": [record_to_dict(violation) for violation in trimmed]}


@app.get("/accounts/{account_id}/transitions")
def account_transitions(account_id: str, engine: ComplianceEngine = Depends(get_engine)) -> dict[str, object]:
    transitions = engine.transitions(account_id)
    return {"account_id": account_id, "transitions": [record_to_dict(item) for item in transitions]}


@app.post("/evaluate")
def evaluate_batch(
    payload: Optional[BatchEvaluateRequest] = None,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    account_ids = payload.account_ids if payload else None
    batch = engine.evaluate_all(account_ids)
    return {
        "evaluated": len(batch.results),
        "results": {account_id: _result_payload(result) for account_id, result in batch.results.items()},
        "errors": [batch.errors[account_id].to_dict() for account_id in batch.failed_accounts],
    }


@app.post("/admin/accounts/{account_id}/phase")
def force_phase(
    account_id: str,
    payload: PhaseOverrideRequest,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    transition = engine.force_phase(account_id, payload.target_phase, payload.actor_id, payload.reason)
    return _response(True, "phase_forced", transition=record_to_dict(transition))


@app.post("/admin/accounts/{account_id}/status")
def force_status(
    account_id: str,
    payload: StatusOverrideRequest,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    change = engine.force_status(account_id, payload.target_status, payload.actor_id, payload.reason)
    return _response(True, "status_forced", status_change=record_to_dict(change))


@app.post("/admin/accounts/{account_id}/reset")
def reset_account(
    account_id: str,
    payload: ResetRequest,
    engine: ComplianceEngine = Depends(get_engine),
) -> dict[str, object]:
    transition, change = engine.reset_account(account_id, payload.actor_id, payload.reason)
    return _response(
        True,
        "reset",
        transition=record_to_dict(transition) if transition else None,
        status_change=record_to_dict(change) if change else None,
    )


@app.get("/admin/accounts/{account_id}")
def admin_account_view(account_id: str, engine: ComplianceEngine = Depends(get_engine)) -> dict[str, object]:
    account = engine.get_account(account_id)
    return {
        "account": _account_summary(account),
        "last_error": account.last_error,
        "last_evaluation": _result_payload(account.last_result) if account.last_result else None,
        "open_trades": sorted(account.open_trade_ids),
        "violations": len(account.violations),
        "transitions": [record_to_dict(item) for item in account.transitions],
        "status_changes": [record_to_dict(item) for item in account.status_changes],
        "anomalies": [record_to_dict(item) for item in account.anomalies],
    }
