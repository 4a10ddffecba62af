from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class OpenAccountRequest(BaseModel):
    account_id: str
    challenge_id: str
    initial_balance: float
    created_at: Optional[datetime] = None


class TradeRequest(BaseModel):
    trade_id: str
    open_price: float
    volume: float
    opened_at: datetime
    close_price: Optional[float] = None
    profit: float = 0.0
    closed_at: Optional[datetime] = None
    equity: Optional[float] = None


class EquityRequest(BaseModel):
    equity: float
    timestamp: datetime
    balance: Optional[float] = None


class BatchEvaluateRequest(BaseModel):
    account_ids: Optional[list[str]] = None


class PhaseOverrideRequest(BaseModel):
    target_phase: str
    actor_id: str
    reason: str


class StatusOverrideRequest(BaseModel):
    target_status: str
    actor_id: str
    reason: str


class ResetRequest(BaseModel):
    actor_id: str
    reason: str
