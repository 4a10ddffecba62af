"""Challenge compliance and risk evaluation engine."""

from .config import EngineConfig, default_rulesets
from .engine import BatchEvaluation, ComplianceEngine
from .errors import (
    ComplianceError,
    ConfigurationError,
    DataIntegrityError,
    EvaluationError,
    UnknownAccountError,
)
from .models import (
    AccountStatus,
    EquitySnapshot,
    EvaluationResult,
    Phase,
    RiskLevel,
    RuleSet,
    Trade,
    TradeEvent,
)
from .scheduler import Poller

__all__ = [
    "AccountStatus",
    "BatchEvaluation",
    "ComplianceEngine",
    "ComplianceError",
    "ConfigurationError",
    "DataIntegrityError",
    "EngineConfig",
    "EquitySnapshot",
    "EvaluationError",
    "EvaluationResult",
    "Phase",
    "Poller",
    "RiskLevel",
    "RuleSet",
    "Trade",
    "TradeEvent",
    "UnknownAccountError",
    "default_rulesets",
]
