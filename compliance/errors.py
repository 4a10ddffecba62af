"""Error taxonomy for the compliance engine."""
from __future__ import annotations


class ComplianceError(Exception):
    """Base class for engine errors."""


class ConfigurationError(ComplianceError):
    """Missing or invalid rule set."""


class DataIntegrityError(ComplianceError):
    """Account or event data that cannot be evaluated as-is."""


class UnknownAccountError(ComplianceError, KeyError):
    def __init__(self, account_id: str) -> None:
        super().__init__(account_id)
        self.account_id = account_id

    def __str__(self) -> str:
        return f"Unknown trading account: {self.account_id}"


class EvaluationError(ComplianceError):
    """Raised by evaluate when any step of the pipeline fails for one account."""

    def __init__(self, account_id: str, cause: Exception) -> None:
        super().__init__(f"Evaluation failed for {account_id}: {cause}")
        self.account_id = account_id
        self.cause = cause

    def to_dict(self) -> dict[str, str]:
        return {
            "account_id": self.account_id,
            "error_type": type(self.cause).__name__,
            "message": str(self.cause),
        }
