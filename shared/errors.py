"""
Shared error handling for the cargo billing rules service.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RuleEngineException(Exception):
    """Base exception for the rules service."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(RuleEngineException):
    """Rule or request definition rejected at the boundary."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UnknownFieldError(ValidationError):
    """Condition references a field outside the cargo field set."""

    def __init__(self, field: str):
        super().__init__(f"Unknown cargo field: {field!r}", {"field": field})
        self.code = "UNKNOWN_FIELD"
        self.field = field


class RuleNotFoundError(RuleEngineException):
    """Referenced rule does not exist in the rule set."""

    def __init__(self, rule_id: str, rule_set: Optional[str] = None):
        super().__init__(
            "RULE_NOT_FOUND",
            f"Rule {rule_id} not found",
            {"rule_id": rule_id, "rule_set": rule_set}
        )
        self.rule_id = rule_id


class StoreError(RuleEngineException):
    """A rule store or record store call failed."""

    def __init__(self, message: str = "Store operation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)


class PriorityStageFailure(RuleEngineException):
    """
    Phase 1 of a reorder failed.

    No final priority was written. Rules listed in ``staged`` may hold
    temporary negative priorities until the full reorder is retried.
    """

    def __init__(self, failed: Dict[str, str], staged: List[str]):
        super().__init__(
            "PRIORITY_STAGE_FAILED",
            f"Failed to stage {len(failed)} rule priorities; reorder not applied",
            {"failed": failed, "staged": staged}
        )
        self.failed = failed
        self.staged = staged


class PriorityCommitFailure(RuleEngineException):
    """
    Phase 2 of a reorder partially failed.

    Some rules hold their final priority, others are still staged at
    negative values. Re-run the full reorder to converge.
    """

    def __init__(self, failed: Dict[str, str], committed: List[str]):
        super().__init__(
            "PRIORITY_COMMIT_FAILED",
            f"Failed to commit {len(failed)} rule priorities; re-run the reorder",
            {"failed": failed, "committed": committed}
        )
        self.failed = failed
        self.committed = committed
