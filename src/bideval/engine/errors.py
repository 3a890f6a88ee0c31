"""Domain error taxonomy for the evaluation engine.

Every error is raised synchronously by the operation that detects it and
carries enough structured detail for the caller to act. None of them are
retried automatically: they signal either caller error or a business gate.

- NotFoundError: evaluation, submission or RFQ missing
- ValidationError: malformed input, criteria/score mismatch, missing field
- StateConflictError: operation illegal in the current lifecycle state
- AuthorizationError: caller lacks the capability or evaluator membership
- ThresholdNotMetError: consensus agreement below the configured threshold
- DeadlinePassedError: scoring attempted after the evaluation deadline
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class EvaluationError(Exception):
    """Base exception for evaluation engine errors.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable error message.
    """

    code = "EVALUATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_details(self) -> dict[str, Any] | None:
        """Return structured details for the error envelope."""
        return None


class NotFoundError(EvaluationError):
    """Raised when an evaluation, submission or RFQ does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} {resource_id} not found")

    def to_details(self) -> dict[str, Any]:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(EvaluationError):
    """Raised when input fails a business validation rule.

    Attributes:
        field: Name of the offending field, if any.
        criterion_id: Offending criterion, for score validation failures.
    """

    code = "VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        criterion_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.criterion_id = criterion_id

    def to_details(self) -> dict[str, Any] | None:
        details: dict[str, Any] = {}
        if self.field is not None:
            details["field"] = self.field
        if self.criterion_id is not None:
            details["criterion_id"] = self.criterion_id
        return details or None


class NoSubmissionsError(ValidationError):
    """Raised when an evaluation is started for an RFQ without submissions."""

    code = "NO_SUBMISSIONS"

    def __init__(self, rfq_id: str) -> None:
        super().__init__(f"No submissions found for RFQ {rfq_id}", field="submissions")
        self.rfq_id = rfq_id


class StateConflictError(EvaluationError):
    """Raised when an operation is illegal in the evaluation's current state.

    Also raised when a single-shot operation loses a concurrency race; the
    caller should re-fetch the evaluation rather than retry blindly.
    """

    code = "STATE_CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.current_status = current_status
        self.operation = operation

    def to_details(self) -> dict[str, Any] | None:
        details: dict[str, Any] = {}
        if self.current_status is not None:
            details["current_status"] = self.current_status
        if self.operation is not None:
            details["operation"] = self.operation
        return details or None


class ResultsNotAvailableError(StateConflictError):
    """Raised when results are requested before consensus completes."""

    code = "RESULTS_NOT_AVAILABLE"


class AuthorizationError(EvaluationError):
    """Raised when the caller may not perform the operation."""

    code = "FORBIDDEN"

    def __init__(
        self,
        message: str,
        *,
        actor_id: str | None = None,
        capability: str | None = None,
    ) -> None:
        super().__init__(message)
        self.actor_id = actor_id
        self.capability = capability

    def to_details(self) -> dict[str, Any] | None:
        if self.capability is None:
            return None
        return {"capability": self.capability}


class ThresholdNotMetError(EvaluationError):
    """Raised when consensus agreement falls below the required percentage."""

    code = "THRESHOLD_NOT_MET"

    def __init__(self, required: float, actual: float) -> None:
        self.required = required
        self.actual = actual
        super().__init__(
            f"Consensus threshold of {required:g}% not met (actual agreement {actual:g}%)"
        )

    def to_details(self) -> dict[str, Any]:
        return {"required_percentage": self.required, "actual_percentage": self.actual}


class DeadlinePassedError(EvaluationError):
    """Raised when scoring is attempted after the evaluation deadline."""

    code = "DEADLINE_PASSED"

    def __init__(self, deadline: datetime, attempted_at: datetime) -> None:
        self.deadline = deadline
        self.attempted_at = attempted_at
        super().__init__(f"Evaluation deadline {deadline.isoformat()} has passed")

    def to_details(self) -> dict[str, Any]:
        return {
            "deadline": self.deadline.isoformat(),
            "attempted_at": self.attempted_at.isoformat(),
        }
