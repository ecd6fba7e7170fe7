"""Exception types raised by the review engine."""

from __future__ import annotations


class ReviewEngineError(Exception):
    """Base exception with an optional suggestion for the caller."""

    label = "Review Engine Error"

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"[{self.label}] {self.message}"
        if self.suggestion:
            msg += f"\n[Suggestion] {self.suggestion}"
        return msg


class ConfigurationError(ReviewEngineError):
    """Error when the engine configuration is missing or invalid."""

    label = "Configuration Error"


class ValidationError(ReviewEngineError):
    """Error when a caller-supplied value is malformed."""

    label = "Validation Error"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        super().__init__(f"Invalid value for '{field}'", reason)


class NotFoundError(ReviewEngineError):
    """Error when a challenge, assignment or submission does not exist."""

    label = "Not Found"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class StateError(ReviewEngineError):
    """Error when an operation is attempted in the wrong challenge phase."""

    label = "State Error"


class PermissionDeniedError(ReviewEngineError):
    """Error when the requester is not allowed to act on a resource."""

    label = "Permission Denied"


class ConcurrencyPendingError(ReviewEngineError):
    """Error when submissions for a challenge are still being written."""

    label = "Finalization Pending"

    def __init__(self, challenge_id: str, in_flight: int) -> None:
        self.challenge_id = challenge_id
        self.in_flight = in_flight
        super().__init__(
            f"Challenge '{challenge_id}' still has {in_flight} submission(s) in flight",
            "Retry once the coding phase finalization has completed.",
        )


class InfeasibleAssignmentError(ReviewEngineError):
    """Error when the review flow network cannot be saturated."""

    label = "Infeasible Assignment"


class ExecutionError(ReviewEngineError):
    """Error when the code execution service fails or code does not compile."""

    label = "Execution Error"
