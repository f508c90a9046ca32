"""Error taxonomy for the matching and reconciliation engine."""

from typing import Any, Optional


class MatchingError(Exception):
    """Base exception carrying a stable error code and an HTTP-ish status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Any = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(MatchingError):
    """Finding, item or report is absent or belongs to another tenant."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(MatchingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTransitionError(ValidationError):
    """A resolution status change the state machine does not allow."""

    def __init__(self, entity: str, current: Any, requested: Any):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot move {entity} from {current_value} to {requested_value}",
            details={"current": current_value, "requested": requested_value},
        )


class ConflictError(MatchingError):
    """An active (non-FAILED) run already exists for the same key."""

    code = "CONFLICT"
    status_code = 409


class DependencyFailureError(MatchingError):
    """Persistence or record-source failure during a run."""

    code = "DEPENDENCY_FAILURE"
    status_code = 502


class DuplicateKeyError(Exception):
    """Raised by a store when an insert violates a uniqueness constraint."""

    def __init__(self, message: str, key: Any = None):
        super().__init__(message)
        self.key = key


class StaleWriteError(Exception):
    """Raised by a store when a conditional update lost a race."""
