"""
Error taxonomy for the interaction pipeline.

Each class carries the HTTP status the API layer maps it to. Inside the
pipeline these never cross a subagent boundary; they are converted to failed
task results and only named through ``error_type``.
"""

from typing import Any, Optional


class MedGuardError(Exception):
    """Base exception for all MedGuard errors."""

    status_code = 500
    error_type = "MedGuardError"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MedGuardError):
    """Bad input shape (too few drugs, missing patient id)."""

    status_code = 400
    error_type = "ValidationError"


class ProviderError(MedGuardError):
    """External data source unreachable or returned a malformed payload."""

    status_code = 503
    error_type = "ProviderError"


class NotFoundError(MedGuardError):
    """Drug name or patient id could not be resolved."""

    status_code = 404
    error_type = "NotFoundError"


class PipelineTimeoutError(MedGuardError):
    """A task or the whole pipeline exceeded its deadline."""

    status_code = 504
    error_type = "TimeoutError"


class LogicError(MedGuardError):
    """Programmer error, e.g. a malformed or misrouted task."""

    status_code = 500
    error_type = "LogicError"


# Errors worth re-entering a stage for
RETRYABLE_ERROR_TYPES = frozenset({
    ProviderError.error_type,
    PipelineTimeoutError.error_type,
})
