"""Error Hierarchy — categorized failure values and typed exceptions for the data-access layer.

Invariants:
    - Every CategorizedError has a category (ErrorCategory), severity (ErrorSeverity),
      recoverable and retryable flags, and a user-facing message
    - CategorizedError is a frozen value: created once per failure, never mutated
    - Service failures travel as CategorizedError values; only BackboneError subclasses are raised
    - No internal details leaked in user-facing messages

Design Decisions:
    - Value (CategorizedError) vs exception (BackboneError) split: the query boundary returns
      errors, the configuration/HTTP boundary raises them (ADR: errors are values at the core seam)
    - ServiceError is the collaborator failure shape: endpoints raise it with an optional
      machine-readable code, the classifier reads that code
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """The six failure categories every backing-service error is sorted into."""
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    NETWORK = "network"
    DATABASE = "database"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CategorizedError:
    """Classified, user-message-bearing wrapper around a raw failure."""
    category: ErrorCategory
    message: str
    user_message: str
    severity: ErrorSeverity
    recoverable: bool
    retryable: bool = False
    code: str | None = None
    original_error: BaseException | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_log_extra(self) -> dict:
        """Fields surfaced by the JSON log formatter."""
        return {
            "category": self.category.value,
            "error_code": self.code,
            "severity": self.severity.value,
        }


class ServiceError(Exception):
    """Failure reported by the backing service, with an optional machine-readable code."""

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class HealthCheckTimeoutError(TimeoutError):
    """Health probe did not answer within the configured timeout."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Health check timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class BackboneError(Exception):
    """Base exception for failures raised (not returned) by the data-access layer."""

    def __init__(
        self,
        message: str,
        code: str,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }


class ConfigurationError(BackboneError):
    """Programmer configuration is invalid — fatal at startup."""
    def __init__(self, message: str):
        super().__init__(
            message, "CONFIGURATION_ERROR", ErrorSeverity.CRITICAL, 500,
        )


class DataLayerNotReadyError(BackboneError):
    """The data layer has not been started for this application."""
    def __init__(self):
        super().__init__(
            "Data layer is not initialized",
            "DATA_LAYER_NOT_READY", ErrorSeverity.HIGH, 503,
        )


class ResourceNotFoundError(BackboneError):
    """Requested resource does not exist."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorSeverity.LOW, 404,
        )
