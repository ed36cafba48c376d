"""Application exception hierarchy.

All custom exceptions inherit from ForestVectorError.
Each exception has an error code for structured error handling.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "FV-1000"
    CONFIGURATION_ERROR = "FV-1001"
    VALIDATION_ERROR = "FV-1002"

    # Embedding errors (2xxx)
    EMBEDDING_SERVICE_ERROR = "FV-2000"
    EMBEDDING_DIMENSION_MISMATCH = "FV-2001"

    # Provider lifecycle errors (3xxx)
    PROVIDER_INIT_ERROR = "FV-3000"
    PROVIDER_UNAVAILABLE = "FV-3001"

    # Vector query/write errors (4xxx)
    QUERY_ERROR = "FV-4000"
    COLLECTION_NOT_FOUND = "FV-4001"

    # Corruption errors (5xxx)
    CORRUPTION_DETECTED = "FV-5000"
    RECOVERY_FAILED = "FV-5001"

    # Metadata sidecar errors (6xxx)
    SIDECAR_ERROR = "FV-6000"


class ForestVectorError(Exception):
    """Base exception for all Forest Vectors errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(ForestVectorError):
    """Configuration or environment error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class ValidationError(ForestVectorError):
    """Malformed vector, embedding or input.

    Always fatal: it points at an upstream programming error, never at
    backend flakiness, so it is never auto-recovered.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class EmbeddingError(ForestVectorError):
    """Embedding service error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class ProviderInitError(ForestVectorError):
    """Backend unreachable or misconfigured during initialization."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PROVIDER_INIT_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class QueryError(ForestVectorError):
    """Backend operation failure that is not a known corruption mode."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.QUERY_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class CorruptionError(ForestVectorError):
    """Backend entered an inconsistent state that requires a reset."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CORRUPTION_DETECTED,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class SidecarError(ForestVectorError):
    """Metadata sidecar document could not be read or written."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.SIDECAR_ERROR, details)
