"""Error handling framework for the AI bridge.

This package provides:
- Typed domain exceptions raised by services
- Error code registry with E-XXXX format codes
- Envelope and terminal formatting

Error categories:
- E-1xxx: Validation errors
- E-2xxx: Resource errors (not found, conflicts)
- E-3xxx: Upstream SDK errors
- E-4xxx: System/internal errors
"""

from ai_bridge.errors.domain import (
    BridgeIOError,
    ConflictError,
    DomainError,
    NotFoundError,
    ProcessFailureError,
    UpstreamUnavailableError,
    ValidationError,
)
from ai_bridge.errors.formatter import (
    BRIDGE_ERROR,
    BridgeError,
    classify_exception,
    error_envelope_content,
    format_error,
)
from ai_bridge.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Domain
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "BridgeIOError",
    "UpstreamUnavailableError",
    "ProcessFailureError",
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "BRIDGE_ERROR",
    "BridgeError",
    "classify_exception",
    "error_envelope_content",
    "format_error",
]
