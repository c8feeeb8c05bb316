"""Error formatting for protocol envelopes and terminal output.

This module provides:
- BridgeError, the structured form every handler failure is reduced to
- error_envelope_content() used by the router to build ``error`` replies
- format_error() for human-readable CLI display
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ai_bridge.errors.domain import (
    BridgeIOError,
    ConflictError,
    DomainError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from ai_bridge.errors.registry import get_error

BRIDGE_ERROR = "BRIDGE_ERROR"


@dataclass
class BridgeError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str = ""
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: Any) -> "BridgeError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                The special key 'details' is attached rather than substituted.

        Returns:
            BridgeError instance with formatted message.
        """
        details = kwargs.pop("details", {})
        if not isinstance(details, dict):
            details = {}
        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=str(kwargs.get("message", f"Unknown error: {code}")),
                remediation="Check the bridge log for details.",
                details=details,
            )

        message = error_def.message_template
        try:
            message = message.format(**kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            details=details,
        )


def classify_exception(exc: BaseException) -> BridgeError:
    """Reduce any exception raised by a handler to a BridgeError.

    Args:
        exc: The exception caught at the router boundary.

    Returns:
        BridgeError with the registry code matching the exception type.
    """
    if isinstance(exc, BridgeError):
        return exc

    details: dict[str, Any] = {}
    if isinstance(exc, NotFoundError):
        details = {"resourceType": exc.resource_type, "id": exc.identifier}
    elif isinstance(exc, ConflictError):
        details = {"conflict": exc.conflict}
    elif isinstance(exc, ValidationError) and exc.field:
        details = {"field": exc.field}
    elif isinstance(exc, BridgeIOError):
        details = {"path": exc.path}
    elif isinstance(exc, UpstreamUnavailableError):
        details = {"sdkId": exc.sdk_id}

    if isinstance(exc, DomainError):
        code = exc.code
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        code = "E-4004"
    elif isinstance(exc, OSError):
        code = "E-4002"
    else:
        code = "E-4001"

    message = str(exc) or type(exc).__name__
    error = BridgeError.from_code(code, message=message, details=details)
    if isinstance(exc, UpstreamUnavailableError) and exc.remediation:
        error.remediation = exc.remediation
    return error


def error_envelope_content(exc: BaseException) -> dict[str, Any]:
    """Build the body of an ``error`` envelope.

    The legacy ``code`` value stays ``BRIDGE_ERROR`` so existing hosts keep
    matching on it; the registry code travels in ``errorCode``.

    Args:
        exc: Exception raised while handling a message.

    Returns:
        Dict with code, errorCode, message, category, remediation and any
        conflict/details context.
    """
    error = classify_exception(exc)
    error_def = get_error(error.code)
    content: dict[str, Any] = {
        "code": BRIDGE_ERROR,
        "errorCode": error.code,
        "message": error.message,
        "remediation": error.remediation,
        "retryable": error.is_retryable,
    }
    if error_def is not None:
        content["category"] = error_def.category.value
    if error.details:
        content["details"] = error.details
        if error.details.get("conflict"):
            content["conflict"] = True
    return content


def format_error(error: BridgeError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The BridgeError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for terminal display.
    """
    lines = [f"{error.code}: {error.message}"]
    for key, value in error.details.items():
        lines.append(f"  {key}: {value}")
    if include_remediation and error.remediation:
        lines.append(f"  Action: {error.remediation}")
    return "\n".join(lines)
