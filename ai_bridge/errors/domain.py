"""Typed domain exceptions raised by the service layer.

Services raise these; the protocol router is the single place where they
are converted into ``error`` envelopes, so handlers never need to build
error payloads themselves.

Usage:
    # In service layer
    raise NotFoundError("MCP server", server_id)

    # At the router boundary
    try:
        await handler(ctx, content, request_id)
    except DomainError as e:
        outbox.put("error", error_envelope_content(e), request_id)
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    code = "E-4001"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Missing or malformed required field. Nothing was written."""

    code = "E-1001"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(DomainError):
    """Referenced id, session or file is absent."""

    code = "E-2001"

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Name collision. Carries a conflict flag so callers can prompt."""

    code = "E-2002"

    def __init__(self, message: str, conflict: bool = True) -> None:
        super().__init__(message)
        self.conflict = conflict


class BridgeIOError(DomainError):
    """Filesystem or subprocess I/O failure."""

    code = "E-4002"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"I/O failure on '{path}': {reason}")
        self.path = path
        self.reason = reason


class UpstreamUnavailableError(DomainError):
    """The hosted AI SDK is not installed or could not be located."""

    code = "E-3001"

    def __init__(self, sdk_id: str, remediation: str = "") -> None:
        super().__init__(f"SDK '{sdk_id}' is not available")
        self.sdk_id = sdk_id
        self.remediation = remediation


class ProcessFailureError(DomainError):
    """The bridge child process exhausted its restart budget."""

    code = "E-4003"

    def __init__(self, restarts: int, last_exit_code: int | None) -> None:
        super().__init__(
            f"Bridge process failed after {restarts} restart(s) "
            f"(last exit code: {last_exit_code})"
        )
        self.restarts = restarts
        self.last_exit_code = last_exit_code
