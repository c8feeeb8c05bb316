"""E-XXXX error codes surfaced in ``error`` envelopes.

The leading digit of a code fixes its category:

- E-1xxx: validation (malformed or missing request fields)
- E-2xxx: resources (not found, name conflicts)
- E-3xxx: upstream SDKs
- E-4xxx: system (I/O, child process, timeouts)
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    RESOURCE = "resource"
    UPSTREAM = "upstream"
    SYSTEM = "system"


_CATEGORY_BY_DIGIT = {
    "1": ErrorCategory.VALIDATION,
    "2": ErrorCategory.RESOURCE,
    "3": ErrorCategory.UPSTREAM,
    "4": ErrorCategory.SYSTEM,
}


@dataclass(frozen=True)
class ErrorCode:
    """One registry entry.

    ``message_template`` is formatted with the context passed to
    ``BridgeError.from_code``; most entries simply echo ``{message}``.
    """

    code: str
    title: str
    remediation: str
    is_retryable: bool = False
    message_template: str = "{message}"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_DIGIT[self.code[2]]


_ENTRIES = (
    ErrorCode("E-1001", "Invalid Request", "Correct the request payload and retry."),
    ErrorCode("E-2001", "Not Found", "Refresh the list and select an existing entry."),
    ErrorCode("E-2002", "Name Conflict", "Rename or remove the existing entry, then retry."),
    ErrorCode("E-3001", "SDK Not Installed", "Install the SDK from the dependency settings and retry."),
    ErrorCode("E-4001", "Bridge Error", "Check the bridge log for details."),
    ErrorCode("E-4002", "I/O Failure", "Check file permissions and free disk space.", is_retryable=True),
    ErrorCode("E-4003", "Bridge Process Failed", "Check the runtime installation and restart the bridge."),
    ErrorCode(
        "E-4004",
        "Timeout",
        "Retry; raise the timeout in ai-bridge.yaml if it persists.",
        is_retryable=True,
    ),
)

ERROR_REGISTRY: dict[str, ErrorCode] = {entry.code: entry for entry in _ENTRIES}


def get_error(code: str) -> ErrorCode | None:
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """All registry entries whose code falls in ``category``."""
    return [entry for entry in _ENTRIES if entry.category is category]
