"""Tests for the error registry and envelope formatting."""

import asyncio

import pytest

from ai_bridge.errors import (
    BRIDGE_ERROR,
    BridgeError,
    BridgeIOError,
    ConflictError,
    ErrorCategory,
    NotFoundError,
    ProcessFailureError,
    UpstreamUnavailableError,
    ValidationError,
    classify_exception,
    error_envelope_content,
    format_error,
    get_error,
    get_errors_by_category,
)


@pytest.mark.parametrize(
    "code,category",
    [
        ("E-1001", ErrorCategory.VALIDATION),
        ("E-2001", ErrorCategory.RESOURCE),
        ("E-2002", ErrorCategory.RESOURCE),
        ("E-3001", ErrorCategory.UPSTREAM),
        ("E-4002", ErrorCategory.SYSTEM),
        ("E-4003", ErrorCategory.SYSTEM),
        ("E-4004", ErrorCategory.SYSTEM),
    ],
)
def test_codes_registered(code, category):
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.remediation


def test_categories_follow_code_prefix():
    prefixes = {
        ErrorCategory.VALIDATION: "E-1",
        ErrorCategory.RESOURCE: "E-2",
        ErrorCategory.UPSTREAM: "E-3",
        ErrorCategory.SYSTEM: "E-4",
    }
    for category, prefix in prefixes.items():
        for error in get_errors_by_category(category):
            assert error.code.startswith(prefix)


class TestClassifyException:
    """Tests for reducing exceptions to BridgeError."""

    def test_not_found_carries_resource(self):
        error = classify_exception(NotFoundError("Provider", "p1"))
        assert error.code == "E-2001"
        assert error.message == "Provider 'p1' not found"
        assert error.details == {"resourceType": "Provider", "id": "p1"}

    def test_validation_carries_field(self):
        error = classify_exception(ValidationError("Name is required", field="name"))
        assert error.code == "E-1001"
        assert error.details == {"field": "name"}

    def test_upstream_uses_exception_remediation(self):
        exc = UpstreamUnavailableError("claude-sdk", remediation="npm install it")
        error = classify_exception(exc)
        assert error.code == "E-3001"
        assert error.remediation == "npm install it"

    def test_timeout_is_retryable(self):
        error = classify_exception(asyncio.TimeoutError())
        assert error.code == "E-4004"
        assert error.is_retryable is True
        assert error.message == "TimeoutError"

    def test_os_error_maps_to_io(self):
        assert classify_exception(PermissionError("denied")).code == "E-4002"

    def test_unknown_exception_is_bridge_error(self):
        error = classify_exception(RuntimeError("boom"))
        assert error.code == "E-4001"
        assert error.message == "boom"

    def test_bridge_error_passes_through(self):
        original = BridgeError(code="E-4001", message="x")
        assert classify_exception(original) is original


class TestErrorEnvelopeContent:
    """Tests for the body of ``error`` envelopes."""

    def test_conflict_flag_surfaces(self):
        content = error_envelope_content(ConflictError("Skill exists"))
        assert content["code"] == BRIDGE_ERROR
        assert content["errorCode"] == "E-2002"
        assert content["conflict"] is True
        assert content["category"] == "resource"

    def test_io_error_details(self):
        content = error_envelope_content(BridgeIOError("/tmp/x.json", "disk full"))
        assert content["errorCode"] == "E-4002"
        assert content["details"] == {"path": "/tmp/x.json"}
        assert content["retryable"] is True
        assert "disk full" in content["message"]

    def test_plain_error_has_no_details(self):
        content = error_envelope_content(ValueError("bad"))
        assert "details" not in content
        assert "conflict" not in content
        assert content["message"] == "bad"


class TestFormatError:
    def test_includes_remediation(self):
        text = format_error(classify_exception(ProcessFailureError(3, 1)))
        assert text.startswith("E-4003: Bridge process failed after 3 restart(s)")
        assert "Action:" in text

    def test_without_remediation(self):
        text = format_error(classify_exception(ProcessFailureError(0, None)), include_remediation=False)
        assert "Action:" not in text
