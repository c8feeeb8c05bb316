"""Test helpers shared across test packages."""

from tests.helpers.outbox import RecordingOutbox

__all__ = ["RecordingOutbox"]
