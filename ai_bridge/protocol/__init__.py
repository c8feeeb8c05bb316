"""Line-delimited JSON protocol between host and bridge.

This package provides:
- The envelope model and line framing/classification
- The legacy-type normalization table
- The router and its per-connection handler context
- The single-writer outbox
"""

from ai_bridge.protocol.context import HandlerContext, Services
from ai_bridge.protocol.envelope import (
    NORMALIZATION,
    Envelope,
    LineDecoder,
    LineKind,
    classify_line,
    encode_envelope,
    normalize_type,
    parse_envelope,
)
from ai_bridge.protocol.outbox import Outbox
from ai_bridge.protocol.router import Router

__all__ = [
    "Envelope",
    "LineDecoder",
    "LineKind",
    "NORMALIZATION",
    "classify_line",
    "encode_envelope",
    "normalize_type",
    "parse_envelope",
    "HandlerContext",
    "Services",
    "Outbox",
    "Router",
]
