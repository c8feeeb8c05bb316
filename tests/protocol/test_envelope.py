"""Tests for envelope framing, line classification and type normalization."""

import json

import pytest

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


class TestEncode:
    def test_single_line_with_newline(self):
        line = encode_envelope("streamChunk", {"delta": "a\nb"}, "r1")
        assert line.endswith("\n")
        assert line.count("\n") == 1
        assert json.loads(line) == {"type": "streamChunk", "content": {"delta": "a\nb"}, "requestId": "r1"}

    def test_request_id_omitted_when_absent(self):
        assert "requestId" not in json.loads(encode_envelope("ready", {}))

    def test_non_ascii_kept(self):
        assert "héllo" in encode_envelope("x", "héllo")

    def test_model_to_dict(self):
        envelope = Envelope(type="getProviders", requestId=7)
        assert envelope.to_dict() == {"type": "getProviders", "content": None, "requestId": 7}
        assert envelope.to_line() == encode_envelope("getProviders", None, 7)


@pytest.mark.parametrize(
    "line,kind",
    [
        ("", LineKind.BLANK),
        ("   \t", LineKind.BLANK),
        ('{"type": "x"}', LineKind.ENVELOPE),
        ('  {"type": "x"}', LineKind.ENVELOPE),
        ("[DEBUG] starting", LineKind.DIAGNOSTIC),
        ("[1, 2]", LineKind.DIAGNOSTIC),
    ],
)
def test_classify_line(line, kind):
    assert classify_line(line) is kind


class TestParseEnvelope:
    def test_valid(self):
        envelope = parse_envelope('{"type": "getSettings", "content": {}, "requestId": "abc"}')
        assert envelope.type == "getSettings"
        assert envelope.requestId == "abc"

    def test_extra_fields_ignored(self):
        assert parse_envelope('{"type": "x", "extra": 1}').type == "x"

    @pytest.mark.parametrize(
        "line",
        ["{not json", '{"content": 1}', '{"type": ""}', '{"type": 5}', "plain text", ""],
    )
    def test_invalid_yields_none(self, line):
        assert parse_envelope(line) is None


class TestNormalization:
    @pytest.mark.parametrize(
        "legacy,canonical",
        [
            ("send_message", "sendMessage"),
            ("load_history_data", "getHistory"),
            ("get_all_skills", "getSkills"),
            ("get_dependency_status", "getDependencies"),
            ("toggle_global_mcp_server", "toggleMcpServer"),
            ("permission_decision", "permissionDecision"),
        ],
    )
    def test_legacy_names(self, legacy, canonical):
        assert normalize_type(legacy) == canonical

    def test_unknown_and_canonical_pass_through(self):
        assert normalize_type("sendMessage") == "sendMessage"
        assert normalize_type("someFutureType") == "someFutureType"

    def test_table_is_idempotent(self):
        for canonical in NORMALIZATION.values():
            assert normalize_type(canonical) == canonical


class TestLineDecoder:
    def test_reassembles_split_lines(self):
        decoder = LineDecoder()
        assert decoder.feed(b'{"type": "a"}\n{"ty') == ['{"type": "a"}']
        assert decoder.feed(b'pe": "b"}\r\n') == ['{"type": "b"}']
        assert decoder.flush() == []

    def test_multibyte_split_across_chunks(self):
        decoder = LineDecoder()
        data = "héllo\n".encode()
        assert decoder.feed(data[:2]) == []
        assert decoder.feed(data[2:]) == ["héllo"]

    def test_flush_returns_partial_tail(self):
        decoder = LineDecoder()
        decoder.feed(b"no newline")
        assert decoder.flush() == ["no newline"]
        assert decoder.flush() == []
