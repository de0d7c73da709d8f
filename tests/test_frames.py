"""
Tests for frame decoding, cluster envelopes and log sanitization.
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from lovculator_shared.config.logging import StructuredFormatter, mask_address
from lovculator_ws.components.core.context import sanitize_log_data, to_iso
from lovculator_ws.components.events.types import (
    ClusterEnvelope,
    DebugRequestFrame,
    MalformedFrameError,
    MessageSeenFrame,
    PongFrame,
    TypingFrame,
    UnknownFrame,
    parse_inbound_frame,
    presence_event,
)


class TestParseInboundFrame:
    """Decoding at the boundary."""

    def test_typing_frame_uses_camel_case_fields(self):
        frame = parse_inbound_frame(
            '{"type": "TYPING", "toUserId": 2, "conversationId": 5, "isTyping": false}'
        )
        assert isinstance(frame, TypingFrame)
        assert frame.to_user_id == 2
        assert frame.conversation_id == 5
        assert frame.is_typing is False

    def test_typing_defaults(self):
        frame = parse_inbound_frame('{"type": "TYPING"}')
        assert frame.is_typing is True
        assert frame.to_user_id is None

    def test_message_seen_frame(self):
        frame = parse_inbound_frame(json.dumps({
            "type": "MESSAGE_SEEN",
            "conversationId": 3,
            "messageIds": [1, 2],
            "toUserId": 9,
        }))
        assert isinstance(frame, MessageSeenFrame)
        assert frame.message_ids == [1, 2]

    def test_bytes_and_extra_fields_accepted(self):
        frame = parse_inbound_frame(b'{"type": "PONG", "extra": 1}')
        assert isinstance(frame, PongFrame)
        assert isinstance(parse_inbound_frame('{"type": "DEBUG_REQUEST"}'), DebugRequestFrame)

    def test_unknown_type_is_explicit_variant(self):
        frame = parse_inbound_frame('{"type": "CALL_START", "room": "x"}')
        assert frame == UnknownFrame(type="CALL_START", fields={"room": "x"})

    @pytest.mark.parametrize("raw", [
        "",
        "{",
        "null",
        '"TYPING"',
        '{"type": ""}',
        '{"type": null}',
        '{"type": "MESSAGE_SEEN", "conversationId": 1}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedFrameError):
            parse_inbound_frame(raw)


class TestClusterEnvelope:

    def test_wire_format(self):
        envelope = ClusterEnvelope.for_users("node-1-abcdef12", [4, 5], {"type": "X"})
        data = json.loads(envelope.to_json())
        assert data == {
            "target": "USERS",
            "origin": "node-1-abcdef12",
            "userIds": [4, 5],
            "payload": {"type": "X"},
        }

    def test_parse(self):
        envelope = ClusterEnvelope.from_json(
            '{"target": "ALL", "origin": "node-2-00000000", "payload": {"type": "Y"}}'
        )
        assert envelope.target == "ALL"
        assert envelope.user_ids == []

    @pytest.mark.parametrize("raw", [
        '{"target": "SOME", "origin": "n", "payload": {}}',
        '{"target": "ALL", "origin": "", "payload": {}}',
        '{"target": "ALL", "origin": "n"}',
        "[]",
    ])
    def test_invalid(self, raw):
        with pytest.raises(MalformedFrameError):
            ClusterEnvelope.from_json(raw)


class TestOutboundFrames:

    def test_presence_event_fields(self):
        event = presence_event(3, False, "2026-01-01T00:00:00.000Z")
        assert event["type"] == "PRESENCE"
        assert event["userId"] == 3
        assert event["isOnline"] is False
        assert event["lastSeen"] == "2026-01-01T00:00:00.000Z"
        assert event["timestamp"].endswith("Z")

    def test_iso_format_matches_javascript(self):
        moment = datetime(2026, 3, 4, 5, 6, 7, 891234, tzinfo=timezone.utc)
        assert to_iso(moment) == "2026-03-04T05:06:07.891Z"


class TestLogSanitization:

    def test_strips_control_and_bidi_characters(self):
        assert sanitize_log_data("a\nb\u202ec\u200bd\x00") == "abcd"

    def test_escapes_quotes(self):
        assert sanitize_log_data('say "hi" \\') == 'say \\"hi\\" \\\\'

    def test_truncates(self):
        assert sanitize_log_data("x" * 150, max_length=10) == "x" * 10 + "..."

    @pytest.mark.parametrize("address,expected", [
        ("203.0.113.42", "203.0.113.x"),
        ("2001:db8:85a3:0:0:8a2e:370:7334", "2001:db8:85a3:x"),
        (None, "<unknown>"),
        ("garbage", "***"),
    ])
    def test_mask_address(self, address, expected):
        assert mask_address(address) == expected

    def test_structured_formatter_emits_json_with_data(self):
        record = logging.getLogger("test").makeRecord(
            "test", logging.INFO, __file__, 1, "Connection closed", (), None,
            extra={"extra_data": {"user_id": 7}, "request_id": "req-1"},
        )
        output = json.loads(StructuredFormatter().format(record))

        assert output["message"] == "Connection closed"
        assert output["level"] == "INFO"
        assert output["data"] == {"user_id": 7}
        assert output["request_id"] == "req-1"
