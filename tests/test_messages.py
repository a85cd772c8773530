import json
from datetime import datetime, timezone

import pytest

from ragclient import (
    ContentMessage,
    ContextsMessage,
    EndMessage,
    MessageParseError,
    StageMessage,
    StartMessage,
    TokenUsage,
    parse_message,
)


def line(event_type, data=None, ts="2024-05-01T10:00:00Z"):
    obj = {"event_type": event_type, "timestamp": ts}
    if data is not None:
        obj["data"] = data
    return json.dumps(obj)


class TestParseMessage:
    def test_start(self):
        msg = parse_message(line("start", {"query": "q"}))
        assert isinstance(msg, StartMessage)
        assert msg.extra == {"query": "q"}
        assert msg.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_stage(self):
        msg = parse_message(line("stage", {"type": "retrieval", "message": "searching"}))
        assert isinstance(msg, StageMessage)
        assert (msg.stage_type, msg.message) == ("retrieval", "searching")
        assert msg.tokens is None

    def test_stage_with_tokens(self):
        msg = parse_message(line("stage", {"type": "generation", "tokens": {"input": 5, "generated": 2}}))
        assert msg.tokens == TokenUsage(input=5, generated=2)

    def test_content(self):
        msg = parse_message(line("content", {"content": "hello"}))
        assert isinstance(msg, ContentMessage)
        assert msg.content == "hello"

    def test_contexts(self):
        msg = parse_message(line("contexts", {"contexts": ["a", "b"]}))
        assert isinstance(msg, ContextsMessage)
        assert msg.contexts == ["a", "b"]

    def test_end(self):
        msg = parse_message(line("end", {"metadata": {"model": "v3_chat", "elapsed": 1.5}}))
        assert isinstance(msg, EndMessage)
        assert msg.metadata == {"model": "v3_chat", "elapsed": 1.5}

    def test_missing_data_is_empty(self):
        msg = parse_message(line("content"))
        assert msg.content == ""

    def test_offset_timestamp(self):
        msg = parse_message(line("start", ts="2024-05-01T12:00:00+02:00"))
        assert msg.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_unreadable_timestamp_keeps_event(self):
        msg = parse_message(line("content", {"content": "x"}, ts="yesterday"))
        assert msg.timestamp is None
        assert msg.content == "x"

    @pytest.mark.parametrize("raw", [
        "not json",
        "{\"event_type\": \"content\"",
        "[1, 2, 3]",
        json.dumps({"event_type": "telemetry", "data": {}}),
        json.dumps({"data": {"content": "x"}}),
        json.dumps({"event_type": "content", "data": "x"}),
        json.dumps({"event_type": "content", "data": {"content": 3}}),
        json.dumps({"event_type": "contexts", "data": {"contexts": "abc"}}),
        json.dumps({"event_type": "end", "data": {"metadata": []}}),
        json.dumps({"event_type": "stage", "data": {"tokens": "many"}}),
    ])
    def test_malformed(self, raw):
        with pytest.raises(MessageParseError) as exc:
            parse_message(raw)
        assert exc.value.line == raw

    def test_infinite_token_count(self):
        raw = '{"event_type": "content", "data": {"content": "x", "tokens": {"input": 1e999}}}'
        with pytest.raises(MessageParseError, match="invalid token counts"):
            parse_message(raw)

    def test_nesting_too_deep(self):
        raw = "[" * 100000
        with pytest.raises(MessageParseError) as exc:
            parse_message(raw)
        assert exc.value.line == raw


class TestRoundTrip:
    @pytest.mark.parametrize("event_type,data", [
        ("start", {"query": "what?", "session": 7}),
        ("stage", {"type": "filter", "message": "dropping 3 docs", "tokens": {"input": 10, "generated": 0}}),
        ("content", {"content": "partial answer 中文"}),
        ("contexts", {"contexts": ["ctx one", "ctx two"], "source": "hybrid"}),
        ("end", {"metadata": {"tokens": {"input": 1}, "model": "m"}}),
    ])
    def test_serialize_and_reparse(self, event_type, data):
        original = parse_message(line(event_type, data))
        again = parse_message(original.to_json())
        assert again.event_type == original.event_type == event_type
        assert again.payload() == original.payload() == data
        assert again.timestamp == original.timestamp

    def test_to_dict_shape(self):
        msg = ContentMessage(content="x")
        assert msg.to_dict() == {"event_type": "content", "timestamp": None, "data": {"content": "x"}}


def test_token_usage_adds():
    assert TokenUsage(1, 2) + TokenUsage(3, 4) == TokenUsage(4, 6)
