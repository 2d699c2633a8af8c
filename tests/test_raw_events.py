"""Tests for decoding raw runtime events into the stream event union."""

from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessageChunk, ToolMessage

from builders import text, tool_called, tool_output
from domain.streaming.raw_events import (
    TextDelta, ToolCallStarted, ToolOutput, decode_raw_event
)


class TestAgentsSdkShape:

    def test_text_delta(self):
        assert decode_raw_event(text("hello")) == TextDelta(delta="hello")

    def test_empty_delta_ignored(self):
        assert decode_raw_event(text("")) is None

    def test_other_model_events_ignored(self):
        raw = {"type": "raw_model_stream_event", "data": {"type": "response.completed"}}
        assert decode_raw_event(raw) is None

    def test_tool_called_with_call_id(self):
        event = decode_raw_event(tool_called("GMAIL_SEND_EMAIL", call_id="c1"))
        assert event == ToolCallStarted(tool_name="GMAIL_SEND_EMAIL", call_id="c1")

    def test_tool_called_name_from_function_and_id_fallback(self):
        raw = {
            "type": "run_item_stream_event",
            "name": "tool_called",
            "item": {"rawItem": {"id": "fc_1", "call": {"function": {"name": "slack_post"}}}},
        }
        assert decode_raw_event(raw) == ToolCallStarted(tool_name="slack_post", call_id="fc_1")

    def test_tool_called_without_raw_item(self):
        raw = {"type": "run_item_stream_event", "name": "tool_called", "item": {"name": "notion_search"}}
        event = decode_raw_event(raw)
        assert event.tool_name == "notion_search"
        assert event.call_id is None

    def test_tool_output(self):
        assert decode_raw_event(tool_output("c1", {"ok": True})) == ToolOutput(call_id="c1", output={"ok": True})

    def test_event_objects_decoded_like_dicts(self):
        raw = SimpleNamespace(
            type="raw_model_stream_event",
            data=SimpleNamespace(type="output_text_delta", delta="hi"),
        )
        assert decode_raw_event(raw) == TextDelta(delta="hi")


class TestLangChainShape:

    def test_chat_model_chunk(self):
        raw = {"event": "on_chat_model_stream", "data": {"chunk": AIMessageChunk(content="tok")}}
        assert decode_raw_event(raw) == TextDelta(delta="tok")

    def test_chat_model_chunk_with_content_blocks(self):
        chunk = AIMessageChunk(content=[{"type": "text", "text": "a"}, {"type": "tool_use", "id": "x"}, "b"])
        raw = {"event": "on_chat_model_stream", "data": {"chunk": chunk}}
        assert decode_raw_event(raw) == TextDelta(delta="ab")

    def test_tool_start_uses_run_id(self):
        raw = {"event": "on_tool_start", "name": "jira_create", "run_id": "r1", "data": {}}
        assert decode_raw_event(raw) == ToolCallStarted(tool_name="jira_create", call_id="r1")

    def test_tool_end_unwraps_tool_message(self):
        raw = {
            "event": "on_tool_end",
            "run_id": "r1",
            "data": {"output": ToolMessage(content="done", tool_call_id="t1")},
        }
        assert decode_raw_event(raw) == ToolOutput(call_id="r1", output="done")


@pytest.mark.parametrize("raw", [
    None,
    42,
    "text",
    {},
    {"type": "agent_updated_stream_event"},
    {"type": "run_item_stream_event", "name": "message_output_created", "item": {}},
    {"event": "on_chain_start", "data": {}},
])
def test_irrelevant_events_ignored(raw):
    assert decode_raw_event(raw) is None


def test_decoded_events_pass_through():
    event = ToolOutput(call_id="c1", output=1)
    assert decode_raw_event(event) is event
