"""Raw agent runtime events decoded into a tagged union.

Runtimes emit loosely-typed events: agents-SDK style dicts
(``raw_model_stream_event`` / ``run_item_stream_event``) or LangChain
``astream_events`` v2 dicts (``on_chat_model_stream`` / ``on_tool_start`` /
``on_tool_end``). ``decode_raw_event`` turns either into exactly one of
``TextDelta``, ``ToolCallStarted`` or ``ToolOutput`` so the translator never
checks optional fields.
"""

from typing import Any, Dict, Literal, Optional, Union
from pydantic import BaseModel

from langchain_core.messages import BaseMessage


class TextDelta(BaseModel):
    kind: Literal["text_delta"] = "text_delta"
    delta: str


class ToolCallStarted(BaseModel):
    kind: Literal["tool_call_started"] = "tool_call_started"
    tool_name: str
    call_id: Optional[str] = None


class ToolOutput(BaseModel):
    kind: Literal["tool_output"] = "tool_output"
    call_id: Optional[str] = None
    output: Any = None


StreamEvent = Union[TextDelta, ToolCallStarted, ToolOutput]


def decode_raw_event(raw: Any) -> Optional[StreamEvent]:
    """Decode one runtime event, or None when it carries nothing for the client"""

    if isinstance(raw, (TextDelta, ToolCallStarted, ToolOutput)):
        return raw

    if not isinstance(raw, dict):
        raw = _as_dict(raw)
        if raw is None:
            return None

    if "event" in raw:
        return _decode_langchain_event(raw)

    event_type = raw.get("type")
    if event_type == "raw_model_stream_event":
        return _decode_model_event(raw.get("data"))
    if event_type == "run_item_stream_event":
        return _decode_run_item(raw.get("name"), raw.get("item"))

    return None


def _as_dict(raw: Any) -> Optional[Dict[str, Any]]:
    # SDK event objects expose the same fields as attributes
    event_type = getattr(raw, "type", None)
    if event_type is None:
        return None
    return {
        "type": event_type,
        "data": _as_plain(getattr(raw, "data", None)),
        "name": getattr(raw, "name", None),
        "item": getattr(raw, "item", None),
    }


def _as_plain(value: Any) -> Any:
    if value is None or isinstance(value, dict):
        return value
    return {"type": getattr(value, "type", None), "delta": getattr(value, "delta", None)}


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def _decode_model_event(data: Any) -> Optional[StreamEvent]:
    if not isinstance(data, dict) or data.get("type") != "output_text_delta":
        return None

    delta = data.get("delta")
    if isinstance(delta, str) and delta:
        return TextDelta(delta=delta)
    return None


def _decode_run_item(name: Any, item: Any) -> Optional[StreamEvent]:
    raw_item = _field(item, "rawItem", "raw_item") or item

    if name == "tool_called":
        call = _field(raw_item, "call")
        function = _field(call, "function") if call is not None else None
        tool_name = _field(raw_item, "name") or _field(function, "name") or "unknown"
        call_id = _field(raw_item, "call_id", "id")
        return ToolCallStarted(tool_name=str(tool_name), call_id=_optional_str(call_id))

    if name == "tool_output":
        return ToolOutput(
            call_id=_optional_str(_field(raw_item, "call_id")),
            output=_field(raw_item, "output")
        )

    return None


def _decode_langchain_event(raw: Dict[str, Any]) -> Optional[StreamEvent]:
    event = raw.get("event")
    data = raw.get("data") or {}

    if event == "on_chat_model_stream":
        text = _chunk_text(data.get("chunk"))
        return TextDelta(delta=text) if text else None

    if event == "on_tool_start":
        return ToolCallStarted(
            tool_name=str(raw.get("name") or "unknown"),
            call_id=_optional_str(raw.get("run_id"))
        )

    if event == "on_tool_end":
        output = data.get("output")
        if isinstance(output, BaseMessage):
            output = output.content
        return ToolOutput(call_id=_optional_str(raw.get("run_id")), output=output)

    return None


def _chunk_text(chunk: Any) -> str:
    content = chunk.content if isinstance(chunk, BaseMessage) else chunk
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return ""


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
