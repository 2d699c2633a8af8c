from typing import Any, ClassVar, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from enum import Enum

from domain.models.artifact import InjectedArtifact
from domain.models.stream_session import ToolCall


class EventType(str, Enum):
    """Server-Sent-Event names"""
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    ERROR = "error"


class BaseEvent(BaseModel):
    """Base model for all SSE frames"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: ClassVar[EventType]
    # Optional fields left unset are omitted from the frame
    omit_none: ClassVar[bool] = False

    def payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=self.omit_none)

    def to_sse(self) -> str:
        """Encode as ``event: <name>\\ndata: <json>\\n\\n``"""
        data = self.model_dump_json(by_alias=True, exclude_none=self.omit_none)
        return f"event: {self.event_type.value}\ndata: {data}\n\n"


class TextEvent(BaseEvent):
    """Client-visible text chunk"""
    event_type: ClassVar[EventType] = EventType.TEXT

    chunk: str


class ToolCallEvent(BaseEvent):
    """A tool invocation has started"""
    event_type: ClassVar[EventType] = EventType.TOOL_CALL

    tool_name: str
    toolkit: str
    id: str


class ToolResultEvent(BaseEvent):
    """A tool invocation has produced output"""
    event_type: ClassVar[EventType] = EventType.TOOL_RESULT

    tool_name: str
    toolkit: str
    id: str
    success: bool = True
    result: Any = None


class DoneEvent(BaseEvent):
    """Terminal summary of a completed stream"""
    event_type: ClassVar[EventType] = EventType.DONE
    omit_none: ClassVar[bool] = True

    tool_calls: Optional[List[ToolCall]] = None
    session_id: str
    injected_artifacts: Optional[List[InjectedArtifact]] = None


class ErrorEvent(BaseEvent):
    """Terminal error"""
    event_type: ClassVar[EventType] = EventType.ERROR

    message: str = Field(description="Human-readable error message")


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
