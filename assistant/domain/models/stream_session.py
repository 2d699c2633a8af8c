from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from enum import Enum

from .artifact import InjectedArtifact, utc_now


class TranslatorState(str, Enum):
    """Stream translator lifecycle"""
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


class ToolCall(BaseModel):
    """In-flight or completed tool invocation within one stream"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    tool_name: str
    toolkit: str
    success: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    result: Optional[Any] = None


class StreamSession(BaseModel):
    """Per-request tool-call table. Owned by a single stream and discarded with it."""
    session_id: str
    injected_artifacts: List[InjectedArtifact] = Field(default_factory=list)
    tool_calls: Dict[str, ToolCall] = Field(default_factory=dict)
    completed: List[ToolCall] = Field(default_factory=list)

    def open_call(self, call: ToolCall) -> None:
        self.tool_calls[call.id] = call

    def complete_call(self, call_id: str, result: Any) -> Optional[ToolCall]:
        call = self.tool_calls.pop(call_id, None)
        if call is None:
            return None
        call.success = True
        call.result = result
        self.completed.append(call)
        return call
