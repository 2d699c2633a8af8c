from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Tuple, TypeVar
import random
import string
import time

import structlog

from application.api.schema.events import (
    BaseEvent, DoneEvent, ErrorEvent, EventType,
    TextEvent, ToolCallEvent, ToolResultEvent
)
from domain.models.artifact import InjectedArtifact
from domain.models.stream_session import StreamSession, ToolCall, TranslatorState
from infrastructure.observability.logging import memory_logger, metrics
from .raw_events import StreamEvent, TextDelta, ToolCallStarted, ToolOutput, decode_raw_event
from .think_filter import ThinkTagFilter

logger = structlog.get_logger(__name__)

UNKNOWN_TOOLKIT = "unknown"
TOOLKIT_SEPARATOR = "_"
DEFAULT_ERROR_MESSAGE = "An error occurred during streaming"

_ID_ALPHABET = string.digits + string.ascii_lowercase

T = TypeVar("T")


def derive_toolkit(tool_name: str) -> str:
    """Lowercase prefix of the tool name up to its first separator, else "unknown" """

    if TOOLKIT_SEPARATOR not in tool_name:
        return UNKNOWN_TOOLKIT
    prefix = tool_name.split(TOOLKIT_SEPARATOR, 1)[0].lower()
    return prefix or UNKNOWN_TOOLKIT


def synthesize_call_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"tool_{int(time.time() * 1000)}_{suffix}"


class StreamEventTranslator:
    """Turns a raw agent event stream into the client SSE protocol.

    One instance per streaming response. It owns the tool-call table and the
    think-tag filter, processes one raw event fully before pulling the next,
    and emits exactly one terminal ``done`` or ``error`` event.
    """

    def __init__(
        self,
        session_id: str,
        injected_artifacts: Optional[List[InjectedArtifact]] = None,
        think_filter: Optional[ThinkTagFilter] = None
    ):
        self.session = StreamSession(
            session_id=session_id,
            injected_artifacts=list(injected_artifacts or [])
        )
        self.think_filter = think_filter or ThinkTagFilter()
        self.state = TranslatorState.STREAMING
        self._consumed = False

    def frames(self, source: AsyncIterable[Any]) -> AsyncIterator[str]:
        """Encoded SSE frames for the response body"""

        return self._translate(source, lambda event: event.to_sse())

    def payloads(self, source: AsyncIterable[Any]) -> AsyncIterator[Tuple[EventType, Dict[str, Any]]]:
        """Event names with JSON-ready payloads, for non-streaming callers"""

        return self._translate(source, lambda event: (event.event_type, event.payload()))

    @property
    def completed_tool_calls(self) -> List[ToolCall]:
        return list(self.session.completed)

    async def _translate(self, source: AsyncIterable[Any], render: Callable[[BaseEvent], T]) -> AsyncIterator[T]:
        if self._consumed:
            raise RuntimeError("StreamEventTranslator instances translate a single stream")
        self._consumed = True

        try:
            async for raw in source:
                event = self.reduce(decode_raw_event(raw))
                if event is not None:
                    yield render(event)

            tail = self.think_filter.flush()
            if tail:
                yield render(TextEvent(chunk=tail))

            done = render(self._done_event())
            self.state = TranslatorState.DONE
            yield done

        except Exception as e:
            logger.error("Streaming error", session_id=self.session.session_id, error=str(e))
            self.state = TranslatorState.ERROR
            yield render(ErrorEvent(message=str(e) or DEFAULT_ERROR_MESSAGE))

        finally:
            await self._close_source(source)

    def reduce(self, event: Optional[StreamEvent]) -> Optional[BaseEvent]:
        """Apply one decoded event to the session, returning the wire event to emit"""

        if event is None:
            return None

        if isinstance(event, TextDelta):
            return self._on_text(event)
        if isinstance(event, ToolCallStarted):
            return self._on_tool_call(event)
        if isinstance(event, ToolOutput):
            return self._on_tool_output(event)

        return None

    def _on_text(self, event: TextDelta) -> Optional[BaseEvent]:
        filtered = self.think_filter.feed(event.delta)
        if not filtered:
            return None
        return TextEvent(chunk=filtered)

    def _on_tool_call(self, event: ToolCallStarted) -> BaseEvent:
        call = ToolCall(
            id=event.call_id or synthesize_call_id(),
            tool_name=event.tool_name,
            toolkit=derive_toolkit(event.tool_name)
        )
        self.session.open_call(call)

        memory_logger.log_tool_call(
            session_id=self.session.session_id,
            phase="started",
            tool_name=call.tool_name,
            call_id=call.id,
            toolkit=call.toolkit
        )

        return ToolCallEvent(tool_name=call.tool_name, toolkit=call.toolkit, id=call.id)

    def _on_tool_output(self, event: ToolOutput) -> Optional[BaseEvent]:
        call = self.session.complete_call(event.call_id, event.output) if event.call_id else None

        if call is None:
            # Output without a matching start cannot be attributed
            logger.warning("Dropping unattributable tool output",
                           session_id=self.session.session_id,
                           call_id=event.call_id)
            metrics.increment_counter("stream.tool_output_dropped")
            return None

        memory_logger.log_tool_call(
            session_id=self.session.session_id,
            phase="completed",
            tool_name=call.tool_name,
            call_id=call.id,
            toolkit=call.toolkit
        )

        return ToolResultEvent(
            tool_name=call.tool_name,
            toolkit=call.toolkit,
            id=call.id,
            success=True,
            result=call.result
        )

    def _done_event(self) -> DoneEvent:
        return DoneEvent(
            tool_calls=self.completed_tool_calls or None,
            session_id=self.session.session_id,
            injected_artifacts=self.session.injected_artifacts or None
        )

    async def _close_source(self, source: AsyncIterable[Any]) -> None:
        aclose = getattr(source, "aclose", None)
        if aclose is None:
            return

        try:
            await aclose()
        except Exception as e:
            logger.warning("Error closing event source", session_id=self.session.session_id, error=str(e))
