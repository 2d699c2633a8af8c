from contextlib import aclosing
from typing import Any, Dict, List, Optional, Tuple
import json

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from application.api.container import ServiceContainer, get_services
from application.api.schema.events import SSE_HEADERS, ErrorEvent, EventType
from application.api.schema.requests import ChatRequest
from domain.models.artifact import RetrievalResult
from domain.streaming.streaming_handler import StreamEventTranslator
from infrastructure.security.request_auth import get_user_id

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai-assistant", tags=["chat"])

SSE_MEDIA_TYPE = "text/event-stream"


async def _parse_chat_request(request: Request) -> Tuple[Optional[ChatRequest], Optional[str]]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, "Message is required"

    if not isinstance(body, dict):
        return None, "Message is required"

    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError:
        return None, "Message is required"

    return chat_request, chat_request.validation_error()


def _sse_error(message: str, status_code: int) -> StreamingResponse:
    async def body():
        yield ErrorEvent(message=message).to_sse()

    return StreamingResponse(body(), status_code=status_code, media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


async def _retrieve(
    services: ServiceContainer,
    user_id: str,
    chat_request: ChatRequest,
    high_precision: bool = False
) -> RetrievalResult:
    if not chat_request.enable_auto_artifacts and not chat_request.artifact_ids:
        return RetrievalResult()

    retrieve = services.gate.retrieve_high_precision if high_precision else services.gate.retrieve_with_confidence
    result = await retrieve(
        user_id,
        chat_request.clean_message,
        history=[item.model_dump() for item in chat_request.conversation_history],
        manual_ids=chat_request.artifact_ids,
        include_auto=chat_request.enable_auto_artifacts
    )
    if not result.is_empty:
        logger.info("Injected artifacts into context", user_id=user_id, count=len(result.artifacts))
    return result


@router.post("/tool-router/stream")
async def stream_chat(
    request: Request,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Chat turn streamed as Server-Sent Events"""

    chat_request, error = await _parse_chat_request(request)
    if error is not None:
        return _sse_error(error, status.HTTP_400_BAD_REQUEST)

    if services.runtime is None:
        return _sse_error("No agent runtime configured", status.HTTP_503_SERVICE_UNAVAILABLE)

    result = await _retrieve(services, user_id, chat_request)
    history = [item.model_dump() for item in chat_request.conversation_history]

    translator = StreamEventTranslator(
        session_id=chat_request.conversation_id or user_id,
        injected_artifacts=result.injected
    )
    source = services.runtime.stream(
        user_id,
        chat_request.clean_message,
        history=history,
        context=result.context or None
    )

    return StreamingResponse(translator.frames(source), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.post("/chat")
async def chat(
    request: Request,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Chat turn with high-precision memory, answered as one JSON document"""

    chat_request, error = await _parse_chat_request(request)
    if error is not None:
        return JSONResponse({"error": error}, status_code=status.HTTP_400_BAD_REQUEST)

    if services.runtime is None:
        return JSONResponse({"error": "No agent runtime configured"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    result = await _retrieve(services, user_id, chat_request, high_precision=True)
    history = [item.model_dump() for item in chat_request.conversation_history]

    translator = StreamEventTranslator(
        session_id=chat_request.conversation_id or user_id,
        injected_artifacts=result.injected
    )
    source = services.runtime.stream(
        user_id,
        chat_request.clean_message,
        history=history,
        context=result.context or None
    )

    chunks: List[str] = []
    done: Dict[str, Any] = {}

    async with aclosing(translator.payloads(source)) as events:
        async for event_type, payload in events:
            if event_type is EventType.TEXT:
                chunks.append(payload["chunk"])
            elif event_type is EventType.DONE:
                done = payload
            elif event_type is EventType.ERROR:
                logger.error("Chat turn failed", user_id=user_id, error=payload["message"])
                return JSONResponse({"error": payload["message"]}, status_code=status.HTTP_502_BAD_GATEWAY)

    return {
        "response": "".join(chunks),
        "toolCalls": done.get("toolCalls", []),
        "sessionId": done.get("sessionId", translator.session.session_id),
        "injectedArtifacts": done.get("injectedArtifacts", []),
    }
