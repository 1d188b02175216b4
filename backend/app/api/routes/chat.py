"""Chat relay endpoint - POST /api/chat.

Batch mode returns {"reply": ...}. Streaming mode (?stream=1, ?stream=sse, or
Accept: text/event-stream) returns an event stream of token fragments.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.core.sse import SSE_HEADERS, SSE_MEDIA_TYPE
from app.schemas.chat import ChatError, ChatReply, ChatRequest
from app.services.chat_service import ChatService
from app.services.llm_service import LLMService, get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_QUERY_VALUES = ("1", "sse")


def wants_event_stream(request: Request) -> bool:
    """True if the caller asked for an event stream via query or Accept header."""
    if request.query_params.get("stream") in STREAM_QUERY_VALUES:
        return True
    return SSE_MEDIA_TYPE in request.headers.get("accept", "")


async def _parse_chat_request(request: Request) -> ChatRequest:
    """Read and validate the body, or raise 400."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list):
        raise HTTPException(status_code=400, detail="Invalid request: missing messages array")
    if not messages:
        raise HTTPException(status_code=400, detail="Invalid request: messages array is empty")

    try:
        return ChatRequest.model_validate({"messages": messages})
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise HTTPException(status_code=400, detail=f"Invalid request: {where}: {first['msg']}")


@router.post("", response_model=ChatReply, responses={500: {"model": ChatError}})
async def submit_chat(
    request: Request,
    settings: Settings = Depends(get_settings),
    llm: LLMService = Depends(get_llm_service),
):
    """Relay one conversation turn to the upstream LLM."""
    chat_request = await _parse_chat_request(request)

    config_error = settings.upstream_config_error()
    if config_error:
        logger.warning("Chat API misconfigured: %s", config_error)
        return JSONResponse(status_code=500, content={"error": config_error})

    chat_svc = ChatService(llm, persona=settings.PERSONA)
    streaming = wants_event_stream(request)
    logger.info(
        "Chat API called (%s, %d messages)",
        "stream" if streaming else "batch",
        len(chat_request.messages),
    )

    if streaming:
        return StreamingResponse(
            chat_svc.stream_events(chat_request.messages),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
        )

    try:
        reply = await chat_svc.reply(chat_request.messages)
    except Exception as e:
        logger.exception("%s request failed", settings.provider_label)
        return JSONResponse(
            status_code=500,
            content={"error": str(e) or f"{settings.provider_label} request failed"},
        )
    return ChatReply(reply=reply)
