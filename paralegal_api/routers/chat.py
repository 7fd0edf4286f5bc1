"""
Chat endpoint for legal Q&A with SSE streaming
"""
import time
from contextlib import aclosing
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sse_starlette.sse import EventSourceResponse
import structlog

from paralegal_api.models.chat import ChatRequest
from paralegal_api.services.auth import AuthenticationError, AuthenticatedUser
from paralegal_api.services.conversations import ConversationAccessDenied
from paralegal_api.services.multiplexer import create_sse_message
from paralegal_api.services.orchestrator import ChatOrchestrator, InvalidChatRequest
from paralegal_api.services.store import StoreError

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])


async def authenticate(req: Request) -> AuthenticatedUser:
    """Resolve the caller from the Authorization header or fail with 401"""
    try:
        return await req.app.state.identity_service.authenticate(req.headers.get("Authorization"))
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.options("/chat")
async def chat_preflight() -> PlainTextResponse:
    """CORS preflight"""
    return PlainTextResponse("ok")


@router.post("/chat")
async def chat_endpoint(
    req: Request,
    background_tasks: BackgroundTasks
) -> EventSourceResponse:
    """
    Classify a legal question, route it to a response strategy and stream
    the answer as SSE events
    """
    start_time = time.time()
    request_id = req.headers.get("X-Request-ID") or str(uuid4())

    user = await authenticate(req)

    # ValueError (bad JSON or schema) is turned into a 400 by the app handler
    request = ChatRequest.model_validate(await req.json())

    orchestrator: ChatOrchestrator = req.app.state.chat_orchestrator
    try:
        prepared = await orchestrator.prepare(request, user)
    except InvalidChatRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConversationAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except StoreError as e:
        logger.error("Conversation store failure", request_id=request_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to retrieve or create conversation")

    logger.info(
        "Chat request routed",
        request_id=request_id,
        query_type=prepared.query_type.value,
        conversation_id=prepared.conversation_id,
        prepare_time=time.time() - start_time
    )

    async def generate_response() -> AsyncGenerator[str, None]:
        """Generate SSE stream"""
        event_count = 0
        try:
            async with aclosing(orchestrator.stream(prepared)) as events:
                async for event in events:
                    event_count += 1
                    yield create_sse_message(event)
        finally:
            logger.info(
                "Chat stream finished",
                request_id=request_id,
                events=event_count,
                total_time=time.time() - start_time
            )

    background_tasks.add_task(orchestrator.verify_citations, prepared)

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
        "X-Request-ID": request_id
    }
    if prepared.conversation_created:
        headers["X-Conversation-Id"] = prepared.conversation_id

    return EventSourceResponse(
        generate_response(),
        headers=headers,
        background=background_tasks,
        sep="\n"
    )
