from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from app.core.exceptions import InvalidChatRequestException
from app.core.logging import get_logger
from app.dependencies import enforce_chat_rate_limit, get_chat_orchestrator
from app.schemas.chat import ChatRequest
from app.services.chat.orchestrator import ChatOrchestrator
from app.services.chat.sse import SSE_HEADERS

router = APIRouter()
logger = get_logger(__name__)

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


@router.options("/grad/{city_id}/chat")
async def chat_preflight() -> Response:
    """Answer CORS preflight without touching the pipeline."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)


@router.post("/grad/{city_id}/chat", dependencies=[Depends(enforce_chat_rate_limit)])
async def chat(
    city_id: str,
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """
    Stream a grounded answer for one user message as server-sent events.

    Bad input and unknown cities are rejected with a JSON 4xx before the
    stream opens. After that every outcome is reported inside the stream.
    """
    try:
        body = await request.json()
    except ValueError:
        raise InvalidChatRequestException("Request body must be JSON")
    if not isinstance(body, dict):
        raise InvalidChatRequestException()

    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError:
        raise InvalidChatRequestException()

    turn = await orchestrator.prepare(city_id, chat_request)
    logger.info(f"Chat request accepted (city={turn.city_code}, conversation={turn.conversation_id})")

    return StreamingResponse(
        orchestrator.stream(turn, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(orchestrator.finalize, turn),
    )
