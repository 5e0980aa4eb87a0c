from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import ValidationError

from app.core.exceptions import CityNotFoundException, InvalidChatRequestException, RecorderError
from app.core.logging import get_logger
from app.dependencies import enforce_events_rate_limit, get_city_service, get_recorder
from app.schemas.events import INTAKE_EVENT, EventRequest, EventResponse
from app.services.city_service import CityService
from app.services.conversation_recorder import ConversationRecorder

from app.api.routes.chat import PREFLIGHT_HEADERS

router = APIRouter()
logger = get_logger(__name__)


@router.options("/grad/{city_id}/events")
async def events_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)


@router.post(
    "/grad/{city_id}/events",
    response_model=EventResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_events_rate_limit)],
)
async def ingest_event(
    city_id: str,
    request: Request,
    city_service: CityService = Depends(get_city_service),
    recorder: ConversationRecorder = Depends(get_recorder),
):
    """Record a widget event (message, fallback, ticket update, intake form) for the admin inbox."""
    try:
        event = EventRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise InvalidChatRequestException("Invalid event payload")
    if not event.type:
        raise InvalidChatRequestException("Missing event type")
    if event.type == INTAKE_EVENT:
        problem = event.intake.validation_error() if event.intake else "Missing required intake fields"
        if problem:
            logger.warning(f"Rejected ticket intake (conversation={event.conversation_id}): {problem}")
            raise InvalidChatRequestException(problem)

    city = await city_service.resolve(city_id)
    if city is None:
        raise CityNotFoundException()

    try:
        recorded = await recorder.record_event(city, event)
    except RecorderError as e:
        logger.error(f"Failed to record event {event.type} (city={city.code}, conversation={event.conversation_id}): {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record event",
        )

    return EventResponse(ticket_ref=recorded.ticket_ref)
