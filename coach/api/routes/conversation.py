"""
Conversation Routes - Send a turn and read history.

Endpoints:
- POST /conversation/{session_id}/messages : Stream a turn as Server-Sent Events
- POST /conversation/{session_id}/cancel   : Stop the running turn
- GET  /conversation/{session_id}/history  : Messages, optionally after an id

Rate limiting applies per user: every turn costs two LLM streams.
"""
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from coach.api.access import Caller, Tier, require
from coach.core.exceptions import BadRequestError, RateLimitExceeded
from coach.core.logging_config import get_logger
from coach.core.rate_limiter import get_rate_limiter
from coach.core.validators import validate_message
from coach.models.schemas import ErrorResponse, SendMessageRequest
from coach.services.conversation_service import ConversationService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/conversation",
    tags=["Conversation"],
    responses={
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)


class CancelResponse(BaseModel):
    cancelled: bool


def get_conversation_service(request: Request) -> ConversationService:
    """The service is built at startup with the provider registry."""
    return request.app.state.conversation_service


@router.post(
    "/{session_id}/messages",
    summary="Send a message",
    description="""
    Sends the user's message and streams the replies as Server-Sent Events.

    **Event types:**
    - `partner:delta` / `partner:done` - the conversation partner's reply
    - `coach:delta` / `coach:done` - the coach's commentary
    - `quota:warning` - less than 20% of the invitation's tokens remain
    - `quota:exhausted` - no tokens left; nothing is sent to the model
    - `error` - `PROVIDER_ERROR`, `ABORTED` or `RATE_LIMITED` (a turn is already running)

    **Rate Limiting:**
    Check the X-RateLimit-Remaining header for remaining requests.
    """,
    response_class=StreamingResponse,
)
async def send_message(
    session_id: int,
    body: SendMessageRequest,
    caller: Caller = Depends(require(Tier.PROTECTED)),
    service: ConversationService = Depends(get_conversation_service),
) -> StreamingResponse:
    is_valid, content, error = validate_message(body.content)
    if not is_valid:
        raise BadRequestError(error, field="content")

    service.get_owned_session(caller.user_id, session_id)

    rate_limiter = get_rate_limiter()
    allowed, remaining = rate_limiter.is_allowed(caller.user_id)
    if not allowed:
        raise RateLimitExceeded(retry_after=rate_limiter.retry_after(caller.user_id))

    logger.info(
        f"Processing turn: session={session_id}, "
        f"user={caller.user_id[:8]}..., length={len(content)}"
    )

    async def event_stream() -> AsyncIterator[str]:
        async for event in service.stream_turn(session_id, content):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-RateLimit-Limit": str(rate_limiter.limit),
            "X-RateLimit-Remaining": str(remaining),
        },
    )


@router.post("/{session_id}/cancel", response_model=CancelResponse, summary="Cancel the running turn")
async def cancel_turn(
    session_id: int,
    caller: Caller = Depends(require(Tier.PROTECTED)),
    service: ConversationService = Depends(get_conversation_service),
) -> CancelResponse:
    return CancelResponse(cancelled=service.cancel_turn(caller.user_id, session_id))


@router.get("/{session_id}/history", summary="Conversation history")
async def history(
    session_id: int,
    after_message_id: Optional[int] = None,
    caller: Caller = Depends(require(Tier.PROTECTED)),
    service: ConversationService = Depends(get_conversation_service),
) -> Dict[str, Any]:
    return service.history(caller.user_id, session_id, after_message_id)
