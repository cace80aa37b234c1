"""
Chat API Endpoint.

Carries caller messages to the turn orchestrator, plus session inspection
and reset for operators.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel, Field

from dental_desk.core.scheduling.engine import get_turn_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    conversation_id: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Conversation key, usually the caller's phone number",
        examples=["+15551234567"],
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Caller's message",
        examples=["Hi, I'd like to book a cleaning next Tuesday at 2pm"],
    )
    contact_id: Optional[str] = Field(
        default=None,
        description="Contact used to look up existing appointments (defaults to conversation_id)",
    )


class ChatResponse(BaseModel):
    """Chat response."""

    conversation_id: str
    reply: str = Field(..., description="Message to send back to the caller")
    state: str = Field(..., description="Booking state after the turn")
    outcome: str = Field(..., description="What the turn did, e.g. offered, committed, declined")
    intents: list[str] = Field(default_factory=list)
    processing_time_ms: Optional[float] = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Process one caller message and return the receptionist's reply.",
    responses={
        200: {"description": "Reply produced (including apology replies)"},
        422: {"model": ErrorResponse, "description": "Invalid request"},
    },
)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Process a chat message.

    The orchestrator never raises: calendar or model failures come back
    as an apology reply with a 200.
    """
    result = await get_turn_orchestrator().process(
        conversation_id=request.conversation_id,
        text=request.message,
        contact_id=request.contact_id,
    )

    return ChatResponse(
        conversation_id=result.conversation_id,
        reply=result.message,
        state=result.state.value,
        outcome=result.outcome,
        intents=result.intents,
        processing_time_ms=result.processing_time_ms,
    )


@router.get(
    "/session/{conversation_id}",
    response_model=dict,
    summary="Get session data",
    description="Inspect the current state of a conversation session.",
    responses={
        200: {"description": "Session data"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(conversation_id: str) -> dict:
    """Get session information without refreshing its idle timer."""
    session = get_turn_orchestrator().sessions.peek(conversation_id)

    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    return session.to_dict()


@router.delete(
    "/session/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a session",
    description="Forget a conversation immediately.",
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def end_session(conversation_id: str) -> Response:
    """End a session."""
    if not get_turn_orchestrator().sessions.end(conversation_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    logger.info(f"Session {conversation_id} ended via API")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
