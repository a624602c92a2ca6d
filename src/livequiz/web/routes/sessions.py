"""Session lifecycle and transcript endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from livequiz.db.sessions_repository import (
    add_transcript,
    get_session,
    set_session_status,
)
from livequiz.web.schemas import (
    SessionResponse,
    SessionStatusUpdate,
    TranscriptCreate,
    TranscriptResponse,
)
from livequiz.web.services import Services, get_services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.put("/{session_id}/status", response_model=SessionResponse)
async def update_status(
    session_id: str,
    request: SessionStatusUpdate,
    services: Services = Depends(get_services),
) -> SessionResponse:
    """Set a session's lifecycle status.

    Ending a session closes every live audience connection.
    """
    record = set_session_status(session_id, request.status)

    if record.status == "ended":
        closed = services.channel.close_session(session_id)
        logger.info("session_ended", session_id=session_id, connections_closed=closed)

    return SessionResponse(
        session_id=record.session_id,
        status=record.status,
        recipients=services.channel.recipient_count(session_id),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.get("/{session_id}", response_model=SessionResponse)
async def read_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> SessionResponse:
    """Get session status and live audience size."""
    record = get_session(session_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )

    return SessionResponse(
        session_id=record.session_id,
        status=record.status,
        recipients=services.pusher.recipient_count(session_id),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post(
    "/{session_id}/transcripts",
    response_model=TranscriptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def append_transcript(session_id: str, request: TranscriptCreate) -> TranscriptResponse:
    """Append a live transcript fragment."""
    record = add_transcript(session_id, request.text, request.ts)
    return TranscriptResponse.model_validate(record)
