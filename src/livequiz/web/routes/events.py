"""Audience event stream."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from livequiz.db.sessions_repository import get_session
from livequiz.web.routes.materials import SSE_HEADERS
from livequiz.web.services import Services, get_services

router = APIRouter(prefix="/api/sessions", tags=["events"])


@router.get("/{session_id}/events")
async def stream_events(
    session_id: str,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Stream pushed quizzes using Server-Sent Events.

    Each data event is {"type": "new_quiz", "quiz": {...}} with the audience
    view of the item. Idle connections get a keepalive comment; the stream
    closes when the session ends.
    """
    session = get_session(session_id)

    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )

    if session.status == "ended":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session '{session_id}' has ended",
        )

    subscription = services.channel.subscribe(session_id)

    return StreamingResponse(
        subscription.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
