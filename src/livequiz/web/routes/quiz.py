"""Quiz generation and push endpoints."""

from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from livequiz.core.context_assembler import NO_CONTENT, assemble
from livequiz.core.errors import StateConflictError
from livequiz.core.quiz_generator import generate_quiz
from livequiz.db.quiz_repository import get_latest_pushed, insert_quiz_items, list_quiz_items
from livequiz.web.schemas import (
    GenerateRequest,
    GenerateResponse,
    LatestQuizResponse,
    PublicQuizResponse,
    PushRequest,
    PushResponse,
    QuizItemResponse,
    QuizListResponse,
)
from livequiz.web.services import Services, get_services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sessions/{session_id}/quiz", tags=["quiz"])


@router.post("/generate", response_model=GenerateResponse, status_code=status.HTTP_201_CREATED)
async def generate(
    session_id: str,
    request: GenerateRequest | None = None,
    services: Services = Depends(get_services),
) -> GenerateResponse:
    """Generate quiz items from the session's materials and transcript.

    Errors:
    - 400: the session has no usable content
    - 504: the generative service did not answer in time
    - 502: the service failed or returned an unusable response
    """
    gen_config = services.config.generation
    count = request.count if request and request.count is not None else gen_config.default_count

    context = assemble(session_id, max_chars=gen_config.max_context_chars)
    if context is NO_CONTENT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No completed materials or transcript for this session yet",
        )

    result = await generate_quiz(
        services.llm,
        context,
        count=count,
        timeout=gen_config.timeout,
        max_count=gen_config.max_count,
    )

    if not result.success:
        code = (
            status.HTTP_504_GATEWAY_TIMEOUT
            if result.error_kind == "timeout"
            else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=code, detail=result.message)

    records = insert_quiz_items(session_id, [item.to_dict() for item in result.items])

    return GenerateResponse(
        items=[QuizItemResponse.model_validate(r) for r in records],
        count=len(records),
        requested_count=result.requested_count,
        warnings=result.warnings,
        context_truncated=context.truncated,
        latency_ms=result.latency_ms,
    )


@router.get("", response_model=QuizListResponse)
async def list_quizzes(session_id: str) -> QuizListResponse:
    """List a session's quiz items, newest first."""
    records = list_quiz_items(session_id)
    return QuizListResponse(
        items=[QuizItemResponse.model_validate(r) for r in records],
        count=len(records),
    )


@router.post("/push", response_model=PushResponse)
async def push(
    session_id: str,
    request: PushRequest | None = None,
    services: Services = Depends(get_services),
) -> PushResponse:
    """Push a quiz item (random unpushed one unless quiz_id is given)."""
    explicit_id = request.quiz_id if request else None

    try:
        outcome = services.pusher.push_item(session_id, explicit_id)
    except StateConflictError as e:
        # includes NothingToPushError
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return PushResponse(
        quiz=PublicQuizResponse(**outcome.item.to_public_dict()),
        recipients=outcome.recipients,
    )


@router.get("/latest", response_model=LatestQuizResponse)
async def latest_quiz(
    session_id: str,
    services: Services = Depends(get_services),
) -> LatestQuizResponse:
    """Most recent push, for clients that connect just after it went out."""
    record = get_latest_pushed(session_id)
    if record is None or record.pushed_at is None:
        return LatestQuizResponse(quiz=None)

    window = timedelta(seconds=services.config.broadcast.latest_window_seconds)
    pushed_at = datetime.fromisoformat(record.pushed_at)
    if datetime.now(timezone.utc) - pushed_at > window:
        return LatestQuizResponse(quiz=None)

    return LatestQuizResponse(quiz=PublicQuizResponse(**record.to_public_dict()))
