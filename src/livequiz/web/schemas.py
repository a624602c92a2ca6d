"""Pydantic schemas for the Web API.

Serialization models for sessions, transcripts, materials and quiz items.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SessionStatusLiteral = Literal["not_started", "in_progress", "paused", "ended"]
MaterialStatusLiteral = Literal["processing", "completed", "timeout"]


# =============================================================================
# SESSION SCHEMAS
# =============================================================================


class SessionStatusUpdate(BaseModel):
    """Request body for changing a session's lifecycle status."""

    status: SessionStatusLiteral


class SessionResponse(BaseModel):
    """Session lifecycle status plus live audience size."""

    session_id: str
    status: SessionStatusLiteral
    recipients: int = 0
    created_at: str
    updated_at: str


class TranscriptCreate(BaseModel):
    """Request body for appending a transcript fragment."""

    text: str = Field(..., min_length=1)
    ts: str | None = Field(default=None, description="ISO-8601 timestamp (defaults to now)")


class TranscriptResponse(BaseModel):
    """A stored transcript fragment."""

    transcript_id: str
    session_id: str
    text: str
    ts: str

    model_config = {"from_attributes": True}


# =============================================================================
# MATERIAL SCHEMAS
# =============================================================================


class MaterialResponse(BaseModel):
    """Material ingestion status and extracted text so far."""

    material_id: str
    session_id: str
    filename: str
    mime_type: str
    status: MaterialStatusLiteral
    extracted_text: str | None = None
    error_message: str | None = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class MaterialListResponse(BaseModel):
    """Response for list of materials."""

    materials: list[MaterialResponse]
    count: int


# =============================================================================
# QUIZ SCHEMAS
# =============================================================================


class QuizItemResponse(BaseModel):
    """Lecturer view of a quiz item, including the answer."""

    quiz_id: str
    session_id: str
    question: str
    options: list[str]
    correct_index: int
    explanation: str | None = None
    generated_at: str
    pushed_at: str | None = None

    model_config = {"from_attributes": True}


class PublicQuizResponse(BaseModel):
    """Audience view of a quiz item: no answer, no explanation."""

    id: str
    session_id: str
    question: str
    options: list[str]
    generated_at: str
    pushed_at: str | None = None


class QuizListResponse(BaseModel):
    """Response for list of quiz items."""

    items: list[QuizItemResponse]
    count: int


class GenerateRequest(BaseModel):
    """Request body for quiz generation."""

    count: int | None = Field(
        default=None,
        description="Number of items (clamped to the configured maximum)",
    )


class GenerateResponse(BaseModel):
    """Stored items from one generation request."""

    items: list[QuizItemResponse]
    count: int
    requested_count: int
    warnings: list[str] = Field(default_factory=list)
    context_truncated: bool = False
    latency_ms: int = 0


class PushRequest(BaseModel):
    """Request body for pushing a quiz item."""

    quiz_id: str | None = Field(default=None, description="Push this item instead of a random one")


class PushResponse(BaseModel):
    """Pushed item and how many live connections it was queued to."""

    quiz: PublicQuizResponse
    recipients: int


class LatestQuizResponse(BaseModel):
    """Most recent push within the catch-up window, if any."""

    quiz: PublicQuizResponse | None = None


# =============================================================================
# HEALTH SCHEMAS
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str
