"""Repository functions for sessions and transcripts tables.

Only the lecture lifecycle status and the live transcript are stored here;
everything else about a lecture is owned elsewhere.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

import structlog

from livequiz.db.database import get_db, utc_now

logger = structlog.get_logger(__name__)

SessionStatus = Literal["not_started", "in_progress", "paused", "ended"]
SESSION_STATUSES: tuple[str, ...] = ("not_started", "in_progress", "paused", "ended")


@dataclass
class SessionRecord:
    """Session lifecycle record from database."""

    session_id: str
    status: SessionStatus
    created_at: str
    updated_at: str


@dataclass
class TranscriptRecord:
    """Transcript fragment record from database."""

    transcript_id: str
    session_id: str
    text: str
    ts: str
    created_at: str


def set_session_status(session_id: str, status: SessionStatus) -> SessionRecord:
    """Create the session if needed and set its lifecycle status.

    Raises:
        ValueError: If status is not a known lifecycle state
    """
    if status not in SESSION_STATUSES:
        raise ValueError(f"Unknown session status: {status}")

    now = utc_now()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO sessions (session_id, status, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                status = excluded.status,
                updated_at = excluded.updated_at
            """,
            (session_id, status, now, now),
        )
        row = conn.execute(
            "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone()

    logger.debug("sessions.status_updated", session_id=session_id, status=status)
    return _row_to_session(row)


def get_session(session_id: str) -> SessionRecord | None:
    """Get session by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone()

    if row is None:
        return None

    return _row_to_session(row)


def add_transcript(session_id: str, text: str, ts: str | None = None) -> TranscriptRecord:
    """Append a transcript fragment."""
    now = utc_now()
    record = TranscriptRecord(
        transcript_id=str(uuid.uuid4()),
        session_id=session_id,
        text=text,
        ts=ts or now,
        created_at=now,
    )
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO transcripts (transcript_id, session_id, text, ts, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.transcript_id, session_id, text, record.ts, now),
        )

    return record


def list_transcripts(session_id: str) -> list[TranscriptRecord]:
    """Transcript fragments of a session in timestamp order."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM transcripts WHERE session_id = ? ORDER BY ts, rowid",
            (session_id,),
        ).fetchall()

    return [
        TranscriptRecord(
            transcript_id=row["transcript_id"],
            session_id=row["session_id"],
            text=row["text"],
            ts=row["ts"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


def _row_to_session(row: Any) -> SessionRecord:
    return SessionRecord(
        session_id=row["session_id"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
