"""Repository functions for quiz_items table.

pushed_at is written once, through a compare-and-set in mark_quiz_pushed.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from livequiz.db.database import get_db, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class QuizItemRecord:
    """Quiz item record from database."""

    quiz_id: str
    session_id: str
    question: str
    options: list[str]
    correct_index: int
    explanation: str | None
    generated_at: str
    pushed_at: str | None

    @property
    def is_pushed(self) -> bool:
        """Whether the item has been delivered."""
        return self.pushed_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quiz_id": self.quiz_id,
            "session_id": self.session_id,
            "question": self.question,
            "options": self.options,
            "correct_index": self.correct_index,
            "explanation": self.explanation,
            "generated_at": self.generated_at,
            "pushed_at": self.pushed_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Audience-facing view: no correct index, no explanation."""
        return {
            "id": self.quiz_id,
            "session_id": self.session_id,
            "question": self.question,
            "options": self.options,
            "generated_at": self.generated_at,
            "pushed_at": self.pushed_at,
        }


def insert_quiz_items(session_id: str, items: list[dict[str, Any]]) -> list[QuizItemRecord]:
    """Insert generated quiz items in one transaction.

    Args:
        session_id: Owning session
        items: Dicts with question, options, correct_index, explanation

    Returns:
        The created records, in input order
    """
    now = utc_now()
    records = [
        QuizItemRecord(
            quiz_id=str(uuid.uuid4()),
            session_id=session_id,
            question=item["question"],
            options=list(item["options"]),
            correct_index=item["correct_index"],
            explanation=item.get("explanation"),
            generated_at=now,
            pushed_at=None,
        )
        for item in items
    ]

    with get_db() as conn:
        conn.executemany(
            """
            INSERT INTO quiz_items (
                quiz_id, session_id, question, options,
                correct_index, explanation, generated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    r.quiz_id,
                    r.session_id,
                    r.question,
                    json.dumps(r.options, ensure_ascii=False),
                    r.correct_index,
                    r.explanation,
                    r.generated_at,
                )
                for r in records
            ],
        )

    logger.debug("quiz_items.inserted", session_id=session_id, count=len(records))
    return records


def get_quiz_item(quiz_id: str) -> QuizItemRecord | None:
    """Get quiz item by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM quiz_items WHERE quiz_id = ?", (quiz_id,)
        ).fetchone()

    if row is None:
        return None

    return _row_to_record(row)


def list_quiz_items(session_id: str) -> list[QuizItemRecord]:
    """All quiz items of a session, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM quiz_items WHERE session_id = ?
            ORDER BY generated_at DESC, rowid DESC
            """,
            (session_id,),
        ).fetchall()

    return [_row_to_record(row) for row in rows]


def count_unpushed(session_id: str) -> int:
    """Number of items in the session that were never pushed."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM quiz_items WHERE session_id = ? AND pushed_at IS NULL",
            (session_id,),
        ).fetchone()

    return int(row[0])


def get_unpushed_at(session_id: str, offset: int) -> QuizItemRecord | None:
    """The unpushed item at a given position, in stable rowid order.

    Only one row is read, regardless of how many items are unpushed.
    """
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT * FROM quiz_items
            WHERE session_id = ? AND pushed_at IS NULL
            ORDER BY rowid
            LIMIT 1 OFFSET ?
            """,
            (session_id, offset),
        ).fetchone()

    if row is None:
        return None

    return _row_to_record(row)


def mark_quiz_pushed(quiz_id: str, pushed_at: str | None = None) -> str | None:
    """Set pushed_at if and only if it is still NULL.

    Returns:
        The pushed_at value written, or None if another caller got there first
        (or the item does not exist)
    """
    pushed_at = pushed_at or utc_now()
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE quiz_items SET pushed_at = ? WHERE quiz_id = ? AND pushed_at IS NULL",
            (pushed_at, quiz_id),
        )

    if cursor.rowcount == 0:
        return None

    logger.debug("quiz_items.pushed", quiz_id=quiz_id, pushed_at=pushed_at)
    return pushed_at


def get_latest_pushed(session_id: str) -> QuizItemRecord | None:
    """Most recently pushed item of a session."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT * FROM quiz_items
            WHERE session_id = ? AND pushed_at IS NOT NULL
            ORDER BY pushed_at DESC
            LIMIT 1
            """,
            (session_id,),
        ).fetchone()

    if row is None:
        return None

    return _row_to_record(row)


def _row_to_record(row: Any) -> QuizItemRecord:
    """Convert database row to QuizItemRecord."""
    return QuizItemRecord(
        quiz_id=row["quiz_id"],
        session_id=row["session_id"],
        question=row["question"],
        options=json.loads(row["options"]),
        correct_index=row["correct_index"],
        explanation=row["explanation"],
        generated_at=row["generated_at"],
        pushed_at=row["pushed_at"],
    )
