"""Repository functions for materials table.

A material row is written only by the ingestion worker that owns it.
Status transitions:

    processing -> completed   (complete_material)
    processing -> timeout     (mark_material_timeout)
    timeout    -> processing  (reset_material_for_retry)
    any        -> deleted     (delete_material)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import structlog

from livequiz.db.database import get_db, utc_now

logger = structlog.get_logger(__name__)

MaterialStatus = Literal["processing", "completed", "timeout"]


@dataclass
class MaterialRecord:
    """Material record from database."""

    material_id: str
    session_id: str
    filename: str
    mime_type: str
    status: MaterialStatus
    extracted_text: str | None
    error_message: str | None
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "material_id": self.material_id,
            "session_id": self.session_id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "status": self.status,
            "extracted_text": self.extracted_text,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def insert_material(
    material_id: str,
    session_id: str,
    filename: str,
    mime_type: str,
) -> MaterialRecord:
    """Insert a new material in status processing.

    Raises:
        sqlite3.IntegrityError: If material_id already exists
    """
    now = utc_now()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO materials (
                material_id, session_id, filename, mime_type,
                status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, 'processing', ?, ?)
            """,
            (material_id, session_id, filename, mime_type, now, now),
        )

    logger.debug("materials.inserted", material_id=material_id, session_id=session_id)

    return MaterialRecord(
        material_id=material_id,
        session_id=session_id,
        filename=filename,
        mime_type=mime_type,
        status="processing",
        extracted_text=None,
        error_message=None,
        created_at=now,
        updated_at=now,
    )


def get_material(material_id: str) -> MaterialRecord | None:
    """Get material by ID, or None if it does not exist (or was deleted)."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM materials WHERE material_id = ?", (material_id,)
        ).fetchone()

    if row is None:
        return None

    return _row_to_record(row)


def list_materials(session_id: str) -> list[MaterialRecord]:
    """All materials of a session in creation order."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM materials WHERE session_id = ? ORDER BY created_at, rowid",
            (session_id,),
        ).fetchall()

    return [_row_to_record(row) for row in rows]


def list_completed_materials(session_id: str) -> list[MaterialRecord]:
    """Completed materials of a session in creation order."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM materials
            WHERE session_id = ? AND status = 'completed'
            ORDER BY created_at, rowid
            """,
            (session_id,),
        ).fetchall()

    return [_row_to_record(row) for row in rows]


def update_material_text(material_id: str, text: str) -> bool:
    """Persist a partial text snapshot while the material is processing.

    Returns:
        True if the row was updated
    """
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE materials SET extracted_text = ?, updated_at = ?
            WHERE material_id = ? AND status = 'processing'
            """,
            (text, utc_now(), material_id),
        )

    return cursor.rowcount > 0


def complete_material(material_id: str, text: str) -> bool:
    """Store the full text and move the material to completed.

    Raises:
        ValueError: If text is empty (completed requires text)
    """
    if not text or not text.strip():
        raise ValueError("completed material requires non-empty text")

    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE materials
            SET status = 'completed', extracted_text = ?, error_message = NULL, updated_at = ?
            WHERE material_id = ? AND status = 'processing'
            """,
            (text, utc_now(), material_id),
        )

    updated = cursor.rowcount > 0
    if updated:
        logger.debug("materials.completed", material_id=material_id, chars=len(text))
    return updated


def mark_material_timeout(material_id: str, error_message: str) -> bool:
    """Move a processing material to timeout, keeping the row for retry.

    Raises:
        ValueError: If error_message is empty (timeout requires a message)
    """
    if not error_message or not error_message.strip():
        raise ValueError("timeout material requires an error message")

    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE materials SET status = 'timeout', error_message = ?, updated_at = ?
            WHERE material_id = ? AND status = 'processing'
            """,
            (error_message, utc_now(), material_id),
        )

    updated = cursor.rowcount > 0
    if updated:
        logger.debug("materials.timeout", material_id=material_id)
    return updated


def reset_material_for_retry(material_id: str) -> bool:
    """Move a timed-out material back to processing.

    Returns:
        True if reset, False if the material is missing or not in timeout
    """
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE materials
            SET status = 'processing', error_message = NULL, extracted_text = NULL, updated_at = ?
            WHERE material_id = ? AND status = 'timeout'
            """,
            (utc_now(), material_id),
        )

    return cursor.rowcount > 0


def delete_material(material_id: str) -> bool:
    """Delete material by ID.

    Returns:
        True if deleted, False if not found
    """
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM materials WHERE material_id = ?", (material_id,)
        )

    deleted = cursor.rowcount > 0
    if deleted:
        logger.debug("materials.deleted", material_id=material_id)

    return deleted


def _row_to_record(row: Any) -> MaterialRecord:
    """Convert database row to MaterialRecord."""
    return MaterialRecord(
        material_id=row["material_id"],
        session_id=row["session_id"],
        filename=row["filename"],
        mime_type=row["mime_type"],
        status=row["status"],
        extracted_text=row["extracted_text"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
