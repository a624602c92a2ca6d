"""Context assembly for quiz generation.

Builds the text blob the generator works from: completed materials in
upload order, then transcript fragments in timestamp order. Read-only.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from livequiz.db.materials_repository import list_completed_materials
from livequiz.db.sessions_repository import list_transcripts

logger = structlog.get_logger(__name__)

MATERIALS_HEADER = "=== Course materials ==="
TRANSCRIPT_HEADER = "=== Lecture transcript ==="
TRUNCATION_MARKER = "\n[... content truncated ...]"


@dataclass
class AssembledContext:
    """Text assembled for one generation request."""

    session_id: str
    text: str
    material_count: int
    transcript_count: int
    truncated: bool = False

    @property
    def char_count(self) -> int:
        return len(self.text)


class _NoContent:
    """Sentinel: the session has no usable text."""

    _instance: _NoContent | None = None

    def __new__(cls) -> _NoContent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_CONTENT"

    def __bool__(self) -> bool:
        return False


NO_CONTENT = _NoContent()


def assemble(session_id: str, max_chars: int | None = None) -> AssembledContext | _NoContent:
    """Assemble generation context for a session.

    Args:
        session_id: Session to read from
        max_chars: Upper bound on the returned text (None for no bound)

    Returns:
        AssembledContext, or NO_CONTENT if neither materials nor
        transcripts hold any non-empty text
    """
    sections: list[str] = []

    materials = [
        m for m in list_completed_materials(session_id)
        if m.extracted_text and m.extracted_text.strip()
    ]
    if materials:
        parts = [MATERIALS_HEADER]
        for material in materials:
            parts.append(f"--- {material.filename} ---\n{material.extracted_text.strip()}")
        sections.append("\n\n".join(parts))

    transcripts = [t for t in list_transcripts(session_id) if t.text.strip()]
    if transcripts:
        lines = [TRANSCRIPT_HEADER]
        lines.extend(t.text.strip() for t in transcripts)
        sections.append("\n".join(lines))

    if not sections:
        logger.info("context.no_content", session_id=session_id)
        return NO_CONTENT

    text = "\n\n".join(sections)
    truncated = False
    if max_chars is not None and len(text) > max_chars:
        if max_chars > len(TRUNCATION_MARKER):
            text = text[: max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        else:
            text = text[:max_chars]
        truncated = True
        logger.warning(
            "context.truncated",
            session_id=session_id,
            max_chars=max_chars,
        )

    logger.debug(
        "context.assembled",
        session_id=session_id,
        materials=len(materials),
        transcripts=len(transcripts),
        chars=len(text),
    )

    return AssembledContext(
        session_id=session_id,
        text=text,
        material_count=len(materials),
        transcript_count=len(transcripts),
        truncated=truncated,
    )
