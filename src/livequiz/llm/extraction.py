"""Text extraction service client.

The extraction service works in three steps:

1. upload(data, mime_type, display_name) -> RemoteFile
2. get_status(handle) -> RemoteFile, polled until the state leaves in_progress
3. extract_text(handle, mime_type) -> iterator of text chunks

ExtractionClient is the contract the ingestion worker consumes.
OpenAIExtractionClient implements it over the OpenAI-compatible Files API
and a streaming chat completion that reads the uploaded file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal, Protocol

import structlog

from livequiz.llm.client import LLMClient, LLMError, Message

logger = structlog.get_logger(__name__)

RemoteState = Literal["in_progress", "ready", "failed"]

EXTRACTION_PROMPT = """You will receive a file. Return its content as text, complete and accurate, optimized for reading.

1. Remove invalid or irrelevant information (page furniture, repeated headers, artifacts).
2. Reorganize content where needed for clarity and coherence.
3. Format for readability with paragraphs, lists or tables.
4. Remove redundancy and merge related points without losing important details.
5. Use the same language as the original content.

Return only the processed content, with no comments or metadata."""

# OpenAI file status -> remote state
_OPENAI_STATUS_MAP: dict[str, RemoteState] = {
    "uploaded": "in_progress",
    "processed": "ready",
    "error": "failed",
}


@dataclass
class RemoteFile:
    """A file held by the extraction service."""

    handle: str
    state: RemoteState
    error: str | None = None


class ExtractionClient(Protocol):
    """Contract of the external extraction service."""

    def upload(self, data: bytes, mime_type: str, display_name: str) -> RemoteFile: ...

    def get_status(self, handle: str) -> RemoteFile: ...

    def extract_text(self, handle: str, mime_type: str) -> Iterator[str]: ...


class ExtractionError(LLMError):
    """Error raised by the extraction service."""

    pass


class OpenAIExtractionClient:
    """Extraction over the OpenAI Files API and streaming chat completions.

    Text files are uploaded like any other file; the model reads the file
    content part and streams back the cleaned text.
    """

    def __init__(self, llm: LLMClient, purpose: str = "user_data"):
        self._llm = llm
        self._purpose = purpose

    def upload(self, data: bytes, mime_type: str, display_name: str) -> RemoteFile:
        try:
            uploaded = self._llm.openai.files.create(
                file=(display_name, data, mime_type),
                purpose=self._purpose,
            )
        except Exception as e:
            raise ExtractionError(f"File upload failed: {e}") from e

        if not uploaded.id:
            raise ExtractionError("File upload failed: no file id returned")

        logger.debug("extraction.uploaded", handle=uploaded.id, size=len(data))
        return self._to_remote_file(uploaded)

    def get_status(self, handle: str) -> RemoteFile:
        try:
            info = self._llm.openai.files.retrieve(handle)
        except Exception as e:
            raise ExtractionError(f"File status lookup failed: {e}") from e
        return self._to_remote_file(info)

    def extract_text(self, handle: str, mime_type: str) -> Iterator[str]:
        messages = [
            Message(
                role="user",
                content=[
                    {"type": "text", "text": EXTRACTION_PROMPT},
                    {"type": "file", "file": {"file_id": handle}},
                ],
            )
        ]
        yield from self._llm.chat_stream(messages, temperature=0.0)

    @staticmethod
    def _to_remote_file(info: object) -> RemoteFile:
        status = getattr(info, "status", None) or "processed"
        state = _OPENAI_STATUS_MAP.get(status, "in_progress")
        error = getattr(info, "status_details", None) if state == "failed" else None
        return RemoteFile(handle=getattr(info, "id"), state=state, error=error)
