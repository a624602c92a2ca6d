"""Shared fixtures.

Every test runs against its own SQLite file under tmp_path and with the
default configuration (no YAML file is read).
"""

import threading
from typing import Iterator

import pytest

from livequiz.config.app_config import IngestionConfig, clear_config_cache
from livequiz.db import database
from livequiz.db.database import init_db
from livequiz.llm.extraction import RemoteFile


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config loader at a file that does not exist."""
    monkeypatch.setenv("LIVEQUIZ_CONFIG", str(tmp_path / "missing.yaml"))
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture(autouse=True)
def isolated_db(tmp_path):
    """Fresh database per test."""
    db_path = tmp_path / "db" / "livequiz.db"
    init_db(db_path)
    yield db_path
    database._db_path = None


@pytest.fixture
def fast_ingestion_config() -> IngestionConfig:
    """Ingestion settings that make polling instant."""
    return IngestionConfig(
        poll_interval=0.0,
        max_poll_attempts=3,
        snapshot_chars=10,
        max_concurrent_jobs=2,
        max_pending_jobs=4,
        shutdown_timeout=1.0,
    )


class FakeExtractionClient:
    """In-memory extraction service.

    states: remote states returned by upload, then by each get_status call;
    the last one repeats forever.
    """

    def __init__(
        self,
        states: tuple[str, ...] = ("ready",),
        chunks: tuple[str, ...] = ("Photosynthesis converts light into chemical energy.",),
        upload_error: Exception | None = None,
        extract_error: Exception | None = None,
        failure_detail: str = "unsupported file",
    ):
        self.states = list(states)
        self.chunks = list(chunks)
        self.upload_error = upload_error
        self.extract_error = extract_error
        self.failure_detail = failure_detail
        self.uploads: list[tuple[bytes, str, str]] = []
        self.status_calls = 0
        self.upload_gate: threading.Event | None = None

    def _next_state(self) -> str:
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]

    def _remote(self, handle: str) -> RemoteFile:
        state = self._next_state()
        error = self.failure_detail if state == "failed" else None
        return RemoteFile(handle=handle, state=state, error=error)

    def upload(self, data: bytes, mime_type: str, display_name: str) -> RemoteFile:
        if self.upload_gate is not None:
            self.upload_gate.wait(timeout=5)
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append((data, mime_type, display_name))
        return self._remote(f"file-{len(self.uploads)}")

    def get_status(self, handle: str) -> RemoteFile:
        self.status_calls += 1
        return self._remote(handle)

    def extract_text(self, handle: str, mime_type: str) -> Iterator[str]:
        yield from self.chunks
        if self.extract_error is not None:
            raise self.extract_error


@pytest.fixture
def fake_extractor() -> FakeExtractionClient:
    return FakeExtractionClient()


def quiz_payload(count: int = 2, success: bool = True) -> dict:
    """A valid generative service response with count items."""
    items = [
        {
            "question": f"Question {i}: what does chlorophyll absorb?",
            "options": ["Light", "Water", "Oxygen", "Nitrogen"],
            "answer": i % 4,
            "explanation": "Chlorophyll absorbs light for photosynthesis.",
        }
        for i in range(count)
    ]
    return {"success": success, "total": len(items), "items": items}


@pytest.fixture
def make_extractor():
    """Factory for configured fake extraction clients."""
    return FakeExtractionClient


@pytest.fixture
def make_payload():
    """Factory for generative service responses."""
    return quiz_payload
