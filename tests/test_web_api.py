"""Tests for the Web API routes."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from livequiz.config.app_config import AppConfig
from livequiz.db.quiz_repository import insert_quiz_items
from livequiz.web.api import create_app
from livequiz.web.services import Services


@pytest.fixture
def llm() -> MagicMock:
    return MagicMock()


@pytest.fixture
def services(llm, fake_extractor, fast_ingestion_config) -> Services:
    config = AppConfig(ingestion=fast_ingestion_config)
    return Services.build(config, llm=llm, extractor=fake_extractor)


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def _upload(client, session_id: str = "s1", content: bytes = b"lecture notes"):
    return client.post(
        f"/api/sessions/{session_id}/materials",
        files={"file": ("notes.txt", content, "text/plain")},
    )


def _wait_for(client, material_id: str, expected: str | None) -> dict | None:
    """Poll a material until it reaches expected status (None: deleted)."""
    for _ in range(300):
        response = client.get(f"/api/materials/{material_id}")
        if expected is None and response.status_code == 404:
            return None
        if response.status_code == 200 and response.json()["status"] == expected:
            return response.json()
        time.sleep(0.01)
    pytest.fail(f"material {material_id} never reached {expected}")


def _seed_quiz(session_id: str = "s1", n: int = 2) -> list:
    return insert_quiz_items(
        session_id,
        [
            {
                "question": f"Q{i}?",
                "options": ["a", "b", "c", "d"],
                "correct_index": 1,
                "explanation": "b is right",
            }
            for i in range(n)
        ],
    )


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert "T" in data["timestamp"]


class TestSessionEndpoints:
    """Tests for session status and transcripts."""

    def test_status_then_read(self, client):
        response = client.put("/api/sessions/s1/status", json={"status": "in_progress"})
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

        data = client.get("/api/sessions/s1").json()
        assert data["status"] == "in_progress"
        assert data["recipients"] == 0

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404

    def test_invalid_status(self, client):
        response = client.put("/api/sessions/s1/status", json={"status": "failed"})
        assert response.status_code == 422

    def test_ending_session_closes_connections(self, client, services):
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})
        subscription = services.channel.subscribe("s1")

        client.put("/api/sessions/s1/status", json={"status": "ended"})

        assert subscription.closed
        assert services.channel.recipient_count("s1") == 0

    def test_append_transcript(self, client):
        response = client.post("/api/sessions/s1/transcripts", json={"text": "Hello class"})
        assert response.status_code == 201
        assert response.json()["text"] == "Hello class"

    def test_empty_transcript_rejected(self, client):
        response = client.post("/api/sessions/s1/transcripts", json={"text": ""})
        assert response.status_code == 422


class TestMaterialEndpoints:
    """Tests for upload, status, retry and progress stream."""

    def test_upload_accepted_then_completed(self, client):
        response = _upload(client)
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "processing"
        assert data["filename"] == "notes.txt"

        done = _wait_for(client, data["material_id"], "completed")
        assert done["extracted_text"]

        listing = client.get("/api/sessions/s1/materials").json()
        assert listing["count"] == 1

    def test_failed_ingestion_disappears(self, client, fake_extractor):
        fake_extractor.states = ["failed"]
        material_id = _upload(client).json()["material_id"]

        assert _wait_for(client, material_id, None) is None
        assert client.get("/api/sessions/s1/materials").json()["count"] == 0

    def test_timeout_then_retry(self, client, fake_extractor):
        fake_extractor.states = ["in_progress"]
        material_id = _upload(client).json()["material_id"]

        timed_out = _wait_for(client, material_id, "timeout")
        assert timed_out["error_message"] == "Processing timed out, please retry"

        fake_extractor.states = ["ready"]
        response = client.post(
            f"/api/materials/{material_id}/retry",
            files={"file": ("notes.txt", b"lecture notes", "text/plain")},
        )
        assert response.status_code == 202
        _wait_for(client, material_id, "completed")

    def test_retry_completed_material_conflicts(self, client):
        material_id = _upload(client).json()["material_id"]
        _wait_for(client, material_id, "completed")

        response = client.post(
            f"/api/materials/{material_id}/retry",
            files={"file": ("notes.txt", b"again", "text/plain")},
        )
        assert response.status_code == 409

    def test_retry_unknown_material(self, client):
        response = client.post(
            "/api/materials/nope/retry",
            files={"file": ("notes.txt", b"again", "text/plain")},
        )
        assert response.status_code == 404

    def test_empty_upload_rejected(self, client):
        assert _upload(client, content=b"").status_code == 400

    def test_saturated_pool_returns_503(self, client, fake_extractor, fast_ingestion_config):
        fake_extractor.upload_gate = threading.Event()
        try:
            for _ in range(fast_ingestion_config.max_pending_jobs):
                assert _upload(client).status_code == 202
            assert _upload(client).status_code == 503
        finally:
            fake_extractor.upload_gate.set()

    def test_progress_stream_for_completed_material(self, client):
        material_id = _upload(client).json()["material_id"]
        _wait_for(client, material_id, "completed")

        response = client.get(f"/api/materials/{material_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [line for line in response.text.splitlines() if line.startswith("data: ")]
        payload = json.loads(events[-1][len("data: "):])
        assert payload["status"] == "completed"
        assert payload["text"]

    def test_progress_stream_unknown_material(self, client):
        assert client.get("/api/materials/nope/events").status_code == 404


class TestQuizEndpoints:
    """Tests for generation, listing, push and latest."""

    def test_generate_without_content(self, client, llm):
        response = client.post("/api/sessions/s1/quiz/generate", json={"count": 3})
        assert response.status_code == 400
        llm.complete.assert_not_called()

    def test_generate_persists_items(self, client, llm, make_payload):
        client.post("/api/sessions/s1/transcripts", json={"text": "Plants need light."})
        llm.complete.return_value = json.dumps(make_payload(2))

        response = client.post("/api/sessions/s1/quiz/generate", json={"count": 2})

        assert response.status_code == 201
        data = response.json()
        assert data["count"] == 2
        assert data["items"][0]["options"] == ["Light", "Water", "Oxygen", "Nitrogen"]

        listing = client.get("/api/sessions/s1/quiz").json()
        assert listing["count"] == 2
        assert all(item["pushed_at"] is None for item in listing["items"])

    def test_generate_clamps_count(self, client, llm, make_payload):
        client.post("/api/sessions/s1/transcripts", json={"text": "Plants need light."})
        llm.complete.return_value = json.dumps(make_payload(50))

        data = client.post("/api/sessions/s1/quiz/generate", json={"count": 1000}).json()

        assert data["requested_count"] == 50
        assert data["count"] == 50

    def test_generate_bad_response_is_502(self, client, llm):
        client.post("/api/sessions/s1/transcripts", json={"text": "Plants need light."})
        llm.complete.return_value = "not json"

        response = client.post("/api/sessions/s1/quiz/generate", json={"count": 2})

        assert response.status_code == 502
        assert client.get("/api/sessions/s1/quiz").json()["count"] == 0

    def test_generate_timeout_is_504(self, client, llm, services, make_payload):
        client.post("/api/sessions/s1/transcripts", json={"text": "Plants need light."})
        services.config.generation.timeout = 0.05

        def slow(system_instruction, prompt):
            time.sleep(0.3)
            return json.dumps(make_payload(1))

        llm.complete.side_effect = slow

        response = client.post("/api/sessions/s1/quiz/generate", json={"count": 1})
        assert response.status_code == 504

    def test_push_hides_answer(self, client):
        _seed_quiz()
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})

        response = client.post("/api/sessions/s1/quiz/push")

        assert response.status_code == 200
        data = response.json()
        assert data["recipients"] == 0
        assert "correct_index" not in data["quiz"]
        assert "explanation" not in data["quiz"]
        assert data["quiz"]["pushed_at"]

    def test_push_explicit_item(self, client):
        records = _seed_quiz()
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})

        response = client.post("/api/sessions/s1/quiz/push", json={"quiz_id": records[1].quiz_id})
        assert response.json()["quiz"]["id"] == records[1].quiz_id

        again = client.post("/api/sessions/s1/quiz/push", json={"quiz_id": records[1].quiz_id})
        assert again.status_code == 409

    def test_push_requires_live_session(self, client):
        _seed_quiz()
        client.put("/api/sessions/s1/status", json={"status": "paused"})
        assert client.post("/api/sessions/s1/quiz/push").status_code == 409

    def test_push_when_exhausted(self, client):
        _seed_quiz(n=1)
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})
        assert client.post("/api/sessions/s1/quiz/push").status_code == 200
        assert client.post("/api/sessions/s1/quiz/push").status_code == 409

    def test_latest_within_window(self, client):
        assert client.get("/api/sessions/s1/quiz/latest").json()["quiz"] is None

        _seed_quiz()
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})
        pushed = client.post("/api/sessions/s1/quiz/push").json()["quiz"]

        latest = client.get("/api/sessions/s1/quiz/latest").json()["quiz"]
        assert latest["id"] == pushed["id"]
        assert "correct_index" not in latest

    def test_latest_outside_window(self, client, services):
        _seed_quiz()
        client.put("/api/sessions/s1/status", json={"status": "in_progress"})
        client.post("/api/sessions/s1/quiz/push")
        services.config.broadcast.latest_window_seconds = 0

        assert client.get("/api/sessions/s1/quiz/latest").json()["quiz"] is None


class TestAudienceEvents:
    """Tests for the audience stream preconditions."""

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/nope/events").status_code == 404

    def test_ended_session(self, client):
        client.put("/api/sessions/s1/status", json={"status": "ended"})
        assert client.get("/api/sessions/s1/events").status_code == 409
