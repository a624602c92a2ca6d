"""Tests for the generative and extraction service clients."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from livequiz.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    Message,
)
from livequiz.llm.extraction import EXTRACTION_PROMPT, ExtractionError, OpenAIExtractionClient


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model="gpt-4o-mini",
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20, total_tokens=30),
    )


def _chunk(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


@pytest.fixture
def openai_mock() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(openai_mock) -> LLMClient:
    return LLMClient(LLMConfig(provider="openai"), openai_client=openai_mock)


class TestLLMConfig:
    def test_from_provider_defaults(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = LLMConfig.from_provider("openai")

        assert config.model == "gpt-4o-mini"
        assert config.base_url is None
        assert config.api_key == "sk-test"

    def test_from_provider_model_override(self):
        config = LLMConfig.from_provider("lmstudio", model="qwen2.5")
        assert config.base_url == "http://localhost:1234/v1"
        assert config.model == "qwen2.5"

    def test_unknown_provider(self):
        config = LLMConfig.from_provider("nowhere")
        assert config.provider == "nowhere"
        assert config.base_url is None


class TestLLMClient:
    def test_complete_sends_system_and_user(self, client, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion('{"ok": true}')

        assert client.complete("be strict", "write questions") == '{"ok": true}'

        kwargs = openai_mock.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "be strict"},
            {"role": "user", "content": "write questions"},
        ]
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_json_mode_skipped_for_lmstudio(self, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion("{}")
        client = LLMClient(LLMConfig(provider="lmstudio"), openai_client=openai_mock)

        client.complete("s", "p")

        assert "response_format" not in openai_mock.chat.completions.create.call_args.kwargs

    def test_chat_usage(self, client, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion("hi")
        response = client.chat([Message(role="user", content="hello")])
        assert response.content == "hi"
        assert response.total_tokens == 30

    def test_empty_choices(self, client, openai_mock):
        openai_mock.chat.completions.create.return_value = SimpleNamespace(
            choices=[], model="m", usage=None
        )
        with pytest.raises(LLMResponseError):
            client.chat([Message(role="user", content="hello")])

    def test_connection_error_wrapped(self, client, openai_mock):
        openai_mock.chat.completions.create.side_effect = RuntimeError("Connection refused")
        with pytest.raises(LLMConnectionError):
            client.complete("s", "p")

    def test_other_error_wrapped(self, client, openai_mock):
        openai_mock.chat.completions.create.side_effect = RuntimeError("rate limited")
        with pytest.raises(LLMError):
            client.complete("s", "p")

    def test_chat_stream_skips_empty_deltas(self, client, openai_mock):
        openai_mock.chat.completions.create.return_value = iter(
            [_chunk("Hel"), _chunk(None), _chunk("lo")]
        )
        chunks = list(client.chat_stream([Message(role="user", content="x")]))
        assert chunks == ["Hel", "lo"]
        assert openai_mock.chat.completions.create.call_args.kwargs["stream"] is True


class TestOpenAIExtractionClient:
    def test_upload_maps_status(self, client, openai_mock):
        openai_mock.files.create.return_value = SimpleNamespace(id="file-1", status="uploaded")
        extractor = OpenAIExtractionClient(client)

        remote = extractor.upload(b"data", "application/pdf", "notes.pdf")

        assert remote.handle == "file-1"
        assert remote.state == "in_progress"
        assert openai_mock.files.create.call_args.kwargs["file"] == (
            "notes.pdf", b"data", "application/pdf"
        )

    def test_status_failed_carries_detail(self, client, openai_mock):
        openai_mock.files.retrieve.return_value = SimpleNamespace(
            id="file-1", status="error", status_details="corrupt pdf"
        )
        remote = OpenAIExtractionClient(client).get_status("file-1")
        assert remote.state == "failed"
        assert remote.error == "corrupt pdf"

    def test_status_processed_is_ready(self, client, openai_mock):
        openai_mock.files.retrieve.return_value = SimpleNamespace(id="file-1", status="processed")
        assert OpenAIExtractionClient(client).get_status("file-1").state == "ready"

    def test_upload_error(self, client, openai_mock):
        openai_mock.files.create.side_effect = RuntimeError("413 too large")
        with pytest.raises(ExtractionError):
            OpenAIExtractionClient(client).upload(b"data", "application/pdf", "big.pdf")

    def test_extract_text_streams_file_part(self, client, openai_mock):
        openai_mock.chat.completions.create.return_value = iter([_chunk("Page "), _chunk("one")])

        text = "".join(OpenAIExtractionClient(client).extract_text("file-1", "application/pdf"))

        assert text == "Page one"
        message = openai_mock.chat.completions.create.call_args.kwargs["messages"][0]
        assert message["content"][0] == {"type": "text", "text": EXTRACTION_PROMPT}
        assert message["content"][1] == {"type": "file", "file": {"file_id": "file-1"}}
