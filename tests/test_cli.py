"""Tests for CLI commands."""

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from livequiz.cli.commands import app
from livequiz.config.app_config import clear_config_cache
from livequiz.db.materials_repository import complete_material, insert_material
from livequiz.db.quiz_repository import count_unpushed, insert_quiz_items, list_quiz_items
from livequiz.db.sessions_repository import add_transcript, set_session_status

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path, monkeypatch, isolated_db):
    """Config file whose db_path is the test database."""
    config_path = tmp_path / "cli.yaml"
    config_path.write_text(f"db_path: {isolated_db}\n", encoding="utf-8")
    monkeypatch.setenv("LIVEQUIZ_CONFIG", str(config_path))
    clear_config_cache()
    return isolated_db


class TestInitDb:
    def test_creates_database(self, tmp_path):
        target = tmp_path / "fresh" / "quiz.db"
        result = runner.invoke(app, ["init-db", "--db", str(target)])

        assert result.exit_code == 0, result.output
        assert target.exists()


class TestMaterials:
    def test_empty(self, cli_db):
        result = runner.invoke(app, ["materials", "s1"])
        assert result.exit_code == 0
        assert "No materials" in result.output

    def test_lists_materials(self, cli_db):
        insert_material("m1", "s1", "week1.pdf", "application/pdf")
        complete_material("m1", "Some text")

        result = runner.invoke(app, ["materials", "s1"])

        assert result.exit_code == 0, result.output
        assert "week1.pdf" in result.output
        assert "completed" in result.output


class TestGenerate:
    def test_no_content_fails(self, cli_db):
        result = runner.invoke(app, ["generate", "s1"])
        assert result.exit_code == 1
        assert "No completed materials" in result.output

    def test_generates_and_stores(self, cli_db, make_payload):
        add_transcript("s1", "Plants turn light into sugar.")
        mock_client = MagicMock()
        mock_client.config.provider = "openai"
        mock_client.config.model = "gpt-4o-mini"
        mock_client.complete.return_value = json.dumps(make_payload(2))

        with patch("livequiz.cli.commands.LLMClient", return_value=mock_client):
            result = runner.invoke(app, ["generate", "s1", "--count", "2"])

        assert result.exit_code == 0, result.output
        assert len(list_quiz_items("s1")) == 2

    def test_generation_failure_exits(self, cli_db):
        add_transcript("s1", "Plants turn light into sugar.")
        mock_client = MagicMock()
        mock_client.config.provider = "openai"
        mock_client.config.model = "gpt-4o-mini"
        mock_client.complete.return_value = "sorry"

        with patch("livequiz.cli.commands.LLMClient", return_value=mock_client):
            result = runner.invoke(app, ["generate", "s1"])

        assert result.exit_code == 1
        assert "parse" in result.output
        assert list_quiz_items("s1") == []


class TestPush:
    def test_push_reports_zero_recipients(self, cli_db):
        insert_quiz_items(
            "s1",
            [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_index": 0, "explanation": "a"}],
        )
        set_session_status("s1", "in_progress")

        result = runner.invoke(app, ["push", "s1", "--force"])

        assert result.exit_code == 0, result.output
        assert "bypasses" in result.output
        assert "recipients" in result.output
        assert count_unpushed("s1") == 0

    def test_push_declined_leaves_item_unpushed(self, cli_db):
        insert_quiz_items(
            "s1",
            [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_index": 0, "explanation": "a"}],
        )
        set_session_status("s1", "in_progress")

        result = runner.invoke(app, ["push", "s1"], input="n\n")

        assert result.exit_code == 1
        assert count_unpushed("s1") == 1

    def test_push_requires_live_session(self, cli_db):
        set_session_status("s1", "paused")
        result = runner.invoke(app, ["push", "s1", "--force"])
        assert result.exit_code == 1
