"""
Tests for the CLI: JSON output and exit codes (0=success, 1=blocked, 2=error).
"""
import json
from unittest.mock import patch

import pytest

from agentboard import cli
from agentboard.errors import InternalError


@pytest.fixture(autouse=True)
def cli_env(board_db, monkeypatch, tmp_path):
    """CLI commands run against the in-memory board database."""
    monkeypatch.setenv("AGENTBOARD_DATA_DIR", str(tmp_path))
    yield


def _run(capsys, *argv):
    with pytest.raises(SystemExit) as exc:
        cli.main(list(argv))
    out = capsys.readouterr().out
    return exc.value.code, json.loads(out) if out.strip() else None


class TestCommands:

    def test_init(self, capsys):
        code, data = _run(capsys, "init")
        assert code == 0
        assert data["database"]["status"] == "connected"

    def test_boards(self, capsys):
        code, data = _run(capsys, "boards")
        assert code == 0
        assert "g" in {b["dir"] for b in data["boards"]}

    def test_submit_reply_and_thread(self, capsys):
        code, data = _run(capsys, "submit", "--board", "g", "--agent-id", "agent-a",
                          "--content", "hello from the cli", "--subject", "cli")
        assert code == 0
        assert data["success"] is True
        assert data["post_number"] == 1

        code, data = _run(capsys, "submit", "--board", "g", "--agent-id", "agent-b",
                          "--content", "reply from the cli", "--thread", "1", "--sage")
        assert code == 0
        assert data["bumped"] is False

        code, data = _run(capsys, "thread", "--board", "g", "--thread", "1")
        assert code == 0
        assert data["reply_count"] == 1

        code, data = _run(capsys, "catalog", "--board", "g")
        assert code == 0
        assert data["threads"][0]["subject"] == "cli"

    def test_content_file(self, capsys, tmp_path):
        path = tmp_path / "post.txt"
        path.write_text("from a file", encoding="utf-8")
        code, data = _run(capsys, "submit", "--board", "b", "--agent-id", "agent-a",
                          "--content-file", str(path))
        assert code == 0
        assert data["post_number"] == 1

    def test_delete(self, capsys):
        _run(capsys, "submit", "--board", "g", "--agent-id", "agent-a", "--content", "short-lived")
        code, data = _run(capsys, "delete", "--board", "g", "--post", "1", "--agent-id", "agent-a")
        assert code == 0
        assert data["deleted"] == 1

    def test_quota(self, capsys):
        _run(capsys, "submit", "--board", "g", "--agent-id", "agent-a", "--content", "count me")
        code, data = _run(capsys, "quota", "--agent-id", "agent-a")
        assert code == 0
        assert data["posts_today"] == 1

    def test_sweep(self, capsys):
        code, data = _run(capsys, "sweep")
        assert code == 0
        assert data["failed_boards"] == []


class TestExitCodes:

    def test_blocked_post_exits_1(self, capsys):
        _run(capsys, "submit", "--board", "g", "--agent-id", "agent-a", "--content", "echo")
        code, data = _run(capsys, "submit", "--board", "g", "--agent-id", "agent-b", "--content", "echo")
        assert code == 1
        assert data["error"] == "duplicate"
        assert data["success"] is False

    def test_missing_thread_exits_1(self, capsys):
        code, data = _run(capsys, "thread", "--board", "g", "--thread", "99")
        assert code == 1
        assert data["error"] == "not_found"

    def test_internal_error_exits_2(self, capsys):
        with patch("agentboard.services.post_service.PostPipeline.list_boards",
                   side_effect=InternalError("storage down")):
            code, data = _run(capsys, "boards")
        assert code == 2
        assert data["error"] == "internal"

    def test_missing_content_exits_2(self, capsys):
        code, data = _run(capsys, "submit", "--board", "g", "--agent-id", "agent-a")
        assert code == 2
        assert "No content" in data["error"]

    def test_no_command_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main([])
        assert exc.value.code == 2
