from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

import myaide.cli
from myaide.cli import app
from myaide.runlog import RUN_LOG_DIR, RunLog, utc_timestamp, write_run_log

runner = CliRunner()

PAYLOAD = {
    "actions": [
        {
            "type": "modify_file",
            "path": "src/tiny_app/calculator.py",
            "patch": "@@ -4,2 +4,2 @@\n def add(left: int, right: int) -> int:\n-    return left + right\n+    return right + left\n",
        },
        {"type": "write_file", "path": "NOTES.md", "content": "Swapped operands.\n"},
    ],
    "notes": "Operand swap.",
}


def _payload_file(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "reply.txt"
    path.write_text(text, encoding="utf-8")
    return path


def test_apply_then_rollback_restores_workspace(tmp_path: Path, workspace: Path) -> None:
    calculator = workspace / "src" / "tiny_app" / "calculator.py"
    original = calculator.read_text(encoding="utf-8")
    reply = "Here are the edits:\n```json\n" + json.dumps(PAYLOAD) + "\n```"

    result = runner.invoke(app, ["apply", str(_payload_file(tmp_path, reply)), "--workspace", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Applied 2 of 2 action(s):" in result.output
    assert "return right + left" in calculator.read_text(encoding="utf-8")
    assert (workspace / "NOTES.md").exists()

    logs = sorted((workspace / RUN_LOG_DIR).glob("*.json"))
    assert len(logs) == 1

    undo = runner.invoke(app, ["rollback", str(logs[0]), "--workspace", str(workspace)])

    assert undo.exit_code == 0, undo.output
    assert "Rolled back changes: restored 1, removed 1" in undo.output
    assert calculator.read_text(encoding="utf-8") == original
    assert not (workspace / "NOTES.md").exists()


def test_apply_rolls_back_when_validation_fails(tmp_path: Path, workspace: Path) -> None:
    calculator = workspace / "src" / "tiny_app" / "calculator.py"
    original = calculator.read_text(encoding="utf-8")
    command = f'"{sys.executable}" -c "import sys; sys.exit(1)"'

    result = runner.invoke(
        app,
        [
            "apply",
            str(_payload_file(tmp_path, json.dumps(PAYLOAD))),
            "--workspace",
            str(workspace),
            "--validate",
            command,
        ],
    )

    assert result.exit_code == 1
    assert "Validation failed" in result.output
    assert "Rolled back changes: restored 1, removed 1" in result.output
    assert calculator.read_text(encoding="utf-8") == original


def test_apply_dry_run_touches_nothing(tmp_path: Path, workspace: Path) -> None:
    calculator = workspace / "src" / "tiny_app" / "calculator.py"
    original = calculator.read_text(encoding="utf-8")

    result = runner.invoke(
        app,
        ["apply", str(_payload_file(tmp_path, json.dumps(PAYLOAD))), "--workspace", str(workspace), "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    assert "skipped (dry-run)" in result.output
    assert calculator.read_text(encoding="utf-8") == original
    assert not (workspace / RUN_LOG_DIR).exists()


def test_apply_rejects_unparseable_payload(tmp_path: Path, workspace: Path) -> None:
    result = runner.invoke(
        app, ["apply", str(_payload_file(tmp_path, "no edits today")), "--workspace", str(workspace)]
    )

    assert result.exit_code == 1
    assert "Payload could not be parsed" in result.output


def test_rollback_with_empty_log(workspace: Path) -> None:
    path = write_run_log(workspace, RunLog(request="noop", started_at=utc_timestamp()))

    result = runner.invoke(app, ["rollback", str(path), "--workspace", str(workspace)])

    assert result.exit_code == 0
    assert "nothing to roll back" in result.output


def test_show_config_masks_secrets(workspace: Path) -> None:
    (workspace / "config.yaml").write_text("model:\n  api_key: sk-from-yaml\n", encoding="utf-8")

    result = runner.invoke(app, ["show-config", "--workspace", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "sk-from-yaml" not in result.output
    assert "positional_fallback: false" in result.output


def test_show_config_reports_invalid_configuration(workspace: Path) -> None:
    (workspace / "config.yaml").write_text("unknown_section: {}\n", encoding="utf-8")

    result = runner.invoke(app, ["show-config", "--workspace", str(workspace)])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_refresh_memory_writes_generated_project_memory(
    workspace: Path, scripted_client: type, monkeypatch: pytest.MonkeyPatch
) -> None:
    (workspace / "config.yaml").write_text("model:\n  api_key: sk-test\n", encoding="utf-8")
    reply = "```markdown\n# Tiny App\n\nA calculator package under src/tiny_app.\n```"
    monkeypatch.setattr(myaide.cli, "build_client", lambda settings: scripted_client({"project-memory": [reply]}))

    result = runner.invoke(app, ["refresh-memory", "--workspace", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "myAIDE.md regenerated (15 tokens used)." in result.output
    assert (workspace / "myAIDE.md").read_text(encoding="utf-8") == (
        "# Tiny App\n\nA calculator package under src/tiny_app.\n"
    )


def test_refresh_memory_requires_api_key(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = runner.invoke(app, ["refresh-memory", "--workspace", str(workspace)])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY is not set" in result.output
    assert not (workspace / "myAIDE.md").exists()
