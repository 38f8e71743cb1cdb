from __future__ import annotations

import os
from pathlib import Path

from myaide.project_memory import MYAIDE_FILENAME, PROJECT_MEMORY_AGENT, MyAideManager, looks_generic
from myaide.tools.workspace import FileSystemTool

DESCRIPTION = (
    "# Tiny App\n\n"
    "## Project Overview\nA small calculator package used to exercise the assistant.\n\n"
    "## Code Organization\n- src/tiny_app/calculator.py holds arithmetic helpers.\n\n"
    "## Development Workflow\nRun pytest from the repository root.\n\n"
    "## Entry Points\nStart reading at src/tiny_app/__init__.py.\n"
)


def _write(path: Path, content: str, mtime: float) -> None:
    path.write_text(content, encoding="utf-8")
    os.utime(path, (mtime, mtime))


def test_looks_generic_flags_thin_content() -> None:
    assert looks_generic("")
    assert looks_generic("# Short\n")
    assert looks_generic("x" * 300)
    assert looks_generic("# Project\n" + "No significant files found. " * 10)
    assert not looks_generic(DESCRIPTION)


def test_missing_file_without_client_is_reported(workspace: Path) -> None:
    outcome = MyAideManager(workspace).ensure()

    assert outcome.content is None
    assert not outcome.generated
    assert outcome.messages == ["myAIDE.md not found; a model client is needed to create it."]
    assert not (workspace / MYAIDE_FILENAME).exists()


def test_missing_file_is_generated_from_workspace_scan(workspace: Path, scripted_client: type) -> None:
    client = scripted_client({PROJECT_MEMORY_AGENT: ["```markdown\n" + DESCRIPTION + "```"]})

    outcome = MyAideManager(workspace, client=client).ensure()

    assert outcome.generated
    assert outcome.content == DESCRIPTION.strip()
    assert (workspace / MYAIDE_FILENAME).read_text(encoding="utf-8") == DESCRIPTION
    assert outcome.messages[-1] == "myAIDE.md created (15 tokens used)."
    prompt = client.prompts_for(PROJECT_MEMORY_AGENT)[0]
    assert "src/" in prompt and "calculator.py" in prompt
    assert "### pyproject.toml" in prompt


def test_existing_file_is_read_without_model_call(workspace: Path, scripted_client: type) -> None:
    _write(workspace / "pyproject.toml", '[project]\nname = "tiny-app"\n', 1_000_000)
    _write(workspace / MYAIDE_FILENAME, DESCRIPTION, 2_000_000)
    client = scripted_client()

    outcome = MyAideManager(workspace, client=client).ensure()

    assert outcome.content == DESCRIPTION
    assert not outcome.generated and not outcome.needs_update
    assert outcome.messages == ["myAIDE.md is up to date."]
    assert client.calls == []


def test_newer_manifest_flags_update(workspace: Path) -> None:
    _write(workspace / MYAIDE_FILENAME, DESCRIPTION, 1_000_000)
    _write(workspace / "pyproject.toml", '[project]\nname = "tiny-app"\n', 2_000_000)
    manager = MyAideManager(workspace)

    outcome = manager.ensure()

    assert outcome.needs_update
    assert outcome.content == DESCRIPTION
    assert "refresh-memory" in outcome.messages[0]
    assert manager.has_changed(500_000)
    assert not manager.has_changed(1_500_000)


def test_generic_file_is_regenerated(workspace: Path, scripted_client: type) -> None:
    (workspace / MYAIDE_FILENAME).write_text("empty workspace\n", encoding="utf-8")
    client = scripted_client({PROJECT_MEMORY_AGENT: [DESCRIPTION]})

    outcome = MyAideManager(workspace, client=client).ensure()

    assert outcome.generated
    assert outcome.messages[0] == "myAIDE.md appears empty or generic. Regenerating..."
    assert (workspace / MYAIDE_FILENAME).read_text(encoding="utf-8") == DESCRIPTION


def test_dry_run_keeps_generated_content_in_memory_only(workspace: Path, scripted_client: type) -> None:
    client = scripted_client({PROJECT_MEMORY_AGENT: [DESCRIPTION]})
    manager = MyAideManager(workspace, client=client, filesystem=FileSystemTool(workspace, dry_run=True))

    outcome = manager.ensure()

    assert outcome.content == DESCRIPTION.strip()
    assert not (workspace / MYAIDE_FILENAME).exists()


def test_empty_model_reply_is_reported_not_raised(workspace: Path, scripted_client: type) -> None:
    client = scripted_client({PROJECT_MEMORY_AGENT: ["```\n```"]})

    outcome = MyAideManager(workspace, client=client).ensure()

    assert outcome.content is None and not outcome.generated
    assert outcome.messages[-1].startswith("myAIDE.md handling error: Model returned empty project memory.")
