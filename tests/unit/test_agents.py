from __future__ import annotations

import sys
from pathlib import Path

import pytest

from myaide.agents.analyzer import AnalyzerAgent
from myaide.agents.base import Agent, AgentContext, AgentResult, AgentStatus, MissingToolError
from myaide.agents.optimizer import changed_line_count
from myaide.agents.planner import DEFAULT_PLAN_STEP, PlannerAgent, parse_plan
from myaide.agents.reporter import ReporterAgent, render_report
from myaide.agents.test_generator import TestGeneratorAgent
from myaide.agents.validator import ValidatorAgent
from myaide.config import load_settings
from myaide.structured import ImplementationPayload, WriteFileAction
from myaide.tools.shell import ShellTool
from myaide.tools.workspace import FileSystemTool, Mutation


def _context(root: Path, **kwargs: object) -> AgentContext:
    settings = load_settings(root, env={})
    return AgentContext(request="Add a subtract function", workspace=root, settings=settings, **kwargs)  # type: ignore[arg-type]


def test_parse_plan_handles_numbers_bullets_and_fences() -> None:
    raw = "```markdown\n# Plan\n1. Add subtract to calculator.py\n2) Export subtract from the package\n- Add subtract to calculator.py\n* Document the new function\nok\n```"

    assert parse_plan(raw) == [
        "Add subtract to calculator.py",
        "Export subtract from the package",
        "Document the new function",
    ]


def test_parse_plan_caps_steps_and_falls_back() -> None:
    raw = "\n".join(f"{index}. Step number {index} of the work" for index in range(1, 10))

    assert len(parse_plan(raw)) == 6
    assert parse_plan("ok\n**Bold**") == [DEFAULT_PLAN_STEP]


def test_changed_line_count_sums_absolute_deltas() -> None:
    mutations = [
        Mutation(action="write", path="a.py", before=None, after="1\n2\n3"),
        Mutation(action="write", path="b.py", before="1\n2\n3\n4", after="1"),
    ]

    assert changed_line_count(mutations) == 6


def test_render_report_marks_each_status() -> None:
    history = [
        AgentResult(agent="planner", status=AgentStatus.SUCCESS, summary="Generated plan with 1 step(s)."),
        AgentResult(agent="validator", status=AgentStatus.FAILURE, summary="Command failed"),
        AgentResult(agent="optimizer", status=AgentStatus.SKIPPED, summary="No code changes to optimize."),
    ]

    assert render_report(history) == (
        "Execution report:\n"
        "  ✔ planner: Generated plan with 1 step(s).\n"
        "  ✖ validator: Command failed\n"
        "  ➖ optimizer: No code changes to optimize."
    )


def test_reporter_runs_without_client(tmp_path: Path) -> None:
    context = _context(tmp_path)
    assert ReporterAgent(context).run().status is AgentStatus.SKIPPED

    context.register_result(AgentResult(agent="planner", status=AgentStatus.SUCCESS, summary="done"))
    result = ReporterAgent(context).run()
    assert result.status is AgentStatus.SUCCESS
    assert result.details == "Execution report:\n  ✔ planner: done"


def test_model_agents_fail_without_client(tmp_path: Path) -> None:
    result = PlannerAgent(_context(tmp_path)).run()

    assert result.status is AgentStatus.FAILURE
    assert result.summary == "Missing OPENAI_API_KEY; planner skipped."


def test_validator_skips_then_reports_exit_status(tmp_path: Path) -> None:
    assert ValidatorAgent(_context(tmp_path, shell=ShellTool(tmp_path))).run().status is AgentStatus.SKIPPED

    passing = _context(tmp_path, shell=ShellTool(tmp_path), validation_command=f'"{sys.executable}" -c "print(42)"')
    result = ValidatorAgent(passing).run()
    assert result.status is AgentStatus.SUCCESS
    assert result.summary == "Validation succeeded (exit 0)."

    failing = _context(
        tmp_path,
        shell=ShellTool(tmp_path),
        validation_command=f'"{sys.executable}" -c "import sys; print(\'boom\'); sys.exit(2)"',
    )
    result = ValidatorAgent(failing).run()
    assert result.status is AgentStatus.FAILURE
    assert "exit code 2" in result.summary
    assert result.details is not None and "boom" in result.details


def test_test_generator_honours_skip_phrase(tmp_path: Path, scripted_client: type) -> None:
    payload = ImplementationPayload(actions=[WriteFileAction(path="a.py", content="x = 1\n")])
    context = _context(tmp_path, filesystem=FileSystemTool(tmp_path), implementation=payload)
    context.request = "Add a constant, no tests please"

    result = TestGeneratorAgent(context, client=scripted_client()).run()

    assert result.status is AgentStatus.SKIPPED


def test_test_generator_writes_only_new_files(tmp_path: Path, scripted_client: type) -> None:
    (tmp_path / "tests").mkdir()
    (tmp_path / "tests" / "test_existing.py").write_text("# keep\n", encoding="utf-8")
    reply = (
        '{"tests": [{"path": "tests/test_existing.py", "content": "overwrite"},'
        ' {"path": "tests/test_new.py", "content": "def test_new():\\n    assert True\\n"}],'
        ' "summary": "Covers the constant"}'
    )
    payload = ImplementationPayload(actions=[WriteFileAction(path="a.py", content="x = 1\n")])
    context = _context(tmp_path, filesystem=FileSystemTool(tmp_path), implementation=payload)
    client = scripted_client({"test-generator": [reply]})

    result = TestGeneratorAgent(context, client=client).run()

    assert result.status is AgentStatus.SUCCESS
    assert result.summary.startswith("Generated 1 test file(s): Covers the constant")
    assert [mutation.path for mutation in result.mutations] == ["tests/test_new.py"]
    assert (tmp_path / "tests" / "test_existing.py").read_text(encoding="utf-8") == "# keep\n"
    assert context.usage.total == 15


class _ShellOnlyAgent(Agent):
    name = "shell-only"
    requires_client = False

    def execute(self) -> AgentResult:
        self.require_shell()
        return self.result(AgentStatus.SUCCESS, "ran")


def test_missing_tool_turns_into_failure_result(tmp_path: Path) -> None:
    result = _ShellOnlyAgent(_context(tmp_path)).run()

    assert result.status is AgentStatus.FAILURE
    assert result.summary == "shell-only needs the shell tool."
    assert _ShellOnlyAgent(_context(tmp_path, shell=ShellTool(tmp_path))).run().status is AgentStatus.SUCCESS


def test_require_helpers_report_missing_tool(tmp_path: Path) -> None:
    analyzer = AnalyzerAgent(_context(tmp_path))

    with pytest.raises(MissingToolError) as excinfo:
        analyzer.require_filesystem()
    assert excinfo.value.details == {"agent": "analyzer", "tool": "filesystem"}

    with pytest.raises(MissingToolError):
        analyzer.require_client()
