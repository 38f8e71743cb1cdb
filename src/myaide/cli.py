"""CLI commands for running myaide requests and managing their mutations."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .config import Settings, SettingsError, load_settings
from .models.llm_client import LLMClientError
from .orchestrator import Orchestrator, build_client
from .project_memory import MyAideManager, ProjectMemoryError
from .runlog import RunLog, load_run_log, utc_timestamp, write_run_log
from .structured import PayloadError, parse_implementation_payload
from .tools.edits import ApplyReport, apply_actions
from .tools.json_recovery import JsonRecoveryError, recover_json
from .tools.rollback import rollback_mutations
from .tools.shell import ShellTool, ShellToolError, split_command
from .tools.workspace import ApprovalCallback, FileSystemTool, FileSystemToolError, Mutation

APP_HELP = "myaide: multi-agent coding assistant for your terminal."

app = typer.Typer(help=APP_HELP)

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(
    workspace: Optional[Path],
    config: Optional[Path],
    overrides: Dict[str, Any],
) -> Settings:
    try:
        return load_settings(workspace, config_path=config, overrides=overrides)
    except SettingsError as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1)


def _overrides(
    *,
    dry_run: Optional[bool] = None,
    verbose: Optional[bool] = None,
    auto_approve: Optional[bool] = None,
    validate: Optional[str] = None,
    positional_fallback: Optional[bool] = None,
) -> Dict[str, Any]:
    return {
        "runtime": {"dry_run": dry_run, "verbose": verbose, "auto_approve": auto_approve},
        "validation": {"command": validate},
        "patch": {"positional_fallback": positional_fallback},
    }


def _confirm_mutation(mutation: Mutation) -> bool:
    typer.echo(f"\nProposed {mutation.action} of {mutation.path}")
    if mutation.preview:
        typer.echo(mutation.preview)
    return typer.confirm("Apply this change?", default=True)


def _approval(settings: Settings) -> ApprovalCallback | None:
    return None if settings.runtime.auto_approve else _confirm_mutation


def _echo_report(report: ApplyReport) -> None:
    for outcome in report.outcomes:
        mark = "✔" if outcome.ok else "✖"
        typer.echo(f"  {mark} {outcome.describe()}")


WORKSPACE_OPTION = typer.Option(
    None,
    "--workspace",
    "-w",
    help="Workspace root (defaults to MYAIDE_WORKSPACE or the current directory).",
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to the configuration file (defaults to <workspace>/config.yaml).",
)


@app.command()
def run(
    request: List[str] = typer.Argument(..., help="Natural-language change request."),
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Record mutations without touching disk."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply every mutation without asking."),
    validate: Optional[str] = typer.Option(None, "--validate", help="Validation command run after the changes."),
    positional_fallback: bool = typer.Option(
        False,
        "--positional-fallback",
        help="Allow unmatched diff hunks to be spliced at their declared line numbers.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Plan, implement and validate a change request in the workspace."""
    _configure_logging(verbose)
    settings = _load(
        workspace,
        config,
        _overrides(
            dry_run=dry_run or None,
            verbose=verbose or None,
            auto_approve=True if yes else None,
            validate=validate,
            positional_fallback=positional_fallback or None,
        ),
    )
    if not settings.openai_api_key:
        typer.echo("OPENAI_API_KEY is not set; add it to the environment or to <workspace>/.env.")
        raise typer.Exit(code=1)

    orchestrator = Orchestrator.from_settings(settings, approve=_approval(settings))
    outcome = orchestrator.run(
        " ".join(request),
        observers=[lambda result: typer.echo(f"[{result.agent}] {result.status.value}: {result.summary}")],
        notify=lambda message: typer.echo(f"[myaide] {message}"),
    )
    typer.echo("")
    typer.echo(outcome.report)
    if outcome.run_log is not None:
        typer.echo(f"Run log: {outcome.run_log}")
    if not outcome.ok:
        raise typer.Exit(code=1)


@app.command()
def apply(
    payload_file: Path = typer.Argument(..., help="File holding a saved implementer response."),
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Record mutations without touching disk."),
    validate: Optional[str] = typer.Option(None, "--validate", help="Validation command run after applying."),
    positional_fallback: bool = typer.Option(
        False,
        "--positional-fallback",
        help="Allow unmatched diff hunks to be spliced at their declared line numbers.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Apply a saved edit payload offline, rolling back if validation fails."""
    _configure_logging(verbose)
    settings = _load(
        workspace,
        config,
        _overrides(
            dry_run=dry_run or None,
            validate=validate,
            positional_fallback=positional_fallback or None,
        ),
    )
    try:
        raw = payload_file.read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Unable to read {payload_file}: {error}")
        raise typer.Exit(code=1)
    try:
        payload = parse_implementation_payload(recover_json(raw))
    except (JsonRecoveryError, PayloadError) as error:
        typer.echo(f"Payload could not be parsed: {error}")
        raise typer.Exit(code=1)

    filesystem = FileSystemTool(settings.workspace, dry_run=settings.runtime.dry_run, approve=_approval(settings))
    report = apply_actions(
        filesystem,
        payload.actions,
        positional_fallback=settings.patch.positional_fallback,
    )
    typer.echo(f"Applied {len(report.succeeded)} of {len(report.outcomes)} action(s):")
    _echo_report(report)

    exit_code = 0 if not report.failed else 1
    rolled_back = False
    command = settings.validation.command
    if command and not settings.runtime.dry_run and report.succeeded:
        try:
            executable, args = split_command(command)
            ShellTool(settings.workspace).run(executable, args, timeout_ms=settings.validation.timeout_ms)
            typer.echo(f"Validation passed: {command}")
        except (ShellToolError, ValueError) as error:
            typer.echo(f"Validation failed: {error}")
            rollback = rollback_mutations(filesystem, report.mutations)
            typer.echo(f"Rolled back changes: {rollback.summary()}")
            rolled_back = True
            exit_code = 1

    if not settings.runtime.dry_run:
        log = RunLog(
            request=f"apply {payload_file.name}",
            started_at=utc_timestamp(),
            finished_at=utc_timestamp(),
            iterations=1,
            mutations=[] if rolled_back else [m for m in report.mutations if m.applied],
            rolled_back=rolled_back,
        )
        typer.echo(f"Run log: {write_run_log(settings.workspace, log)}")
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def rollback(
    run_log: Path = typer.Argument(..., help="Run log JSON written by `myaide run` or `myaide apply`."),
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Undo the mutations recorded in a run log."""
    settings = _load(workspace, config, {})
    try:
        log = load_run_log(run_log)
    except (OSError, ValueError) as error:
        typer.echo(f"Unable to load run log {run_log}: {error}")
        raise typer.Exit(code=1)
    if not log.mutations:
        typer.echo("Run log records no applied mutations; nothing to roll back.")
        return
    report = rollback_mutations(FileSystemTool(settings.workspace), log.mutations)
    typer.echo(f"Rolled back changes: {report.summary()}")
    for path, error in report.failed.items():
        typer.echo(f"  ✖ {path}: {error}")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("refresh-memory")
def refresh_memory(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Regenerate the workspace's myAIDE.md project memory from a fresh scan."""
    _configure_logging(verbose)
    settings = _load(workspace, config, _overrides(verbose=verbose or None))
    client = build_client(settings)
    if client is None:
        typer.echo("OPENAI_API_KEY is not set; add it to the environment or to <workspace>/.env.")
        raise typer.Exit(code=1)
    filename = settings.project_memory.filename
    manager = MyAideManager(settings.workspace, client=client, filename=filename)
    try:
        content, completion = manager.generate()
        manager.write(content)
    except (ProjectMemoryError, LLMClientError, FileSystemToolError) as error:
        typer.echo(f"Unable to regenerate {filename}: {error}")
        raise typer.Exit(code=1)
    tokens = (completion.usage_prompt_tokens or 0) + (completion.usage_completion_tokens or 0)
    typer.echo(f"{filename} regenerated ({tokens} tokens used).")


@app.command("show-config")
def show_config(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Print the effective configuration with secrets masked."""
    settings = _load(workspace, config, {})
    typer.echo(yaml.safe_dump(settings.redacted(), sort_keys=False).rstrip())


if __name__ == "__main__":
    app()
