"""Run validation commands inside the workspace."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

__all__ = [
    "ShellResult",
    "ShellTimeoutError",
    "ShellTool",
    "ShellToolError",
    "ShellValidationError",
    "split_command",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ShellResult:
    """Captured output of a finished command."""

    command: str
    args: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def display(self) -> str:
        return " ".join([self.command, *self.args])


class ShellToolError(RuntimeError):
    """Base error for shell command failures."""

    def __init__(
        self,
        message: str,
        *,
        result: ShellResult | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.result = result
        self.details: dict[str, Any] = dict(details or {})


class ShellValidationError(ShellToolError):
    """Raised when a command exits with a non-zero status."""


class ShellTimeoutError(ShellToolError):
    """Raised when a command exceeds its timeout and is killed."""


def split_command(command_line: str) -> tuple[str, list[str]]:
    """Split a configured command line into executable and arguments."""
    parts = shlex.split(command_line)
    if not parts:
        raise ValueError("Validation command is empty.")
    return parts[0], parts[1:]


class ShellTool:
    """Execute commands with the workspace as working directory."""

    def __init__(self, cwd: Path | str) -> None:
        self.cwd = Path(cwd)

    def run(self, command: str, args: Sequence[str] = (), *, timeout_ms: int | None = None) -> ShellResult:
        """Run ``command`` and return its result, raising on failure or timeout."""
        argv = [command, *args]
        timeout = timeout_ms / 1000 if timeout_ms else None
        LOGGER.info("Running %s", " ".join(argv))
        try:
            process = subprocess.run(  # noqa: S603  # command is sourced from settings or the CLI
                argv,
                cwd=self.cwd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as error:
            raise ShellTimeoutError(
                f"Command timed out after {timeout_ms} ms: {' '.join(argv)}",
                details={"timeout_ms": timeout_ms},
            ) from error
        except OSError as error:
            raise ShellToolError(f"Failed to start {command}: {error}") from error

        result = ShellResult(
            command=command,
            args=tuple(args),
            exit_code=process.returncode,
            stdout=process.stdout or "",
            stderr=process.stderr or "",
        )
        if not result.ok:
            raise ShellValidationError(
                f"Command failed with exit code {result.exit_code}: {result.display}",
                result=result,
            )
        return result
