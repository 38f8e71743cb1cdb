"""Settings loaded from ``config.yaml``, ``.env`` and the environment."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DecisionConfig",
    "ModelConfig",
    "PatchConfig",
    "ProjectMemoryConfig",
    "RefinementConfig",
    "RuntimeConfig",
    "Settings",
    "SettingsError",
    "ValidationConfig",
    "load_settings",
    "resolve_workspace",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"


class SettingsError(RuntimeError):
    """Raised when configuration cannot be read or validated."""


class SettingsModel(BaseModel):
    """Base model rejecting unknown keys."""

    model_config = ConfigDict(extra="forbid")


class ModelConfig(SettingsModel):
    name: str = "gpt-4.1-mini"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=2048, gt=0)
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = Field(default=120.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)


class RuntimeConfig(SettingsModel):
    workspace_root: Path = Field(default_factory=Path.cwd)
    dry_run: bool = False
    verbose: bool = False
    auto_approve: bool = True


class ValidationConfig(SettingsModel):
    command: Optional[str] = None
    timeout_ms: Optional[int] = Field(default=120_000, gt=0)


class RefinementConfig(SettingsModel):
    enabled: bool = False
    max_iterations: int = Field(default=3, ge=1)
    require_validation: bool = True
    require_no_critical_issues: bool = True


class PatchConfig(SettingsModel):
    positional_fallback: bool = False


class ProjectMemoryConfig(SettingsModel):
    enabled: bool = True
    filename: str = "myAIDE.md"


class DecisionConfig(SettingsModel):
    enabled: bool = True
    max_files: int = Field(default=50, gt=0)


class Settings(SettingsModel):
    """Complete runtime configuration."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    patch: PatchConfig = Field(default_factory=PatchConfig)
    project_memory: ProjectMemoryConfig = Field(default_factory=ProjectMemoryConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)

    @property
    def workspace(self) -> Path:
        return self.runtime.workspace_root

    @property
    def openai_api_key(self) -> Optional[str]:
        return self.model.api_key

    def redacted(self) -> Dict[str, Any]:
        """Return a JSON-friendly dump with secrets masked."""
        data = self.model_dump(mode="json")
        if data["model"].get("api_key"):
            data["model"]["api_key"] = "***"
        return data


def resolve_workspace(workspace: Path | str | None = None, env: Mapping[str, str] | None = None) -> Path:
    """Pick the workspace root: explicit value, ``MYAIDE_WORKSPACE``, then cwd."""
    environ = os.environ if env is None else env
    raw = workspace or environ.get("MYAIDE_WORKSPACE") or Path.cwd()
    return Path(raw).expanduser().resolve()


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise SettingsError(f"Failed to parse {path}: {error}") from error
    except OSError as error:
        raise SettingsError(f"Failed to read {path}: {error}") from error
    if not isinstance(data, dict):
        raise SettingsError(f"Configuration in {path} must be a mapping at the top level.")
    return data


def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = _merge(current if isinstance(current, dict) else {}, value)
        elif value is not None:
            merged[key] = value
    return merged


def load_settings(
    workspace: Path | str | None = None,
    *,
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    load_env_file: bool = True,
) -> Settings:
    """Build :class:`Settings` from YAML, ``.env``, the environment and overrides.

    Precedence, lowest first: defaults, ``config.yaml``, environment
    variables, explicit ``overrides``.
    """
    root = resolve_workspace(workspace, env)
    if load_env_file and env is None:
        load_dotenv(dotenv_path=root / ".env", override=False)
    environ = os.environ if env is None else env

    data: Dict[str, Any] = {}
    path = Path(config_path) if config_path else root / DEFAULT_CONFIG_NAME
    if config_path and not path.exists():
        raise SettingsError(f"Config file not found: {path}")
    if path.exists():
        data = _read_yaml(path)
        LOGGER.debug("Loaded settings from %s", path)

    env_layer: Dict[str, Any] = {
        "model": {
            "api_key": environ.get("OPENAI_API_KEY"),
            "base_url": environ.get("OPENAI_BASE_URL"),
            "name": environ.get("MYAIDE_MODEL"),
        },
    }
    data = _merge(data, env_layer)
    data = _merge(data, {"runtime": {"workspace_root": str(root)}})
    if overrides:
        data = _merge(data, overrides)

    try:
        settings = Settings.model_validate(data)
    except ValidationError as error:
        raise SettingsError(f"Invalid configuration: {error}") from error
    return settings
