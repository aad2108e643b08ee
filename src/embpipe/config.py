"""Pipeline configuration and its JSON loader."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from embpipe.errors import ValidationError
from embpipe.models import (
    DEFAULT_BINARY_NAME,
    DEFAULT_BOARD_CONFIG,
    DEFAULT_PROFILE,
    DEFAULT_TARGET,
    Privilege,
    ToolchainSpec,
    artifact_path,
)


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    project_dir: Path = field(default_factory=Path.cwd)
    toolchain: ToolchainSpec = field(default_factory=ToolchainSpec)
    target: str = DEFAULT_TARGET
    profile: str = DEFAULT_PROFILE
    binary_name: str = DEFAULT_BINARY_NAME
    board_config: str = DEFAULT_BOARD_CONFIG
    privilege: Privilege = "sudo"
    shell_integration: bool = False
    shell_profile: Path = field(default_factory=lambda: Path.home() / ".profile")
    cargo_home: Path = field(default_factory=lambda: Path.home() / ".cargo")
    openocd: str = "openocd"

    @property
    def artifact(self) -> Path:
        return artifact_path(
            target=self.target,
            profile=self.profile,
            binary_name=self.binary_name,
            root=self.project_dir,
        )

    @property
    def cargo_bin(self) -> Path:
        return self.cargo_home / "bin"

    def with_overrides(self, **changes: Any) -> PipelineConfig:
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def toolchain_env(config: PipelineConfig) -> dict[str, str]:
    """Environment for child processes with the cargo bin dir first on PATH."""
    current = os.environ.get("PATH", "")
    if not current:
        return {"PATH": str(config.cargo_bin)}
    return {"PATH": f"{config.cargo_bin}{os.pathsep}{current}"}


_PATH_KEYS = {"project_dir", "shell_profile", "cargo_home"}
_STR_KEYS = {"target", "profile", "binary_name", "board_config", "openocd"}
_TOOLCHAIN_TUPLE_KEYS = {"conflicting_packages", "repository_support_packages", "build_essentials"}


def config_from_mapping(payload: dict[str, Any], *, base_dir: Path | None = None) -> PipelineConfig:
    """Build a config from a parsed mapping; relative paths resolve against *base_dir*."""
    if not isinstance(payload, dict):
        raise ValidationError("Configuration must be a JSON object.")

    changes: dict[str, Any] = {}
    for key, value in payload.items():
        if key in _PATH_KEYS:
            changes[key] = _path_value(key, value, base_dir=base_dir)
        elif key in _STR_KEYS:
            changes[key] = _str_value(key, value)
        elif key == "privilege":
            if value not in ("sudo", "none"):
                raise ValidationError(
                    "Invalid `privilege` value.",
                    hint="Use 'sudo' or 'none'.",
                    context={"key": key, "value": str(value)},
                )
            changes[key] = value
        elif key == "shell_integration":
            if not isinstance(value, bool):
                raise ValidationError("Invalid `shell_integration` value.", context={"key": key})
            changes[key] = value
        elif key == "toolchain":
            changes[key] = _toolchain(value)
        else:
            raise ValidationError(
                "Unknown configuration key.",
                hint="Remove the key or check its spelling.",
                context={"key": str(key)},
            )
    return replace(PipelineConfig(), **changes)


def load_config(path: str | Path) -> PipelineConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Configuration file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(
            "Invalid configuration JSON.",
            hint=str(exc),
            context={"path": str(config_path)},
        ) from exc
    return config_from_mapping(payload, base_dir=config_path.parent)


def _toolchain(value: Any) -> ToolchainSpec:
    if not isinstance(value, dict):
        raise ValidationError("Invalid `toolchain` value.", hint="Expected a JSON object.")
    known = set(ToolchainSpec.__dataclass_fields__)
    changes: dict[str, Any] = {}
    for key, item in value.items():
        if key not in known:
            raise ValidationError(
                "Unknown toolchain key.",
                context={"key": str(key)},
            )
        if key in _TOOLCHAIN_TUPLE_KEYS:
            if not isinstance(item, list) or not all(isinstance(p, str) and p for p in item):
                raise ValidationError(f"Invalid toolchain `{key}` value.")
            changes[key] = tuple(item)
        elif key == "build_helper_version":
            if item is not None and (not isinstance(item, str) or not item):
                raise ValidationError(f"Invalid toolchain `{key}` value.")
            changes[key] = item
        else:
            changes[key] = _str_value(f"toolchain.{key}", item)
    return ToolchainSpec(**changes)


def _str_value(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid configuration `{key}` value.")
    return value


def _path_value(key: str, value: Any, *, base_dir: Path | None) -> Path:
    path = Path(os.path.expanduser(_str_value(key, value)))
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path
