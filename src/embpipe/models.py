"""Core typed dataclasses for toolchain pins, build artifacts, and flash sessions."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Literal

import cbor2

DEFAULT_TARGET = "thumbv7em-none-eabihf"
DEFAULT_PROFILE = "release"
DEFAULT_BINARY_NAME = "emb1"
DEFAULT_BOARD_CONFIG = "board/stm32f4discovery.cfg"

Privilege = Literal["sudo", "none"]


@dataclass(frozen=True, slots=True)
class CommandSpec:
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    read_only: bool = False

    def render(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True, slots=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True, slots=True)
class ToolchainSpec:
    """Pinned toolchain identifiers. Defaults reproduce the reference VM."""

    cross_toolchain_package: str = "gcc-arm-embedded"
    cross_toolchain_version: str = "5-2016q3-1~trusty1"
    cross_toolchain_repository: str = "ppa:team-gcc-arm-embedded/ppa"
    channel: str = "nightly"
    build_helper: str = "xargo"
    build_helper_version: str | None = None
    source_component: str = "rust-src"
    conflicting_packages: tuple[str, ...] = ("landscape-common",)
    repository_support_packages: tuple[str, ...] = ("software-properties-common",)
    build_essentials: tuple[str, ...] = ("build-essential", "git")
    build_graph_tool: str = "ninja-build"
    manager_installer_url: str = "https://sh.rustup.rs"

    @property
    def pinned_cross_toolchain(self) -> str:
        return f"{self.cross_toolchain_package}={self.cross_toolchain_version}"

    def to_dict(self) -> dict[str, object]:
        return {
            "cross_toolchain_package": self.cross_toolchain_package,
            "cross_toolchain_version": self.cross_toolchain_version,
            "cross_toolchain_repository": self.cross_toolchain_repository,
            "channel": self.channel,
            "build_helper": self.build_helper,
            "build_helper_version": self.build_helper_version,
            "source_component": self.source_component,
            "conflicting_packages": list(self.conflicting_packages),
            "repository_support_packages": list(self.repository_support_packages),
            "build_essentials": list(self.build_essentials),
            "build_graph_tool": self.build_graph_tool,
            "manager_installer_url": self.manager_installer_url,
        }


class EnvironmentState(StrEnum):
    UNPROVISIONED = "unprovisioned"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    FAILED = "failed"


def artifact_path(
    *,
    target: str = DEFAULT_TARGET,
    profile: str = DEFAULT_PROFILE,
    binary_name: str = DEFAULT_BINARY_NAME,
    root: Path | None = None,
) -> Path:
    """Return ``target/<triple>/<profile>/<binary-name>``, optionally under *root*."""
    relative = Path("target") / target / profile / binary_name
    return relative if root is None else root / relative


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    target: str
    profile: str
    path: Path
    size: int | None = None
    sha256: str | None = None

    @classmethod
    def describe(cls, *, target: str, profile: str, path: Path) -> BuildArtifact:
        payload = path.read_bytes()
        return cls(
            target=target,
            profile=profile,
            path=path,
            size=len(payload),
            sha256=hashlib.sha256(payload).hexdigest(),
        )


@dataclass(frozen=True, slots=True)
class StepOutcome:
    step: str
    changed: bool
    detail: str = ""


@dataclass(slots=True)
class ProvisionResult:
    state: EnvironmentState
    toolchain: ToolchainSpec
    steps: list[StepOutcome] = field(default_factory=list)
    schema_version: int = 1

    @property
    def changed(self) -> bool:
        return any(outcome.changed for outcome in self.steps)

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "state": self.state.value,
            "toolchain": self.toolchain.to_dict(),
            "steps": [
                {"step": o.step, "changed": o.changed, "detail": o.detail} for o in self.steps
            ],
        }


class FlashStep(StrEnum):
    INIT = "init"
    RESET_HALT = "reset_halt"
    ERASE_WRITE = "erase_write"
    RESET_HALT_2 = "reset_halt_2"
    RESUME = "resume"
    SHUTDOWN = "shutdown"


FLASH_SEQUENCE: tuple[FlashStep, ...] = (
    FlashStep.INIT,
    FlashStep.RESET_HALT,
    FlashStep.ERASE_WRITE,
    FlashStep.RESET_HALT_2,
    FlashStep.RESUME,
    FlashStep.SHUTDOWN,
)


class FlashState(StrEnum):
    IDLE = "idle"
    INIT = "init"
    RESET_HALT = "reset_halt"
    ERASE_WRITE = "erase_write"
    RESET_HALT_2 = "reset_halt_2"
    RESUME = "resume"
    SHUTDOWN = "shutdown"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class FlashStepResult:
    step: FlashStep
    command: str
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class FlashSession:
    """Ephemeral record of one pass through the adapter command sequence."""

    artifact: Path
    board_config: str
    state: FlashState = FlashState.IDLE
    trace: list[FlashStepResult] = field(default_factory=list)

    def advance(self, step: FlashStep) -> None:
        self.state = FlashState(step.value)

    @property
    def failed_step(self) -> FlashStep | None:
        for result in self.trace:
            if not result.ok:
                return result.step
        return None


@dataclass(frozen=True, slots=True)
class FlashResult:
    artifact: Path
    board_config: str
    state: FlashState
    steps: tuple[FlashStepResult, ...] = ()
    schema_version: int = 1

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "artifact": str(self.artifact),
            "board_config": self.board_config,
            "state": self.state.value,
            "steps": [
                {"step": r.step.value, "command": r.command, "returncode": r.returncode}
                for r in self.steps
            ],
        }
