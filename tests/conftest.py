"""Shared test fixtures and in-memory doubles for external tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from embpipe.config import PipelineConfig
from embpipe.models import CommandResult, CommandSpec


@dataclass
class FakeRunner:
    """Command runner that answers by longest matching argv prefix."""

    responses: dict[tuple[str, ...], CommandResult] = field(default_factory=dict)
    calls: list[CommandSpec] = field(default_factory=list)

    def respond(
        self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = ""
    ) -> None:
        self.responses[prefix] = CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)

    def run(self, command: CommandSpec) -> CommandResult:
        self.calls.append(command)
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if command.argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        return self.responses[best] if best is not None else CommandResult(returncode=0)

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [call.argv for call in self.calls]


@dataclass
class FakeMachine:
    """In-memory package database and toolchain manager state.

    Implements both ``PackageInstaller`` and ``ToolchainManager`` through the
    ``packages`` and ``toolchains`` views; every mutating call is journaled.
    """

    installed: dict[str, str] = field(default_factory=lambda: {"landscape-common": "0.1"})
    repositories: set[str] = field(default_factory=set)
    manager_installed: bool = False
    toolchains_installed: set[str] = field(default_factory=set)
    overrides: dict[str, str] = field(default_factory=dict)
    components: dict[str, set[str]] = field(default_factory=dict)
    crates: dict[str, str] = field(default_factory=dict)
    journal: list[tuple[str, ...]] = field(default_factory=list)
    fail_on: str | None = None
    fail_code: int = 100

    @property
    def packages(self) -> FakePackages:
        return FakePackages(self)

    @property
    def toolchains(self) -> FakeToolchains:
        return FakeToolchains(self)

    def record(self, *entry: str) -> CommandResult:
        self.journal.append(entry)
        if self.fail_on == entry[0]:
            return CommandResult(returncode=self.fail_code, stderr=f"{entry[0]} failed\n")
        return CommandResult(returncode=0)


@dataclass
class FakePackages:
    machine: FakeMachine

    def installed_version(self, package: str) -> str | None:
        return self.machine.installed.get(package)

    def refresh_index(self) -> CommandResult:
        return self.machine.record("refresh_index")

    def install(self, *packages: str) -> CommandResult:
        result = self.machine.record("install", *packages)
        if result.ok:
            for package in packages:
                name, _, version = package.partition("=")
                self.machine.installed[name] = version or "1.0"
        return result

    def purge(self, *packages: str) -> CommandResult:
        result = self.machine.record("purge", *packages)
        if result.ok:
            for package in packages:
                self.machine.installed.pop(package, None)
        return result

    def has_repository(self, repository: str) -> bool:
        return repository in self.machine.repositories

    def add_repository(self, repository: str) -> CommandResult:
        result = self.machine.record("add_repository", repository)
        if result.ok:
            self.machine.repositories.add(repository)
        return result


@dataclass
class FakeToolchains:
    machine: FakeMachine

    def is_installed(self) -> bool:
        return self.machine.manager_installed

    def install_manager(self, installer_url: str) -> CommandResult:
        result = self.machine.record("install_manager", installer_url)
        if result.ok:
            self.machine.manager_installed = True
        return result

    def installed_toolchains(self) -> tuple[str, ...]:
        return tuple(sorted(self.machine.toolchains_installed))

    def install_toolchain(self, channel: str) -> CommandResult:
        result = self.machine.record("install_toolchain", channel)
        if result.ok:
            self.machine.toolchains_installed.add(f"{channel}-x86_64-unknown-linux-gnu")
        return result

    def active_override(self, project_dir: Path) -> str | None:
        return self.machine.overrides.get(str(project_dir))

    def set_override(self, channel: str, project_dir: Path) -> CommandResult:
        result = self.machine.record("set_override", channel, str(project_dir))
        if result.ok:
            self.machine.overrides[str(project_dir)] = f"{channel}-x86_64-unknown-linux-gnu"
        return result

    def installed_components(self, channel: str) -> tuple[str, ...]:
        return tuple(sorted(self.machine.components.get(channel, set())))

    def add_component(self, component: str, channel: str) -> CommandResult:
        result = self.machine.record("add_component", component, channel)
        if result.ok:
            self.machine.components.setdefault(channel, set()).add(component)
        return result

    def installed_crates(self) -> dict[str, str]:
        return dict(self.machine.crates)

    def install_crate(self, name: str, version: str | None = None) -> CommandResult:
        result = self.machine.record("install_crate", name, version or "")
        if result.ok:
            self.machine.crates[name] = version or "0.3.26"
        return result


@dataclass
class FakeProgrammer:
    """Debug adapter double; commands starting with a ``failures`` key fail."""

    name: str = "fake"
    failures: dict[str, int] = field(default_factory=dict)
    opened: list[str] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    closed: int = 0

    def open(self, board_config: str) -> None:
        self.opened.append(board_config)

    def execute(self, command: str) -> CommandResult:
        self.calls.append(command)
        for prefix, returncode in self.failures.items():
            if command.startswith(prefix):
                return CommandResult(returncode=returncode, stderr=f"{command}: failed\n")
        return CommandResult(returncode=0)

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def machine() -> FakeMachine:
    """A bare machine with only the conflicting package preinstalled."""
    return FakeMachine()


@pytest.fixture
def fake_programmer() -> FakeProgrammer:
    return FakeProgrammer()


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    return PipelineConfig(
        project_dir=project_dir,
        privilege="none",
        shell_profile=tmp_path / "home" / ".profile",
        cargo_home=tmp_path / "home" / ".cargo",
    )
