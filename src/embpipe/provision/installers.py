"""Package manager and toolchain manager capabilities used by the provisioner.

``AptInstaller`` wraps ``dpkg-query``/``apt-get``/``add-apt-repository``;
``RustupManager`` wraps ``rustup`` and ``cargo install``. Both only build
commands and parse their output; execution goes through a ``CommandRunner``.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from embpipe.models import CommandResult, CommandSpec, Privilege
from embpipe.runner import CommandRunner


class PackageInstaller(Protocol):
    def installed_version(self, package: str) -> str | None:
        """Return the installed version of *package*, or None."""

    def refresh_index(self) -> CommandResult:
        """Refresh the package index."""

    def install(self, *packages: str) -> CommandResult:
        """Install packages, accepting ``name=version`` pins."""

    def purge(self, *packages: str) -> CommandResult:
        """Remove packages together with their configuration."""

    def has_repository(self, repository: str) -> bool:
        """Return True when *repository* is already registered."""

    def add_repository(self, repository: str) -> CommandResult:
        """Register *repository* with the package manager."""


class ToolchainManager(Protocol):
    def is_installed(self) -> bool:
        """Return True when the manager itself is usable."""

    def install_manager(self, installer_url: str) -> CommandResult:
        """Download and run the manager's installer non-interactively."""

    def installed_toolchains(self) -> tuple[str, ...]:
        """Return installed toolchain names."""

    def install_toolchain(self, channel: str) -> CommandResult:
        """Install a toolchain channel."""

    def active_override(self, project_dir: Path) -> str | None:
        """Return the toolchain pinned for *project_dir*, if any."""

    def set_override(self, channel: str, project_dir: Path) -> CommandResult:
        """Pin *channel* for *project_dir*."""

    def installed_components(self, channel: str) -> tuple[str, ...]:
        """Return components installed for *channel*."""

    def add_component(self, component: str, channel: str) -> CommandResult:
        """Add *component* to *channel*."""

    def installed_crates(self) -> dict[str, str]:
        """Return ``{crate: version}`` for binaries installed via cargo."""

    def install_crate(self, name: str, version: str | None = None) -> CommandResult:
        """Install a crate binary, at *version* when given."""


@dataclass(slots=True)
class AptInstaller:
    runner: CommandRunner
    privilege: Privilege = "sudo"
    apt_dir: Path = Path("/etc/apt")

    def installed_version(self, package: str) -> str | None:
        result = self.runner.run(
            CommandSpec(
                argv=("dpkg-query", "-W", "-f=${Status}\t${Version}", package),
                read_only=True,
            )
        )
        if not result.ok:
            return None
        status, _, version = result.stdout.strip().partition("\t")
        if not status or status.split()[-1] != "installed":
            return None
        return version or None

    def refresh_index(self) -> CommandResult:
        return self.runner.run(self._privileged("apt-get", "update"))

    def install(self, *packages: str) -> CommandResult:
        return self.runner.run(self._privileged("apt-get", "install", "-y", *packages))

    def purge(self, *packages: str) -> CommandResult:
        return self.runner.run(self._privileged("apt-get", "remove", "--purge", "-y", *packages))

    def has_repository(self, repository: str) -> bool:
        marker = _repository_marker(repository)
        for source in self._source_files():
            try:
                lines = source.read_text(encoding="utf-8").splitlines()
            except OSError:
                continue
            for line in lines:
                stripped = line.strip()
                if stripped and not stripped.startswith("#") and marker in stripped:
                    return True
        return False

    def add_repository(self, repository: str) -> CommandResult:
        return self.runner.run(self._privileged("add-apt-repository", "-y", repository))

    def _source_files(self) -> list[Path]:
        files: list[Path] = []
        main_list = self.apt_dir / "sources.list"
        if main_list.exists():
            files.append(main_list)
        parts_dir = self.apt_dir / "sources.list.d"
        if parts_dir.is_dir():
            files.extend(sorted(parts_dir.glob("*.list")))
            files.extend(sorted(parts_dir.glob("*.sources")))
        return files

    def _privileged(self, *argv: str) -> CommandSpec:
        env = {"DEBIAN_FRONTEND": "noninteractive"}
        if self.privilege == "sudo" and os.geteuid() != 0:
            return CommandSpec(argv=("sudo", "--preserve-env=DEBIAN_FRONTEND", *argv), env=env)
        return CommandSpec(argv=argv, env=env)


def _repository_marker(repository: str) -> str:
    """``ppa:owner/name`` appears in sources as ``.../owner/name/...``."""
    if repository.startswith("ppa:"):
        return f"/{repository.removeprefix('ppa:')}/"
    return repository


@dataclass(slots=True)
class RustupManager:
    runner: CommandRunner
    env: Mapping[str, str] = field(default_factory=dict)
    download_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    def is_installed(self) -> bool:
        return self._query("rustup", "--version").ok

    def install_manager(self, installer_url: str) -> CommandResult:
        script = self.download_dir / "rustup-init.sh"
        fetched = self._run("curl", "--proto", "=https", "-sSf", installer_url, "-o", str(script))
        if not fetched.ok:
            return fetched
        # PATH is passed to every child explicitly; leave shell profiles alone.
        return self._run("sh", str(script), "-y", "--no-modify-path")

    def installed_toolchains(self) -> tuple[str, ...]:
        result = self._query("rustup", "toolchain", "list")
        if not result.ok:
            return ()
        return tuple(line.split()[0] for line in result.stdout.splitlines() if line.strip())

    def install_toolchain(self, channel: str) -> CommandResult:
        return self._run("rustup", "toolchain", "install", channel)

    def active_override(self, project_dir: Path) -> str | None:
        result = self._query("rustup", "override", "list")
        if not result.ok:
            return None
        wanted = str(project_dir)
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == wanted:
                return fields[-1]
        return None

    def set_override(self, channel: str, project_dir: Path) -> CommandResult:
        return self._run("rustup", "override", "set", channel, "--path", str(project_dir))

    def installed_components(self, channel: str) -> tuple[str, ...]:
        result = self._query("rustup", "component", "list", "--installed", "--toolchain", channel)
        if not result.ok:
            return ()
        return tuple(line.strip() for line in result.stdout.splitlines() if line.strip())

    def add_component(self, component: str, channel: str) -> CommandResult:
        return self._run("rustup", "component", "add", component, "--toolchain", channel)

    def installed_crates(self) -> dict[str, str]:
        result = self._query("cargo", "install", "--list")
        if not result.ok:
            return {}
        crates: dict[str, str] = {}
        for line in result.stdout.splitlines():
            # Binaries are indented under a "name vX.Y.Z:" header.
            if not line or line[0].isspace():
                continue
            name, _, version = line.rstrip(":").partition(" ")
            crates[name] = version.split()[0].removeprefix("v") if version else ""
        return crates

    def install_crate(self, name: str, version: str | None = None) -> CommandResult:
        argv = ["cargo", "install", name]
        if version is not None:
            argv.extend(["--version", version, "--force"])
        return self._run(*argv)

    def _run(self, *argv: str) -> CommandResult:
        return self.runner.run(CommandSpec(argv=argv, env=dict(self.env)))

    def _query(self, *argv: str) -> CommandResult:
        return self.runner.run(CommandSpec(argv=argv, env=dict(self.env), read_only=True))
