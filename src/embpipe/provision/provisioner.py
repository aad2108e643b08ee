"""Ordered, idempotent environment provisioning.

Every ``ensure_*`` step inspects the current machine state first and only
installs what is missing, so rerunning after partial or full success
converges on the same end state. Steps run in a fixed order and the first
failure aborts the rest.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable
from dataclasses import dataclass, field

from embpipe.config import PipelineConfig
from embpipe.errors import ProvisioningFailure
from embpipe.models import (
    CommandResult,
    EnvironmentState,
    ProvisionResult,
    StepOutcome,
    ToolchainSpec,
)
from embpipe.observability import StructuredLogger
from embpipe.provision.installers import PackageInstaller, ToolchainManager

COMPONENT = "provisioner"


@dataclass(frozen=True, slots=True)
class ProvisionStep:
    name: str
    apply: Callable[[], StepOutcome]
    check: Callable[[], bool]
    fatal: bool = True


@dataclass(slots=True)
class Provisioner:
    config: PipelineConfig
    packages: PackageInstaller
    toolchains: ToolchainManager
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    state: EnvironmentState = EnvironmentState.UNPROVISIONED

    @property
    def toolchain(self) -> ToolchainSpec:
        return self.config.toolchain

    def steps(self) -> tuple[ProvisionStep, ...]:
        ordered = [
            ProvisionStep("base_tooling", self.ensure_base_tooling, self._base_tooling_ready),
            ProvisionStep(
                "cross_toolchain_repository",
                self.ensure_cross_toolchain_repository,
                self._repository_ready,
            ),
            ProvisionStep(
                "cross_toolchain",
                self.ensure_cross_toolchain,
                self._cross_toolchain_ready,
            ),
            ProvisionStep(
                "language_toolchain",
                self.ensure_language_toolchain,
                self._language_toolchain_ready,
            ),
            ProvisionStep(
                "cross_build_helper",
                self.ensure_cross_build_helper,
                self._build_helper_ready,
            ),
        ]
        if self.config.shell_integration:
            ordered.append(
                ProvisionStep(
                    "shell_integration",
                    self.ensure_shell_integration,
                    self._shell_integration_ready,
                    fatal=False,
                )
            )
        return tuple(ordered)

    def run(self) -> ProvisionResult:
        """Run every step in order; raise ``ProvisioningFailure`` on the first fatal error."""
        self.state = EnvironmentState.PROVISIONING
        result = ProvisionResult(state=self.state, toolchain=self.toolchain)
        self._log(None, "Provisioning started.")

        for step in self.steps():
            try:
                outcome = step.apply()
            except ProvisioningFailure as exc:
                if step.fatal:
                    self._abort(result, step.name)
                    raise
                self._log(step.name, f"Skipped after error: {exc}", level="warning")
                result.steps.append(StepOutcome(step=step.name, changed=False, detail="failed"))
                continue
            except BaseException:
                self._abort(result, step.name)
                raise
            result.steps.append(outcome)
            self._log(step.name, "changed" if outcome.changed else "already satisfied")

        self.state = EnvironmentState.PROVISIONED
        result.state = self.state
        self._log(None, "Provisioning complete.")
        return result

    def check(self) -> bool:
        """Return True when every fatal step is already satisfied. Installs nothing."""
        for step in self.steps():
            if step.fatal and not step.check():
                self._log(step.name, "not satisfied", operation="check")
                return False
        self.state = EnvironmentState.PROVISIONED
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def ensure_base_tooling(self) -> StepOutcome:
        step = "base_tooling"
        installed = self.packages.installed_version
        conflicting = [p for p in self.toolchain.conflicting_packages if installed(p)]
        missing = [p for p in self.toolchain.repository_support_packages if not installed(p)]
        if not conflicting and not missing:
            return StepOutcome(step=step, changed=False)

        self._require(step, "refresh package index", self.packages.refresh_index())
        if conflicting:
            self._require(step, "remove conflicting packages", self.packages.purge(*conflicting))
        if missing:
            self._require(step, "install repository support", self.packages.install(*missing))
        return StepOutcome(
            step=step,
            changed=True,
            detail=f"purged={','.join(conflicting)} installed={','.join(missing)}",
        )

    def ensure_cross_toolchain_repository(self) -> StepOutcome:
        step = "cross_toolchain_repository"
        repository = self.toolchain.cross_toolchain_repository
        if self.packages.has_repository(repository):
            return StepOutcome(step=step, changed=False)
        added = self.packages.add_repository(repository)
        self._require(step, f"add repository {repository}", added)
        self._require(step, "refresh package index", self.packages.refresh_index())
        return StepOutcome(step=step, changed=True, detail=repository)

    def ensure_cross_toolchain(self, version: str | None = None) -> StepOutcome:
        step = "cross_toolchain"
        pinned_version = version or self.toolchain.cross_toolchain_version
        wanted: list[str] = []
        package_name = self.toolchain.cross_toolchain_package
        if self.packages.installed_version(package_name) != pinned_version:
            wanted.append(f"{package_name}={pinned_version}")
        for package in (*self.toolchain.build_essentials, self.toolchain.build_graph_tool):
            if not self.packages.installed_version(package):
                wanted.append(package)
        if not wanted:
            return StepOutcome(step=step, changed=False)
        self._require(step, "install cross toolchain", self.packages.install(*wanted))
        return StepOutcome(step=step, changed=True, detail=" ".join(wanted))

    def ensure_language_toolchain(self) -> StepOutcome:
        step = "language_toolchain"
        channel = self.toolchain.channel
        project_dir = self.config.project_dir
        actions: list[str] = []

        if not self.toolchains.is_installed():
            self._require(
                step,
                "install toolchain manager",
                self.toolchains.install_manager(self.toolchain.manager_installer_url),
            )
            actions.append("manager")
        if not _has_channel(self.toolchains.installed_toolchains(), channel):
            self._require(
                step,
                f"install {channel} toolchain",
                self.toolchains.install_toolchain(channel),
            )
            actions.append(channel)
        if not _is_channel(self.toolchains.active_override(project_dir), channel):
            self._require(
                step,
                f"pin {channel} for {project_dir}",
                self.toolchains.set_override(channel, project_dir),
            )
            actions.append("override")
        component = self.toolchain.source_component
        if not _has_component(self.toolchains.installed_components(channel), component):
            added = self.toolchains.add_component(component, channel)
            self._require(step, f"add {component}", added)
            actions.append(component)
        return StepOutcome(step=step, changed=bool(actions), detail=",".join(actions))

    def ensure_cross_build_helper(self) -> StepOutcome:
        step = "cross_build_helper"
        helper = self.toolchain.build_helper
        pinned = self.toolchain.build_helper_version
        installed = self.toolchains.installed_crates()
        if helper in installed and (pinned is None or installed[helper] == pinned):
            return StepOutcome(step=step, changed=False)
        self._require(step, f"install {helper}", self.toolchains.install_crate(helper, pinned))
        detail = helper if pinned is None else f"{helper}@{pinned}"
        return StepOutcome(step=step, changed=True, detail=detail)

    def ensure_shell_integration(self) -> StepOutcome:
        step = "shell_integration"
        if self._shell_integration_ready():
            return StepOutcome(step=step, changed=False)
        profile = self.config.shell_profile
        try:
            profile.parent.mkdir(parents=True, exist_ok=True)
            with profile.open("a", encoding="utf-8") as handle:
                handle.write(self._shell_line() + "\n")
        except OSError as exc:
            raise ProvisioningFailure(
                "Could not update shell profile.",
                step=step,
                context={"path": str(profile), "error": str(exc)},
            ) from exc
        return StepOutcome(step=step, changed=True, detail=str(profile))

    # ------------------------------------------------------------------
    # Read-only checks
    # ------------------------------------------------------------------

    def _base_tooling_ready(self) -> bool:
        installed = self.packages.installed_version
        if any(installed(p) for p in self.toolchain.conflicting_packages):
            return False
        return all(installed(p) for p in self.toolchain.repository_support_packages)

    def _repository_ready(self) -> bool:
        return self.packages.has_repository(self.toolchain.cross_toolchain_repository)

    def _cross_toolchain_ready(self) -> bool:
        if (
            self.packages.installed_version(self.toolchain.cross_toolchain_package)
            != self.toolchain.cross_toolchain_version
        ):
            return False
        return all(
            self.packages.installed_version(p)
            for p in (*self.toolchain.build_essentials, self.toolchain.build_graph_tool)
        )

    def _language_toolchain_ready(self) -> bool:
        channel = self.toolchain.channel
        return (
            self.toolchains.is_installed()
            and _has_channel(self.toolchains.installed_toolchains(), channel)
            and _is_channel(self.toolchains.active_override(self.config.project_dir), channel)
            and _has_component(
                self.toolchains.installed_components(channel), self.toolchain.source_component
            )
        )

    def _build_helper_ready(self) -> bool:
        installed = self.toolchains.installed_crates()
        helper = self.toolchain.build_helper
        pinned = self.toolchain.build_helper_version
        return helper in installed and (pinned is None or installed[helper] == pinned)

    def _shell_integration_ready(self) -> bool:
        profile = self.config.shell_profile
        if not profile.exists():
            return False
        try:
            lines = profile.read_text(encoding="utf-8").splitlines()
        except OSError:
            return False
        return self._shell_line() in (line.strip() for line in lines)

    def _shell_line(self) -> str:
        return f"cd {shlex.quote(str(self.config.project_dir))}"

    def _abort(self, result: ProvisionResult, step: str) -> None:
        self.state = EnvironmentState.FAILED
        result.state = self.state
        self._log(step, "Step failed; aborting.", level="error")

    def _require(self, step: str, action: str, result: CommandResult) -> None:
        if result.ok:
            return
        raise ProvisioningFailure(
            f"Provisioning step `{step}` failed to {action}.",
            step=step,
            returncode=result.returncode,
            hint="Fix the reported problem and rerun provisioning; completed steps are skipped.",
            context={"stderr": result.stderr[-2000:], "stdout": result.stdout[-2000:]},
        )

    def _log(
        self,
        step: str | None,
        message: str,
        *,
        level: str = "info",
        operation: str = "provision",
    ) -> None:
        self.logger.log(
            operation=operation,
            component=COMPONENT,
            step=step,
            message=message,
            level=level,
        )


def _is_channel(toolchain: str | None, channel: str) -> bool:
    return toolchain is not None and (toolchain == channel or toolchain.startswith(f"{channel}-"))


def _has_channel(toolchains: tuple[str, ...], channel: str) -> bool:
    return any(_is_channel(name, channel) for name in toolchains)


def _has_component(components: tuple[str, ...], component: str) -> bool:
    return any(name == component or name.startswith(f"{component}-") for name in components)
