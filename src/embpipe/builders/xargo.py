"""Cargo-style cross builder (``xargo`` by default)."""

from __future__ import annotations

from dataclasses import dataclass, field

from embpipe.builders.base import BuildSpec
from embpipe.errors import BuildFailure
from embpipe.models import BuildArtifact, CommandSpec
from embpipe.observability import StructuredLogger
from embpipe.runner import CommandRunner

COMPONENT = "builder"


@dataclass(slots=True)
class XargoBuilder:
    runner: CommandRunner
    tool: str = "xargo"
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    name: str = "xargo"

    def command(self, spec: BuildSpec) -> tuple[str, ...]:
        return (
            self.tool,
            "build",
            *_profile_flags(spec.profile),
            "--target",
            spec.target,
            *spec.flags,
        )

    def build(self, spec: BuildSpec) -> BuildArtifact:
        argv = self.command(spec)
        expected = spec.artifact_path
        self.logger.log(
            operation="build",
            component=COMPONENT,
            step=None,
            message=" ".join(argv),
            extra={"artifact": str(expected)},
        )
        result = self.runner.run(
            CommandSpec(argv=argv, env=dict(spec.env), cwd=str(spec.project_dir))
        )
        if not result.ok:
            raise BuildFailure(
                f"`{self.tool} build` failed.",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                hint="See the compiler output above.",
                context={
                    "builder": self.name,
                    "target": spec.target,
                    "profile": spec.profile,
                    "returncode": str(result.returncode),
                    "command": " ".join(argv),
                },
            )
        if not expected.is_file():
            raise BuildFailure(
                "Build finished but the artifact is missing.",
                stdout=result.stdout,
                stderr=result.stderr,
                hint="Check `binary_name` against the crate's binary target.",
                context={"builder": self.name, "artifact": str(expected)},
            )
        artifact = BuildArtifact.describe(target=spec.target, profile=spec.profile, path=expected)
        self.logger.log(
            operation="build",
            component=COMPONENT,
            step=None,
            message=f"Built {artifact.path}",
            extra={"size": artifact.size, "sha256": artifact.sha256},
        )
        return artifact


def _profile_flags(profile: str) -> tuple[str, ...]:
    if profile == "release":
        return ("--release",)
    if profile == "debug":
        return ()
    return ("--profile", profile)
