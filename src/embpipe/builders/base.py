"""Typed interfaces for cross builders."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from embpipe.models import BuildArtifact, artifact_path


@dataclass(frozen=True, slots=True)
class BuildSpec:
    project_dir: Path
    target: str
    profile: str
    binary_name: str
    flags: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def artifact_path(self) -> Path:
        return artifact_path(
            target=self.target,
            profile=self.profile,
            binary_name=self.binary_name,
            root=self.project_dir,
        )


class CrossBuilder(Protocol):
    name: str

    def command(self, spec: BuildSpec) -> tuple[str, ...]:
        """Return the build invocation for *spec*."""

    def build(self, spec: BuildSpec) -> BuildArtifact:
        """Compile and return the artifact at its deterministic path."""
