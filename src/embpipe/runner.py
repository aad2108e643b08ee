"""External command execution.

Every package manager, toolchain manager, and compiler call goes through a
``CommandRunner`` so callers can be exercised without touching the host.
``SubprocessRunner`` runs commands for real, either capturing output or, with
``passthrough=True``, leaving it on the operator's terminal untouched.
``DryRunRunner`` plans against a bare machine: read-only queries fail, as if
nothing were installed, and every other command is recorded and reported as
successful. ``--dry-run`` prints the recorded commands as the plan.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

from embpipe.models import CommandResult, CommandSpec

COMMAND_NOT_FOUND = 127


class CommandRunner(Protocol):
    def run(self, command: CommandSpec) -> CommandResult:
        """Run *command* to completion and return its status and output."""


@dataclass(slots=True)
class SubprocessRunner:
    name: str = "subprocess"
    passthrough: bool = False

    def run(self, command: CommandSpec) -> CommandResult:
        env = None
        if command.env:
            env = {**os.environ, **command.env}
        try:
            result = subprocess.run(
                list(command.argv),
                cwd=command.cwd,
                env=env,
                capture_output=not self.passthrough,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{command.argv[0]}: command not found\n",
            )
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )


@dataclass(slots=True)
class DryRunRunner:
    name: str = "dry_run"
    commands: list[CommandSpec] = field(default_factory=list)

    def run(self, command: CommandSpec) -> CommandResult:
        if command.read_only:
            return CommandResult(returncode=1)
        self.commands.append(command)
        return CommandResult(returncode=0)
