"""Programmer that records adapter commands without touching hardware."""

from __future__ import annotations

from dataclasses import dataclass, field

from embpipe.models import CommandResult


@dataclass(slots=True)
class DryRunProgrammer:
    name: str = "dry_run"
    board_config: str | None = None
    commands: list[str] = field(default_factory=list)

    def open(self, board_config: str) -> None:
        self.board_config = board_config

    def execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        return CommandResult(returncode=0)

    def close(self) -> None:
        pass
