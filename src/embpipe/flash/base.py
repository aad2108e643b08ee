"""Debug adapter protocol and the fixed flash command sequence."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from embpipe.models import CommandResult, FlashStep

_TCL_SPECIAL = set(" \t\n;\"$[]{}\\")
_TCL_ESCAPES = {"\n": "\\n", "\t": "\\t"}


class DeviceProgrammer(Protocol):
    name: str

    def open(self, board_config: str) -> None:
        """Acquire the debug adapter for *board_config*."""

    def execute(self, command: str) -> CommandResult:
        """Run one adapter command and block until it completes."""

    def close(self) -> None:
        """Release the adapter. Safe to call when ``open`` failed."""


def adapter_command(step: FlashStep, artifact: Path) -> str:
    """Return the OpenOCD command for *step*."""
    if step is FlashStep.INIT:
        return "init"
    if step is FlashStep.RESET_HALT:
        return "reset init"
    if step is FlashStep.ERASE_WRITE:
        return f"flash write_image erase {tcl_word(str(artifact))}"
    if step is FlashStep.RESET_HALT_2:
        return "reset halt"
    if step is FlashStep.RESUME:
        return "resume"
    return "shutdown"


def tcl_word(value: str) -> str:
    """Quote *value* as a single Tcl word."""
    if value and not any(ch in _TCL_SPECIAL for ch in value):
        return value
    if not any(ch in "{}\\" for ch in value):
        return "{" + value + "}"
    # Braces cannot hold unbalanced braces or a trailing backslash.
    return "".join(_TCL_ESCAPES.get(ch, "\\" + ch if ch in _TCL_SPECIAL else ch) for ch in value)
