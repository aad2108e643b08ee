"""Device programmers and the flash session driver."""

from __future__ import annotations

from embpipe.errors import ValidationError

from .base import DeviceProgrammer, adapter_command
from .dryrun import DryRunProgrammer
from .flasher import Flasher
from .openocd import OpenOcdProgrammer, TclRpcClient, batch_command


def get_programmer(name: str, *, binary: str = "openocd") -> DeviceProgrammer:
    if name == "openocd":
        return OpenOcdProgrammer(binary=binary)
    if name == "dry_run":
        return DryRunProgrammer()
    raise ValidationError("Unsupported programmer.", context={"programmer": name})


__all__ = [
    "DeviceProgrammer",
    "DryRunProgrammer",
    "Flasher",
    "OpenOcdProgrammer",
    "TclRpcClient",
    "adapter_command",
    "batch_command",
    "get_programmer",
]
