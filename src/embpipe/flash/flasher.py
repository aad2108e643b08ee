"""Linear flash session driver.

``idle → init → reset_halt → erase_write → reset_halt_2 → resume → shutdown → done``

Each transition is one blocking adapter call. The first failing step ends
the session in ``failed``; there is no recovery beyond rerunning from
``idle``. A failure between ``erase_write`` and ``resume`` can leave the
target halted with a valid image, which a rerun fixes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from embpipe.errors import FlashFailure
from embpipe.flash.base import DeviceProgrammer, adapter_command
from embpipe.models import (
    DEFAULT_BOARD_CONFIG,
    FLASH_SEQUENCE,
    FlashResult,
    FlashSession,
    FlashState,
    FlashStepResult,
)
from embpipe.observability import StructuredLogger

COMPONENT = "flasher"


@dataclass(slots=True)
class Flasher:
    programmer: DeviceProgrammer
    board_config: str = DEFAULT_BOARD_CONFIG
    require_artifact: bool = False
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    last_session: FlashSession | None = field(default=None, init=False)
    _active: FlashSession | None = field(default=None, init=False, repr=False)

    @property
    def active_session(self) -> FlashSession | None:
        return self._active

    def commands(self, artifact: Path) -> list[str]:
        return [adapter_command(step, artifact) for step in FLASH_SEQUENCE]

    def flash(self, artifact: Path) -> FlashResult:
        """Run the full sequence; raise ``FlashFailure`` at the first failing step."""
        if self._active is not None:
            raise FlashFailure(
                "A flash session is already active on this adapter.",
                step=self._active.state.value,
                hint="Wait for the running session to finish.",
                context={"board_config": self.board_config},
            )
        session = FlashSession(artifact=artifact, board_config=self.board_config)
        if self.require_artifact and not artifact.is_file():
            raise FlashFailure(
                "Build artifact not found.",
                step="precondition",
                hint="Run the build first, or pass the artifact path explicitly.",
                context={"artifact": str(artifact)},
            )

        self._active = session
        self.last_session = session
        try:
            self.programmer.open(self.board_config)
            for step in FLASH_SEQUENCE:
                session.advance(step)
                command = adapter_command(step, artifact)
                self._log(step.value, command)
                result = self.programmer.execute(command)
                session.trace.append(
                    FlashStepResult(
                        step=step,
                        command=command,
                        returncode=result.returncode,
                        output=result.stdout if result.ok else result.stderr,
                    )
                )
                if not result.ok:
                    session.state = FlashState.FAILED
                    self._log(step.value, f"failed with status {result.returncode}", level="error")
                    raise FlashFailure(
                        f"Flash step `{step.value}` failed.",
                        step=step.value,
                        returncode=result.returncode,
                        hint=_hint_for(step.value),
                        context={
                            "programmer": self.programmer.name,
                            "board_config": self.board_config,
                            "command": command,
                            "output": result.stderr[-2000:],
                        },
                    )
            session.state = FlashState.DONE
            self._log(None, "Flash session complete.")
        finally:
            self.programmer.close()
            self._active = None

        return FlashResult(
            artifact=artifact,
            board_config=self.board_config,
            state=session.state,
            steps=tuple(session.trace),
        )

    def _log(self, step: str | None, message: str, *, level: str = "info") -> None:
        self.logger.log(
            operation="flash",
            component=COMPONENT,
            step=step,
            message=message,
            level=level,
        )


def _hint_for(step: str) -> str:
    if step == "init":
        return "Check that the debug adapter is connected, powered, and not in use."
    if step == "erase_write":
        return "Check the artifact path and that the target flash is writable; rerun to retry."
    return "Check physical connectivity and power, then rerun the flash from the start."
