"""Typed pipeline error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across the CLI and reports."""

    VALIDATION = "E_VALIDATION"
    PROVISIONING = "E_PROVISIONING"
    BUILD = "E_BUILD"
    FLASH = "E_FLASH"


class PipelineError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    @property
    def exit_code(self) -> int:
        return 1

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ProvisioningFailure(PipelineError):
    """A provisioning step failed; ``step`` names it."""

    def __init__(
        self,
        message: str,
        *,
        step: str,
        returncode: int | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"step": step, **dict(context or {})}
        super().__init__(message, code=ErrorCode.PROVISIONING, hint=hint, context=merged)
        self.step = step
        self.returncode = returncode

    @property
    def exit_code(self) -> int:
        return self.returncode or 1


class BuildFailure(PipelineError):
    """The cross build exited non-zero; tool output is kept verbatim."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BUILD, hint=hint, context=context)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def exit_code(self) -> int:
        return self.returncode or 1


class FlashFailure(PipelineError):
    """A flash session step failed; ``step`` names it."""

    def __init__(
        self,
        message: str,
        *,
        step: str,
        returncode: int | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"step": step, **dict(context or {})}
        super().__init__(message, code=ErrorCode.FLASH, hint=hint, context=merged)
        self.step = step
        self.returncode = returncode

    @property
    def exit_code(self) -> int:
        return self.returncode or 1


__all__ = [
    "BuildFailure",
    "ErrorCode",
    "FlashFailure",
    "PipelineError",
    "ProvisioningFailure",
    "ValidationError",
]
