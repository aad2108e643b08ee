"""Public package entrypoint for the firmware provision/build/flash pipeline."""

from .builders import BuildSpec, XargoBuilder
from .config import PipelineConfig, load_config
from .errors import (
    BuildFailure,
    ErrorCode,
    FlashFailure,
    PipelineError,
    ProvisioningFailure,
    ValidationError,
)
from .flash import DryRunProgrammer, Flasher, OpenOcdProgrammer
from .models import (
    FLASH_SEQUENCE,
    BuildArtifact,
    EnvironmentState,
    FlashResult,
    FlashState,
    FlashStep,
    ProvisionResult,
    ToolchainSpec,
    artifact_path,
)
from .observability import StructuredLogger
from .provision import AptInstaller, Provisioner, RustupManager
from .runner import DryRunRunner, SubprocessRunner

__all__ = [
    "FLASH_SEQUENCE",
    "AptInstaller",
    "BuildArtifact",
    "BuildFailure",
    "BuildSpec",
    "DryRunProgrammer",
    "DryRunRunner",
    "EnvironmentState",
    "ErrorCode",
    "FlashFailure",
    "FlashResult",
    "FlashState",
    "FlashStep",
    "Flasher",
    "OpenOcdProgrammer",
    "PipelineConfig",
    "PipelineError",
    "ProvisionResult",
    "Provisioner",
    "ProvisioningFailure",
    "RustupManager",
    "StructuredLogger",
    "SubprocessRunner",
    "ToolchainSpec",
    "ValidationError",
    "XargoBuilder",
    "artifact_path",
    "load_config",
]
