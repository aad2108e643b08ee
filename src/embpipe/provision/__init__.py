"""Environment provisioning: package manager, toolchain manager, and the ordered provisioner."""

from .installers import AptInstaller, PackageInstaller, RustupManager, ToolchainManager
from .provisioner import ProvisionStep, Provisioner

__all__ = [
    "AptInstaller",
    "PackageInstaller",
    "ProvisionStep",
    "Provisioner",
    "RustupManager",
    "ToolchainManager",
]
