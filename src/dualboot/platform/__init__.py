"""
dualboot Platform Abstraction Layer.

Provides the backend that talks to the live environment's tools, and the
simulation wrapper used for dry runs.
"""

from __future__ import annotations

import platform

from dualboot.platform.base import DESTRUCTIVE_OPERATIONS, CommandResult, PlatformBackend
from dualboot.platform.simulated import SimulatedBackend


def get_platform_backend(dry_run: bool = False) -> PlatformBackend:
    """Get the backend for the current OS, wrapped for simulation if requested."""
    system = platform.system().lower()

    if system != "linux":
        raise RuntimeError(f"Unsupported platform: {system}")

    from dualboot.platform.linux import LinuxBackend

    backend: PlatformBackend = LinuxBackend()
    if dry_run:
        backend = SimulatedBackend(backend)
    return backend


def is_linux() -> bool:
    """Check if running on Linux."""
    return platform.system().lower() == "linux"


__all__ = [
    "CommandResult",
    "DESTRUCTIVE_OPERATIONS",
    "PlatformBackend",
    "SimulatedBackend",
    "get_platform_backend",
    "is_linux",
]
