"""
dualboot - Arch Linux installer for dual-boot next to Windows.

Adds Arch to the free space of a UEFI/GPT disk that already holds Windows,
sharing the existing EFI system partition and leaving the Windows partitions
untouched.
"""

__version__ = "1.0.0"
__author__ = "dualboot Team"

from dualboot.core.config import InstallerConfig
from dualboot.core.session import InstallSession

__all__ = ["InstallerConfig", "InstallSession", "__version__"]
