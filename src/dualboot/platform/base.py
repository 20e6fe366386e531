"""
dualboot Platform Backend Base.

Defines the abstract interface to the external tools the installer drives.
Destructive operations return (success, message); read-only probes return
plain values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dualboot.core.models import BlockDevice, DiskRegion


# Methods that mutate the disk, the mounted tree or the machine state.
DESTRUCTIVE_OPERATIONS = frozenset(
    {
        "backup_partition_table",
        "restore_partition_table",
        "reprobe",
        "create_partition",
        "format_partition",
        "mount",
        "unmount",
        "make_directory",
        "write_file",
        "populate_base_system",
        "run_chroot",
        "create_swapfile",
        "sync",
        "reboot",
    }
)


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        command: str | list[str],
        duration_seconds: float = 0.0,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.duration_seconds = duration_seconds

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_text(self) -> str:
        return self.command if isinstance(self.command, str) else " ".join(self.command)

    def __repr__(self) -> str:
        return f"CommandResult(rc={self.returncode}, cmd='{self.command_text[:50]}...')"


class PlatformBackend(ABC):
    """Abstract base class for the external collaborators of the installer."""

    last_command: str | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'linux', 'simulated')."""

    @property
    def simulated(self) -> bool:
        return False

    # ==================== Environment ====================

    @abstractmethod
    def is_admin(self) -> bool:
        """Check if running with root privileges."""

    @abstractmethod
    def is_uefi_boot(self) -> bool:
        """Check if the live environment was booted in UEFI mode."""

    @abstractmethod
    def secure_boot_setup_mode(self) -> bool | None:
        """Whether firmware is in Secure Boot Setup Mode (None if unknown)."""

    @abstractmethod
    def missing_tools(self, tools: list[str]) -> list[str]:
        """Return the subset of `tools` not found on PATH."""

    @abstractmethod
    def is_block_device(self, path: str) -> bool:
        """Check if `path` exists and is a block device."""

    # ==================== Inventory ====================

    @abstractmethod
    def list_free_regions(self, disk: str) -> list[DiskRegion]:
        """Unallocated regions of `disk`, in MiB."""

    @abstractmethod
    def list_partitions(self, disk: str | None = None) -> list[BlockDevice]:
        """Partitions of `disk`, or of every disk when `disk` is None."""

    @abstractmethod
    def probe_filesystem(self, device: str) -> str | None:
        """Filesystem type on `device`, or None if there is none."""

    @abstractmethod
    def probe_identifiers(self, device: str) -> dict[str, str]:
        """blkid identifiers (UUID, PARTUUID, ...) of `device`."""

    @abstractmethod
    def probe_file(self, device: str, relative_path: str) -> bool:
        """Temporarily mount `device` read-only and test for a file."""

    @abstractmethod
    def is_mountpoint(self, path: str) -> bool:
        """Check if `path` is currently a mount point."""

    @abstractmethod
    def file_exists(self, path: Path) -> bool:
        """Check if a file exists."""

    @abstractmethod
    def free_space_mib(self, path: Path) -> int:
        """Free space available under `path`, in MiB."""

    @abstractmethod
    def missing_packages(self, packages: list[str]) -> list[str]:
        """Packages not available from the configured repositories."""

    @abstractmethod
    def network_available(self) -> bool:
        """Check if the package mirrors are reachable."""

    @abstractmethod
    def secure_boot_status(self) -> str:
        """Human-readable Secure Boot status for reporting."""

    # ==================== Partition table ====================

    @abstractmethod
    def backup_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        """Write a full partition-table backup of `disk` to `backup_path`."""

    @abstractmethod
    def restore_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        """Replay a partition-table backup onto `disk`."""

    @abstractmethod
    def reprobe(self, disk: str) -> tuple[bool, str]:
        """Ask the kernel to re-read the partition table of `disk`."""

    @abstractmethod
    def create_partition(self, disk: str, start_mib: int, end_mib: int) -> tuple[bool, str]:
        """Create a partition spanning [start_mib, end_mib) on `disk`."""

    @abstractmethod
    def format_partition(self, device: str, filesystem: str) -> tuple[bool, str]:
        """Create a filesystem on `device`."""

    # ==================== Mounts and files ====================

    @abstractmethod
    def mount(self, device: str, target: str, options: list[str] | None = None) -> tuple[bool, str]:
        """Mount `device` at `target`."""

    @abstractmethod
    def unmount(self, target: str) -> tuple[bool, str]:
        """Unmount `target`."""

    @abstractmethod
    def make_directory(self, path: Path) -> tuple[bool, str]:
        """Create a directory and its parents."""

    @abstractmethod
    def write_file(self, path: Path, content: str, mode: int = 0o644, append: bool = False) -> tuple[bool, str]:
        """Write a text file."""

    # ==================== System population ====================

    @abstractmethod
    def populate_base_system(self, root: Path, packages: list[str]) -> tuple[bool, str]:
        """Install `packages` into the tree mounted at `root`. Safe to retry."""

    @abstractmethod
    def run_chroot(self, root: Path, script: str) -> tuple[bool, str]:
        """Run `script` (a path inside the new root) in a chroot."""

    @abstractmethod
    def create_swapfile(self, path: Path, size_mib: int) -> tuple[bool, str]:
        """Allocate and initialize a swapfile."""

    @abstractmethod
    def sync(self) -> tuple[bool, str]:
        """Flush filesystem buffers."""

    @abstractmethod
    def reboot(self) -> tuple[bool, str]:
        """Reboot the machine."""
