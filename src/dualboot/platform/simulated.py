"""
Simulation (dry-run) backend.

Wraps a real backend: read-only probes go through unchanged, destructive
operations are replaced by a description of what would run. Partitions and
mounts created during the simulation are tracked so that detection and
unmount logic see the same state a real run would.
"""

from __future__ import annotations

from pathlib import Path

from dualboot.core.logging import get_logger
from dualboot.core.models import BlockDevice, DiskRegion, partition_device_path
from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)


class SimulatedBackend(PlatformBackend):
    """Dry-run wrapper that never issues a destructive call."""

    def __init__(self, inner: PlatformBackend) -> None:
        self.inner = inner
        self.actions: list[str] = []
        self.last_command: str | None = None
        self._created: dict[str, list[BlockDevice]] = {}
        self._mounted: set[str] = set()
        self._written: set[Path] = set()

    @property
    def name(self) -> str:
        return f"simulated-{self.inner.name}"

    @property
    def simulated(self) -> bool:
        return True

    def _would(self, description: str) -> tuple[bool, str]:
        message = f"Would run: {description}"
        self.actions.append(description)
        self.last_command = description
        logger.info("[DRY-RUN] " + description)
        return True, message

    # ==================== Read-only (delegated) ====================

    def is_admin(self) -> bool:
        return self.inner.is_admin()

    def is_uefi_boot(self) -> bool:
        return self.inner.is_uefi_boot()

    def secure_boot_setup_mode(self) -> bool | None:
        return self.inner.secure_boot_setup_mode()

    def missing_tools(self, tools: list[str]) -> list[str]:
        return self.inner.missing_tools(tools)

    def is_block_device(self, path: str) -> bool:
        if any(d.path == path for devices in self._created.values() for d in devices):
            return True
        return self.inner.is_block_device(path)

    def list_free_regions(self, disk: str) -> list[DiskRegion]:
        return self.inner.list_free_regions(disk)

    def list_partitions(self, disk: str | None = None) -> list[BlockDevice]:
        devices = list(self.inner.list_partitions(disk))
        for created_disk, created in self._created.items():
            if disk is None or disk == created_disk:
                devices.extend(created)
        return devices

    def probe_filesystem(self, device: str) -> str | None:
        if self._is_simulated_device(device):
            return None
        return self.inner.probe_filesystem(device)

    def probe_identifiers(self, device: str) -> dict[str, str]:
        if self._is_simulated_device(device):
            return {}
        return self.inner.probe_identifiers(device)

    def probe_file(self, device: str, relative_path: str) -> bool:
        if self._is_simulated_device(device):
            return False
        return self.inner.probe_file(device, relative_path)

    def is_mountpoint(self, path: str) -> bool:
        return path in self._mounted

    def file_exists(self, path: Path) -> bool:
        return path in self._written or self.inner.file_exists(path)

    def free_space_mib(self, path: Path) -> int:
        return self.inner.free_space_mib(path)

    def missing_packages(self, packages: list[str]) -> list[str]:
        return self.inner.missing_packages(packages)

    def network_available(self) -> bool:
        return self.inner.network_available()

    def secure_boot_status(self) -> str:
        return self.inner.secure_boot_status()

    def _is_simulated_device(self, device: str) -> bool:
        return any(d.path == device for devices in self._created.values() for d in devices)

    # ==================== Destructive (described only) ====================

    def backup_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        return self._would(f"sgdisk --backup={backup_path} {disk}")

    def restore_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        return self._would(f"sgdisk --load-backup={backup_path} {disk}")

    def reprobe(self, disk: str) -> tuple[bool, str]:
        return self._would(f"partprobe {disk}")

    def create_partition(self, disk: str, start_mib: int, end_mib: int) -> tuple[bool, str]:
        existing = self.inner.list_partitions(disk) + self._created.get(disk, [])
        number = max((d.number or 0 for d in existing), default=0) + 1
        self._created.setdefault(disk, []).append(
            BlockDevice(
                path=partition_device_path(disk, number),
                start_mib=start_mib,
                size_mib=end_mib - start_mib,
                number=number,
            )
        )
        return self._would(f"parted --script {disk} mkpart primary ext4 {start_mib}MiB {end_mib}MiB")

    def format_partition(self, device: str, filesystem: str) -> tuple[bool, str]:
        return self._would(f"mkfs.{filesystem} -F {device}")

    def mount(self, device: str, target: str, options: list[str] | None = None) -> tuple[bool, str]:
        self._mounted.add(target)
        opts = f"-o {','.join(options)} " if options else ""
        return self._would(f"mount {opts}{device} {target}")

    def unmount(self, target: str) -> tuple[bool, str]:
        self._mounted.discard(target)
        return self._would(f"umount {target}")

    def make_directory(self, path: Path) -> tuple[bool, str]:
        return self._would(f"mkdir -p {path}")

    def write_file(self, path: Path, content: str, mode: int = 0o644, append: bool = False) -> tuple[bool, str]:
        self._written.add(path)
        verb = "append" if append else "write"
        return self._would(f"{verb} {len(content)} bytes to {path} (mode {mode:o})")

    def populate_base_system(self, root: Path, packages: list[str]) -> tuple[bool, str]:
        return self._would(f"pacstrap -K {root} {' '.join(packages)}")

    def run_chroot(self, root: Path, script: str) -> tuple[bool, str]:
        return self._would(f"arch-chroot {root} {script}")

    def create_swapfile(self, path: Path, size_mib: int) -> tuple[bool, str]:
        return self._would(f"dd if=/dev/zero of={path} bs=1M count={size_mib} && mkswap {path}")

    def sync(self) -> tuple[bool, str]:
        return self._would("sync")

    def reboot(self) -> tuple[bool, str]:
        return self._would("systemctl reboot")
