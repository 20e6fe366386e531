"""
Pytest configuration and fixtures for dualboot tests.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dualboot.core.checkpoint import Decider  # noqa: E402
from dualboot.core.models import BlockDevice, DiskRegion, partition_device_path  # noqa: E402
from dualboot.platform.base import DESTRUCTIVE_OPERATIONS, PlatformBackend  # noqa: E402

DISK = "/dev/nvme0n1"
BOOTLOADER = "EFI/Microsoft/Boot/bootmgfw.efi"


def windows_layout(disk: str = DISK) -> list[BlockDevice]:
    """ESP, MSR, Windows system and recovery, ending before 400000 MiB."""
    return [
        BlockDevice(partition_device_path(disk, 1), 1, 100, "vfat", 1),
        BlockDevice(partition_device_path(disk, 2), 101, 16, None, 2),
        BlockDevice(partition_device_path(disk, 3), 117, 399000, "ntfs", 3),
        BlockDevice(partition_device_path(disk, 4), 399117, 800, "ntfs", 4),
    ]


class FakeBackend(PlatformBackend):
    """In-memory backend that records every call."""

    def __init__(
        self,
        disk: str = DISK,
        regions: list[DiskRegion] | None = None,
        partitions: list[BlockDevice] | None = None,
        bootloader_devices: set[str] | None = None,
    ) -> None:
        self.disk = disk
        self.regions = regions if regions is not None else [DiskRegion(400000, 976762)]
        self.partitions = partitions if partitions is not None else windows_layout(disk)
        self.other_partitions: list[BlockDevice] = []
        self.bootloader_devices = (
            bootloader_devices if bootloader_devices is not None else {partition_device_path(disk, 1)}
        )
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, int] = {}
        self.mounted: list[str] = []
        self.files: dict[Path, str] = {}
        self.filesystems: dict[str, str] = {}
        self.admin = True
        self.uefi = True
        self.setup_mode: bool | None = True
        self.missing: list[str] = []
        self.unavailable_packages: list[str] = []
        self.network = True
        self.free_space = 100 * 1024
        self.last_command: str | None = None

    @property
    def name(self) -> str:
        return "fake"

    @property
    def destructive_calls(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [call for call in self.calls if call[0] in DESTRUCTIVE_OPERATIONS]

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _record(self, name: str, *args: Any) -> tuple[bool, str]:
        self.calls.append((name, args))
        self.last_command = f"{name} {' '.join(str(a) for a in args)}".strip()
        remaining = self.failures.get(name, 0)
        if remaining:
            self.failures[name] = remaining - 1
            return False, f"{name} failed"
        return True, f"{name} ok"

    # Environment

    def is_admin(self) -> bool:
        return self.admin

    def is_uefi_boot(self) -> bool:
        return self.uefi

    def secure_boot_setup_mode(self) -> bool | None:
        return self.setup_mode

    def missing_tools(self, tools: list[str]) -> list[str]:
        return [t for t in tools if t in self.missing]

    def is_block_device(self, path: str) -> bool:
        return path == self.disk or any(d.path == path for d in self.partitions + self.other_partitions)

    # Inventory

    def list_free_regions(self, disk: str) -> list[DiskRegion]:
        return list(self.regions)

    def list_partitions(self, disk: str | None = None) -> list[BlockDevice]:
        if disk is None:
            return self.partitions + self.other_partitions
        return list(self.partitions) if disk == self.disk else []

    def probe_filesystem(self, device: str) -> str | None:
        if device in self.filesystems:
            return self.filesystems[device]
        for d in self.partitions + self.other_partitions:
            if d.path == device:
                return d.fstype
        return None

    def probe_identifiers(self, device: str) -> dict[str, str]:
        name = device.rsplit("/", 1)[-1]
        return {"UUID": f"uuid-{name}", "PARTUUID": f"partuuid-{name}"}

    def probe_file(self, device: str, relative_path: str) -> bool:
        return device in self.bootloader_devices

    def is_mountpoint(self, path: str) -> bool:
        return path in self.mounted

    def file_exists(self, path: Path) -> bool:
        return path in self.files

    def free_space_mib(self, path: Path) -> int:
        return self.free_space

    def missing_packages(self, packages: list[str]) -> list[str]:
        return [p for p in packages if p in self.unavailable_packages]

    def network_available(self) -> bool:
        return self.network

    def secure_boot_status(self) -> str:
        return "Setup Mode: Enabled" if self.setup_mode else "Setup Mode: Disabled"

    # Destructive

    def backup_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        return self._record("backup_partition_table", disk, backup_path)

    def restore_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        return self._record("restore_partition_table", disk, backup_path)

    def reprobe(self, disk: str) -> tuple[bool, str]:
        return self._record("reprobe", disk)

    def create_partition(self, disk: str, start_mib: int, end_mib: int) -> tuple[bool, str]:
        ok, message = self._record("create_partition", disk, start_mib, end_mib)
        if ok:
            number = max((d.number or 0 for d in self.partitions), default=0) + 1
            self.partitions.append(
                BlockDevice(partition_device_path(disk, number), start_mib, end_mib - start_mib, None, number)
            )
        return ok, message

    def format_partition(self, device: str, filesystem: str) -> tuple[bool, str]:
        ok, message = self._record("format_partition", device, filesystem)
        if ok:
            self.filesystems[device] = filesystem
        return ok, message

    def mount(self, device: str, target: str, options: list[str] | None = None) -> tuple[bool, str]:
        ok, message = self._record("mount", device, target, tuple(options or ()))
        if ok and target not in self.mounted:
            self.mounted.append(target)
        return ok, message

    def unmount(self, target: str) -> tuple[bool, str]:
        ok, message = self._record("unmount", target)
        if ok and target in self.mounted:
            self.mounted.remove(target)
        return ok, message

    def make_directory(self, path: Path) -> tuple[bool, str]:
        return self._record("make_directory", path)

    def write_file(self, path: Path, content: str, mode: int = 0o644, append: bool = False) -> tuple[bool, str]:
        ok, message = self._record("write_file", path, mode, append)
        if ok:
            self.files[path] = (self.files.get(path, "") if append else "") + content
        return ok, message

    def populate_base_system(self, root: Path, packages: list[str]) -> tuple[bool, str]:
        return self._record("populate_base_system", root, tuple(packages))

    def run_chroot(self, root: Path, script: str) -> tuple[bool, str]:
        return self._record("run_chroot", root, script)

    def create_swapfile(self, path: Path, size_mib: int) -> tuple[bool, str]:
        ok, message = self._record("create_swapfile", path, size_mib)
        if ok:
            self.files[path] = ""
        return ok, message

    def sync(self) -> tuple[bool, str]:
        return self._record("sync")

    def reboot(self) -> tuple[bool, str]:
        return self._record("reboot")


class ScriptedDecider(Decider):
    """Answers prompts by substring match, falling back to a default."""

    def __init__(self, default: bool = True, answers: dict[str, bool] | None = None) -> None:
        self.default = default
        self.answers = dict(answers or {})
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        for fragment, answer in self.answers.items():
            if fragment in prompt:
                return answer
        return self.default


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Backend with a Windows layout and 563 GiB of free space."""
    return FakeBackend()


@pytest.fixture
def decider() -> ScriptedDecider:
    """Decider that says yes to everything."""
    return ScriptedDecider()


@pytest.fixture
def sample_config(tmp_path: Path) -> "InstallerConfig":
    """Create a sample configuration for testing."""
    from dualboot.core.config import InstallerConfig

    config = InstallerConfig(report_directory=tmp_path / "reports")
    config.logging.log_directory = tmp_path / "logs"
    config.logging.file_enabled = False
    config.install.backup_directory = tmp_path / "backup"
    config.install.retry_backoff_seconds = 0
    config.ensure_directories()
    return config


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
