"""
dualboot data models.

Defines the data structures for free regions, partition plans, detected
partitions, mounts, checkpoints and rollback state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any

MIB = 1024 * 1024


def partition_device_path(disk: str, number: int) -> str:
    """Build the device path of partition `number` on `disk`."""
    # nvme0n1 -> nvme0n1p5, mmcblk0 -> mmcblk0p5, sda -> sda5
    if disk[-1:].isdigit():
        return f"{disk}p{number}"
    return f"{disk}{number}"


class PartitionRole(Enum):
    """Logical role of a partition in the dual-boot layout."""

    BOOT = auto()
    ROOT = auto()
    HOME = auto()
    PRESERVED = auto()


class CheckpointStatus(Enum):
    """Status of a workflow checkpoint."""

    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DiskRegion:
    """A contiguous region of a disk, in MiB."""

    start_mib: int
    end_mib: int

    def __post_init__(self) -> None:
        if self.end_mib <= self.start_mib:
            raise ValueError(
                f"Region end ({self.end_mib}) must be greater than start ({self.start_mib})"
            )

    @property
    def size_mib(self) -> int:
        return self.end_mib - self.start_mib

    def overlaps(self, start_mib: int, end_mib: int) -> bool:
        return start_mib < self.end_mib and self.start_mib < end_mib

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_mib": self.start_mib,
            "end_mib": self.end_mib,
            "size_mib": self.size_mib,
        }


@dataclass(frozen=True)
class PartitionPlan:
    """Root/home boundaries inside the allocation window, in MiB."""

    alloc_start: int
    alloc_end: int
    root_start: int
    root_end: int
    home_start: int
    home_end: int
    home_planned: bool
    root_clamped: bool = False

    def __post_init__(self) -> None:
        if not self.alloc_start <= self.root_start < self.root_end:
            raise ValueError("Root partition must start inside the allocation window")
        if not self.root_end <= self.home_start <= self.alloc_end:
            raise ValueError("Home partition must lie between root end and allocation end")

    @property
    def root_size_mib(self) -> int:
        return self.root_end - self.root_start

    @property
    def home_size_mib(self) -> int:
        return self.home_end - self.home_start if self.home_planned else 0

    def expected_starts(self) -> dict[PartitionRole, int]:
        """Planned start offsets per role, used for detection."""
        starts = {PartitionRole.ROOT: self.root_start}
        if self.home_planned:
            starts[PartitionRole.HOME] = self.home_start
        return starts

    def describe(self) -> list[str]:
        lines = [
            f"Allocation: {self.alloc_start} - {self.alloc_end} MiB",
            f"Root: {self.root_start} - {self.root_end} MiB ({self.root_size_mib} MiB)",
        ]
        if self.home_planned:
            lines.append(
                f"Home: {self.home_start} - {self.home_end} MiB ({self.home_size_mib} MiB)"
            )
        else:
            lines.append("Home: (none, root also serves /home)")
        if self.root_clamped:
            lines.append("Root was clamped to the end of the allocation window")
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "alloc_start": self.alloc_start,
            "alloc_end": self.alloc_end,
            "root_start": self.root_start,
            "root_end": self.root_end,
            "home_start": self.home_start,
            "home_end": self.home_end,
            "home_planned": self.home_planned,
            "root_clamped": self.root_clamped,
        }


@dataclass(frozen=True)
class BlockDevice:
    """A partition as reported by block-device enumeration."""

    path: str
    start_mib: int
    size_mib: int
    fstype: str | None = None
    number: int | None = None


@dataclass(frozen=True)
class PartitionHandle:
    """A partition resolved to a logical role."""

    device_path: str
    role: PartitionRole
    start_mib: int = 0
    size_mib: int = 0

    @property
    def is_mutable(self) -> bool:
        # The shared boot partition and foreign partitions are never formatted
        return self.role in (PartitionRole.ROOT, PartitionRole.HOME)

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_path": self.device_path,
            "role": self.role.name,
            "start_mib": self.start_mib,
            "size_mib": self.size_mib,
        }


@dataclass
class DetectedLayout:
    """Result of partition detection."""

    root: PartitionHandle
    boot: PartitionHandle
    home: PartitionHandle | None = None
    preserved: list[PartitionHandle] = field(default_factory=list)
    foreign_bootloader_present: bool = True
    foreign_source: str | None = None

    def describe(self) -> list[str]:
        return [
            f"Root: {self.root.device_path}",
            f"Home: {self.home.device_path if self.home else '(none, using root for /home)'}",
            f"Shared ESP: {self.boot.device_path}",
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root.to_dict(),
            "home": self.home.to_dict() if self.home else None,
            "boot": self.boot.to_dict(),
            "preserved": [p.to_dict() for p in self.preserved],
            "foreign_bootloader_present": self.foreign_bootloader_present,
            "foreign_source": self.foreign_source,
        }


@dataclass(frozen=True)
class MountRecord:
    """A successful mount, in the order it was performed."""

    target: str
    source: str
    options: tuple[str, ...] = ()
    sequence_index: int = 0


@dataclass
class Checkpoint:
    """A numbered phase boundary in the workflow."""

    index: int
    total: int
    key: str
    label: str
    status: CheckpointStatus = CheckpointStatus.PENDING
    summary: list[str] = field(default_factory=list)
    attempts: int = 0

    @property
    def heading(self) -> str:
        return f"[CHECKPOINT {self.index}/{self.total}] {self.label}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "total": self.total,
            "key": self.key,
            "label": self.label,
            "status": self.status.value,
            "summary": self.summary,
            "attempts": self.attempts,
        }


@dataclass
class RollbackState:
    """Partition-table backup captured before the first destructive write."""

    backup_path: Path | None = None
    restored: bool = False

    @property
    def has_backup(self) -> bool:
        return self.backup_path is not None
