"""
Partition detection.

Maps newly created devices to their planned roles by start offset, and
locates the shared EFI system partition by probing for the foreign OS boot
manager. Matching is a pure function; the detector gathers candidates
through the backend.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from typing import TYPE_CHECKING

from dualboot.core.errors import DetectionError
from dualboot.core.logging import get_logger
from dualboot.core.models import (
    BlockDevice,
    DetectedLayout,
    PartitionHandle,
    PartitionPlan,
    PartitionRole,
)

if TYPE_CHECKING:
    from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)

DEFAULT_TOLERANCE_MIB = 5
ESP_FILESYSTEMS = frozenset({"vfat", "fat", "fat32", "fat16"})


def match_roles(
    candidates: Iterable[BlockDevice],
    expected_starts: Mapping[PartitionRole, int],
    tolerance_mib: int = DEFAULT_TOLERANCE_MIB,
    excluded: Collection[str] = (),
) -> dict[PartitionRole, BlockDevice]:
    """
    Assign each role the closest unclaimed device within the tolerance.

    Candidate pairs are ranked by (distance, role order, enumeration order)
    and assigned greedily, so ties go to the first-seen device and no device
    can hold two roles. A wider tolerance only adds pairs ranked after the
    existing ones, so it never changes a match made at a tighter tolerance.
    """
    role_rank = {role: rank for rank, role in enumerate(expected_starts)}
    pairs: list[tuple[int, int, int, PartitionRole, BlockDevice]] = []

    for order, device in enumerate(candidates):
        if device.path in excluded:
            continue
        for role, start in expected_starts.items():
            distance = abs(device.start_mib - start)
            if distance <= tolerance_mib:
                pairs.append((distance, role_rank[role], order, role, device))

    pairs.sort(key=lambda pair: pair[:3])

    matched: dict[PartitionRole, BlockDevice] = {}
    claimed: set[str] = set()
    for _, _, _, role, device in pairs:
        if role in matched or device.path in claimed:
            continue
        matched[role] = device
        claimed.add(device.path)

    return matched


class PartitionDetector:
    """Resolves root/home/boot devices after partition creation."""

    def __init__(
        self,
        backend: PlatformBackend,
        disk: str,
        boot_partition: str,
        foreign_bootloader: str,
        preserved: Collection[str] = (),
        tolerance_mib: int = DEFAULT_TOLERANCE_MIB,
    ) -> None:
        self.backend = backend
        self.disk = disk
        self.boot_partition = boot_partition
        self.foreign_bootloader = foreign_bootloader
        self.preserved = list(preserved)
        self.tolerance_mib = tolerance_mib

    def detect(self, plan: PartitionPlan) -> DetectedLayout:
        """Match planned roles and resolve the shared boot partition."""
        candidates = self.backend.list_partitions(self.disk)
        for device in candidates:
            logger.debug(
                "Detection candidate",
                device=device.path,
                start_mib=device.start_mib,
                size_mib=device.size_mib,
            )

        excluded = {self.boot_partition, *self.preserved}
        matched = match_roles(candidates, plan.expected_starts(), self.tolerance_mib, excluded)

        root = matched.get(PartitionRole.ROOT)
        if root is None:
            raise DetectionError(
                f"Failed to detect newly created root partition near {plan.root_start} MiB "
                f"on {self.disk}. Inspect partitions manually."
            )

        home = matched.get(PartitionRole.HOME)
        if plan.home_planned and home is None:
            logger.warning(
                "Planned home partition not detected; root will serve /home",
                expected_start_mib=plan.home_start,
            )

        claimed = {root.path} | ({home.path} if home else set())
        boot_path, present, source = self.resolve_boot(claimed)

        by_path = {d.path: d for d in candidates}
        preserved = [
            self._handle(by_path.get(path), path, PartitionRole.PRESERVED)
            for path in self.preserved
            if path in by_path or self.backend.is_block_device(path)
        ]

        layout = DetectedLayout(
            root=self._handle(root, root.path, PartitionRole.ROOT),
            home=self._handle(home, home.path, PartitionRole.HOME) if home else None,
            boot=self._handle(by_path.get(boot_path), boot_path, PartitionRole.BOOT),
            preserved=preserved,
            foreign_bootloader_present=present,
            foreign_source=source,
        )
        logger.info(
            "Partitions detected",
            root=layout.root.device_path,
            home=layout.home.device_path if layout.home else None,
            boot=layout.boot.device_path,
            foreign_bootloader_present=present,
        )
        return layout

    def resolve_boot(self, claimed: Collection[str] = ()) -> tuple[str, bool, str | None]:
        """
        Locate the shared boot partition.

        Returns (device, boot manager present on it, other partition holding
        the boot manager if it is not).
        """
        if self.backend.is_block_device(self.boot_partition):
            logger.info("Using configured boot partition", device=self.boot_partition)
            present = self.backend.probe_file(self.boot_partition, self.foreign_bootloader)
            if present:
                return self.boot_partition, True, None
            source = self._find_bootloader({*claimed, self.boot_partition})
            if source is None:
                logger.warning(
                    "Foreign boot manager not found on any partition",
                    device=self.boot_partition,
                    bootloader=self.foreign_bootloader,
                )
            return self.boot_partition, False, source

        logger.warning(
            "Configured boot partition not found; probing all partitions",
            device=self.boot_partition,
        )
        found = self._find_bootloader(claimed)
        if found is None:
            raise DetectionError(
                f"No suitable EFI system partition found: none contains "
                f"{self.foreign_bootloader}. A new one is never created; fix manually."
            )
        return found, True, None

    def _find_bootloader(self, skip: Collection[str]) -> str | None:
        for device in self.backend.list_partitions(None):
            if device.path in skip:
                continue
            fstype = device.fstype or self.backend.probe_filesystem(device.path)
            if fstype is not None and fstype.lower() not in ESP_FILESYSTEMS:
                continue
            if self.backend.probe_file(device.path, self.foreign_bootloader):
                logger.info("Found foreign boot manager", device=device.path)
                return device.path
        return None

    @staticmethod
    def _handle(device: BlockDevice | None, path: str, role: PartitionRole) -> PartitionHandle:
        if device is None:
            return PartitionHandle(device_path=path, role=role)
        return PartitionHandle(
            device_path=path,
            role=role,
            start_mib=device.start_mib,
            size_mib=device.size_mib,
        )
