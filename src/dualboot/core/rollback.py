"""
Rollback on fatal failure.

A partition-table backup is captured before the first destructive write. On
failure every tracked mount is released (best effort) and, outside
simulation, the user is offered a restore of the backup. The restore runs at
most once per run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from dualboot.core.errors import ExecutionError
from dualboot.core.logging import get_logger
from dualboot.core.models import RollbackState

if TYPE_CHECKING:
    from dualboot.core.checkpoint import Decider
    from dualboot.core.mounts import MountManager
    from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)

BACKUP_FILENAME = "part-table-backup.sgdisk"


@dataclass
class RollbackOutcome:
    """What the failure path did."""

    unmount_failures: list[str]
    backup_path: Path | None
    restore_attempted: bool = False
    restore_succeeded: bool = False
    message: str = ""

    def describe(self) -> list[str]:
        lines = []
        if self.unmount_failures:
            lines.append(f"Could not unmount: {', '.join(self.unmount_failures)}")
        if self.backup_path is None:
            lines.append("No partition table backup was captured")
        else:
            lines.append(f"Partition table backup: {self.backup_path}")
            if self.restore_attempted:
                state = "succeeded" if self.restore_succeeded else "FAILED"
                lines.append(f"Automatic restore attempted: {state}")
            else:
                lines.append("Automatic restore not attempted")
        if self.message:
            lines.append(self.message)
        return lines


class RollbackController:
    """Owns the partition-table backup and unwinds a failed run."""

    def __init__(
        self,
        backend: PlatformBackend,
        disk: str,
        backup_directory: Path,
        simulation: bool = False,
    ) -> None:
        self.backend = backend
        self.disk = disk
        self.backup_directory = backup_directory
        self.simulation = simulation
        self.state = RollbackState()

    def capture_backup(self) -> Path:
        """Back up the partition table. Must precede any destructive write."""
        if self.state.has_backup:
            return self.state.backup_path  # type: ignore[return-value]

        backup_dir = self.backup_directory / f"dualboot_backup_{int(datetime.now().timestamp())}"
        backup_path = backup_dir / BACKUP_FILENAME

        if self.simulation:
            logger.info("Partition table backup (simulated)", disk=self.disk, path=str(backup_path))
        else:
            logger.info("Backing up current partition table", disk=self.disk, path=str(backup_path))

        ok, message = self.backend.backup_partition_table(self.disk, backup_path)
        if not ok:
            raise ExecutionError(
                f"Partition table backup failed, refusing to modify {self.disk}: {message}",
                command=self.backend.last_command,
            )

        self.state.backup_path = backup_path
        return backup_path

    def handle_failure(self, mounts: MountManager, decider: Decider) -> RollbackOutcome:
        """Unmount everything and offer a single restore of the backup."""
        logger.warning("Running failure cleanup", disk=self.disk)
        failures = mounts.unmount_all(strict=False)

        outcome = RollbackOutcome(unmount_failures=failures, backup_path=self.state.backup_path)

        if not self.state.has_backup or self.state.restored or self.simulation:
            return outcome

        logger.warning("A partition table backup exists", path=str(self.state.backup_path))
        if not decider.confirm(
            "Attempt to restore original partition table from backup? (recommended)"
        ):
            outcome.message = "Restore declined by user"
            return outcome

        outcome.restore_attempted = True
        # Flip before replaying so no nested failure path can restore twice
        self.state.restored = True

        logger.warning("Restoring partition table", disk=self.disk, path=str(self.state.backup_path))
        ok, message = self.backend.restore_partition_table(self.disk, self.state.backup_path)  # type: ignore[arg-type]
        outcome.restore_succeeded = ok
        if not ok:
            outcome.message = f"{message}; restore manually with sgdisk --load-backup"
            logger.error("Failed to restore partition table automatically", error=message)
            return outcome

        reprobed, reprobe_message = self.backend.reprobe(self.disk)
        if not reprobed:
            logger.warning("Partition table re-read failed after restore", error=reprobe_message)
        outcome.message = message
        return outcome
