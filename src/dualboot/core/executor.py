"""
Partition creation.

Issues the root and home creation calls in order. Partition-table mutation is
never retried: the first failure raises ExecutionError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dualboot.core.errors import ExecutionError
from dualboot.core.logging import get_logger
from dualboot.core.models import PartitionPlan

if TYPE_CHECKING:
    from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)


class PartitionExecutor:
    """Creates the planned partitions on the target disk."""

    def __init__(self, backend: PlatformBackend, disk: str) -> None:
        self.backend = backend
        self.disk = disk

    def _create(self, role: str, start_mib: int, end_mib: int) -> str:
        logger.info(f"Creating {role} partition", disk=self.disk, start_mib=start_mib, end_mib=end_mib)
        ok, message = self.backend.create_partition(self.disk, start_mib, end_mib)
        if not ok:
            raise ExecutionError(
                f"Creating {role} partition failed: {message}",
                command=self.backend.last_command,
            )
        return message

    def execute(self, plan: PartitionPlan) -> list[str]:
        """Create root, then home if planned, then re-read the table."""
        results = [self._create("root", plan.root_start, plan.root_end)]

        if plan.home_planned:
            results.append(self._create("home", plan.home_start, plan.home_end))
        else:
            logger.info("Not enough space for separate /home partition; root serves /home")

        ok, message = self.backend.reprobe(self.disk)
        if not ok:
            # The table is written; a stale kernel view shows up at detection
            logger.warning("Partition table re-read failed", disk=self.disk, error=message)
        results.append(message)
        return results
