"""
Mount tracking.

Every successful mount is recorded in order; unmount_all releases them in
exactly the reverse order.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dualboot.core.errors import ExecutionError
from dualboot.core.logging import get_logger
from dualboot.core.models import MountRecord

if TYPE_CHECKING:
    from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)


class MountManager:
    """Performs mounts and tracks them for ordered release."""

    def __init__(self, backend: PlatformBackend) -> None:
        self.backend = backend
        self.records: list[MountRecord] = []
        self._sequence = 0

    @property
    def targets(self) -> list[str]:
        return [record.target for record in self.records]

    def mount(self, source: str, target: str, options: list[str] | None = None) -> MountRecord:
        """Mount `source` at `target`; the record is kept only on success."""
        ok, message = self.backend.make_directory(Path(target))
        if not ok:
            raise ExecutionError(message, command=self.backend.last_command)

        ok, message = self.backend.mount(source, target, options)
        if not ok:
            raise ExecutionError(
                f"Failed to mount {source} at {target}: {message}",
                command=self.backend.last_command,
            )

        record = MountRecord(
            target=target,
            source=source,
            options=tuple(options or ()),
            sequence_index=self._sequence,
        )
        self._sequence += 1
        self.records.append(record)
        logger.info("Mounted", source=source, target=target, options=list(record.options))
        return record

    def mount_boot(self, source: str, target: str) -> MountRecord:
        """Mount the shared boot partition read-only, falling back to read-write."""
        try:
            return self.mount(source, target, ["ro"])
        except ExecutionError as e:
            logger.warning("Failed to mount boot partition read-only, trying read-write", error=e.message)

        try:
            return self.mount(source, target, ["rw"])
        except ExecutionError as e:
            raise ExecutionError(
                f"Failed to mount shared boot partition {source} at all; "
                "bootloader installation is impossible",
                command=e.command,
            ) from e

    def remount(self, target: str, options: list[str]) -> MountRecord:
        """Change the options of a tracked mount without releasing it."""
        index = next((i for i, r in enumerate(self.records) if r.target == target), None)
        if index is None:
            raise ExecutionError(f"{target} is not a tracked mount point")

        record = self.records[index]
        ok, message = self.backend.mount(record.source, target, ["remount", *options])
        if not ok:
            raise ExecutionError(
                f"Failed to remount {target} ({','.join(options)}): {message}",
                command=self.backend.last_command,
            )

        updated = replace(record, options=tuple(options))
        self.records[index] = updated
        logger.info("Remounted", target=target, options=options)
        return updated

    def unmount_all(self, strict: bool = True) -> list[str]:
        """
        Unmount every tracked target, most recent first.

        Targets that are no longer mount points are skipped. In strict mode the
        first failure stops the release and raises ExecutionError, leaving the
        remaining records tracked; otherwise failures are logged and returned.
        """
        failures: list[str] = []

        while self.records:
            record = self.records.pop()

            if not self.backend.is_mountpoint(record.target):
                logger.debug("Not a mount point, skipping", target=record.target)
                continue

            ok, message = self.backend.unmount(record.target)
            if ok:
                logger.info("Unmounted", target=record.target)
                continue

            if strict:
                self.records.append(record)
                raise ExecutionError(
                    f"Could not unmount {record.target}: {message}",
                    command=self.backend.last_command,
                )

            logger.warning("Failed to unmount (ignored)", target=record.target, error=message)
            failures.append(record.target)

        return failures

    def __enter__(self) -> MountManager:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.unmount_all(strict=False)
