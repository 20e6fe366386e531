"""
Tests for dualboot.core.rollback module.
"""

from pathlib import Path

import pytest

from dualboot.core.errors import ExecutionError
from dualboot.core.mounts import MountManager
from dualboot.core.rollback import BACKUP_FILENAME, RollbackController

from tests.conftest import DISK, FakeBackend, ScriptedDecider


@pytest.fixture
def controller(fake_backend: FakeBackend, tmp_path: Path) -> RollbackController:
    return RollbackController(fake_backend, DISK, tmp_path / "backup")


class TestCaptureBackup:
    """Tests for partition-table backup."""

    def test_capture(self, controller: RollbackController, fake_backend: FakeBackend, tmp_path: Path) -> None:
        path = controller.capture_backup()

        assert path.name == BACKUP_FILENAME
        assert path.parent.parent == tmp_path / "backup"
        assert path.parent.name.startswith("dualboot_backup_")
        assert controller.state.backup_path == path
        assert fake_backend.call_names() == ["backup_partition_table"]

    def test_capture_is_idempotent(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        first = controller.capture_backup()
        second = controller.capture_backup()

        assert first == second
        assert fake_backend.call_names().count("backup_partition_table") == 1

    def test_backup_failure_is_fatal(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        fake_backend.failures["backup_partition_table"] = 1

        with pytest.raises(ExecutionError) as exc_info:
            controller.capture_backup()

        assert "refusing to modify" in exc_info.value.message
        assert exc_info.value.command is not None
        assert not controller.state.has_backup


class TestHandleFailure:
    """Tests for the failure path."""

    def test_no_backup_means_no_prompt(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        decider = ScriptedDecider()

        outcome = controller.handle_failure(MountManager(fake_backend), decider)

        assert decider.prompts == []
        assert not outcome.restore_attempted
        assert outcome.backup_path is None
        assert "No partition table backup was captured" in outcome.describe()

    def test_restore_and_reprobe(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        controller.capture_backup()
        mounts = MountManager(fake_backend)
        mounts.mount("/dev/nvme0n1p5", "/mnt")

        outcome = controller.handle_failure(mounts, ScriptedDecider())

        assert outcome.restore_attempted
        assert outcome.restore_succeeded
        assert controller.state.restored
        names = fake_backend.call_names()
        assert names.index("unmount") < names.index("restore_partition_table") < names.index("reprobe")

    def test_restore_at_most_once(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        controller.capture_backup()
        mounts = MountManager(fake_backend)

        controller.handle_failure(mounts, ScriptedDecider())
        second = controller.handle_failure(mounts, ScriptedDecider())

        assert fake_backend.call_names().count("restore_partition_table") == 1
        assert not second.restore_attempted

    def test_failed_restore_is_not_retried(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        controller.capture_backup()
        fake_backend.failures["restore_partition_table"] = 1
        mounts = MountManager(fake_backend)

        outcome = controller.handle_failure(mounts, ScriptedDecider())
        controller.handle_failure(mounts, ScriptedDecider())

        assert outcome.restore_attempted
        assert not outcome.restore_succeeded
        assert "sgdisk --load-backup" in outcome.message
        assert fake_backend.call_names().count("restore_partition_table") == 1

    def test_declined(self, controller: RollbackController, fake_backend: FakeBackend) -> None:
        controller.capture_backup()
        decider = ScriptedDecider(default=False)

        outcome = controller.handle_failure(MountManager(fake_backend), decider)

        assert len(decider.prompts) == 1
        assert "restore original partition table" in decider.prompts[0]
        assert not outcome.restore_attempted
        assert outcome.message == "Restore declined by user"
        assert "restore_partition_table" not in fake_backend.call_names()

    def test_simulation_never_restores(self, fake_backend: FakeBackend, tmp_path: Path) -> None:
        controller = RollbackController(fake_backend, DISK, tmp_path, simulation=True)
        controller.capture_backup()
        decider = ScriptedDecider()

        outcome = controller.handle_failure(MountManager(fake_backend), decider)

        assert decider.prompts == []
        assert not outcome.restore_attempted
        assert "restore_partition_table" not in fake_backend.call_names()
