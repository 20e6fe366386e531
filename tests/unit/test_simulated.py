"""
Tests for dualboot.platform.simulated module.
"""

from pathlib import Path

from dualboot.platform.simulated import SimulatedBackend

from tests.conftest import DISK, FakeBackend


class TestSimulatedBackend:
    """Tests for the dry-run backend."""

    def test_destructive_operations_are_described(self, fake_backend: FakeBackend) -> None:
        backend = SimulatedBackend(fake_backend)

        ok, message = backend.format_partition("/dev/nvme0n1p5", "ext4")

        assert ok
        assert message == "Would run: mkfs.ext4 -F /dev/nvme0n1p5"
        assert backend.actions == ["mkfs.ext4 -F /dev/nvme0n1p5"]
        assert backend.last_command == "mkfs.ext4 -F /dev/nvme0n1p5"
        assert fake_backend.calls == []

    def test_reads_are_delegated(self, fake_backend: FakeBackend) -> None:
        backend = SimulatedBackend(fake_backend)

        assert backend.simulated
        assert backend.name == "simulated-fake"
        assert backend.list_free_regions(DISK) == fake_backend.regions
        assert backend.probe_file("/dev/nvme0n1p1", "EFI/Microsoft/Boot/bootmgfw.efi")

    def test_created_partitions_are_listed(self, fake_backend: FakeBackend) -> None:
        backend = SimulatedBackend(fake_backend)

        backend.create_partition(DISK, 400001, 502401)
        backend.create_partition(DISK, 502401, 924288)

        created = backend.list_partitions(DISK)[-2:]
        assert [d.path for d in created] == ["/dev/nvme0n1p5", "/dev/nvme0n1p6"]
        assert created[0].start_mib == 400001
        assert backend.is_block_device("/dev/nvme0n1p6")
        assert backend.probe_filesystem("/dev/nvme0n1p5") is None
        assert backend.probe_identifiers("/dev/nvme0n1p5") == {}
        assert len(fake_backend.partitions) == 4

    def test_mounts_are_tracked(self, fake_backend: FakeBackend) -> None:
        backend = SimulatedBackend(fake_backend)

        backend.mount("/dev/nvme0n1p1", "/mnt/boot", ["ro"])
        assert backend.is_mountpoint("/mnt/boot")
        assert backend.actions[-1] == "mount -o ro /dev/nvme0n1p1 /mnt/boot"

        backend.unmount("/mnt/boot")
        assert not backend.is_mountpoint("/mnt/boot")

    def test_written_files_exist(self, fake_backend: FakeBackend) -> None:
        backend = SimulatedBackend(fake_backend)

        backend.write_file(Path("/mnt/etc/fstab"), "x\n")

        assert backend.file_exists(Path("/mnt/etc/fstab"))
        assert backend.actions[-1] == "write 2 bytes to /mnt/etc/fstab (mode 644)"
