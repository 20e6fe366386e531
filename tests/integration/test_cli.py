"""
Tests for the dualboot command line interface.
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from dualboot.cli.main import cli
from dualboot.core.config import InstallerConfig, LoggingConfig
from dualboot.platform.base import PlatformBackend
from dualboot.platform.simulated import SimulatedBackend

from tests.conftest import FakeBackend, windows_layout

YES = "y\n" * 20


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    config = InstallerConfig(
        logging=LoggingConfig(log_directory=tmp_path / "logs", file_enabled=False),
        report_directory=tmp_path / "reports",
    )
    config.install.backup_directory = tmp_path / "backup"
    config.install.retry_backoff_seconds = 0
    path = tmp_path / "config.json"
    config.save(path)
    return path


def backend_factory(fake: FakeBackend):
    def factory(dry_run: bool = False) -> PlatformBackend:
        return SimulatedBackend(fake) if dry_run else fake

    return factory


@pytest.mark.integration
class TestCli:
    """Tests for the click commands."""

    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "dualboot" in result.output

    def test_plan(self, config_file: Path) -> None:
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(cli, ["plan", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Partition Plan" in result.output
        assert "400001" in result.output
        assert fake.calls == []

    def test_plan_without_space(self, config_file: Path) -> None:
        from dualboot.core.models import DiskRegion

        fake = FakeBackend(regions=[DiskRegion(0, 100)])
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(cli, ["plan", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "No sufficiently large unallocated region" in result.output

    def test_invalid_disk(self, config_file: Path) -> None:
        result = CliRunner().invoke(cli, ["install", "--config", str(config_file), "--disk", "nvme0n1"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_install_dry_run(self, config_file: Path) -> None:
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(
                cli, ["install", "--config", str(config_file), "--dry-run"], input=YES
            )

        assert result.exit_code == 0, result.output
        assert "Dry run finished" in result.output
        assert "Checkpoints" in result.output
        assert fake.destructive_calls == []

    def test_install(self, config_file: Path) -> None:
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(cli, ["install", "--config", str(config_file)], input=YES)

        assert result.exit_code == 0, result.output
        assert "Installation finished" in result.output
        assert "format_partition" in fake.call_names()

    def test_install_declined(self, config_file: Path) -> None:
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(cli, ["install", "--config", str(config_file)], input="n\n")

        assert result.exit_code == 1
        assert "Installation aborted" in result.output
        assert fake.destructive_calls == []

    def test_install_aborts_without_boot_manager(self, config_file: Path) -> None:
        fake = FakeBackend(partitions=windows_layout()[1:], bootloader_devices=set())
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(cli, ["install", "--config", str(config_file)], input=YES)

        assert result.exit_code == 1
        assert "DetectionError" in result.output
        assert "format_partition" not in fake.call_names()

    def test_restore_dry_run(self, config_file: Path, tmp_path: Path) -> None:
        backup = tmp_path / "part-table-backup.sgdisk"
        backup.write_bytes(b"backup")
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(
                cli, ["restore", str(backup), "--config", str(config_file), "--dry-run"]
            )

        assert result.exit_code == 0, result.output
        assert "Would run" in result.output
        assert fake.calls == []

    def test_restore(self, config_file: Path, tmp_path: Path) -> None:
        backup = tmp_path / "part-table-backup.sgdisk"
        backup.write_bytes(b"backup")
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(
                cli, ["restore", str(backup), "--config", str(config_file)], input="y\n"
            )

        assert result.exit_code == 0, result.output
        assert fake.call_names() == ["restore_partition_table", "reprobe"]

    def test_restore_cancelled(self, config_file: Path, tmp_path: Path) -> None:
        backup = tmp_path / "part-table-backup.sgdisk"
        backup.write_bytes(b"backup")
        fake = FakeBackend()
        with patch("dualboot.cli.main.get_platform_backend", side_effect=backend_factory(fake)):
            result = CliRunner().invoke(
                cli, ["restore", str(backup), "--config", str(config_file)], input="n\n"
            )

        assert result.exit_code == 1
        assert "Restore cancelled" in result.output
        assert fake.calls == []
