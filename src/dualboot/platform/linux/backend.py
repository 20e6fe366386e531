"""
Linux Platform Backend Implementation.

Drives the Arch live-environment tools: parted, sgdisk, lsblk, blkid,
mkfs.ext4, mount, pacstrap and arch-chroot.
"""

from __future__ import annotations

import os
import shutil
import stat
import subprocess
import tempfile
import time
from pathlib import Path

import psutil

from dualboot.core.logging import get_logger
from dualboot.core.models import MIB, BlockDevice, DiskRegion
from dualboot.platform.base import CommandResult, PlatformBackend
from dualboot.platform.linux.parsers import (
    build_block_devices,
    parse_blkid_output,
    parse_lsblk_json,
    parse_parted_free,
    parse_sbctl_setup_mode,
)

logger = get_logger(__name__)

EFI_FIRMWARE_DIR = Path("/sys/firmware/efi")
SETUP_MODE_EFIVAR = Path(
    "/sys/firmware/efi/efivars/SetupMode-8be4df61-93ca-11d2-aa0d-00e098032b8c"
)


class LinuxBackend(PlatformBackend):
    """Linux implementation of the installer's external operations."""

    # Tool paths (can be overridden for testing)
    LSBLK = "lsblk"
    BLKID = "blkid"
    PARTED = "parted"
    SGDISK = "sgdisk"
    PARTPROBE = "partprobe"
    UDEVADM = "udevadm"
    MOUNT = "mount"
    UMOUNT = "umount"
    MKFS_EXT4 = "mkfs.ext4"
    MKSWAP = "mkswap"
    DD = "dd"
    PACSTRAP = "pacstrap"
    PACMAN = "pacman"
    ARCH_CHROOT = "arch-chroot"
    SBCTL = "sbctl"
    PING = "ping"
    SYNC = "sync"
    SYSTEMCTL = "systemctl"

    MIRROR_HOST = "archlinux.org"

    def __init__(self) -> None:
        self.last_command: str | None = None

    @property
    def name(self) -> str:
        return "linux"

    def is_admin(self) -> bool:
        return os.geteuid() == 0

    def _check_tool(self, tool: str) -> bool:
        """Check if a tool is available."""
        return shutil.which(tool) is not None

    def run_command(
        self,
        command: list[str],
        timeout: int | None = 300,
        check: bool = True,
        capture_output: bool = True,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a system command."""
        logger.debug("Running command", command=command)
        self.last_command = " ".join(command)
        start_time = time.time()

        try:
            result = subprocess.run(
                command,
                capture_output=capture_output,
                text=True,
                timeout=timeout,
                input=input_text,
            )
            duration = time.time() - start_time

            cmd_result = CommandResult(
                returncode=result.returncode,
                stdout=result.stdout if capture_output else "",
                stderr=result.stderr if capture_output else "",
                command=command,
                duration_seconds=duration,
            )

            if check and result.returncode != 0:
                logger.warning(
                    "Command failed",
                    command=command,
                    returncode=result.returncode,
                    stderr=result.stderr[:500] if result.stderr else "",
                )

            return cmd_result

        except subprocess.TimeoutExpired:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                command=command,
                duration_seconds=float(timeout or 0),
            )
        except OSError as e:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=str(e),
                command=command,
                duration_seconds=time.time() - start_time,
            )

    def _outcome(self, result: CommandResult, ok_message: str, action: str) -> tuple[bool, str]:
        if result.success:
            return True, ok_message
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        return False, f"{action} failed: {detail}"

    # ==================== Environment ====================

    def is_uefi_boot(self) -> bool:
        return EFI_FIRMWARE_DIR.is_dir()

    def secure_boot_setup_mode(self) -> bool | None:
        try:
            data = SETUP_MODE_EFIVAR.read_bytes()
        except OSError:
            if not self._check_tool(self.SBCTL):
                return None
            result = self.run_command([self.SBCTL, "status", "--json"], check=False)
            return parse_sbctl_setup_mode(result.stdout) if result.success else None
        # First four bytes are the variable attributes
        if len(data) < 5:
            return None
        return data[4] == 1

    def missing_tools(self, tools: list[str]) -> list[str]:
        return [tool for tool in tools if not self._check_tool(tool)]

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    # ==================== Inventory ====================

    def list_free_regions(self, disk: str) -> list[DiskRegion]:
        result = self.run_command(
            [self.PARTED, "-m", "--script", disk, "unit", "MiB", "print", "free"],
            check=False,
        )
        if not result.success:
            logger.warning("parted free-space scan failed", disk=disk, stderr=result.stderr)
            return []
        logger.debug("parted output", output=result.stdout)
        return parse_parted_free(result.stdout)

    def list_partitions(self, disk: str | None = None) -> list[BlockDevice]:
        command = [
            self.LSBLK,
            "-J",  # JSON output
            "-b",  # Size in bytes
            "-o",
            "NAME,PATH,TYPE,START,SIZE,FSTYPE,PARTN",
        ]
        if disk:
            command.append(disk)

        result = self.run_command(command, check=False)
        if not result.success:
            logger.warning("lsblk failed", disk=disk, stderr=result.stderr)
            return []
        return build_block_devices(parse_lsblk_json(result.stdout))

    def probe_identifiers(self, device: str) -> dict[str, str]:
        result = self.run_command([self.BLKID, device], check=False)
        if not result.success:
            return {}
        return parse_blkid_output(result.stdout).get(device, {})

    def probe_filesystem(self, device: str) -> str | None:
        return self.probe_identifiers(device).get("TYPE") or None

    def probe_file(self, device: str, relative_path: str) -> bool:
        probe_dir = Path(tempfile.mkdtemp(prefix="dualboot-probe-"))
        try:
            result = self.run_command(
                [self.MOUNT, "-o", "ro", device, str(probe_dir)],
                check=False,
            )
            if not result.success:
                logger.debug("Probe mount failed", device=device, stderr=result.stderr)
                return False
            try:
                return (probe_dir / relative_path).is_file()
            finally:
                self.run_command([self.UMOUNT, str(probe_dir)], check=False)
        finally:
            try:
                probe_dir.rmdir()
            except OSError:
                logger.debug("Could not remove probe directory", path=str(probe_dir))

    def is_mountpoint(self, path: str) -> bool:
        return os.path.ismount(path)

    def file_exists(self, path: Path) -> bool:
        return path.exists()

    def free_space_mib(self, path: Path) -> int:
        return psutil.disk_usage(str(path)).free // MIB

    def missing_packages(self, packages: list[str]) -> list[str]:
        missing = []
        for package in packages:
            result = self.run_command([self.PACMAN, "-Si", package], check=False)
            if not result.success:
                missing.append(package)
        return missing

    def network_available(self) -> bool:
        result = self.run_command(
            [self.PING, "-c", "1", "-W", "3", self.MIRROR_HOST],
            timeout=10,
            check=False,
        )
        return result.success

    def secure_boot_status(self) -> str:
        if not self._check_tool(self.SBCTL):
            return "sbctl not available in live environment"
        result = self.run_command([self.SBCTL, "status"], check=False)
        return result.stdout.strip() or result.stderr.strip()

    # ==================== Partition table ====================

    def backup_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        result = self.run_command([self.SGDISK, f"--backup={backup_path}", disk])
        return self._outcome(result, f"Partition table of {disk} saved to {backup_path}", "sgdisk backup")

    def restore_partition_table(self, disk: str, backup_path: Path) -> tuple[bool, str]:
        result = self.run_command([self.SGDISK, f"--load-backup={backup_path}", disk])
        return self._outcome(result, f"Partition table of {disk} restored from {backup_path}", "sgdisk restore")

    def reprobe(self, disk: str) -> tuple[bool, str]:
        result = self.run_command([self.PARTPROBE, disk], check=False)
        # Let udev create the new device nodes before anyone enumerates them
        self.run_command([self.UDEVADM, "settle"], timeout=30, check=False)
        return self._outcome(result, f"Partition table of {disk} re-read", "partprobe")

    def create_partition(self, disk: str, start_mib: int, end_mib: int) -> tuple[bool, str]:
        result = self.run_command(
            [
                self.PARTED,
                "--script",
                disk,
                "mkpart",
                "primary",
                "ext4",
                f"{start_mib}MiB",
                f"{end_mib}MiB",
            ],
            timeout=60,
        )
        return self._outcome(result, f"Created partition {start_mib}-{end_mib} MiB on {disk}", "parted mkpart")

    def format_partition(self, device: str, filesystem: str) -> tuple[bool, str]:
        if filesystem != "ext4":
            return False, f"Unsupported filesystem: {filesystem}"
        if not self._check_tool(self.MKFS_EXT4):
            return False, f"{self.MKFS_EXT4} not found"
        result = self.run_command([self.MKFS_EXT4, "-F", device], timeout=600)
        return self._outcome(result, f"Formatted {device} as {filesystem}", "mkfs.ext4")

    # ==================== Mounts and files ====================

    def mount(self, device: str, target: str, options: list[str] | None = None) -> tuple[bool, str]:
        cmd = [self.MOUNT]
        if options:
            cmd.extend(["-o", ",".join(options)])
        cmd.extend([device, target])

        result = self.run_command(cmd)
        return self._outcome(result, f"Mounted {device} at {target}", "mount")

    def unmount(self, target: str) -> tuple[bool, str]:
        result = self.run_command([self.UMOUNT, target])
        return self._outcome(result, f"Unmounted {target}", "umount")

    def make_directory(self, path: Path) -> tuple[bool, str]:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return False, f"Cannot create directory {path}: {e}"
        return True, f"Created directory {path}"

    def write_file(self, path: Path, content: str, mode: int = 0o644, append: bool = False) -> tuple[bool, str]:
        self.last_command = f"write {path}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a" if append else "w", encoding="utf-8") as f:
                f.write(content)
            path.chmod(mode)
        except OSError as e:
            return False, f"Cannot write {path}: {e}"
        return True, f"Wrote {path}"

    # ==================== System population ====================

    def populate_base_system(self, root: Path, packages: list[str]) -> tuple[bool, str]:
        result = self.run_command(
            [self.PACSTRAP, "-K", str(root), *packages],
            timeout=None,
            capture_output=False,
        )
        return self._outcome(result, f"Installed {len(packages)} packages into {root}", "pacstrap")

    def run_chroot(self, root: Path, script: str) -> tuple[bool, str]:
        # Interactive: the script asks for account passwords
        result = self.run_command(
            [self.ARCH_CHROOT, str(root), script],
            timeout=None,
            capture_output=False,
        )
        return self._outcome(result, f"Ran {script} inside {root}", "arch-chroot")

    def create_swapfile(self, path: Path, size_mib: int) -> tuple[bool, str]:
        result = self.run_command(
            [self.DD, "if=/dev/zero", f"of={path}", "bs=1M", f"count={size_mib}", "status=none"],
            timeout=None,
        )
        if not result.success:
            return self._outcome(result, "", "dd")
        try:
            path.chmod(0o600)
        except OSError as e:
            return False, f"Cannot restrict permissions on {path}: {e}"
        result = self.run_command([self.MKSWAP, str(path)])
        return self._outcome(result, f"Created {size_mib} MiB swapfile at {path}", "mkswap")

    def sync(self) -> tuple[bool, str]:
        result = self.run_command([self.SYNC], check=False)
        return self._outcome(result, "Filesystems synced", "sync")

    def reboot(self) -> tuple[bool, str]:
        result = self.run_command([self.SYSTEMCTL, "reboot"])
        return self._outcome(result, "Reboot requested", "reboot")
