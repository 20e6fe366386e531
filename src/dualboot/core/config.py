"""
dualboot configuration management.

Provides centralized configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from dualboot.core.errors import ConfigError
from dualboot.core.models import partition_device_path

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")
AUR_PACKAGE_PATTERN = re.compile(r"^[a-z0-9@._+-]*$")
DEFAULT_CONFIG_PATH = Path.home() / ".dualboot" / "config.json"


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_enabled: bool = True
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: Path.home() / ".dualboot" / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class DiskConfig(BaseModel):
    """Target disk and partition sizing policy."""

    device: str = "/dev/nvme0n1"
    boot_partition: str | None = None
    boot_partition_number: int = Field(default=1, ge=1)
    preserved_partition_numbers: list[int] = Field(default_factory=lambda: [2, 3, 4])
    allocation_gib: int = Field(default=512, ge=1)
    root_gib: int = Field(default=100, ge=1)
    min_free_gib: int = Field(default=32, ge=0)
    min_home_mib: int = Field(default=32, ge=0)
    match_tolerance_mib: int = Field(default=5, ge=0)
    preferred_root_number: int | None = Field(default=None, ge=1)
    preferred_home_number: int | None = Field(default=None, ge=1)

    @field_validator("device", "boot_partition")
    @classmethod
    def check_device_path(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("/dev/"):
            raise ValueError(f"device path must start with /dev/: {v}")
        return v

    @property
    def root_mib(self) -> int:
        return self.root_gib * 1024

    @property
    def allocation_mib(self) -> int:
        return self.allocation_gib * 1024

    @property
    def min_free_mib(self) -> int:
        return self.min_free_gib * 1024

    def resolved_boot_partition(self) -> str:
        """Known shared boot partition device."""
        return self.boot_partition or partition_device_path(
            self.device, self.boot_partition_number
        )

    def preserved_partitions(self) -> list[str]:
        return [partition_device_path(self.device, n) for n in self.preserved_partition_numbers]


class SystemConfig(BaseModel):
    """Settings applied inside the new system."""

    username: str = "archuser"
    hostname: str = "archbox"
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"
    swap_gib: int = Field(default=0, ge=0, le=16)
    aur_helper: str = "paru"
    secure_boot: bool = True
    microcode: Literal["amd-ucode", "intel-ucode", "none"] = "amd-ucode"
    kernel_options: list[str] = Field(default_factory=lambda: ["rw", "quiet", "splash"])
    foreign_os_title: str = "Windows 11"

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str) -> str:
        if not USERNAME_PATTERN.fullmatch(v):
            raise ValueError(f"not a valid Linux username: {v!r}")
        return v

    @field_validator("aur_helper")
    @classmethod
    def check_aur_helper(cls, v: str) -> str:
        if not AUR_PACKAGE_PATTERN.fullmatch(v):
            raise ValueError(f"not a valid AUR package name: {v!r}")
        return v


class PackagesConfig(BaseModel):
    """Package lists for the base system population."""

    common: list[str] = Field(
        default_factory=lambda: [
            "base",
            "linux",
            "linux-headers",
            "linux-firmware",
            "networkmanager",
            "sudo",
            "efibootmgr",
            "dosfstools",
            "mtools",
            "sbctl",
            "sbsigntool",
        ]
    )
    desktop: list[str] = Field(default_factory=list)
    dev: list[str] = Field(default_factory=lambda: ["git", "base-devel"])

    def all_packages(self, microcode: str | None = None) -> list[str]:
        """All packages in declaration order, without duplicates."""
        names = [*self.common, *self.desktop, *self.dev]
        if microcode and microcode != "none":
            names.append(microcode)
        return list(dict.fromkeys(names))


class InstallConfig(BaseModel):
    """Workflow settings."""

    mount_root: Path = Path("/mnt")
    backup_directory: Path = Path("/tmp")
    base_system_attempts: int = Field(default=2, ge=1)
    retry_backoff_seconds: float = Field(default=5.0, ge=0)
    chroot_script: str = "root/_post_install.sh"
    verify_script: str = "usr/local/bin/post_install_verify.sh"
    foreign_bootloader: str = "EFI/Microsoft/Boot/bootmgfw.efi"
    required_tools: list[str] = Field(
        default_factory=lambda: [
            "parted",
            "lsblk",
            "sgdisk",
            "mkfs.ext4",
            "mount",
            "umount",
            "pacstrap",
            "arch-chroot",
            "partprobe",
            "blkid",
        ]
    )


class InstallerConfig(BaseModel):
    """Main dualboot configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    disk: DiskConfig = Field(default_factory=DiskConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)
    report_directory: Path = Field(default_factory=lambda: Path.home() / ".dualboot" / "reports")

    @field_validator("report_directory", mode="before")
    @classmethod
    def expand_report_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()

    @classmethod
    def load(cls, config_path: Path | None = None) -> InstallerConfig:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = json.load(f)
            return cls.model_validate(data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def with_overrides(
        self,
        device: str | None = None,
        debug: bool = False,
    ) -> InstallerConfig:
        """Return a validated copy with command-line overrides applied."""
        data = self.model_dump()
        if device:
            data["disk"]["device"] = device
        if debug:
            data["logging"]["level"] = "DEBUG"
        try:
            return InstallerConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid override: {e}") from e

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.logging.log_directory.mkdir(parents=True, exist_ok=True)
        self.report_directory.mkdir(parents=True, exist_ok=True)

    def get_report_file(self, run_id: str) -> Path:
        """Get path for a run report file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.report_directory / f"report_{timestamp}_{run_id[:8]}.json"


def load_config(config_path: Path | None = None) -> InstallerConfig:
    """Load or create configuration."""
    config = InstallerConfig.load(config_path)
    config.ensure_directories()
    return config
