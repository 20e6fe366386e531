"""
dualboot Linux Platform Backend.

Implements the installer's external operations using standard Linux tools:
- parted, lsblk, blkid for inventory
- sgdisk for partition-table backup/restore
- parted mkpart, mkfs.ext4 for partitioning and formatting
- pacstrap, arch-chroot for populating and configuring the new system
"""

from dualboot.platform.linux.backend import LinuxBackend
from dualboot.platform.linux.parsers import (
    build_block_devices,
    parse_blkid_output,
    parse_lsblk_json,
    parse_parted_free,
)

__all__ = [
    "LinuxBackend",
    "build_block_devices",
    "parse_blkid_output",
    "parse_lsblk_json",
    "parse_parted_free",
]
