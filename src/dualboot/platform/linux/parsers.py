"""
Linux output parsers.

Parsers for parted, lsblk, blkid and sbctl output.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from dualboot.core.models import MIB, BlockDevice, DiskRegion

SECTOR_SIZE = 512


def _parse_mib(value: str) -> float:
    """Parse a parted size such as '1024.50MiB'."""
    return float(value.strip().removesuffix("MiB"))


def parse_parted_free(output: str) -> list[DiskRegion]:
    """
    Parse `parted -m <disk> unit MiB print free` output.

    Example input:
    BYT;
    /dev/nvme0n1:976762MiB:nvme:512:512:gpt:Samsung SSD:;
    1:0.02MiB:1.00MiB:0.98MiB:free;
    1:1.00MiB:101MiB:100MiB:fat32:EFI system partition:boot, esp;
    1:400000MiB:976762MiB:576762MiB:free;
    """
    regions: list[DiskRegion] = []

    for line in output.strip().split("\n"):
        line = line.strip().rstrip(";")
        fields = line.split(":")
        if len(fields) < 5 or fields[4].strip() != "free":
            continue

        try:
            # Round inwards so the region never exceeds what parted reported
            start = math.ceil(_parse_mib(fields[1]))
            end = math.floor(_parse_mib(fields[2]))
        except ValueError:
            continue

        if end > start:
            regions.append(DiskRegion(start_mib=start, end_mib=end))

    return regions


def parse_lsblk_json(output: str) -> list[dict[str, Any]]:
    """Parse JSON output from lsblk."""
    try:
        data = json.loads(output)
        return data.get("blockdevices", [])
    except json.JSONDecodeError:
        return []


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def build_block_devices(blocks: list[dict[str, Any]]) -> list[BlockDevice]:
    """
    Flatten lsblk block devices into partitions.

    Expects `lsblk -J -b -o NAME,PATH,TYPE,START,SIZE,FSTYPE,PARTN`; START is
    in 512-byte sectors and SIZE in bytes.
    """
    devices: list[BlockDevice] = []

    def visit(block: dict[str, Any]) -> None:
        if block.get("type") == "part":
            path = block.get("path") or f"/dev/{block.get('name', '')}"
            start_sectors = _to_int(block.get("start"))
            devices.append(
                BlockDevice(
                    path=path,
                    start_mib=start_sectors * SECTOR_SIZE // MIB,
                    size_mib=_to_int(block.get("size")) // MIB,
                    fstype=block.get("fstype") or None,
                    number=_to_int(block.get("partn")) or None,
                )
            )
        for child in block.get("children", []) or []:
            visit(child)

    for block in blocks:
        visit(block)

    return devices


def parse_blkid_output(output: str) -> dict[str, dict[str, str]]:
    """
    Parse blkid output.

    Example input:
    /dev/sda1: UUID="xxxx" TYPE="ext4" PARTUUID="xxxx"
    """
    result: dict[str, dict[str, str]] = {}

    for line in output.strip().split("\n"):
        if not line or ":" not in line:
            continue

        device, rest = line.split(":", 1)
        device = device.strip()
        attrs: dict[str, str] = {}

        for match in re.finditer(r'(\w+)="([^"]*)"', rest):
            key, value = match.groups()
            attrs[key.upper()] = value

        result[device] = attrs

    return result


def parse_sbctl_setup_mode(output: str) -> bool | None:
    """Read the setup_mode flag from `sbctl status --json` output."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or "setup_mode" not in data:
        return None
    return bool(data["setup_mode"])
