"""
fstab rendering.

One line per tracked mount, in mount order, keyed by filesystem UUID when
blkid knows it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path, PurePosixPath

from dualboot.core.models import MountRecord

EXT4_OPTIONS = "rw,relatime"
VFAT_OPTIONS = "rw,relatime,fmask=0077,dmask=0077"


def _target_in_new_root(target: str, mount_root: Path) -> str:
    relative = PurePosixPath(target).relative_to(PurePosixPath(str(mount_root)))
    return "/" + str(relative) if str(relative) != "." else "/"


def fstab_line(
    record: MountRecord,
    mount_root: Path,
    identifiers: dict[str, str],
    filesystem: str | None,
) -> str:
    """Render a single fstab entry for a tracked mount."""
    target = _target_in_new_root(record.target, mount_root)
    spec = f"UUID={identifiers['UUID']}" if identifiers.get("UUID") else record.source
    fstype = filesystem or identifiers.get("TYPE") or "auto"

    if fstype == "vfat":
        options = VFAT_OPTIONS
    elif fstype == "ext4":
        options = EXT4_OPTIONS
    else:
        options = "defaults"

    passno = 1 if target == "/" else 2
    return f"{spec}\t{target}\t{fstype}\t{options}\t0 {passno}"


def render_fstab(
    records: Iterable[MountRecord],
    mount_root: Path,
    lookup: Callable[[str], dict[str, str]],
    filesystems: dict[str, str] | None = None,
) -> str:
    """
    Render /etc/fstab for the new system.

    `lookup` returns blkid identifiers for a device; `filesystems` maps
    devices to filesystem types known without probing.
    """
    filesystems = filesystems or {}
    lines = ["# /etc/fstab: static file system information", "# <file system>\t<dir>\t<type>\t<options>\t<dump> <pass>"]
    for record in records:
        lines.append(
            fstab_line(record, mount_root, lookup(record.source), filesystems.get(record.source))
        )
    return "\n".join(lines) + "\n"


def swap_line(path: str = "/swapfile") -> str:
    return f"{path}\tnone\tswap\tdefaults\t0 0\n"
