"""
dualboot Install Workflow.

The fifteen concrete phases of an install and the context they share. Each
handler returns the summary lines shown when its checkpoint completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from dualboot.core.checkpoint import Decider, Phase, SkipPhase
from dualboot.core.chroot import VERIFY_SCRIPT, ChrootScriptBuilder, ChrootValues
from dualboot.core.detector import PartitionDetector
from dualboot.core.errors import (
    ConfigError,
    DetectionError,
    ExecutionError,
    RetryableError,
    UnsupportedEnvironmentError,
    UserAbortedError,
)
from dualboot.core.executor import PartitionExecutor
from dualboot.core.fstab import render_fstab, swap_line
from dualboot.core.logging import get_logger
from dualboot.core.models import DiskRegion, PartitionHandle
from dualboot.core.planner import plan_partitions, select_largest_region
from dualboot.core.safety import PreflightReport, create_install_preflight_checker

if TYPE_CHECKING:
    from dualboot.core.config import InstallerConfig
    from dualboot.core.models import DetectedLayout, PartitionPlan
    from dualboot.core.mounts import MountManager
    from dualboot.core.rollback import RollbackController
    from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)

LINUX_FILESYSTEMS = frozenset({"ext2", "ext3", "ext4", "btrfs", "xfs", "f2fs"})
SWAPFILE = "swapfile"


@dataclass
class RunContext:
    """State shared by the phases of one run."""

    config: InstallerConfig
    backend: PlatformBackend
    decider: Decider
    mounts: MountManager
    rollback: RollbackController
    preflight: PreflightReport | None = None
    region: DiskRegion | None = None
    plan: PartitionPlan | None = None
    layout: DetectedLayout | None = None
    packages_verified: bool = False
    packages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def simulation(self) -> bool:
        return self.backend.simulated

    @property
    def disk(self) -> str:
        return self.config.disk.device

    @property
    def mount_root(self) -> Path:
        return self.config.install.mount_root

    def require_confirmation(self, prompt: str, declined: str | None = None) -> None:
        """Raise UserAbortedError unless the user says yes."""
        if not self.decider.confirm(prompt):
            raise UserAbortedError(declined or f"Declined: {prompt}")

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def require_plan(self) -> PartitionPlan:
        if self.plan is None:
            raise RuntimeError("No partition plan yet")
        return self.plan

    def require_layout(self) -> DetectedLayout:
        if self.layout is None:
            raise RuntimeError("Partitions not detected yet")
        return self.layout


def _mutable_partitions(layout: DetectedLayout) -> list[PartitionHandle]:
    handles = [layout.root]
    if layout.home is not None:
        handles.append(layout.home)
    return handles


def _next_free_numbers(used: set[int], count: int) -> list[int]:
    """Lowest unused partition numbers, as the partitioner assigns them."""
    numbers: list[int] = []
    candidate = 1
    while len(numbers) < count:
        if candidate not in used:
            numbers.append(candidate)
        candidate += 1
    return numbers


# ==================== Phases ====================


def inspect_disk(ctx: RunContext) -> list[str]:
    """Preflight, show the current layout, gate on confirmation, back up."""
    report = create_install_preflight_checker().run_checks(
        {"backend": ctx.backend, "config": ctx.config}
    )
    ctx.preflight = report
    for line in report.get_summary().splitlines():
        logger.info(line)
    if report.has_errors:
        for check in report.failed_errors:
            if check.name == "Target Disk":
                raise ConfigError(check.message)
            if not ctx.simulation:
                raise UnsupportedEnvironmentError(check.message)
            ctx.warn(f"{check.message} (ignored in dry-run)")
    for check in report.checks:
        if not check.passed and check.severity in ("warning", "info"):
            ctx.warn(check.message)

    partitions = ctx.backend.list_partitions(ctx.disk)
    for device in partitions:
        logger.info(
            "Existing partition",
            device=device.path,
            start_mib=device.start_mib,
            size_mib=device.size_mib,
            fstype=device.fstype,
        )

    linux_parts = [d.path for d in partitions if (d.fstype or "").lower() in LINUX_FILESYSTEMS]
    if linux_parts:
        ctx.warn(f"Existing Linux partitions detected on {ctx.disk}: {', '.join(linux_parts)}")
        ctx.require_confirmation("Continue anyway? (This may overwrite existing Linux data)")

    boot = ctx.config.disk.resolved_boot_partition()
    preserved = ctx.config.disk.preserved_partitions()
    ctx.require_confirmation(
        f"Preserving {boot} (shared ESP) and {', '.join(preserved) or 'no other partitions'}. "
        "Continue to scan for unallocated space?"
    )

    backup = ctx.rollback.capture_backup()
    return [
        f"Disk layout inspected: {ctx.disk} ({len(partitions)} partitions)",
        "Preflight: all checks passed"
        if report.all_passed
        else f"Preflight: {sum(not c.passed for c in report.checks)} check(s) reported issues",
        f"Preserved: {', '.join([boot, *preserved])}",
        f"Partition table backup: {backup}",
    ]


def scan_free_space(ctx: RunContext) -> list[str]:
    regions = ctx.backend.list_free_regions(ctx.disk)
    for region in regions:
        logger.debug("Free region", start_mib=region.start_mib, end_mib=region.end_mib)
    ctx.region = select_largest_region(regions, ctx.config.disk.min_free_mib)
    return [
        f"Largest free region: start={ctx.region.start_mib} MiB, "
        f"end={ctx.region.end_mib} MiB, size={ctx.region.size_mib} MiB"
    ]


def plan_layout(ctx: RunContext) -> list[str]:
    if ctx.region is None:
        raise RuntimeError("No free region selected")
    disk = ctx.config.disk
    ctx.plan = plan_partitions(ctx.region, disk.root_mib, disk.allocation_mib, disk.min_home_mib)
    for line in ctx.plan.describe():
        logger.info(line)
    if ctx.plan.root_clamped:
        ctx.warn(
            f"Requested root of {disk.root_mib} MiB does not fit; "
            f"root shrunk to {ctx.plan.root_size_mib} MiB"
        )
    ctx.require_confirmation("Create root & home partitions in this allocation window?")
    return ["Partition plan accepted (no new ESP)", *ctx.plan.describe()]


def validate_numbering(ctx: RunContext) -> list[str]:
    """
    New partitions take the next free numbers; nothing existing is replaced.

    Fails when the allocation window overlaps an existing partition or a
    partition that must be preserved is missing.
    """
    plan = ctx.require_plan()
    window = DiskRegion(plan.alloc_start, plan.alloc_end)
    existing = ctx.backend.list_partitions(ctx.disk)

    for device in existing:
        if window.overlaps(device.start_mib, device.start_mib + device.size_mib):
            raise DetectionError(
                f"Allocation window {plan.alloc_start}-{plan.alloc_end} MiB overlaps "
                f"existing partition {device.path}"
            )

    known = {d.path for d in existing}
    for path in ctx.config.disk.preserved_partitions():
        if path not in known and not ctx.backend.is_block_device(path):
            raise DetectionError(f"Partition {path} that must be preserved was not found")

    used = {d.number for d in existing if d.number is not None}
    count = 2 if plan.home_planned else 1
    upcoming = _next_free_numbers(used, count)

    preferred = [ctx.config.disk.preferred_root_number]
    if plan.home_planned:
        preferred.append(ctx.config.disk.preferred_home_number)
    for role, wanted, actual in zip(("root", "home"), preferred, upcoming):
        if wanted is not None and wanted != actual:
            state = "already exists" if wanted in used else "is not the next free number"
            ctx.warn(f"Preferred {role} partition number {wanted} {state}; using {actual}")

    summary = ["No existing partition overlaps the allocation window"]
    summary.append(f"Root will be partition {upcoming[0]}")
    if plan.home_planned:
        summary.append(f"Home will be partition {upcoming[1]}")
    return summary


def create_partitions(ctx: RunContext) -> list[str]:
    messages = PartitionExecutor(ctx.backend, ctx.disk).execute(ctx.require_plan())
    for message in messages:
        logger.debug("Partition step", result=message)
    plan = ctx.require_plan()
    summary = [f"Root created: {plan.root_start}-{plan.root_end} MiB"]
    if plan.home_planned:
        summary.append(f"Home created: {plan.home_start}-{plan.home_end} MiB")
    summary.append("No new ESP created; the shared ESP will be used")
    return summary


def detect_partitions(ctx: RunContext) -> list[str]:
    disk = ctx.config.disk
    detector = PartitionDetector(
        ctx.backend,
        ctx.disk,
        boot_partition=disk.resolved_boot_partition(),
        foreign_bootloader=ctx.config.install.foreign_bootloader,
        preserved=disk.preserved_partitions(),
        tolerance_mib=disk.match_tolerance_mib,
    )
    ctx.layout = detector.detect(ctx.require_plan())

    summary = ctx.layout.describe()
    if ctx.layout.foreign_source:
        ctx.warn(
            f"Boot manager missing on {ctx.layout.boot.device_path}; "
            f"it will be copied from {ctx.layout.foreign_source}"
        )
    elif not ctx.layout.foreign_bootloader_present:
        ctx.warn(
            f"{ctx.config.install.foreign_bootloader} not found on any partition; "
            f"no {ctx.config.system.foreign_os_title} boot entry will be written"
        )

    for line in summary:
        logger.info(line)
    ctx.require_confirmation("Is this mapping correct?")
    return summary


def format_partitions(ctx: RunContext) -> list[str]:
    """ext4 on root and home only. The shared ESP is never formatted."""
    layout = ctx.require_layout()
    targets = _mutable_partitions(layout)
    protected = {layout.boot.device_path, *(p.device_path for p in layout.preserved)}

    for handle in targets:
        if not handle.is_mutable or handle.device_path in protected:
            raise ExecutionError(f"Refusing to format protected partition {handle.device_path}")

        existing = ctx.backend.probe_filesystem(handle.device_path)
        if existing:
            ctx.warn(f"Partition {handle.device_path} already has a filesystem: {existing}")
            ctx.require_confirmation(f"Overwrite existing filesystem on {handle.device_path}?")

    ctx.require_confirmation("Proceed to format these partitions? This will erase data on them.")

    summary = []
    for handle in targets:
        logger.info("Formatting partition", device=handle.device_path, role=handle.role.name)
        ok, message = ctx.backend.format_partition(handle.device_path, "ext4")
        if not ok:
            raise ExecutionError(
                f"mkfs.ext4 failed for {handle.device_path}: {message}",
                command=ctx.backend.last_command,
            )
        summary.append(f"{handle.role.name.capitalize()}: {handle.device_path} (ext4)")
    summary.append(f"Shared ESP: {layout.boot.device_path} (not formatted)")
    return summary


def mount_filesystems(ctx: RunContext) -> list[str]:
    layout = ctx.require_layout()
    root = str(ctx.mount_root)

    ctx.mounts.mount(layout.root.device_path, root)
    summary = [f"Root: {layout.root.device_path} -> {root}"]

    if layout.home is not None:
        home = str(ctx.mount_root / "home")
        ctx.mounts.mount(layout.home.device_path, home)
        summary.append(f"Home: {layout.home.device_path} -> {home}")

    boot_target = str(ctx.mount_root / "boot")
    record = ctx.mounts.mount_boot(layout.boot.device_path, boot_target)
    mode = "read-only" if "ro" in record.options else "read-write"
    summary.append(f"Shared ESP: {layout.boot.device_path} -> {boot_target} ({mode})")
    return summary


def generate_fstab(ctx: RunContext) -> list[str]:
    layout = ctx.require_layout()
    filesystems = {handle.device_path: "ext4" for handle in _mutable_partitions(layout)}
    filesystems[layout.boot.device_path] = "vfat"

    content = render_fstab(
        ctx.mounts.records, ctx.mount_root, ctx.backend.probe_identifiers, filesystems
    )
    etc = ctx.mount_root / "etc"
    ok, message = ctx.backend.make_directory(etc)
    if ok:
        ok, message = ctx.backend.write_file(etc / "fstab", content)
    if not ok:
        raise ExecutionError(f"Writing fstab failed: {message}", command=ctx.backend.last_command)
    return [f"fstab generated at {etc / 'fstab'}", f"{len(ctx.mounts.records)} mount points recorded"]


def _ensure_boot_writable(ctx: RunContext) -> None:
    """pacstrap and mkinitcpio write the kernel and initramfs into /boot."""
    target = str(ctx.mount_root / "boot")
    record = next((r for r in ctx.mounts.records if r.target == target), None)
    if record is not None and "ro" in record.options:
        ctx.mounts.remount(target, ["rw"])


def install_base_system(ctx: RunContext) -> list[str]:
    """Populate the new root; a failed attempt is retryable."""
    if not ctx.packages_verified:
        packages = ctx.config.packages.all_packages(ctx.config.system.microcode)
        missing = ctx.backend.missing_packages(packages)
        if missing:
            ctx.warn(f"Missing packages in repo: {', '.join(missing)}")
            ctx.require_confirmation("Continue anyway without these packages?")
            packages = [p for p in packages if p not in missing]

        if not ctx.backend.network_available():
            ctx.warn("No network connectivity detected; the base system install may fail")
            ctx.require_confirmation("Continue anyway? (You are responsible for network setup)")

        ctx.packages = packages
        ctx.packages_verified = True

    _ensure_boot_writable(ctx)
    ok, message = ctx.backend.populate_base_system(ctx.mount_root, ctx.packages)
    if not ok:
        raise RetryableError(f"Base system install failed: {message}", command=ctx.backend.last_command)
    return [f"Base system installed ({len(ctx.packages)} packages)"]


def run_chroot_config(ctx: RunContext) -> list[str]:
    """Write the configuration script into the new root and run it."""
    layout = ctx.require_layout()
    identifiers = ctx.backend.probe_identifiers(layout.root.device_path)
    values = ChrootValues.from_layout(ctx.config, layout, identifiers)
    script = ChrootScriptBuilder(values).build()

    relative = ctx.config.install.chroot_script
    path = ctx.mount_root / relative
    ok, message = ctx.backend.make_directory(path.parent)
    if ok:
        ok, message = ctx.backend.write_file(path, script, mode=0o755)
    if not ok:
        raise ExecutionError(f"Writing chroot script failed: {message}", command=ctx.backend.last_command)

    in_root = "/" + relative.lstrip("/")
    ctx.require_confirmation(
        "Run post-install chroot script now (recommended)?",
        declined=f"Chroot step skipped; run later: arch-chroot {ctx.mount_root} {in_root}",
    )
    ok, message = ctx.backend.run_chroot(ctx.mount_root, in_root)
    if not ok:
        raise ExecutionError(
            f"Chroot configuration failed: {message}. "
            "Check /root/post_install_chroot.log on the installed system.",
            command=ctx.backend.last_command,
        )
    return [f"Chroot script written to {path}", "System configuration finalized inside chroot"]


def create_swapfile(ctx: RunContext) -> list[str]:
    size_gib = ctx.config.system.swap_gib
    if size_gib <= 0:
        raise SkipPhase("No swapfile requested")

    path = ctx.mount_root / SWAPFILE
    size_mib = size_gib * 1024
    if ctx.backend.file_exists(path):
        ctx.warn(f"{path} already exists; skipping swapfile creation")
        raise SkipPhase(f"{path} already exists")

    available = ctx.backend.free_space_mib(ctx.mount_root)
    if size_mib > available:
        ctx.warn(f"Not enough space for swapfile: requested {size_mib} MiB, available {available} MiB")
        raise SkipPhase("Not enough space for swapfile")

    ctx.require_confirmation(f"Create a {size_gib} GiB swapfile at {path}?", declined="Swapfile declined")
    ok, message = ctx.backend.create_swapfile(path, size_mib)
    if not ok:
        ctx.warn(f"Swapfile creation failed: {message}")
        return [f"Swapfile not created: {message}"]

    ok, message = ctx.backend.write_file(ctx.mount_root / "etc" / "fstab", swap_line(), append=True)
    if not ok:
        ctx.warn(f"Could not add swapfile to fstab: {message}")
    return [f"Swapfile created: {path} ({size_mib} MiB)"]


def verify_install(ctx: RunContext) -> list[str]:
    summary = []
    entry = ctx.mount_root / "boot" / "loader" / "entries" / "arch.conf"
    if ctx.simulation:
        summary.append(f"Would check {entry}")
    elif ctx.backend.file_exists(entry):
        summary.append("Arch loader entry present")
    else:
        ctx.warn("Arch loader entry missing!")
        summary.append("Arch loader entry MISSING")

    summary.append(f"Secure Boot: {ctx.backend.secure_boot_status()}")

    helper = ctx.mount_root / ctx.config.install.verify_script
    ok, message = ctx.backend.make_directory(helper.parent)
    if ok:
        ok, message = ctx.backend.write_file(helper, VERIFY_SCRIPT, mode=0o755)
    if ok:
        summary.append(f"Verification helper installed at /{ctx.config.install.verify_script}")
    else:
        ctx.warn(f"Could not install verification helper: {message}")
    return summary


def unmount_filesystems(ctx: RunContext) -> list[str]:
    targets = list(reversed(ctx.mounts.targets))
    ok, message = ctx.backend.sync()
    if not ok:
        ctx.warn(f"sync failed: {message}")
    still_mounted = ctx.mounts.unmount_all(strict=False)
    if still_mounted:
        ctx.warn(f"Still mounted: {', '.join(still_mounted)}; unmount manually before rebooting")
        released = [t for t in targets if t not in still_mounted]
        return [f"Unmounted: {', '.join(released) or '(nothing)'}", f"Still mounted: {', '.join(still_mounted)}"]
    return [f"Unmounted: {', '.join(targets) or '(nothing)'}", "Installation media is now safe to remove"]


def final_summary(ctx: RunContext) -> list[str]:
    layout = ctx.require_layout()
    user = ctx.config.system.username
    summary = [
        "Partitions: " + ", ".join(layout.describe()),
        "systemd-boot entries: Arch, Arch (fallback)"
        + (f", {ctx.config.system.foreign_os_title}" if layout.foreign_bootloader_present or layout.foreign_source else ""),
        "Next: boot into Arch and run /" + ctx.config.install.verify_script,
        f"Next: log in as {user} and check the systemd-boot menu shows both systems",
    ]
    if ctx.config.system.secure_boot:
        summary.append("Next: confirm Secure Boot is enabled in firmware after key enrollment")
    if ctx.warnings:
        summary.append(f"{len(ctx.warnings)} warning(s) were raised; see the run log")

    if ctx.simulation:
        summary.append("Dry-run complete. No changes were written.")
    elif ctx.decider.confirm("Reboot now?"):
        ok, message = ctx.backend.reboot()
        if not ok:
            ctx.warn(f"Reboot failed: {message}")
    else:
        summary.append("Please reboot manually when ready")
    return summary


def build_phases(config: InstallerConfig) -> list[Phase]:
    """The install workflow, in order."""
    return [
        Phase("inspect", "Disk inspection and confirmation", inspect_disk),
        Phase("scan-free-space", "Analyzing unallocated space", scan_free_space),
        Phase("plan", "Planning root and home partitions", plan_layout),
        Phase("validate-numbering-conflicts", "Validating partition numbers and conflicts", validate_numbering),
        Phase("create-partitions", "Creating partitions (root & home, no new ESP)", create_partitions),
        Phase("detect-partitions", "Detecting new partitions", detect_partitions),
        Phase("format", "Formatting partitions (shared ESP is NOT formatted)", format_partitions),
        Phase("mount", "Mounting filesystems", mount_filesystems),
        Phase("generate-fstab", "Generating /etc/fstab", generate_fstab),
        Phase(
            "install-base-system",
            "Installing base system",
            install_base_system,
            attempts=config.install.base_system_attempts,
            backoff_seconds=config.install.retry_backoff_seconds,
        ),
        Phase("run-chroot-config", "Configuring the new system in chroot", run_chroot_config, optional=True),
        Phase("optional-swapfile", "Creating swapfile (optional)", create_swapfile, optional=True),
        Phase("verify", "Verifying loader files and Secure Boot", verify_install),
        Phase("unmount", "Final sync and unmount", unmount_filesystems),
        Phase("summary", "Final summary & next steps", final_summary),
    ]
