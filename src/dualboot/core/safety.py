"""
dualboot Preflight Checks.

Environment checks run before anything touches the disk. Each check receives
a context dict holding the backend and the configuration.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dualboot.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PreflightCheck:
    """Result of a single preflight check."""

    name: str
    passed: bool
    message: str
    severity: str = "info"  # info, warning, error, critical
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PreflightReport:
    """Complete preflight check report."""

    checks: list[PreflightCheck] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def has_errors(self) -> bool:
        return any(c.severity in ("error", "critical") and not c.passed for c in self.checks)

    @property
    def failed_errors(self) -> list[PreflightCheck]:
        return [c for c in self.checks if c.severity in ("error", "critical") and not c.passed]

    def get_summary(self) -> str:
        """Get human-readable summary."""
        lines = [f"Preflight Check Report ({self.timestamp.isoformat()})"]
        lines.append("=" * 60)

        passed = sum(1 for c in self.checks if c.passed)
        total = len(self.checks)
        lines.append(f"Results: {passed}/{total} checks passed")
        lines.append("")

        for check in self.checks:
            status = "✓" if check.passed else "✗"
            lines.append(f"[{status}] {check.name}: {check.message}")
            if check.details:
                for key, value in check.details.items():
                    lines.append(f"    {key}: {value}")

        return "\n".join(lines)


class PreflightChecker:
    """Performs preflight checks before the install starts."""

    def __init__(self) -> None:
        self._checks: list[tuple[str, Callable[[dict[str, Any]], PreflightCheck | bool]]] = []

    def add_check(self, name: str, check_func: Callable[[dict[str, Any]], PreflightCheck | bool]) -> None:
        """Add a preflight check function."""
        self._checks.append((name, check_func))

    def run_checks(self, context: dict[str, Any]) -> PreflightReport:
        """Run all preflight checks and return report."""
        report = PreflightReport()

        for name, check_func in self._checks:
            try:
                result = check_func(context)
                if isinstance(result, PreflightCheck):
                    report.checks.append(result)
                elif isinstance(result, bool):
                    report.checks.append(
                        PreflightCheck(
                            name=name,
                            passed=result,
                            message="Passed" if result else "Failed",
                        )
                    )
            except Exception as e:
                report.checks.append(
                    PreflightCheck(
                        name=name,
                        passed=False,
                        message=f"Check failed with error: {e}",
                        severity="error",
                    )
                )

        for check in report.checks:
            logger.debug("Preflight check", name=check.name, passed=check.passed, message=check.message)
        return report


def check_uefi_boot(context: dict[str, Any]) -> PreflightCheck:
    """The live environment must be booted in UEFI mode."""
    if context["backend"].is_uefi_boot():
        return PreflightCheck(name="UEFI Boot", passed=True, message="Booted in UEFI mode")
    return PreflightCheck(
        name="UEFI Boot",
        passed=False,
        message="Not booted in UEFI mode; boot the live medium in UEFI mode",
        severity="error",
    )


def check_root_privileges(context: dict[str, Any]) -> PreflightCheck:
    if context["backend"].is_admin():
        return PreflightCheck(name="Privileges", passed=True, message="Running as root")
    return PreflightCheck(
        name="Privileges",
        passed=False,
        message="Root privileges are required",
        severity="error",
    )


def check_required_tools(context: dict[str, Any]) -> PreflightCheck:
    """All external tools the installer drives must be on PATH."""
    tools = context["config"].install.required_tools
    missing = context["backend"].missing_tools(tools)
    if not missing:
        return PreflightCheck(
            name="Required Tools",
            passed=True,
            message=f"All {len(tools)} tools found",
        )
    return PreflightCheck(
        name="Required Tools",
        passed=False,
        message=f"Missing tools: {', '.join(missing)}",
        severity="error",
        details={"missing": missing},
    )


def check_power_status(context: dict[str, Any]) -> PreflightCheck:
    """Check if system is on AC power (not battery)."""
    try:
        import psutil

        battery = psutil.sensors_battery()
        if battery is None:
            return PreflightCheck(
                name="Power Status",
                passed=True,
                message="No battery detected (desktop/server)",
            )

        if battery.power_plugged:
            return PreflightCheck(
                name="Power Status",
                passed=True,
                message="System is on AC power",
                details={"battery_percent": battery.percent},
            )
        else:
            return PreflightCheck(
                name="Power Status",
                passed=battery.percent > 50,
                message=f"System on battery ({battery.percent}%)",
                severity="warning",
                details={"battery_percent": battery.percent},
            )
    except Exception as e:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message=f"Could not check power status: {e}",
            severity="info",
        )


def check_target_disk(context: dict[str, Any]) -> PreflightCheck:
    device = context["config"].disk.device
    if context["backend"].is_block_device(device):
        return PreflightCheck(name="Target Disk", passed=True, message=f"{device} is present")
    return PreflightCheck(
        name="Target Disk",
        passed=False,
        message=f"Target disk {device} not found",
        severity="critical",
    )


def check_secure_boot_setup_mode(context: dict[str, Any]) -> PreflightCheck:
    """
    Report whether firmware is in Secure Boot Setup Mode.

    Informational only: key enrollment inside the chroot script stops the
    run there if Setup Mode is off.
    """
    if not context["config"].system.secure_boot:
        return PreflightCheck(name="Secure Boot", passed=True, message="Secure Boot setup disabled")

    setup_mode = context["backend"].secure_boot_setup_mode()
    if setup_mode is None:
        message = "Could not determine Secure Boot Setup Mode"
    elif setup_mode:
        message = "Firmware is in Setup Mode"
    else:
        message = "Firmware is NOT in Setup Mode; key enrollment will fail"
    return PreflightCheck(
        name="Secure Boot",
        passed=bool(setup_mode),
        message=message,
        severity="info",
        details={"setup_mode": setup_mode},
    )


def create_install_preflight_checker() -> PreflightChecker:
    """Create a preflight checker with the install checks."""
    checker = PreflightChecker()
    checker.add_check("UEFI Boot", check_uefi_boot)
    checker.add_check("Privileges", check_root_privileges)
    checker.add_check("Required Tools", check_required_tools)
    checker.add_check("Power Status", check_power_status)
    checker.add_check("Target Disk", check_target_disk)
    checker.add_check("Secure Boot", check_secure_boot_setup_mode)
    return checker
