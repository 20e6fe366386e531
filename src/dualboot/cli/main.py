"""
dualboot CLI Main Entry Point.

Provides the install, plan and restore commands.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import humanize
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dualboot import __version__
from dualboot.core.checkpoint import CheckpointReporter, Decider, FailureReport, RunStatus
from dualboot.core.config import InstallerConfig, load_config
from dualboot.core.errors import InstallerError
from dualboot.core.models import MIB, Checkpoint, CheckpointStatus
from dualboot.core.planner import plan_partitions, select_largest_region
from dualboot.core.session import InstallSession
from dualboot.platform import get_platform_backend

console = Console()

STATUS_STYLES = {
    CheckpointStatus.OK: "green",
    CheckpointStatus.SKIPPED: "yellow",
    CheckpointStatus.FAILED: "red",
    CheckpointStatus.PENDING: "dim",
}


def mib(value: int) -> str:
    return humanize.naturalsize(value * MIB, binary=True)


class ConsoleDecider(Decider):
    """Interactive yes/no prompts; anything but an explicit yes is no."""

    def confirm(self, prompt: str) -> bool:
        try:
            return click.confirm(prompt, default=False)
        except click.Abort:
            return False


class ConsoleReporter(CheckpointReporter):
    """Renders checkpoints as rich panels."""

    def __init__(self, out: Console | None = None) -> None:
        self.out = out or console

    def on_start(self, checkpoint: Checkpoint) -> None:
        self.out.rule(f"[bold cyan]{checkpoint.heading}[/bold cyan]")

    def on_success(self, checkpoint: Checkpoint) -> None:
        body = "\n".join(f"✔ {item}" for item in checkpoint.summary) or "✔ done"
        self.out.print(Panel(body, title=f"[CHECKPOINT OK] {checkpoint.label}", border_style="green"))

    def on_skip(self, checkpoint: Checkpoint) -> None:
        body = "\n".join(checkpoint.summary) or "skipped"
        self.out.print(Panel(body, title=f"[SKIPPED] {checkpoint.label}", border_style="yellow"))

    def on_failure(self, checkpoint: Checkpoint, report: FailureReport) -> None:
        self.out.print(
            Panel("\n".join(report.describe()), title=f"[FAILED] {checkpoint.label}", border_style="red")
        )


def _load(config_path: Path | None, disk: str | None, debug: bool) -> InstallerConfig:
    config = load_config(config_path)
    return config.with_overrides(device=disk, debug=debug)


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command."""
    func = click.option("--debug", is_flag=True, help="Enable debug logging")(func)
    func = click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Path to configuration file",
    )(func)
    func = click.option("--disk", "-d", help="Target disk (e.g. /dev/nvme0n1)")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="dualboot")
def cli() -> None:
    """
    dualboot - Install Arch Linux next to Windows.

    Creates root and home partitions in unallocated space, shares the existing
    EFI system partition and never touches the Windows partitions.
    """


@cli.command("install")
@common_options
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything")
def install(disk: str | None, config_path: Path | None, debug: bool, dry_run: bool) -> None:
    """Run the interactive install workflow."""
    try:
        config = _load(config_path, disk, debug)
    except InstallerError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        sys.exit(1)

    if dry_run:
        console.print(Panel("[yellow]DRY RUN[/yellow]: no destructive command will be executed", title="dualboot"))

    session = InstallSession(
        config,
        ConsoleDecider(),
        dry_run=dry_run,
        reporter=ConsoleReporter(),
        backend=get_platform_backend(dry_run=dry_run),
    )
    result = session.run()

    table = Table(title="Checkpoints")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Checkpoint", style="white")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    for checkpoint in result.checkpoints:
        style = STATUS_STYLES[checkpoint.status]
        table.add_row(
            str(checkpoint.index),
            checkpoint.label,
            f"[{style}]{checkpoint.status.value}[/{style}]",
            str(checkpoint.attempts),
        )
    console.print(table)

    if session.context.warnings:
        console.print(f"[yellow]{len(session.context.warnings)} warning(s):[/yellow]")
        for warning in session.context.warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")
    if session.log_file:
        console.print(f"Log: {session.log_file}")
    if session.report_path:
        console.print(f"Report: {session.report_path}")

    if result.status != RunStatus.COMPLETED:
        console.print("[red]Installation aborted[/red]")
        sys.exit(result.exit_code)
    console.print("[green]✓ Installation finished[/green]" if not dry_run else "[green]✓ Dry run finished[/green]")


@cli.command("plan")
@common_options
def plan(disk: str | None, config_path: Path | None, debug: bool) -> None:
    """Scan free space and print the partition plan without changing anything."""
    try:
        config = _load(config_path, disk, debug)
        backend = get_platform_backend(dry_run=True)
        regions = backend.list_free_regions(config.disk.device)
        region = select_largest_region(regions, config.disk.min_free_mib)
        partition_plan = plan_partitions(
            region, config.disk.root_mib, config.disk.allocation_mib, config.disk.min_home_mib
        )
    except InstallerError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)

    table = Table(title=f"Free regions on {config.disk.device}")
    table.add_column("Start (MiB)", justify="right")
    table.add_column("End (MiB)", justify="right")
    table.add_column("Size", style="green")
    table.add_column("Selected")
    for r in regions:
        table.add_row(str(r.start_mib), str(r.end_mib), mib(r.size_mib), "✓" if r == region else "")
    console.print(table)

    table = Table(title="Partition Plan")
    table.add_column("Partition", style="cyan")
    table.add_column("Start (MiB)", justify="right")
    table.add_column("End (MiB)", justify="right")
    table.add_column("Size", style="green")
    table.add_row("root", str(partition_plan.root_start), str(partition_plan.root_end), mib(partition_plan.root_size_mib))
    if partition_plan.home_planned:
        table.add_row("home", str(partition_plan.home_start), str(partition_plan.home_end), mib(partition_plan.home_size_mib))
    console.print(table)

    if not partition_plan.home_planned:
        console.print("[yellow]No separate /home partition: root also serves /home[/yellow]")
    if partition_plan.root_clamped:
        console.print("[yellow]Root was shrunk to fit the free region[/yellow]")


@cli.command("restore")
@click.argument("backup", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@common_options
@click.option("--dry-run", is_flag=True, help="Show what would be done")
def restore(backup: Path, disk: str | None, config_path: Path | None, debug: bool, dry_run: bool) -> None:
    """Restore a partition table from a backup taken by a previous run."""
    try:
        config = _load(config_path, disk, debug)
    except InstallerError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        sys.exit(1)

    target = config.disk.device
    console.print(Panel(f"""{"[yellow]DRY RUN[/yellow]" if dry_run else ""}

Backup: {backup}
Target: {target}""", title="Partition Table Restore"))

    if not dry_run:
        console.print(f"[red]⚠️  This will REPLACE the partition table of {target}[/red]")
        if not ConsoleDecider().confirm(f"Restore the partition table of {target} from {backup}?"):
            console.print("[yellow]Restore cancelled[/yellow]")
            sys.exit(1)

    backend = get_platform_backend(dry_run=dry_run)
    success, message = backend.restore_partition_table(target, backup)
    if success:
        backend.reprobe(target)
        console.print(f"[green]✓ {message}[/green]")
    else:
        console.print(f"[red]✗ {message}[/red]")
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
