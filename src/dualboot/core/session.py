"""
dualboot Install Session.

Ties configuration, logging, the platform backend and the workflow together
for one run, and writes the JSON run report.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from dualboot.core.checkpoint import (
    CheckpointReporter,
    CheckpointRunner,
    Decider,
    RunResult,
    RunStatus,
)
from dualboot.core.config import InstallerConfig
from dualboot.core.logging import get_log_file, get_logger, setup_logging
from dualboot.core.mounts import MountManager
from dualboot.core.rollback import RollbackController
from dualboot.core.workflow import RunContext, build_phases
from dualboot.platform.base import PlatformBackend

logger = get_logger(__name__)


@dataclass
class RunReport:
    """Complete run report for audit and review."""

    run_id: str
    started_at: datetime
    simulated: bool
    disk: str
    ended_at: datetime | None = None
    status: str | None = None
    plan: dict[str, Any] | None = None
    layout: dict[str, Any] | None = None
    checkpoints: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: dict[str, Any] | None = None
    backup_path: str | None = None
    restored: bool = False
    simulated_actions: list[str] = field(default_factory=list)
    log_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": (
                (self.ended_at - self.started_at).total_seconds()
                if self.ended_at
                else None
            ),
            "status": self.status,
            "simulated": self.simulated,
            "disk": self.disk,
            "plan": self.plan,
            "layout": self.layout,
            "checkpoints": self.checkpoints,
            "warnings": self.warnings,
            "error": self.error,
            "backup_path": self.backup_path,
            "restored": self.restored,
            "simulated_actions": self.simulated_actions,
            "log_file": self.log_file,
        }

    def save(self, path: Path) -> None:
        """Save report to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


class InstallSession:
    """
    One install run: configuration, backend, workflow and report.

    The backend is the live-environment backend, wrapped in the simulation
    backend for dry runs.
    """

    def __init__(
        self,
        config: InstallerConfig,
        decider: Decider,
        dry_run: bool = False,
        reporter: CheckpointReporter | None = None,
        backend: PlatformBackend | None = None,
        sleep: Callable[[float], None] | None = None,
        run_id: str | None = None,
    ) -> None:
        self.id = run_id or str(uuid.uuid4())
        self.config = config
        self.decider = decider
        self.dry_run = dry_run
        self.reporter = reporter
        self.started_at = datetime.now()
        self._sleep = sleep
        self.report_path: Path | None = None

        self.log_file = setup_logging(config.logging)

        if backend is None:
            from dualboot.platform import get_platform_backend

            backend = get_platform_backend(dry_run=dry_run)
        elif dry_run and not backend.simulated:
            from dualboot.platform import SimulatedBackend

            backend = SimulatedBackend(backend)
        self.backend = backend

        self.mounts = MountManager(self.backend)
        self.rollback = RollbackController(
            self.backend,
            config.disk.device,
            config.install.backup_directory,
            simulation=self.backend.simulated,
        )
        self.context = RunContext(
            config=config,
            backend=self.backend,
            decider=decider,
            mounts=self.mounts,
            rollback=self.rollback,
        )
        self.report = RunReport(
            run_id=self.id,
            started_at=self.started_at,
            simulated=self.backend.simulated,
            disk=config.disk.device,
        )

        logger.info(
            "Install session started",
            run_id=self.id,
            disk=config.disk.device,
            backend=self.backend.name,
            dry_run=self.backend.simulated,
            log_file=str(self.log_file or get_log_file()),
        )

    def run(self) -> RunResult:
        """Run the workflow and save the report."""
        phases = build_phases(self.config)
        runner = CheckpointRunner(phases, self.reporter, sleep=self._sleep or time.sleep)

        result = runner.run(self.context)
        self._finish(result)
        return result

    def _finish(self, result: RunResult) -> None:
        ctx = self.context
        report = self.report
        report.ended_at = datetime.now()
        report.status = result.status.name.lower()
        report.plan = ctx.plan.to_dict() if ctx.plan else None
        report.layout = ctx.layout.to_dict() if ctx.layout else None
        report.checkpoints = [c.to_dict() for c in result.checkpoints]
        report.warnings = list(ctx.warnings)
        report.error = result.failure.to_dict() if result.failure else None
        report.backup_path = str(self.rollback.state.backup_path) if self.rollback.state.backup_path else None
        report.restored = self.rollback.state.restored
        report.simulated_actions = list(getattr(self.backend, "actions", []))
        report.log_file = str(self.log_file) if self.log_file else None

        try:
            path = self.config.get_report_file(self.id)
            report.save(path)
            self.report_path = path
            logger.info("Run report saved", path=str(path))
        except OSError as e:
            logger.error("Failed to save run report", error=str(e))

        log = logger.info if result.status == RunStatus.COMPLETED else logger.error
        log(
            "Install session ended",
            run_id=self.id,
            status=report.status,
            warnings=len(report.warnings),
        )
