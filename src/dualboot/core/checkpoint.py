"""
dualboot Checkpoint Runner.

Drives a fixed sequence of phases. Each phase is announced, run inside an
OperationLogger and summarized. The runner alone decides whether a failure is
fatal; on a fatal failure it hands over to the rollback controller and stops.
"""

from __future__ import annotations

import time
import traceback
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dualboot.core.errors import InstallerError, RetryableError, UserAbortedError
from dualboot.core.logging import OperationLogger, get_logger
from dualboot.core.models import Checkpoint, CheckpointStatus

if TYPE_CHECKING:
    from dualboot.core.rollback import RollbackOutcome
    from dualboot.core.workflow import RunContext

logger = get_logger(__name__)

CLEANUP_INCOMPLETE = "Failure cleanup did not complete; check mounts and the partition table manually"


class Decider(ABC):
    """Answers yes/no confirmation gates."""

    @abstractmethod
    def confirm(self, prompt: str) -> bool:
        """Return True to proceed. Empty or unclear input means no."""


class CheckpointReporter(ABC):
    """Receives checkpoint lifecycle events for display."""

    @abstractmethod
    def on_start(self, checkpoint: Checkpoint) -> None: ...

    @abstractmethod
    def on_success(self, checkpoint: Checkpoint) -> None: ...

    @abstractmethod
    def on_skip(self, checkpoint: Checkpoint) -> None: ...

    @abstractmethod
    def on_failure(self, checkpoint: Checkpoint, report: FailureReport) -> None: ...


class LogReporter(CheckpointReporter):
    """Reporter that only writes to the run log."""

    def on_start(self, checkpoint: Checkpoint) -> None:
        logger.info(checkpoint.heading)

    def on_success(self, checkpoint: Checkpoint) -> None:
        logger.info(f"[CHECKPOINT OK] {checkpoint.label}", summary=checkpoint.summary)

    def on_skip(self, checkpoint: Checkpoint) -> None:
        logger.info(f"[CHECKPOINT SKIPPED] {checkpoint.label}", summary=checkpoint.summary)

    def on_failure(self, checkpoint: Checkpoint, report: FailureReport) -> None:
        logger.error(f"[CHECKPOINT FAILED] {checkpoint.label}", **report.to_dict())


class SkipPhase(Exception):
    """Raised by a phase handler when there is nothing to do."""


PhaseHandler = Callable[["RunContext"], "list[str] | None"]


@dataclass(frozen=True)
class Phase:
    """One step of the workflow."""

    key: str
    label: str
    handler: PhaseHandler
    optional: bool = False
    attempts: int = 1
    backoff_seconds: float = 0.0


class RunStatus(Enum):
    """Terminal state of a run."""

    COMPLETED = auto()
    ABORTED = auto()


@dataclass
class FailureReport:
    """What went wrong, where, and what cleanup did."""

    error_type: str
    message: str
    checkpoint: str
    command: str | None = None
    backup_path: Path | None = None
    restore_attempted: bool = False
    restore_succeeded: bool = False
    unmount_failures: list[str] = field(default_factory=list)
    cleanup: list[str] = field(default_factory=list)
    traceback: str | None = None

    def describe(self) -> list[str]:
        lines = [
            f"Failed at: {self.checkpoint}",
            f"Error ({self.error_type}): {self.message}",
        ]
        if self.command:
            lines.append(f"Last command: {self.command}")
        return lines + self.cleanup

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "checkpoint": self.checkpoint,
            "command": self.command,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "restore_attempted": self.restore_attempted,
            "restore_succeeded": self.restore_succeeded,
            "unmount_failures": self.unmount_failures,
            "cleanup": self.cleanup,
        }


@dataclass
class RunResult:
    """Result of a workflow run."""

    status: RunStatus
    checkpoints: list[Checkpoint]
    failure: FailureReport | None = None
    rollback: RollbackOutcome | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.status == RunStatus.COMPLETED else 1


class CheckpointRunner:
    """Runs phases strictly in order with confirmation gates and retry."""

    def __init__(
        self,
        phases: list[Phase],
        reporter: CheckpointReporter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.phases = phases
        self.reporter = reporter or LogReporter()
        self._sleep = sleep
        self.checkpoints: list[Checkpoint] = []

    def run(self, ctx: RunContext) -> RunResult:
        total = len(self.phases)
        self.checkpoints = [
            Checkpoint(index=i, total=total, key=phase.key, label=phase.label)
            for i, phase in enumerate(self.phases, 1)
        ]

        for phase, checkpoint in zip(self.phases, self.checkpoints):
            self.reporter.on_start(checkpoint)
            try:
                checkpoint.summary = self._run_phase(phase, checkpoint, ctx)
            except SkipPhase as e:
                self._skip(checkpoint, str(e))
                continue
            except UserAbortedError as e:
                if phase.optional:
                    self._skip(checkpoint, e.message)
                    continue
                return self._fail(ctx, checkpoint, e)
            except KeyboardInterrupt:
                return self._fail(ctx, checkpoint, UserAbortedError("Interrupted by user"))
            except Exception as e:
                return self._fail(ctx, checkpoint, e)

            checkpoint.status = CheckpointStatus.OK
            self.reporter.on_success(checkpoint)

        logger.info("Workflow completed", checkpoints=total, simulated=ctx.simulation)
        return RunResult(status=RunStatus.COMPLETED, checkpoints=self.checkpoints)

    def _run_phase(self, phase: Phase, checkpoint: Checkpoint, ctx: RunContext) -> list[str]:
        for attempt in range(1, phase.attempts + 1):
            checkpoint.attempts = attempt
            try:
                with OperationLogger(phase.key, logger, checkpoint=checkpoint.index, attempt=attempt) as op:
                    lines = list(phase.handler(ctx) or [])
                    op.update(summary_lines=len(lines))
                    return lines
            except RetryableError as e:
                if attempt >= phase.attempts:
                    raise
                logger.warning(
                    "Retryable failure, retrying after backoff",
                    phase=phase.key,
                    attempt=attempt,
                    max_attempts=phase.attempts,
                    backoff_seconds=phase.backoff_seconds,
                    error=e.message,
                )
                self._sleep(phase.backoff_seconds)
        # attempts < 1 is rejected by configuration
        raise RuntimeError(f"Phase {phase.key} has no attempts configured")

    def _skip(self, checkpoint: Checkpoint, reason: str) -> None:
        checkpoint.status = CheckpointStatus.SKIPPED
        checkpoint.summary = [reason]
        self.reporter.on_skip(checkpoint)

    def _fail(self, ctx: RunContext, checkpoint: Checkpoint, error: BaseException) -> RunResult:
        checkpoint.status = CheckpointStatus.FAILED

        if isinstance(error, InstallerError):
            message = error.message
            command = error.command or ctx.backend.last_command
            trace = None
        else:
            message = str(error) or error.__class__.__name__
            command = ctx.backend.last_command
            trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            logger.error("Unexpected error", error_type=type(error).__name__, traceback=trace)

        outcome: RollbackOutcome | None = None
        try:
            outcome = ctx.rollback.handle_failure(ctx.mounts, ctx.decider)
        except Exception as e:
            logger.error("Failure cleanup itself failed", error=str(e))

        report = FailureReport(
            error_type=type(error).__name__,
            message=message,
            checkpoint=checkpoint.heading,
            command=command,
            backup_path=ctx.rollback.state.backup_path,
            restore_attempted=outcome.restore_attempted if outcome else False,
            restore_succeeded=outcome.restore_succeeded if outcome else False,
            unmount_failures=outcome.unmount_failures if outcome else [],
            cleanup=outcome.describe() if outcome else [CLEANUP_INCOMPLETE],
            traceback=trace,
        )
        self.reporter.on_failure(checkpoint, report)
        return RunResult(
            status=RunStatus.ABORTED,
            checkpoints=self.checkpoints,
            failure=report,
            rollback=outcome,
        )
