"""
dualboot Core - Installer service layer.

Contains planning, detection, mount tracking, rollback, the checkpointed
workflow, configuration and session management.
"""

from dualboot.core.config import InstallerConfig
from dualboot.core.checkpoint import CheckpointRunner, Decider, Phase, RunResult, RunStatus
from dualboot.core.errors import InstallerError
from dualboot.core.session import InstallSession, RunReport
from dualboot.core.logging import get_logger, setup_logging

__all__ = [
    "InstallerConfig",
    "CheckpointRunner",
    "Decider",
    "Phase",
    "RunResult",
    "RunStatus",
    "InstallerError",
    "InstallSession",
    "RunReport",
    "get_logger",
    "setup_logging",
]
