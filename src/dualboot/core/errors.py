"""
dualboot error taxonomy.

Components raise these; only the checkpoint runner decides whether a failure
is fatal and triggers cleanup.
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for all installer failures."""

    def __init__(self, message: str, command: str | None = None) -> None:
        self.message = message
        self.command = command
        super().__init__(message)


class ConfigError(InstallerError):
    """Invalid configuration (device path, account name, config file)."""


class UnsupportedEnvironmentError(InstallerError):
    """Required tool missing, wrong firmware mode or missing privileges."""


class InsufficientSpaceError(InstallerError):
    """No free region large enough for the installation."""


class DetectionError(InstallerError):
    """A partition role could not be resolved unambiguously."""


class ExecutionError(InstallerError):
    """An external tool reported failure."""


class RetryableError(InstallerError):
    """A failure that may succeed on another attempt (e.g. network hiccup)."""


class UserAbortedError(InstallerError):
    """The user declined a confirmation gate."""
