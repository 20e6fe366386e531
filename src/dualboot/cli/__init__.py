"""
dualboot CLI Module.

Provides the command-line interface for the installer.
"""

from dualboot.cli.main import main, cli

__all__ = ["main", "cli"]
