"""
InstallerClean — System preconditions for live runs: elevation and restore points.
"""

from __future__ import annotations

import ctypes
import logging
import os
import subprocess

from models import InstallerCleanError

logger = logging.getLogger(__name__)

RESTORE_POINT_TIMEOUT_S = 600


class PreconditionError(InstallerCleanError):
    """A live run cannot start (no elevation, no restore point)."""


def is_admin() -> bool:
    """Check if the script is running with administrator privileges."""
    try:
        return ctypes.windll.shell32.IsUserAnAdmin() != 0
    except (AttributeError, OSError):
        return False


def create_restore_point(description: str) -> None:
    """Create a System Restore checkpoint via PowerShell.

    Raises:
        PreconditionError: if the checkpoint could not be created.
    """
    command = (
        "Checkpoint-Computer -Description $env:IC_DESCRIPTION "
        "-RestorePointType MODIFY_SETTINGS -ErrorAction Stop"
    )
    try:
        result = subprocess.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", command],
            capture_output=True,
            text=True,
            timeout=RESTORE_POINT_TIMEOUT_S,
            env=dict(os.environ, IC_DESCRIPTION=description),
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        raise PreconditionError(f"Restore point creation failed: {exc}") from exc
    if result.returncode != 0:
        detail = result.stderr.strip() or f"exit code {result.returncode}"
        raise PreconditionError(f"Restore point creation failed: {detail}")
    logger.info("Restore point created: %s", description)
