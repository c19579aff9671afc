"""
InstallerClean — Append-only run log (one ``<timestamp>\\t<message>`` line per event).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


def append_log_line(log_path: Optional[str], message: str,
                    now: Optional[datetime] = None) -> bool:
    """Append one line to the run log. Returns False if it could not be written."""
    if not log_path:
        return False
    stamp = (now or datetime.now()).isoformat(timespec="seconds")
    line = f"{stamp}\t{' '.join(message.splitlines())}\n"
    try:
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError as exc:
        logger.warning("Could not write run log %s: %s", log_path, exc)
        return False
    return True
