"""
InstallerClean — Run configuration, vendor filter defaults, and persisted settings.

Provides:
  - RunConfig, the immutable per-run configuration consumed by the pipeline
  - Default vendor filters (installers that are known to break when removed)
  - Persistent config loading/saving from JSON
"""

from __future__ import annotations

import enum
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from models import InstallerCleanError

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.join(os.environ.get("APPDATA", "."), "InstallerClean")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")
LOG_FILENAME = "InstallerClean.log"

# Adobe products re-read their cached patches on repair/update.
DEFAULT_VENDOR_FILTERS: Tuple[str, ...] = ("Adobe", "Acrobat")

DEFAULT_WORKERS = 4
MAX_WORKERS = 32


def default_cache_dir() -> str:
    windir = os.environ.get("SYSTEMROOT", r"C:\Windows")
    return os.path.join(windir, "Installer")


class ConfigError(InstallerCleanError):
    """Conflicting or invalid run configuration."""


class DisposalMode(enum.Enum):
    NO_ACTION = "none"
    DELETE = "delete"
    QUARANTINE = "quarantine"


# ── Run Config ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RunConfig:
    """Everything one run needs. Built once; no component mutates it."""
    cache_dir: str
    vendor_filters: Tuple[str, ...] = ()
    dry_run: bool = True
    disposal_mode: DisposalMode = DisposalMode.NO_ACTION
    quarantine_dir: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    log_path: Optional[str] = None

    @property
    def destructive(self) -> bool:
        """True when this run is allowed to move or delete files."""
        return not self.dry_run and self.disposal_mode is not DisposalMode.NO_ACTION


def merge_vendor_filters(*groups: Iterable[str]) -> Tuple[str, ...]:
    """Merge pattern lists, dropping blanks and case-insensitive duplicates.

    First occurrence wins, so the order of the input groups is kept.
    """
    seen = set()
    merged: List[str] = []
    for group in groups:
        for raw in group:
            pattern = raw.strip()
            if not pattern or pattern.lower() in seen:
                continue
            seen.add(pattern.lower())
            merged.append(pattern)
    return tuple(merged)


def parse_vendor_list(text: Optional[str]) -> List[str]:
    """Split a comma-separated vendor list (as given on the command line)."""
    if not text:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def build_run_config(
    *,
    cache_dir: Optional[str] = None,
    vendor_filters: Iterable[str] = (),
    dry_run: bool = True,
    disposal_mode: DisposalMode = DisposalMode.NO_ACTION,
    quarantine_dir: Optional[str] = None,
    workers: int = DEFAULT_WORKERS,
    log_path: Optional[str] = None,
) -> RunConfig:
    """Validate inputs and return an immutable RunConfig.

    Raises:
        ConfigError: quarantine mode without a usable quarantine folder,
            or a worker count outside 1..MAX_WORKERS.
    """
    cache_dir = os.path.abspath(cache_dir or default_cache_dir())

    if not 1 <= workers <= MAX_WORKERS:
        raise ConfigError(f"Worker count must be between 1 and {MAX_WORKERS}, got {workers}")

    if disposal_mode is DisposalMode.QUARANTINE:
        if not quarantine_dir:
            raise ConfigError("Quarantine mode requires a quarantine folder")
        quarantine_dir = os.path.abspath(quarantine_dir)
        _check_quarantine_dir(quarantine_dir, cache_dir)
    elif quarantine_dir:
        quarantine_dir = os.path.abspath(quarantine_dir)

    return RunConfig(
        cache_dir=cache_dir,
        vendor_filters=merge_vendor_filters(vendor_filters),
        dry_run=dry_run,
        disposal_mode=disposal_mode,
        quarantine_dir=quarantine_dir,
        workers=workers,
        log_path=log_path,
    )


def _check_quarantine_dir(quarantine_dir: str, cache_dir: str) -> None:
    """Quarantine must live outside the cache and be creatable."""
    q = os.path.normcase(os.path.normpath(quarantine_dir))
    c = os.path.normcase(os.path.normpath(cache_dir))
    if q == c or q.startswith(c + os.sep):
        raise ConfigError(
            f"Quarantine folder must be outside the installer cache: {quarantine_dir}"
        )
    if os.path.exists(quarantine_dir):
        if not os.path.isdir(quarantine_dir):
            raise ConfigError(f"Quarantine path is not a folder: {quarantine_dir}")
        return

    # The folder itself is created lazily; its nearest existing parent
    # must be a writable directory.
    parent = os.path.dirname(quarantine_dir)
    while parent and not os.path.exists(parent):
        next_parent = os.path.dirname(parent)
        if next_parent == parent:
            break
        parent = next_parent
    if not parent or not os.path.isdir(parent) or not os.access(parent, os.W_OK):
        raise ConfigError(f"Cannot create quarantine folder: {quarantine_dir}")


# ── General Config ───────────────────────────────────────────────────────────

@dataclass
class AppConfig:
    """Persisted user defaults."""
    vendor_filters: List[str] = field(default_factory=lambda: list(DEFAULT_VENDOR_FILTERS))
    quarantine_dir: str = ""
    log_dir: str = CONFIG_DIR
    workers: int = DEFAULT_WORKERS

    @property
    def log_path(self) -> str:
        return os.path.join(self.log_dir, LOG_FILENAME)


def load_config(path: str = CONFIG_FILE) -> AppConfig:
    """Load app config from disk, or return defaults."""
    config = AppConfig()
    try:
        if os.path.isfile(path):
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top level must be a JSON object")
            config.vendor_filters = list(data.get("vendor_filters", config.vendor_filters))
            config.quarantine_dir = data.get("quarantine_dir", "")
            config.log_dir = data.get("log_dir", CONFIG_DIR)
            config.workers = int(data.get("workers", DEFAULT_WORKERS))
    except (json.JSONDecodeError, OSError, TypeError, ValueError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        config = AppConfig()
    return config


def save_config(config: AppConfig, path: str = CONFIG_FILE) -> None:
    """Save app config to disk."""
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        data = {
            "vendor_filters": config.vendor_filters,
            "quarantine_dir": config.quarantine_dir,
            "log_dir": config.log_dir,
            "workers": config.workers,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as exc:
        logger.warning("Could not save config %s: %s", path, exc)
