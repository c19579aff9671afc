"""
InstallerClean — Disposal engine (quarantine / delete) and empty folder pruning.

This is the only module that mutates the filesystem.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
from typing import Callable, Iterable, Optional, Set

from config import DisposalMode, RunConfig
from models import CacheFileRecord, Classification, Failure, Outcome, PruneResult

logger = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[CacheFileRecord], None]]


class ActionExecutor:
    """Applies the configured disposal action to orphaned records.

    Records are processed one at a time; a failure on one file never stops
    the batch. Kept and excluded records are never touched.
    """

    def __init__(self, config: RunConfig) -> None:
        self.config = config
        self._quarantine_lock = threading.Lock()
        self._quarantine_ready = False

    def apply(
        self,
        records: Iterable[CacheFileRecord],
        cancel: Optional[threading.Event] = None,
        progress_cb: ProgressCallback = None,
    ) -> None:
        """Set the outcome of every orphaned record in place.

        If ``cancel`` is set, the remaining orphans are left Pending.
        """
        for record in records:
            if record.classification is not Classification.ORPHANED:
                continue
            if record.outcome is not Outcome.PENDING:
                continue
            if cancel is not None and cancel.is_set():
                logger.warning("Cancelled; remaining orphans left untouched")
                return
            self._dispose(record)
            if progress_cb:
                progress_cb(record)

    def _dispose(self, record: CacheFileRecord) -> None:
        config = self.config
        if config.dry_run or config.disposal_mode is DisposalMode.NO_ACTION:
            logger.debug("Would act on %s", record.path)
            record.mark(Outcome.SKIPPED)
            return

        try:
            if config.disposal_mode is DisposalMode.DELETE:
                _delete_file(record.path)
                record.mark(Outcome.DELETED)
                logger.debug("Deleted %s", record.path)
            else:
                record.destination = self._quarantine(record.path)
                record.mark(Outcome.MOVED)
                logger.debug("Moved %s -> %s", record.path, record.destination)
        except OSError as exc:
            reason = exc.strerror or str(exc)
            logger.warning("Could not %s %s: %s", config.disposal_mode.value, record.path, reason)
            record.mark(Outcome.FAILED, reason)

    def _ensure_quarantine_dir(self) -> str:
        quarantine_dir = self.config.quarantine_dir
        if not quarantine_dir:
            raise OSError("No quarantine folder configured")
        with self._quarantine_lock:
            if not self._quarantine_ready:
                os.makedirs(quarantine_dir, exist_ok=True)
                self._quarantine_ready = True
        return quarantine_dir

    def _quarantine(self, path: str) -> str:
        """Move ``path`` under the quarantine folder, keeping its relative path."""
        quarantine_dir = self._ensure_quarantine_dir()
        relative = os.path.relpath(path, self.config.cache_dir)
        if relative.startswith(os.pardir):
            relative = os.path.basename(path)
        target = os.path.join(quarantine_dir, relative)
        if os.path.lexists(target):
            raise FileExistsError(17, "Already present in quarantine", target)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        try:
            shutil.move(path, target)
        except OSError:
            # A move across volumes copies first; drop the copy if the source survived.
            if os.path.lexists(target) and os.path.lexists(path):
                _discard_partial(target)
            raise
        return target


def _discard_partial(target: str) -> None:
    try:
        os.remove(target)
    except OSError as exc:
        logger.warning("Could not remove partial quarantine copy %s: %s", target, exc)


def _delete_file(path: str) -> None:
    """Delete a single file, clearing the read-only attribute first.

    Unlike a general cleaner, a file that is already gone is an error here:
    the record said it existed.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(2, "File no longer exists", path)
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    os.remove(path)


def prune_empty_dirs(cache_dir: str, dry_run: bool = False) -> PruneResult:
    """Remove folders under cache_dir that have no entries left.

    Folders are visited deepest-first, so a parent whose only contents
    were empty folders is removed in the same pass. cache_dir itself is
    never removed. In dry-run nothing is removed; ``removed`` lists the
    folders that would be.
    """
    result = PruneResult()
    root = os.path.abspath(cache_dir)
    gone: Set[str] = set()

    def on_error(exc: OSError) -> None:
        result.failures.append(Failure(str(exc.filename or root), str(exc), "prune"))

    for dirpath, dirnames, filenames in os.walk(root, topdown=False, onerror=on_error):
        if dirpath == root:
            continue
        if filenames:
            continue
        if any(os.path.join(dirpath, d) not in gone for d in dirnames):
            continue
        if not dry_run:
            try:
                # Recheck on disk: the walk listing can be stale.
                if any(os.path.join(dirpath, e) not in gone for e in os.listdir(dirpath)):
                    continue
                os.rmdir(dirpath)
            except OSError as exc:
                logger.warning("Could not remove folder %s: %s", dirpath, exc)
                result.failures.append(Failure(dirpath, exc.strerror or str(exc), "prune"))
                continue
        gone.add(dirpath)
        result.removed.append(dirpath)
        logger.debug("%s empty folder %s", "Would remove" if dry_run else "Removed", dirpath)

    logger.info("%s %d empty folders", "Would prune" if dry_run else "Pruned", result.count)
    return result
