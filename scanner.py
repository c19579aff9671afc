"""
InstallerClean — Classifier: walks the installer cache and sorts every
.msi/.msp file into kept / excluded / orphaned.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterator, List, Optional, Tuple

from config import DEFAULT_WORKERS
from keepset import KeepSet
from models import CacheFileRecord, Classification, Failure, is_candidate
from vendor_filter import VendorFilter

logger = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[CacheFileRecord], None]]
# callback(record), called once per classified file, in walk order


class Classifier:
    """Single-pass classifier for one run.

    The keep set and vendor filter are shared read-only by all workers.
    Walk and stat errors are collected in ``failures`` instead of raised.
    """

    def __init__(
        self,
        keep_set: KeepSet,
        vendor_filter: VendorFilter,
        workers: int = DEFAULT_WORKERS,
    ) -> None:
        self.keep_set = keep_set
        self.vendor_filter = vendor_filter
        self.workers = max(1, workers)
        self.failures: List[Failure] = []
        self._started = False

    def classify_file(self, path: str) -> Classification:
        """Keep set first, then vendor filter, then orphaned."""
        if os.path.basename(path) in self.keep_set:
            return Classification.KEPT
        if self.vendor_filter.is_excluded(path):
            return Classification.EXCLUDED
        return Classification.ORPHANED

    def iter_candidates(self, cache_dir: str) -> Iterator[Tuple[str, int]]:
        """Yield (path, size) for every .msi/.msp file under cache_dir."""

        def on_error(exc: OSError) -> None:
            path = exc.filename or cache_dir
            logger.warning("Cannot read %s: %s", path, exc.strerror or exc)
            self.failures.append(Failure(str(path), str(exc), "scan"))

        for dirpath, dirnames, filenames in os.walk(cache_dir, onerror=on_error):
            dirnames.sort()
            for filename in sorted(filenames):
                if not is_candidate(filename):
                    continue
                path = os.path.join(dirpath, filename)
                try:
                    if os.path.islink(path):
                        continue
                    size = os.path.getsize(path)
                except OSError as exc:
                    on_error(exc)
                    continue
                yield path, size

    def _record(self, candidate: Tuple[str, int]) -> CacheFileRecord:
        path, size = candidate
        classification = self.classify_file(path)
        logger.debug("%s -> %s", path, classification.value)
        return CacheFileRecord(path=path, size=size, classification=classification)

    def classify(
        self,
        cache_dir: str,
        progress_cb: ProgressCallback = None,
    ) -> Iterator[CacheFileRecord]:
        """Walk cache_dir and yield one classified record per candidate file.

        Records come back in walk order even when classification runs on
        the worker pool. Can only be consumed once.
        """
        if self._started:
            raise RuntimeError("Classifier.classify() can only run once per run")
        self._started = True

        if not os.path.isdir(cache_dir):
            logger.warning("Installer cache %s does not exist", cache_dir)
            self.failures.append(Failure(cache_dir, "Installer cache folder not found", "scan"))
            return

        candidates = self.iter_candidates(cache_dir)
        if self.workers == 1:
            yield from _notify(map(self._record, candidates), progress_cb)
            return

        with ThreadPoolExecutor(max_workers=self.workers,
                                thread_name_prefix="InstallerCleanScan") as pool:
            yield from _notify(pool.map(self._record, candidates), progress_cb)


def _notify(records, progress_cb: ProgressCallback) -> Iterator[CacheFileRecord]:
    for record in records:
        if progress_cb:
            progress_cb(record)
        yield record
