"""
InstallerClean — Pipeline: keep set -> classify -> dispose -> prune -> report.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple

from cleaner import ActionExecutor, prune_empty_dirs
from config import RunConfig
from keepset import KeepSet, build_keep_set, default_sources
from models import CacheFileRecord, Failure, RunReport
from scanner import Classifier
from vendor_filter import VendorFilter

logger = logging.getLogger(__name__)

RecordCallback = Optional[Callable[[CacheFileRecord], None]]


def scan(
    config: RunConfig,
    keep_set: KeepSet,
    vendor_filter: Optional[VendorFilter] = None,
    progress_cb: RecordCallback = None,
) -> Tuple[List[CacheFileRecord], Classifier]:
    """Classify the whole cache. Read-only."""
    if vendor_filter is None:
        vendor_filter = VendorFilter(config.vendor_filters)
    classifier = Classifier(keep_set, vendor_filter, workers=config.workers)
    records = list(classifier.classify(config.cache_dir, progress_cb=progress_cb))
    logger.info("Classified %d installer files under %s", len(records), config.cache_dir)
    return records, classifier


def dispose(
    config: RunConfig,
    records: List[CacheFileRecord],
    scan_failures: Sequence[Failure] = (),
    cancel: Optional[threading.Event] = None,
    progress_cb: RecordCallback = None,
    started: Optional[float] = None,
) -> RunReport:
    """Apply the disposal action, prune empty folders and build the report."""
    ActionExecutor(config).apply(records, cancel=cancel, progress_cb=progress_cb)

    prune = None
    if cancel is None or not cancel.is_set():
        prune = prune_empty_dirs(config.cache_dir, dry_run=not config.destructive)

    report = RunReport.from_records(
        records,
        dry_run=config.dry_run,
        disposal_mode=config.disposal_mode.value,
        scan_failures=scan_failures,
        prune=prune,
        duration_s=time.perf_counter() - started if started is not None else 0.0,
    )
    logger.info(report.summary_line)
    return report


def run_pipeline(
    config: RunConfig,
    sources: Optional[Sequence] = None,
    vendor_filter: Optional[VendorFilter] = None,
    cancel: Optional[threading.Event] = None,
    scan_cb: RecordCallback = None,
    dispose_cb: RecordCallback = None,
) -> Tuple[List[CacheFileRecord], RunReport]:
    """Run one full pass over the installer cache.

    Raises:
        KeepSetUnavailable: before anything is touched, if installer
            state cannot be read.
    """
    start = time.perf_counter()
    keep_set = build_keep_set(default_sources() if sources is None else sources)
    records, classifier = scan(config, keep_set, vendor_filter, progress_cb=scan_cb)
    report = dispose(config, records, classifier.failures, cancel=cancel,
                     progress_cb=dispose_cb, started=start)
    return records, report
