"""
InstallerClean — Data models for cache file records and the run report.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


class InstallerCleanError(Exception):
    """Base class for fatal errors that abort a run before any file is touched."""


class Classification(enum.Enum):
    """Why a cached installer file is (or is not) a disposal candidate."""
    KEPT = "kept"           # Referenced by an installed product or patch
    EXCLUDED = "excluded"   # Matches a vendor filter
    ORPHANED = "orphaned"   # Referenced by nothing


class Outcome(enum.Enum):
    """What the disposal step did to a record."""
    PENDING = "pending"
    MOVED = "moved"
    DELETED = "deleted"
    SKIPPED = "skipped"     # Dry-run or no-action: "would act"
    FAILED = "failed"


CANDIDATE_EXTENSIONS = (".msi", ".msp")


def is_candidate(filename: str) -> bool:
    """Return True for .msi / .msp files (case-insensitive)."""
    return filename.lower().endswith(CANDIDATE_EXTENSIONS)


@dataclass
class CacheFileRecord:
    """A single .msi/.msp file discovered under the installer cache."""
    path: str                                   # Full path
    size: int                                   # Size in bytes
    classification: Classification
    outcome: Outcome = Outcome.PENDING
    reason: str = ""                            # Failure reason, if any
    destination: Optional[str] = None           # Quarantine path once moved

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def size_human(self) -> str:
        return _format_size(self.size)

    def mark(self, outcome: Outcome, reason: str = "") -> None:
        self.outcome = outcome
        self.reason = reason


@dataclass(frozen=True)
class Failure:
    """A recoverable, per-item failure collected during the run."""
    path: str
    reason: str
    stage: str      # "scan", "dispose" or "prune"


@dataclass(frozen=True)
class ClassTotals:
    count: int = 0
    size: int = 0

    @property
    def size_human(self) -> str:
        return _format_size(self.size)


@dataclass
class PruneResult:
    """Directories removed (or, in dry-run, that would be removed)."""
    removed: List[str] = field(default_factory=list)
    failures: List[Failure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.removed)


@dataclass(frozen=True)
class RunReport:
    """Aggregated, immutable result of one run."""
    totals: Dict[Classification, ClassTotals]
    outcomes: Dict[Outcome, int]
    reclaimed: int                      # Bytes moved or deleted
    dirs_pruned: int
    failures: Tuple[Failure, ...]
    dry_run: bool
    disposal_mode: str
    duration_s: float = 0.0

    @classmethod
    def from_records(
        cls,
        records: Iterable[CacheFileRecord],
        *,
        dry_run: bool,
        disposal_mode: str,
        scan_failures: Iterable[Failure] = (),
        prune: Optional[PruneResult] = None,
        duration_s: float = 0.0,
    ) -> "RunReport":
        """Reduce the final record list into counts, byte totals and failures."""
        counts = {c: [0, 0] for c in Classification}
        outcomes = {o: 0 for o in Outcome}
        reclaimed = 0
        failures: List[Failure] = list(scan_failures)

        for record in records:
            bucket = counts[record.classification]
            bucket[0] += 1
            bucket[1] += record.size
            outcomes[record.outcome] += 1
            if record.outcome in (Outcome.MOVED, Outcome.DELETED):
                reclaimed += record.size
            elif record.outcome is Outcome.FAILED:
                failures.append(Failure(record.path, record.reason, "dispose"))

        if prune is not None:
            failures.extend(prune.failures)

        return cls(
            totals={c: ClassTotals(n, s) for c, (n, s) in counts.items()},
            outcomes=outcomes,
            reclaimed=reclaimed,
            dirs_pruned=prune.count if prune is not None else 0,
            failures=tuple(failures),
            dry_run=dry_run,
            disposal_mode=disposal_mode,
            duration_s=duration_s,
        )

    @property
    def kept(self) -> ClassTotals:
        return self.totals[Classification.KEPT]

    @property
    def excluded(self) -> ClassTotals:
        return self.totals[Classification.EXCLUDED]

    @property
    def orphaned(self) -> ClassTotals:
        return self.totals[Classification.ORPHANED]

    @property
    def total_scanned(self) -> int:
        return sum(t.count for t in self.totals.values())

    @property
    def total_size(self) -> int:
        return sum(t.size for t in self.totals.values())

    @property
    def disposal_failures(self) -> int:
        return self.outcomes[Outcome.FAILED]

    @property
    def summary_line(self) -> str:
        """One-line summary suitable for the run log."""
        mode = "dry-run" if self.dry_run else self.disposal_mode
        return (
            f"Run completed ({mode}): "
            f"kept {self.kept.count} ({self.kept.size_human}), "
            f"excluded {self.excluded.count} ({self.excluded.size_human}), "
            f"orphaned {self.orphaned.count} ({self.orphaned.size_human}); "
            f"reclaimed {_format_size(self.reclaimed)}, "
            f"{self.disposal_failures} failed, "
            f"{self.dirs_pruned} empty folders pruned"
        )


def _format_size(size_bytes: int) -> str:
    """Format bytes into a human-readable string."""
    if size_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    idx = 0
    while size >= 1024.0 and idx < len(units) - 1:
        size /= 1024.0
        idx += 1
    return f"{size:.1f} {units[idx]}"


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    if seconds < 0.001:
        return "<1ms"
    if seconds < 1.0:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60.0:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m {secs:.0f}s"
