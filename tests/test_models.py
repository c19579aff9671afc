"""Unit tests for CacheFileRecord and RunReport aggregation."""

from models import (
    CacheFileRecord,
    Classification,
    Failure,
    Outcome,
    PruneResult,
    RunReport,
    _format_size,
    is_candidate,
)


def record(name, size, cls, outcome=Outcome.PENDING, reason=""):
    return CacheFileRecord(path=f"/cache/{name}", size=size, classification=cls,
                           outcome=outcome, reason=reason)


class TestRecords:
    """Tests for CacheFileRecord helpers."""

    def test_candidate_extensions(self) -> None:
        assert is_candidate("A.MSI")
        assert is_candidate("patch.msp")
        assert not is_candidate("setup.exe")
        assert not is_candidate("msi")

    def test_mark_sets_outcome_and_reason(self) -> None:
        r = record("a.msi", 1, Classification.ORPHANED)
        r.mark(Outcome.FAILED, "locked")

        assert r.outcome is Outcome.FAILED
        assert r.reason == "locked"
        assert r.name == "a.msi"


class TestRunReport:
    """Tests for RunReport.from_records."""

    def test_totals_per_classification(self) -> None:
        records = [
            record("a.msi", 100, Classification.KEPT),
            record("b.msi", 200, Classification.EXCLUDED),
            record("c.msp", 300, Classification.ORPHANED, Outcome.DELETED),
            record("d.msp", 400, Classification.ORPHANED, Outcome.FAILED, "locked"),
        ]

        report = RunReport.from_records(records, dry_run=False, disposal_mode="delete")

        assert (report.kept.count, report.kept.size) == (1, 100)
        assert (report.excluded.count, report.excluded.size) == (1, 200)
        assert (report.orphaned.count, report.orphaned.size) == (2, 700)
        assert report.total_scanned == 4
        assert report.total_size == 1000
        assert report.reclaimed == 300
        assert report.disposal_failures == 1
        assert report.failures == (Failure("/cache/d.msp", "locked", "dispose"),)

    def test_scan_and_prune_failures_included(self) -> None:
        prune = PruneResult(removed=["/cache/x"],
                            failures=[Failure("/cache/y", "denied", "prune")])

        report = RunReport.from_records(
            [],
            dry_run=True,
            disposal_mode="none",
            scan_failures=[Failure("/cache/z", "unreadable", "scan")],
            prune=prune,
        )

        assert report.dirs_pruned == 1
        assert [f.stage for f in report.failures] == ["scan", "prune"]
        assert report.disposal_failures == 0
        assert report.total_scanned == 0

    def test_summary_line(self) -> None:
        records = [record("c.msp", 2048, Classification.ORPHANED, Outcome.SKIPPED)]

        report = RunReport.from_records(records, dry_run=True, disposal_mode="delete")

        assert report.summary_line.startswith("Run completed (dry-run): kept 0")
        assert "orphaned 1 (2.0 KB)" in report.summary_line
        assert "\n" not in report.summary_line

    def test_format_size(self) -> None:
        assert _format_size(0) == "0 B"
        assert _format_size(1536) == "1.5 KB"
        assert _format_size(5 * 1024 ** 3) == "5.0 GB"
