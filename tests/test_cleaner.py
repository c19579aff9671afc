"""Unit tests for ActionExecutor and prune_empty_dirs.

Covers delete, quarantine, dry-run, per-file failure isolation,
cancellation and deepest-first empty folder pruning.
"""

import os
import shutil
import threading
from pathlib import Path

from cleaner import ActionExecutor, prune_empty_dirs
from config import DisposalMode, build_run_config
from conftest import snapshot
from models import CacheFileRecord, Classification, Outcome


def records_for(root: Path, kinds: dict) -> list:
    return [
        CacheFileRecord(path=str(root / rel), size=(root / rel).stat().st_size, classification=cls)
        for rel, cls in kinds.items()
    ]


KINDS = {
    "keep.msi": Classification.KEPT,
    "vendor.msi": Classification.EXCLUDED,
    "orphan1.msi": Classification.ORPHANED,
    "sub/orphan2.msp": Classification.ORPHANED,
}

FILES = {rel: rel.encode() for rel in KINDS}


class TestActionExecutor:
    """Tests for ActionExecutor.apply."""

    def test_dry_run_touches_nothing(self, make_cache) -> None:
        root = make_cache(FILES)
        before = snapshot(root)
        config = build_run_config(cache_dir=str(root), dry_run=True,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, KINDS)

        ActionExecutor(config).apply(records)

        assert snapshot(root) == before
        outcomes = {Path(r.path).name: r.outcome for r in records}
        assert outcomes == {
            "keep.msi": Outcome.PENDING,
            "vendor.msi": Outcome.PENDING,
            "orphan1.msi": Outcome.SKIPPED,
            "orphan2.msp": Outcome.SKIPPED,
        }

    def test_no_action_mode_skips(self, make_cache) -> None:
        root = make_cache(FILES)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.NO_ACTION)
        records = records_for(root, KINDS)

        ActionExecutor(config).apply(records)

        assert all(r.outcome is Outcome.SKIPPED for r in records
                   if r.classification is Classification.ORPHANED)
        assert (root / "orphan1.msi").exists()

    def test_delete_removes_only_orphans(self, make_cache) -> None:
        root = make_cache(FILES)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, KINDS)

        ActionExecutor(config).apply(records)

        assert (root / "keep.msi").exists()
        assert (root / "vendor.msi").exists()
        for record in records:
            if record.classification is Classification.ORPHANED:
                assert record.outcome is Outcome.DELETED
                assert not os.path.exists(record.path)

    def test_delete_read_only_file(self, make_cache) -> None:
        root = make_cache({"orphan1.msi": b"x"})
        os.chmod(root / "orphan1.msi", 0o444)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, {"orphan1.msi": Classification.ORPHANED})

        ActionExecutor(config).apply(records)

        assert records[0].outcome is Outcome.DELETED

    def test_already_gone_is_failure(self, make_cache) -> None:
        root = make_cache({"orphan1.msi": b"x"})
        records = records_for(root, {"orphan1.msi": Classification.ORPHANED})
        (root / "orphan1.msi").unlink()
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)

        ActionExecutor(config).apply(records)

        assert records[0].outcome is Outcome.FAILED
        assert records[0].reason

    def test_locked_file_does_not_abort_batch(self, make_cache, monkeypatch) -> None:
        """One failing delete is recorded; every other orphan is still processed."""
        root = make_cache(FILES)
        locked = str(root / "orphan1.msi")
        real_remove = os.remove

        def remove(path, *args, **kwargs):
            if str(path) == locked:
                raise PermissionError(13, "The process cannot access the file", path)
            return real_remove(path, *args, **kwargs)

        monkeypatch.setattr(os, "remove", remove)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, KINDS)

        ActionExecutor(config).apply(records)

        by_name = {Path(r.path).name: r for r in records}
        assert by_name["orphan1.msi"].outcome is Outcome.FAILED
        assert "cannot access" in by_name["orphan1.msi"].reason
        assert by_name["orphan2.msp"].outcome is Outcome.DELETED
        assert os.path.exists(locked)

    def test_quarantine_moves_preserving_layout(self, make_cache, quarantine_dir) -> None:
        root = make_cache(FILES)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.QUARANTINE,
                                  quarantine_dir=str(quarantine_dir))
        records = records_for(root, KINDS)

        ActionExecutor(config).apply(records)

        for record in records:
            if record.classification is Classification.ORPHANED:
                assert record.outcome is Outcome.MOVED
                assert not os.path.exists(record.path)
                assert os.path.exists(record.destination)
                assert record.destination.startswith(str(quarantine_dir))
        assert (quarantine_dir / "sub" / "orphan2.msp").read_bytes() == b"sub/orphan2.msp"
        assert (root / "keep.msi").exists()

    def test_quarantine_collision_fails(self, make_cache, quarantine_dir) -> None:
        root = make_cache({"orphan1.msi": b"new"})
        quarantine_dir.mkdir()
        (quarantine_dir / "orphan1.msi").write_bytes(b"old")
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.QUARANTINE,
                                  quarantine_dir=str(quarantine_dir))
        records = records_for(root, {"orphan1.msi": Classification.ORPHANED})

        ActionExecutor(config).apply(records)

        assert records[0].outcome is Outcome.FAILED
        assert (root / "orphan1.msi").exists()
        assert (quarantine_dir / "orphan1.msi").read_bytes() == b"old"

    def test_failed_cross_volume_move_leaves_no_copy(self, make_cache, quarantine_dir,
                                                     monkeypatch) -> None:
        """Copy succeeds, unlinking the locked source fails: the copy is removed."""
        root = make_cache({"sub/orphan1.msi": b"data"})
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.QUARANTINE,
                                  quarantine_dir=str(quarantine_dir))
        records = records_for(root, {"sub/orphan1.msi": Classification.ORPHANED})

        def move(src, dst, *args, **kwargs):
            shutil.copy2(src, dst)
            raise PermissionError(32, "The process cannot access the file", src)

        monkeypatch.setattr(shutil, "move", move)

        ActionExecutor(config).apply(records)

        assert records[0].outcome is Outcome.FAILED
        assert (root / "sub" / "orphan1.msi").read_bytes() == b"data"
        assert not (quarantine_dir / "sub" / "orphan1.msi").exists()

        monkeypatch.undo()
        retry = records_for(root, {"sub/orphan1.msi": Classification.ORPHANED})
        ActionExecutor(config).apply(retry)

        assert retry[0].outcome is Outcome.MOVED

    def test_cancel_leaves_remaining_pending(self, make_cache) -> None:
        root = make_cache(FILES)
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, KINDS)
        cancel = threading.Event()

        def stop_after_first(record):
            cancel.set()

        ActionExecutor(config).apply(records, cancel=cancel, progress_cb=stop_after_first)

        orphans = [r for r in records if r.classification is Classification.ORPHANED]
        assert [r.outcome for r in orphans] == [Outcome.DELETED, Outcome.PENDING]
        assert os.path.exists(orphans[1].path)


class TestPruneEmptyDirs:
    """Tests for prune_empty_dirs."""

    def test_removes_nested_empty_dirs_deepest_first(self, tmp_path: Path) -> None:
        root = tmp_path / "Installer"
        (root / "a" / "b" / "c").mkdir(parents=True)
        (root / "keep").mkdir()
        (root / "keep" / "x.msi").write_bytes(b"")

        result = prune_empty_dirs(str(root))

        assert result.count == 3
        assert not (root / "a").exists()
        assert (root / "keep" / "x.msi").exists()
        assert root.exists()
        assert result.removed == [str(root / "a" / "b" / "c"), str(root / "a" / "b"),
                                  str(root / "a")]

    def test_root_never_removed(self, tmp_path: Path) -> None:
        root = tmp_path / "Installer"
        root.mkdir()

        result = prune_empty_dirs(str(root))

        assert result.count == 0
        assert root.exists()

    def test_dry_run_counts_without_removing(self, tmp_path: Path) -> None:
        root = tmp_path / "Installer"
        (root / "a" / "b").mkdir(parents=True)
        (root / "c").mkdir()
        (root / "c" / "f.msp").write_bytes(b"")

        result = prune_empty_dirs(str(root), dry_run=True)

        assert result.count == 2
        assert (root / "a" / "b").exists()

    def test_after_delete_only_emptied_folder_removed(self, make_cache) -> None:
        """A folder holding only deleted orphans goes; a sibling with a kept file stays."""
        root = make_cache({
            "{ORPHANED}/x.msi": b"1",
            "{ORPHANED}/y.msp": b"2",
            "{KEPT}/k.msi": b"3",
        })
        config = build_run_config(cache_dir=str(root), dry_run=False,
                                  disposal_mode=DisposalMode.DELETE)
        records = records_for(root, {
            "{ORPHANED}/x.msi": Classification.ORPHANED,
            "{ORPHANED}/y.msp": Classification.ORPHANED,
            "{KEPT}/k.msi": Classification.KEPT,
        })
        ActionExecutor(config).apply(records)

        result = prune_empty_dirs(str(root))

        assert result.removed == [str(root / "{ORPHANED}")]
        assert (root / "{KEPT}" / "k.msi").exists()

    def test_removal_failure_recorded(self, tmp_path: Path, monkeypatch) -> None:
        root = tmp_path / "Installer"
        (root / "stuck").mkdir(parents=True)

        def rmdir(path, *args, **kwargs):
            raise PermissionError(13, "Access is denied", path)

        monkeypatch.setattr(os, "rmdir", rmdir)

        result = prune_empty_dirs(str(root))

        assert result.count == 0
        assert len(result.failures) == 1
        assert result.failures[0].stage == "prune"
