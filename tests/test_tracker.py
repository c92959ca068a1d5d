from __future__ import annotations

import json
import os
from pathlib import Path

from a11yview.resolver import LogicalPage
from a11yview.tracker import BlastRadius, ChangeTracker, GitStatus, ScanState, file_signature


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _touch(path: Path, text: str) -> None:
    before = path.stat().st_mtime
    path.write_text(text, encoding="utf-8")
    os.utime(path, (before + 10, before + 10))


def _project(tmp_path: Path):
    f = _write(tmp_path / "views" / "_f.erb", "<p>f</p>")
    p1 = _write(tmp_path / "views" / "p1.erb", "<p>1</p>")
    p2 = _write(tmp_path / "views" / "p2.erb", "<p>2</p>")
    p3 = _write(tmp_path / "views" / "p3.erb", "<p>3</p>")
    helper = _write(tmp_path / "helpers" / "h.rb", "x = 1")
    pages = [
        LogicalPage("p1", p1, None, frozenset({p1, f})),
        LogicalPage("p2", p2, None, frozenset({p2, f})),
        LogicalPage("p3", p3, None, frozenset({p3})),
    ]
    tracker = ChangeTracker(pages, [tmp_path / "helpers"])
    files = [f, p1, p2, p3, helper]
    return tracker, files


def _baseline(tracker: ChangeTracker, files) -> ScanState:
    state = ScanState()
    tracker.record(state, files)
    return state


def test_first_run_affects_every_page(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    changes = tracker.changed_since(ScanState(), files)
    assert changes.blast_radius is BlastRadius.GLOBAL
    assert changes.affected_pages == ["p1", "p2", "p3"]
    assert tracker.changed_since(None, files).blast_radius is BlastRadius.GLOBAL


def test_no_changes(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    changes = tracker.changed_since(_baseline(tracker, files), files)
    assert changes.blast_radius is BlastRadius.NONE
    assert changes.affected_pages == []
    assert changes.empty


def test_shared_fragment_change_affects_its_pages_only(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    _touch(files[0], "<p>changed</p>")
    changes = tracker.changed_since(state, files)
    assert changes.affected_pages == ["p1", "p2"]
    assert changes.blast_radius is BlastRadius.MULTI_PAGE


def test_single_page_change(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    _touch(files[3], "<p>three</p>")
    changes = tracker.changed_since(state, files)
    assert changes.affected_pages == ["p3"]
    assert changes.blast_radius is BlastRadius.SINGLE_PAGE


def test_mtime_only_change_is_not_a_change(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    st = files[1].stat()
    os.utime(files[1], (st.st_atime, st.st_mtime + 10))
    assert tracker.changed_since(state, files).blast_radius is BlastRadius.NONE


def test_global_and_unknown_files_affect_everything(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    _touch(files[4], "x = 2")
    assert tracker.changed_since(state, files).blast_radius is BlastRadius.GLOBAL

    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    orphan = _write(tmp_path / "views" / "_orphan.erb", "<p>o</p>")
    changes = tracker.changed_since(state, [*files, orphan])
    assert changes.blast_radius is BlastRadius.GLOBAL
    assert changes.affected_pages == ["p1", "p2", "p3"]


def test_removed_file_is_reported(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    files[0].unlink()
    changes = tracker.changed_since(state, files)
    assert changes.removed_files == [files[0].resolve().as_posix()]
    assert changes.affected_pages == ["p1", "p2"]
    tracker.record(state, changes)
    assert state.signature(files[0]) is None


def test_force(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    changes = tracker.changed_since(_baseline(tracker, files), files, force=True)
    assert changes.affected_pages == ["p1", "p2", "p3"]
    assert changes.blast_radius is BlastRadius.GLOBAL


def test_record_prunes_results_for_vanished_pages(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = ScanState(results={"p1": [], "gone": [{"rule_id": "form-labels"}]})
    tracker.record(state, files)
    assert sorted(state.results) == ["p1"]


def test_state_round_trips_through_disk(tmp_path: Path) -> None:
    tracker, files = _project(tmp_path)
    state = _baseline(tracker, files)
    state.results["p1"] = []
    path = tmp_path / "tmp" / "state.json"
    state.save(path)
    assert not path.with_name("state.json.tmp").exists()
    loaded = ScanState.load(path)
    assert loaded.signature(files[0]) == file_signature(files[0])
    assert loaded.results == {"p1": []}
    assert loaded.updated_at.endswith("Z")
    assert tracker.changed_since(loaded, files).blast_radius is BlastRadius.NONE


def test_missing_corrupt_or_foreign_state_starts_fresh(tmp_path: Path) -> None:
    assert ScanState.load(tmp_path / "missing.json").is_empty
    bad = _write(tmp_path / "bad.json", "{not json")
    assert ScanState.load(bad).is_empty
    old = _write(tmp_path / "old.json", json.dumps({"version": 99, "files": {"a": {"signature": "s"}}}))
    assert ScanState.load(old).is_empty


def test_commit_discards_results_changed_mid_scan() -> None:
    state = ScanState()
    assert state.commit("p1", [], {"a": "sha256:1"}, {"a": "sha256:1"})
    assert state.results == {"p1": []}
    assert not state.commit("p2", [], {"a": "sha256:1"}, {"a": "sha256:2"})
    assert "p2" not in state.results


def test_git_status_outside_a_work_tree_is_none(tmp_path: Path) -> None:
    assert GitStatus(tmp_path).uncommitted() is None
