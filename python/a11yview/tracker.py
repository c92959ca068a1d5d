# SPDX-License-Identifier: AGPL-3.0-only
"""Incremental scan bookkeeping.

`ScanState` is the one mutable object shared across runs. The driving loop
updates it between scans; scan workers never write to it.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .resolver import LogicalPage
from .types import Violation

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _key(path: str | Path) -> str:
    return Path(path).resolve().as_posix()


def file_signature(path: str | Path) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


class BlastRadius(str, Enum):
    NONE = "none"
    SINGLE_PAGE = "single-page"
    MULTI_PAGE = "multi-page"
    GLOBAL = "global"


@dataclass
class FileRecord:
    signature: str
    mtime: float
    scanned_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"signature": self.signature, "mtime": self.mtime, "scanned_at": self.scanned_at}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> FileRecord:
        return cls(str(raw["signature"]), float(raw.get("mtime", 0.0)), raw.get("scanned_at"))


@dataclass
class ScanState:
    files: dict[str, FileRecord] = field(default_factory=dict)
    results: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    version: int = STATE_VERSION
    updated_at: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_empty(self) -> bool:
        return not self.files

    def signature(self, path: str | Path) -> str | None:
        record = self.files.get(_key(path))
        return record.signature if record else None

    def commit(
        self,
        page: str,
        violations: Sequence[Violation],
        started: Mapping[str, str | None],
        current: Mapping[str, str | None],
    ) -> bool:
        """Store a page's result unless a dependency changed while it was scanned."""
        stale = sorted(k for k in set(started) | set(current) if started.get(k) != current.get(k))
        if stale:
            logger.info("discarding result for %s, changed during scan: %s", page, ", ".join(stale))
            return False
        with self.lock:
            self.results[page] = [v.to_dict() for v in violations]
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "files": {k: r.to_dict() for k, r in sorted(self.files.items())},
            "results": {k: list(v) for k, v in sorted(self.results.items())},
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ScanState:
        return cls(
            files={k: FileRecord.from_dict(v) for k, v in dict(raw.get("files") or {}).items()},
            results={k: list(v) for k, v in dict(raw.get("results") or {}).items()},
            version=int(raw.get("version", STATE_VERSION)),
            updated_at=raw.get("updated_at"),
        )

    @classmethod
    def load(cls, path: str | Path) -> ScanState:
        """Missing, unreadable or foreign-version state means a fresh state."""
        p = Path(path)
        if not p.exists():
            return cls()
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
            state = cls.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("ignoring unreadable scan state %s: %s", p, exc)
            return cls()
        if state.version != STATE_VERSION:
            logger.warning("ignoring scan state %s with version %s", p, state.version)
            return cls()
        return state

    def save(self, path: str | Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".tmp")
        with self.lock:
            self.updated_at = _now()
            payload = self.to_dict()
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, p)


class GitStatus:
    """Uncommitted files under a directory, via `git status --porcelain`.

    Only a hint: returns None when git is unavailable or the directory is not
    in a work tree.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def uncommitted(self, paths: Iterable[str | Path] = ()) -> set[str] | None:
        cmd = ["git", "status", "--porcelain", "--untracked-files=all", "--", *[str(p) for p in paths]]
        try:
            proc = subprocess.run(cmd, cwd=self.root, capture_output=True, text=True, check=True, timeout=10)
            top = subprocess.run(
                ["git", "rev-parse", "--show-toplevel"], cwd=self.root, capture_output=True, text=True, check=True
            ).stdout.strip()
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("git status unavailable in %s: %s", self.root, exc)
            return None
        out: set[str] = set()
        for line in proc.stdout.splitlines():
            if len(line) < 4:
                continue
            name = line[3:].split(" -> ")[-1].strip().strip('"')
            out.add(_key(Path(top) / name))
        return out


@dataclass
class ChangeSet:
    changed_files: list[str] = field(default_factory=list)
    affected_pages: list[str] = field(default_factory=list)
    blast_radius: BlastRadius = BlastRadius.NONE
    removed_files: list[str] = field(default_factory=list)
    signatures: dict[str, FileRecord] = field(default_factory=dict, repr=False)

    @property
    def empty(self) -> bool:
        return not self.changed_files and not self.removed_files

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed_files": list(self.changed_files),
            "affected_pages": list(self.affected_pages),
            "blast_radius": self.blast_radius.value,
            "removed_files": list(self.removed_files),
        }


class ChangeTracker:
    def __init__(
        self,
        pages: Sequence[LogicalPage],
        global_paths: Iterable[str | Path] = (),
        git: GitStatus | None = None,
    ) -> None:
        self.pages = list(pages)
        self.global_paths = [_key(p) for p in global_paths]
        self.git = git
        self._deps = {page.identity: {_key(p) for p in page.dependency_set} for page in self.pages}

    def is_global(self, key: str) -> bool:
        return any(key == g or key.startswith(g.rstrip("/") + "/") for g in self.global_paths)

    def snapshot(self, files: Iterable[str | Path], last_state: ScanState | None = None) -> dict[str, FileRecord]:
        dirty = self.git.uncommitted() if self.git is not None else None
        out: dict[str, FileRecord] = {}
        for path in files:
            key = _key(path)
            try:
                mtime = os.stat(key).st_mtime
            except OSError:
                continue
            prior = last_state.files.get(key) if last_state is not None else None
            if prior is not None and prior.mtime == mtime and (dirty is None or key not in dirty):
                out[key] = FileRecord(prior.signature, mtime, prior.scanned_at)
                continue
            try:
                out[key] = FileRecord(file_signature(key), mtime)
            except OSError as exc:
                logger.warning("cannot hash %s: %s", key, exc)
        return out

    def _radius(self, affected: list[str]) -> BlastRadius:
        if not affected:
            return BlastRadius.NONE
        return BlastRadius.SINGLE_PAGE if len(affected) == 1 else BlastRadius.MULTI_PAGE

    def changed_since(
        self,
        last_state: ScanState | None,
        files: Iterable[str | Path],
        force: bool = False,
    ) -> ChangeSet:
        current = self.snapshot(files, last_state)
        every_page = [p.identity for p in self.pages]
        if force or last_state is None or last_state.is_empty:
            return ChangeSet(sorted(current), every_page, BlastRadius.GLOBAL, [], current)

        changed = sorted(k for k, rec in current.items() if last_state.signature(k) != rec.signature)
        removed = sorted(k for k in last_state.files if k not in current)
        touched = set(changed) | set(removed)
        if not touched:
            return ChangeSet([], [], BlastRadius.NONE, [], current)

        known = set().union(*self._deps.values()) if self._deps else set()
        if any(self.is_global(k) or k not in known for k in touched):
            return ChangeSet(changed, every_page, BlastRadius.GLOBAL, removed, current)

        affected = [p.identity for p in self.pages if self._deps[p.identity] & touched]
        return ChangeSet(changed, affected, self._radius(affected), removed, current)

    def record(self, state: ScanState, files: Iterable[str | Path] | ChangeSet) -> None:
        """Make `files` the baseline for the next `changed_since`."""
        if isinstance(files, ChangeSet):
            current = files.signatures
            removed = files.removed_files
        else:
            current = self.snapshot(files, state)
            removed = []
        stamp = _now()
        with state.lock:
            for key, rec in current.items():
                state.files[key] = FileRecord(rec.signature, rec.mtime, stamp)
            for key in removed:
                state.files.pop(key, None)
            live = {p.identity for p in self.pages}
            for page in [p for p in state.results if p not in live]:
                del state.results[page]
