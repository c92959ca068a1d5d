# SPDX-License-Identifier: AGPL-3.0-only
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Set

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from .config import Config
from .report import BatchReport
from .scanner import Scanner
from .tracker import ChangeSet, ScanState

logger = logging.getLogger(__name__)

ReportCallback = Callable[[BatchReport, ChangeSet], None]


class ScanEventHandler(FileSystemEventHandler):
    """Collects file events and fires `callback` once per quiet period.

    Every event restarts the timer, so an editor's burst of writes becomes a
    single batch.
    """

    def __init__(
        self,
        callback: Callable[[Set[str]], None],
        delay: float = 0.5,
        accept: Optional[Callable[[str], bool]] = None,
    ):
        self.callback = callback
        self.delay = delay
        self.accept = accept
        self._pending: Set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @staticmethod
    def ignored(path: str) -> bool:
        # Hidden files, editor swap files, our own state file
        name = Path(path).name
        return "/." in path or "\\." in path or name.endswith(("~", ".swp", ".tmp"))

    def on_any_event(self, event):
        if event.is_directory or event.event_type in {"opened", "closed_no_write"}:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        paths = [str(p) for p in paths if p and not self.ignored(str(p))]
        if self.accept is not None:
            paths = [p for p in paths if self.accept(p)]
        if not paths:
            return
        with self._lock:
            self._pending.update(paths)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            batch, self._pending = self._pending, set()
            self._timer = None
        if batch:
            self.callback(batch)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = set()


class WatchSession:
    """Owns the scan state; only one incremental scan runs at a time."""

    def __init__(self, config: Config, scanner: Optional[Scanner] = None, on_report: Optional[ReportCallback] = None):
        self.config = config
        self.scanner = scanner or Scanner(config)
        self.on_report = on_report
        self.state = ScanState.load(config.state_path)
        self._scan_lock = threading.Lock()

    def run_once(self, force: bool = False) -> BatchReport:
        with self._scan_lock:
            report, changes = self.scanner.run_incremental(self.state, force=force)
            self.state.save(self.config.state_path)
        if self.on_report is not None:
            self.on_report(report, changes)
        return report

    def on_batch(self, paths: Set[str]) -> None:
        logger.info("change batch: %d path(s)", len(paths))
        try:
            self.run_once()
        except OSError as e:
            logger.error("incremental scan failed: %s", e)

    def watch_targets(self) -> list:
        """(directory, recursive) pairs to schedule.

        A global path that is a single file is watched through its parent
        directory, non-recursively; `relevant` filters the siblings out.
        """
        roots = [d for d in [self.config.views_dir, *self.config.global_paths] if d.is_dir()]
        targets = [(d, True) for d in roots]
        for f in self.config.global_paths:
            if f.is_file() and (f.parent, False) not in targets and not self._under(f.parent, roots):
                targets.append((f.parent, False))
        return targets

    def relevant(self, path: str) -> bool:
        p = Path(path).resolve()
        roots = [d.resolve() for d in [self.config.views_dir, *self.config.global_paths] if d.is_dir()]
        if self._under(p, roots):
            return True
        return any(p == f.resolve() for f in self.config.global_paths if not f.is_dir())

    @staticmethod
    def _under(path: Path, roots) -> bool:
        return any(path == r or r in path.parents for r in roots)


def watch(
    config: Config,
    *,
    on_report: Optional[ReportCallback] = None,
    stop_event: Optional[threading.Event] = None,
    scanner: Optional[Scanner] = None,
    force_first: bool = False,
) -> None:
    """Scan once, then rescan on every debounced batch of file changes."""
    session = WatchSession(config, scanner, on_report)
    session.run_once(force=force_first)

    handler = ScanEventHandler(session.on_batch, delay=config.debounce, accept=session.relevant)
    observer = Observer()
    for path, recursive in session.watch_targets():
        logger.info("watching %s", path)
        observer.schedule(handler, str(path), recursive=recursive)
    observer.start()

    try:
        while stop_event is None or not stop_event.is_set():
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        handler.cancel()
        observer.stop()
        observer.join()
