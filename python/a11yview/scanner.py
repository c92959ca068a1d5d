# SPDX-License-Identifier: AGPL-3.0-only
"""Driving pipeline: resolve, compose, evaluate, report."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

from .compose import compose_page
from .config import Config
from .engine import RuleEngine
from .extract import extract
from .markup import parse
from .report import BatchReport
from .resolver import Resolution, ViewResolver, attribute_element
from .routes import RouteTable
from .tracker import ChangeSet, ChangeTracker, GitStatus, ScanState, file_signature
from .types import ExtractionError, PageContext, Violation

logger = logging.getLogger(__name__)


def _signatures(paths: Iterable[str]) -> dict[str, str | None]:
    out: dict[str, str | None] = {}
    for key in paths:
        try:
            out[key] = file_signature(key)
        except OSError:
            out[key] = None
    return out


class Scanner:
    def __init__(
        self,
        config: Config | None = None,
        resolver: ViewResolver | None = None,
        engine: RuleEngine | None = None,
    ) -> None:
        self.config = config or Config.default()
        if resolver is None:
            router = RouteTable(self.config.routes) if self.config.routes else None
            resolver = ViewResolver(self.config.views_dir, self.config.extensions, router, root=self.config.root)
        self.resolver = resolver
        self.engine = engine or RuleEngine(self.config)

    # -- single units ---------------------------------------------------------

    def scan_markup(
        self,
        source: str,
        *,
        identity: str = "<inline>",
        path: str | None = None,
        scope: str = "page",
    ) -> BatchReport:
        """Scan one template's text on its own, without composition."""
        report = BatchReport(scanned_files=[path or identity])
        try:
            extraction = extract(source, path=path)
        except ExtractionError as exc:
            logger.warning("%s", exc)
            report.extraction_errors.append(exc)
            return report
        document = parse(extraction.markup, source=path)
        run = self.engine.evaluate(document, PageContext(identity=identity, view_file=path, scope=scope))
        report.violations.extend(run.violations)
        report.faults.extend(run.faults)
        return report

    def scan_rendered(self, html: str, identity: str) -> BatchReport:
        """Scan already-rendered markup served for `identity`.

        Elements carry no template provenance, so each violation is attributed
        with the resolver's heuristic and has no source line.
        """
        resolution = self.resolver.resolve(identity)
        report = BatchReport(scanned_files=[identity])
        if resolution.ambiguity is not None:
            report.unresolved.append(resolution.ambiguity)
        page = resolution.page_context()
        run = self.engine.evaluate(parse(html), page)
        for violation in run.violations:
            guess = attribute_element(violation.element_context, resolution)
            report.violations.append(
                replace(violation, page_context=page.attributed(resolution.name(guess)), source_line=None)
            )
        report.faults.extend(run.faults)
        return report

    def scan_resolution(self, resolution: Resolution) -> BatchReport:
        report = BatchReport()
        if resolution.primary_template is None:
            if resolution.ambiguity is not None:
                report.unresolved.append(resolution.ambiguity)
            return report
        composed = compose_page(resolution, self.resolver)
        report.scanned_files.extend(resolution.name(p) for p in composed.files)
        report.extraction_errors.extend(composed.errors)
        if resolution.primary_template not in composed.files:
            return report
        run = self.engine.evaluate(composed.document, resolution.page_context())
        report.violations.extend(run.violations)
        report.faults.extend(run.faults)
        return report

    def scan_page(self, identity: str) -> BatchReport:
        return self.scan_resolution(self.resolver.resolve(identity))

    def scan_file(self, path: str | Path) -> BatchReport:
        return self.scan_page(str(path))

    # -- batches --------------------------------------------------------------

    def _scan_each(self, targets: Sequence[str], jobs: int | None) -> list[BatchReport]:
        jobs = max(1, jobs or self.config.jobs)
        if jobs == 1 or len(targets) <= 1:
            return [self.scan_page(t) for t in targets]
        results: list[tuple[int, BatchReport]] = []
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            fut_to_index = {pool.submit(self.scan_page, target): i for i, target in enumerate(targets)}
            for fut in as_completed(fut_to_index):
                results.append((fut_to_index[fut], fut.result()))
        results.sort(key=lambda item: item[0])
        return [r for _, r in results]

    @staticmethod
    def merge(reports: Iterable[BatchReport]) -> BatchReport:
        out = BatchReport()
        seen: set[tuple[str | None, int | None, str]] = set()
        for report in reports:
            errors = report.extraction_errors
            report = replace(report, extraction_errors=[])
            out.extend(report)
            for err in errors:
                key = (err.path, err.line, err.message)
                if key not in seen:
                    seen.add(key)
                    out.extraction_errors.append(err)
        return out

    def scan(self, targets: Sequence[str | Path], jobs: int | None = None) -> BatchReport:
        """Scan route identities or template paths; output follows target order."""
        self.resolver.build_graph()
        return self.merge(self._scan_each([str(t) for t in targets], jobs))

    def watched_files(self) -> list[Path]:
        files = list(self.resolver.templates())
        for root in self.config.global_paths:
            if root.is_file():
                files.append(root.resolve())
            elif root.is_dir():
                files.extend(sorted(p.resolve() for p in root.rglob("*") if p.is_file()))
        return files

    def run_incremental(
        self, state: ScanState, force: bool = False, jobs: int | None = None
    ) -> tuple[BatchReport, ChangeSet]:
        """Rescan only pages whose dependencies changed since `state`.

        The graph and the change set are computed before any page is scanned.
        A page whose dependencies changed again while it was being scanned is
        rescanned next time. Pages not rescanned contribute their last
        committed violations, so the report always covers every page.
        """
        self.resolver.build_graph()
        pages = self.resolver.pages()
        git = GitStatus(self.config.root) if self.config.use_git else None
        tracker = ChangeTracker(pages, self.config.global_paths, git=git)
        changes = tracker.changed_since(state, self.watched_files(), force=force)
        logger.info(
            "%d changed file(s), %d page(s) affected (%s)",
            len(changes.changed_files) + len(changes.removed_files),
            len(changes.affected_pages),
            changes.blast_radius.value,
        )
        deps = {p.identity: sorted(Path(d).resolve().as_posix() for d in p.dependency_set) for p in pages}
        started = {
            page: {k: (changes.signatures[k].signature if k in changes.signatures else None) for k in deps[page]}
            for page in changes.affected_pages
        }
        reports = self._scan_each(changes.affected_pages, jobs)
        fresh: dict[str, BatchReport] = {}
        stale: set[str] = set()
        for page, report in zip(changes.affected_pages, reports):
            if state.commit(page, report.violations, started[page], _signatures(deps[page])):
                fresh[page] = report
            else:
                stale.update(deps[page])
        for key in stale:
            changes.signatures.pop(key, None)
        tracker.record(state, changes)
        merged = [fresh[p.identity] if p.identity in fresh else self.cached(state, p.identity) for p in pages]
        return self.merge(merged), changes

    @staticmethod
    def cached(state: ScanState, page: str) -> BatchReport:
        """Last committed violations of a page that was not rescanned."""
        report = BatchReport()
        for raw in state.results.get(page, []):
            try:
                report.violations.append(Violation.from_dict(raw))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("dropping unreadable cached result for %s: %s", page, exc)
        return report
