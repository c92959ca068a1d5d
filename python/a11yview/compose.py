# SPDX-License-Identifier: AGPL-3.0-only
"""Splice layout, view and partials into one tree.

Each file is extracted and parsed on its own, so every node keeps the file and
line it came from. Composition markers left by the extractor are then replaced
by the parsed children of the template they name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .extract import INCLUDE_TAG, YIELD_TAG, extract
from .markup import Document, Node, parse
from .resolver import Resolution, ViewResolver
from .types import ExtractionError

logger = logging.getLogger(__name__)


@dataclass
class ComposedPage:
    document: Document
    resolution: Resolution
    files: list[Path] = field(default_factory=list)
    errors: list[ExtractionError] = field(default_factory=list)


class _Composer:
    def __init__(self, resolution: Resolution, resolver: ViewResolver) -> None:
        self.resolution = resolution
        self.resolver = resolver
        self.markup: dict[Path, str | None] = {}
        self.by_name: dict[str, Path] = {}
        self.files: list[Path] = []
        self.errors: list[ExtractionError] = []

    def _name(self, path: Path) -> str:
        name = self.resolver.display(path)
        self.by_name[name] = path
        return name

    def load(self, path: Path) -> Document | None:
        if path not in self.markup:
            name = self._name(path)
            try:
                source = path.read_text(encoding="utf-8", errors="replace")
                self.markup[path] = extract(source, path=name).markup
                self.files.append(path)
            except ExtractionError as exc:
                logger.warning("%s", exc)
                self.errors.append(exc)
                self.markup[path] = None
            except OSError as exc:
                err = ExtractionError(f"cannot read template: {exc}", path=name)
                logger.warning("%s", err)
                self.errors.append(err)
                self.markup[path] = None
        markup = self.markup[path]
        if markup is None:
            return None
        return parse(markup, source=self._name(path))

    @staticmethod
    def splice(marker: Node, replacement: Node) -> None:
        parent = marker.parent
        if parent is None:
            return
        idx = next(i for i, c in enumerate(parent.children) if c is marker)
        moved = list(replacement.children)
        for child in moved:
            child.parent = parent
        parent.children[idx : idx + 1] = moved
        marker.parent = None

    def expand(self, root: Node, active: tuple[Path, ...]) -> None:
        for marker in root.find_all(INCLUDE_TAG):
            name = marker.get("data-partial") or ""
            including = self.by_name.get(marker.source or "")
            path = self.resolver.find_partial(name, including)
            if path is None:
                logger.debug("unresolved include %r in %s", name, marker.source)
                continue
            if path in active:
                logger.info("include cycle at %s, leaving marker", self.resolver.display(path))
                continue
            fragment = self.load(path)
            if fragment is None:
                continue
            self.expand(fragment, active + (path,))
            self.splice(marker, fragment)

    def compose(self) -> Document:
        r = self.resolution
        primary = self.load(r.primary_template) if r.primary_template is not None else None
        layout = self.load(r.layout_template) if r.layout_template is not None else None
        if primary is not None:
            self.expand(primary, (r.primary_template,))
        if layout is None:
            return primary or Document()
        self.expand(layout, (r.layout_template,))
        if primary is None:
            return layout
        yields = layout.find_all(YIELD_TAG)
        if yields:
            self.splice(yields[0], primary)
        else:
            host = (layout.find_all("main") or layout.find_all("body") or [layout])[0]
            for child in list(primary.children):
                host.append(child)
        return layout


def compose_page(resolution: Resolution, resolver: ViewResolver) -> ComposedPage:
    composer = _Composer(resolution, resolver)
    document = composer.compose()
    return ComposedPage(document=document, resolution=resolution, files=composer.files, errors=composer.errors)
