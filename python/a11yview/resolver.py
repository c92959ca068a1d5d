# SPDX-License-Identifier: AGPL-3.0-only
"""View/partial resolution and the template inclusion graph.

Exact lookups (`find_view`, `find_partial`, `find_layout`) follow the host
framework's file naming conventions. `attribute_element` is a separate,
best-effort heuristic for markup that carries no file provenance of its own.
"""
from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .extract import find_includes
from .routes import RouteMatch, Router, route_candidates
from .types import ElementContext, PageContext, ResolutionAmbiguity

logger = logging.getLogger(__name__)

LAYOUT_DIR = "layouts"
SHARED_DIRS = ("layouts", "shared", "application")
LAYOUT_INDICATORS = ("navbar", "nav", "footer", "header", "main-nav", "sidebar", "skip")
LANDMARK_TAGS = {"nav": "nav", "header": "header", "footer": "footer", "aside": "sidebar"}
_LAYOUT_DECL = re.compile(r"""\blayout\s*\(?\s*["']([\w/]+)["']""")


class InclusionGraph:
    """Directed template graph: an edge A -> B means A renders B.

    Nodes live in an arena list and edges are index lists, so cyclic
    inclusion is representable and every traversal uses a visited set.
    """

    def __init__(self) -> None:
        self.nodes: list[Path] = []
        self._index: dict[Path, int] = {}
        self._out: list[list[int]] = []
        self._in: list[list[int]] = []

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, path: object) -> bool:
        return path in self._index

    def add_template(self, path: Path) -> int:
        idx = self._index.get(path)
        if idx is None:
            idx = len(self.nodes)
            self.nodes.append(path)
            self._index[path] = idx
            self._out.append([])
            self._in.append([])
        return idx

    def add_edge(self, src: Path, dst: Path) -> None:
        a, b = self.add_template(src), self.add_template(dst)
        if b not in self._out[a]:
            self._out[a].append(b)
            self._in[b].append(a)

    def includes(self, path: Path) -> list[Path]:
        idx = self._index.get(path)
        return [] if idx is None else [self.nodes[i] for i in self._out[idx]]

    def included_by(self, path: Path) -> list[Path]:
        idx = self._index.get(path)
        return [] if idx is None else [self.nodes[i] for i in self._in[idx]]

    def _walk(self, path: Path, edges: list[list[int]]) -> list[Path]:
        start = self._index.get(path)
        if start is None:
            return [path]
        seen = {start}
        order = [start]
        queue = deque([start])
        while queue:
            for nxt in edges[queue.popleft()]:
                if nxt not in seen:
                    seen.add(nxt)
                    order.append(nxt)
                    queue.append(nxt)
        return [self.nodes[i] for i in order]

    def closure(self, path: Path) -> list[Path]:
        """`path` plus everything it transitively includes."""
        return self._walk(path, self._out)

    def dependents(self, path: Path) -> list[Path]:
        """`path` plus every template that transitively includes it."""
        return self._walk(path, self._in)


@dataclass
class Resolution:
    identity: str
    primary_template: Path | None = None
    layout_template: Path | None = None
    fragments: list[Path] = field(default_factory=list)
    route: RouteMatch | None = None
    scope: str = "page"
    ambiguity: ResolutionAmbiguity | None = None
    display: dict[Path, str] = field(default_factory=dict, repr=False)

    @property
    def files(self) -> list[Path]:
        out: list[Path] = []
        for path in [self.layout_template, self.primary_template, *self.fragments]:
            if path is not None and path not in out:
                out.append(path)
        return out

    def name(self, path: Path | None) -> str | None:
        if path is None:
            return None
        return self.display.get(path, path.as_posix())

    def page_context(self) -> PageContext:
        return PageContext(identity=self.identity, view_file=self.name(self.primary_template), scope=self.scope)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "primary_template": self.name(self.primary_template),
            "layout_template": self.name(self.layout_template),
            "fragments": [self.name(p) for p in self.fragments],
            "route": self.route.endpoint if self.route else None,
            "scope": self.scope,
            "ambiguity": self.ambiguity.to_dict() if self.ambiguity else None,
        }


@dataclass(frozen=True)
class LogicalPage:
    identity: str
    primary_template: Path | None
    layout_template: Path | None
    dependency_set: frozenset[Path]


class ViewResolver:
    def __init__(
        self,
        views_dir: str | Path,
        extensions: Iterable[str] = ("erb",),
        router: Router | None = None,
        *,
        root: str | Path | None = None,
        default_layout: str = "application",
    ) -> None:
        self.views_dir = Path(views_dir).resolve()
        self.extensions = tuple(str(e).lstrip(".") for e in extensions)
        self.router = router
        self.root = Path(root).resolve() if root is not None else self.views_dir
        self.default_layout = default_layout
        self.graph = InclusionGraph()

    # -- naming ---------------------------------------------------------------

    def display(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def is_template(self, path: Path) -> bool:
        name = path.name
        return any(name.endswith(f".{ext}") for ext in self.extensions)

    def kind_of(self, path: Path) -> str:
        if path.name.startswith("_"):
            return "partial"
        try:
            rel = path.relative_to(self.views_dir)
        except ValueError:
            return "view"
        return "layout" if rel.parts and rel.parts[0] == LAYOUT_DIR else "view"

    def templates(self) -> list[Path]:
        if not self.views_dir.is_dir():
            return []
        found = {p.resolve() for ext in self.extensions for p in self.views_dir.rglob(f"*.{ext}") if p.is_file()}
        return sorted(found)

    def _names(self, base: str) -> list[str]:
        out: list[str] = []
        for ext in self.extensions:
            out += [f"{base}.html.{ext}", f"{base}.{ext}"]
        return out

    def _first(self, directory: Path, base: str) -> Path | None:
        for name in self._names(base):
            path = directory / name
            if path.is_file():
                return path.resolve()
        return None

    @staticmethod
    def _stem(path: Path) -> str:
        return path.name.split(".", 1)[0]

    # -- lookups --------------------------------------------------------------

    def _find_view(self, controller: str, action: str) -> tuple[Path | None, ResolutionAmbiguity | None]:
        directory = self.views_dir / controller
        exact = self._first(directory, action) or self._first(directory, f"_{action}")
        if exact is not None or not directory.is_dir():
            return exact, None
        candidates = sorted(
            p.resolve()
            for p in directory.iterdir()
            if p.is_file() and self.is_template(p) and not p.name.startswith("_") and action in self._stem(p)
        )
        if len(candidates) == 1:
            return candidates[0], None
        preferred = [p for p in candidates if self._stem(p).startswith(action)]
        if len(preferred) == 1:
            return preferred[0], None
        if candidates:
            names = tuple(self.display(p) for p in candidates)
            return None, ResolutionAmbiguity(
                identity=f"{controller}#{action}",
                candidates=names,
                reason=f"{len(candidates)} templates in {controller}/ loosely match {action!r}",
            )
        return None, None

    def find_view(self, controller: str, action: str) -> Path | None:
        return self._find_view(controller, action)[0]

    def find_layout(self, template: Path) -> Path | None:
        layouts = self.views_dir / LAYOUT_DIR
        names: list[str] = []
        try:
            m = _LAYOUT_DECL.search(template.read_text(encoding="utf-8", errors="replace"))
        except OSError:
            m = None
        if m:
            names.append(m.group(1))
        try:
            rel = template.resolve().relative_to(self.views_dir)
            if len(rel.parts) > 1:
                names.append("/".join(rel.parts[:-1]))
        except ValueError:
            pass
        names.append(self.default_layout)
        for name in names:
            found = self._first(layouts, name)
            if found is not None:
                return found
        return None

    def find_partial(self, name: str, including: Path | None = None) -> Path | None:
        name = name.strip().strip("/")
        if "/" in name:
            folder, _, base = name.rpartition("/")
            return self._first(self.views_dir / folder, f"_{base.lstrip('_')}")
        base = f"_{name.lstrip('_')}"
        dirs: list[Path] = []
        if including is not None:
            dirs.append(including.resolve().parent)
        dirs += [self.views_dir / d for d in SHARED_DIRS]
        for directory in dirs:
            found = self._first(directory, base)
            if found is not None:
                return found
        wanted = set(self._names(base))
        for path in self.templates():
            if path.name in wanted:
                return path
        return None

    def fragments_of(self, path: Path) -> list[Path]:
        """Templates directly rendered by `path`, in source order."""
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("cannot read %s: %s", path, exc)
            return []
        out: list[Path] = []
        for name in find_includes(text):
            found = self.find_partial(name, path)
            if found is None:
                logger.debug("%s renders %r, no matching template", self.display(path), name)
            elif found not in out:
                out.append(found)
        return out

    def build_graph(self) -> InclusionGraph:
        """Rebuild the inclusion graph for every template under views_dir."""
        graph = InclusionGraph()
        for path in self.templates():
            graph.add_template(path)
            for fragment in self.fragments_of(path):
                graph.add_edge(path, fragment)
        self.graph = graph
        return graph

    def _closure(self, starts: Iterable[Path | None]) -> list[Path]:
        seen: set[Path] = set()
        order: list[Path] = []
        queue = deque(p for p in starts if p is not None)
        while queue:
            path = queue.popleft()
            if path in seen:
                continue
            seen.add(path)
            order.append(path)
            nexts = self.graph.includes(path) if path in self.graph else self.fragments_of(path)
            queue.extend(nexts)
        return order

    # -- identities -----------------------------------------------------------

    def _as_file(self, identity: str) -> Path | None:
        raw = Path(identity)
        for candidate in (raw, self.root / raw, self.views_dir / raw):
            if candidate.is_file():
                return candidate.resolve()
        return None

    def resolve(self, identity: str) -> Resolution:
        path = self._as_file(identity)
        if path is not None:
            kind = self.kind_of(path)
            layout = self.find_layout(path) if kind == "view" else None
            resolution = Resolution(
                identity=identity,
                primary_template=path,
                layout_template=layout,
                scope="fragment" if kind == "partial" else "page",
            )
        else:
            resolution = self._resolve_route(identity)
        starts = [resolution.primary_template, resolution.layout_template]
        resolution.fragments = [p for p in self._closure(starts) if p not in starts]
        resolution.display = {p: self.display(p) for p in resolution.files}
        return resolution

    def _resolve_route(self, identity: str) -> Resolution:
        ambiguity: ResolutionAmbiguity | None = None
        for match in route_candidates(identity, self.router):
            view, amb = self._find_view(match.controller, match.action)
            if view is not None:
                return Resolution(
                    identity=identity, primary_template=view, layout_template=self.find_layout(view), route=match
                )
            ambiguity = ambiguity or amb
        if ambiguity is not None:
            ambiguity = ResolutionAmbiguity(identity, ambiguity.candidates, ambiguity.reason)
        else:
            ambiguity = ResolutionAmbiguity(identity, (), "no template matches this route")
        logger.info("cannot resolve %s: %s", identity, ambiguity.reason)
        return Resolution(identity=identity, ambiguity=ambiguity)

    def logical_page(self, identity: str) -> LogicalPage:
        r = self.resolve(identity)
        return LogicalPage(
            identity=identity,
            primary_template=r.primary_template,
            layout_template=r.layout_template,
            dependency_set=frozenset(r.files),
        )

    def pages(self) -> list[LogicalPage]:
        """One logical page per full view under views_dir."""
        return [self.logical_page(self.display(p)) for p in self.templates() if self.kind_of(p) == "view"]


def _hints(ctx: ElementContext) -> list[str]:
    words = [ctx.tag, ctx.id or "", *ctx.classes]
    if ctx.parent is not None:
        words += [ctx.parent.tag, ctx.parent.id or "", *ctx.parent.classes]
    return [w.lower() for w in words if w]


def attribute_element(element_context: ElementContext, resolution: Resolution) -> Path | None:
    """Best guess of the template an element came from, or None.

    Heuristic: elements that look like shared page chrome (navigation, header,
    footer, sidebar, skip links) are attributed to a fragment whose file name
    names that region, else to the layout. Everything else goes to the primary
    template. The answer is a guess and may be wrong.
    """
    if resolution.primary_template is None:
        return None
    parent = element_context.parent
    ident = (element_context.id or "").lower()
    if (parent is not None and parent.tag == "main") or "maincontent" in ident or "main-content" in ident:
        return resolution.primary_template

    words = _hints(element_context)
    region = LANDMARK_TAGS.get(element_context.tag)
    if region is None:
        region = next((ind for ind in LAYOUT_INDICATORS for w in words if ind in w), None)
    if region is None:
        return resolution.primary_template

    for fragment in resolution.fragments:
        stem = fragment.name.split(".", 1)[0].lstrip("_").lower()
        if region in stem or stem in words:
            return fragment
    return resolution.layout_template or resolution.primary_template
