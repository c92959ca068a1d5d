# SPDX-License-Identifier: AGPL-3.0-only
"""Lenient markup tree built on the standard HTML tokenizer.

Malformed input never raises: stray end tags are dropped, unclosed elements are
closed at end of input and a handful of elements close implicitly the way
browsers do. Every element records the line and column it starts on and the
template file it came from.
"""
from __future__ import annotations

import re
from html.parser import HTMLParser
from typing import Iterator

from .extract import DYNAMIC_PLACEHOLDER
from .types import ParentSummary

VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "param", "source", "track", "wbr"}
)
RAW_TEXT_ELEMENTS = frozenset({"script", "style"})

# tag -> tags whose start implicitly closes an open element of that tag
_IMPLICIT_CLOSE = {
    "p": {
        "p", "div", "ul", "ol", "table", "form", "section", "article", "aside", "nav", "header",
        "footer", "main", "h1", "h2", "h3", "h4", "h5", "h6", "pre", "blockquote", "hr", "dl", "fieldset",
    },
    "li": {"li"},
    "option": {"option", "optgroup"},
    "tr": {"tr"},
    "td": {"td", "th", "tr"},
    "th": {"td", "th", "tr"},
    "dt": {"dt", "dd"},
    "dd": {"dt", "dd"},
}
_BARRIERS = frozenset({"table", "ul", "ol", "select", "dl", "div", "form"})
_WS = re.compile(r"\s+")


class Node:
    """Element or text node. Text nodes have tag `#text` and carry `data`."""

    __slots__ = ("tag", "attrs", "children", "parent", "line", "col", "source", "data")

    def __init__(
        self,
        tag: str,
        attrs: dict[str, str] | None = None,
        *,
        line: int = 0,
        col: int = 0,
        source: str | None = None,
        data: str = "",
    ) -> None:
        self.tag = tag
        self.attrs = attrs or {}
        self.children: list[Node] = []
        self.parent: Node | None = None
        self.line = line
        self.col = col
        self.source = source
        self.data = data

    def __repr__(self) -> str:
        if self.is_text:
            return f"Node(#text {self.data[:20]!r})"
        return f"Node(<{self.tag}> line={self.line})"

    @property
    def is_text(self) -> bool:
        return self.tag == "#text"

    @property
    def is_element(self) -> bool:
        return not self.tag.startswith("#")

    def append(self, child: Node) -> Node:
        child.parent = self
        self.children.append(child)
        return child

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.attrs

    @property
    def id(self) -> str | None:
        value = self.attrs.get("id")
        return value.strip() if value and value.strip() else None

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple(self.attrs.get("class", "").split())

    def is_dynamic(self, name: str) -> bool:
        return DYNAMIC_PLACEHOLDER in (self.attrs.get(name) or "")

    def iter(self) -> Iterator[Node]:
        """Depth-first, document order, elements only (self included)."""
        stack: list[Node] = [self]
        while stack:
            node = stack.pop()
            if node.is_element:
                yield node
            stack.extend(reversed([c for c in node.children if not c.is_text]))

    def find_all(self, *tags: str) -> list[Node]:
        wanted = set(tags)
        return [n for n in self.iter() if n is not self and (not wanted or n.tag in wanted)]

    def element_children(self) -> list[Node]:
        return [c for c in self.children if c.is_element]

    def ancestors(self) -> Iterator[Node]:
        node = self.parent
        while node is not None:
            if node.is_element:
                yield node
            node = node.parent

    def closest(self, *tags: str) -> Node | None:
        for node in self.ancestors():
            if node.tag in tags:
                return node
        return None

    def next_element(self) -> Node | None:
        if self.parent is None:
            return None
        siblings = self.parent.element_children()
        idx = next(i for i, c in enumerate(siblings) if c is self)
        return siblings[idx + 1] if idx + 1 < len(siblings) else None

    def text(self) -> str:
        chunks: list[str] = []

        def walk(node: Node) -> None:
            for child in node.children:
                if child.is_text:
                    chunks.append(child.data)
                elif child.tag not in RAW_TEXT_ELEMENTS:
                    walk(child)

        walk(self)
        return _WS.sub(" ", " ".join(chunks)).strip()


class Document(Node):
    def __init__(self, source: str | None = None) -> None:
        super().__init__("#document", source=source)

    def ids(self) -> dict[str, list[Node]]:
        found: dict[str, list[Node]] = {}
        for node in self.iter():
            if node.id:
                found.setdefault(node.id, []).append(node)
        return found

    def has_id(self, value: str) -> bool:
        return any(node.id == value for node in self.iter())


class _TreeBuilder(HTMLParser):
    def __init__(self, source: str | None) -> None:
        super().__init__(convert_charrefs=True)
        self.document = Document(source)
        self.source = source
        self.stack: list[Node] = [self.document]

    @property
    def current(self) -> Node:
        return self.stack[-1]

    def _open(self, tag: str, attrs, *, void: bool) -> None:
        tag = tag.lower()
        closed = True
        while closed:
            # a new <tr> closes an open <td> and then its <tr>
            closed = False
            for open_tag in reversed(self.stack[1:]):
                closers = _IMPLICIT_CLOSE.get(open_tag.tag)
                if closers and tag in closers:
                    self._close_to(open_tag)
                    closed = True
                    break
                if open_tag.tag in _BARRIERS:
                    break
        line, col = self.getpos()
        node = Node(tag, {k.lower(): (v or "") for k, v in attrs}, line=line, col=col, source=self.source)
        self.current.append(node)
        if not void and tag not in VOID_ELEMENTS:
            self.stack.append(node)

    def _close_to(self, node: Node) -> None:
        while len(self.stack) > 1:
            popped = self.stack.pop()
            if popped is node:
                return

    def handle_starttag(self, tag, attrs):
        self._open(tag, attrs, void=False)

    def handle_startendtag(self, tag, attrs):
        self._open(tag, attrs, void=True)

    def handle_endtag(self, tag):
        tag = tag.lower()
        for node in reversed(self.stack[1:]):
            if node.tag == tag:
                self._close_to(node)
                return
        # stray end tag: ignored

    def handle_data(self, data):
        if not data:
            return
        line, col = self.getpos()
        self.current.append(Node("#text", line=line, col=col, source=self.source, data=data))


def parse(markup: str, *, source: str | None = None) -> Document:
    """Parse markup into a Document. Never raises on malformed input."""
    builder = _TreeBuilder(source)
    builder.feed(markup)
    builder.close()
    return builder.document


def parent_summary(node: Node) -> ParentSummary | None:
    parent = node.parent
    if parent is None or not parent.is_element:
        return None
    return ParentSummary(tag=parent.tag, id=parent.id, classes=parent.classes)
