# SPDX-License-Identifier: AGPL-3.0-only
"""Template-to-markup extraction.

Code regions (`<% ... %>`, `<%= ... %>`, `<%# ... %>`) are replaced in place so
the resulting markup can be parsed as HTML while keeping the exact newline
count of the template. Every markup line therefore is the same line in the
template, and node positions reported by the parser are template positions.

Region termination is a single-state scan: the first `%>` that is not part of
an escaped `%%>` closes the region. Quote state inside Ruby string literals is
not tracked, so a literal `%>` inside a string ends the region early. This is a
known approximation.
"""
from __future__ import annotations

import html as html_mod
import re
from bisect import bisect_right
from dataclasses import dataclass, field

from .types import ExtractionError

DYNAMIC_PLACEHOLDER = "DYNAMIC_CONTENT"
INCLUDE_TAG = "template-include"
YIELD_TAG = "template-yield"

START_MARKER = "<%"
END_MARKER = "%>"

_STR = r"""["']([^"'\n]*)["']"""
_SYM_OR_STR = r"""(?::(\w+)|["']([\w\[\]]+)["'])"""
_BLOCK_TAIL = re.compile(r"\bdo\s*(\|[^|]*\|)?\s*$")
_SILENT_OPENER = re.compile(r"^(if|unless|case|while|until|begin|for)\b")
_END = re.compile(r"^end\b")

_RE_RENDER_NAMED = re.compile(r"""^render\s*\(?\s*(?:partial:\s*|:partial\s*=>\s*)?["']([\w/.-]+)["']""")
_RE_RENDER_MODEL = re.compile(r"^render\s*\(?\s*@(\w+)")
_RE_RENDER_ANY = re.compile(r"<%==?\s*(render\b.*?)-?%>", re.DOTALL)
_RE_YIELD = re.compile(r"^yield\s*$")

_FIELD_TYPES = {
    "text": "text",
    "email": "email",
    "password": "password",
    "number": "number",
    "search": "search",
    "telephone": "tel",
    "phone": "tel",
    "url": "url",
    "date": "date",
    "time": "time",
    "datetime_local": "datetime-local",
}
_RE_FIELD_TAG = re.compile(r"^(\w+?)_field_tag\s*\(?\s*" + _SYM_OR_STR)
_RE_TEXT_AREA_TAG = re.compile(r"^text_area_tag\s*\(?\s*" + _SYM_OR_STR)
_RE_SELECT_TAG = re.compile(r"^select_tag\s*\(?\s*" + _SYM_OR_STR)
_RE_LABEL_TAG = re.compile(r"^label_tag\s*\(?\s*" + _SYM_OR_STR + r"(?:\s*,\s*" + _STR + r")?")
_RE_BUILDER_FIELD = re.compile(
    r"^\w+\.(text_field|email_field|password_field|number_field|search_field|telephone_field|"
    r"phone_field|url_field|date_field|time_field|text_area|select|check_box|radio_button)"
    r"\s*\(?\s*:(\w+)"
)
_RE_BUILDER_LABEL = re.compile(r"^\w+\.label\s*\(?\s*:(\w+)(?:\s*,\s*" + _STR + r")?")
_RE_SUBMIT = re.compile(r"^(?:\w+\.submit|submit_tag)\b\s*\(?\s*(?:" + _STR + r")?")
_RE_IMAGE_TAG = re.compile(r"^image_tag\s*\(?\s*(?:" + _STR + r")?")
_RE_LINK_TO = re.compile(r"^link_to\b\s*\(?\s*(?:" + _STR + r")?")
_RE_BUTTON_TAG = re.compile(r"^button_tag\b\s*\(?\s*(?:" + _STR + r")?")
_RE_CONTENT_TAG = re.compile(r"^content_tag\s*\(?\s*:(\w+)(?:\s*,\s*" + _STR + r")?")

_BLOCK_HELPERS = (
    (re.compile(r"^link_to\b"), "a", {"href": DYNAMIC_PLACEHOLDER}),
    (re.compile(r"^button_to\b"), "button", {}),
    (re.compile(r"^(form_with|form_for|form_tag)\b"), "form", {}),
)
_BUILDER_TYPES = {"check_box": "checkbox", "radio_button": "radio"}


@dataclass(frozen=True)
class CodeRegion:
    kind: str
    code: str
    start: int
    end: int
    line: int


@dataclass(frozen=True)
class _Segment:
    m_start: int
    m_end: int
    s_start: int
    s_end: int
    replaced: bool
    m_newlines: tuple[int, ...] = ()
    s_newlines: tuple[int, ...] = ()


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for idx, ch in enumerate(text):
        if ch == "\n":
            starts.append(idx + 1)
    return starts


class PositionMap:
    """Maps offsets and lines of extracted markup back to the template source.

    Identity stretches shift by a constant delta. Inside a replaced region an
    offset maps to the source position of the same line within that region, so
    the mapping is monotonic and line-preserving.
    """

    def __init__(self, segments: list[_Segment], markup: str, source: str) -> None:
        self._segments = segments
        self._m_starts = [seg.m_start for seg in segments]
        self._markup_lines = _line_starts(markup)
        self._source_lines = _line_starts(source)
        self._markup_len = len(markup)
        self._source_len = len(source)

    def source_offset(self, markup_offset: int) -> int:
        if markup_offset <= 0 or not self._segments:
            return max(0, min(markup_offset, self._source_len))
        if markup_offset >= self._markup_len:
            return self._source_len
        seg = self._segments[bisect_right(self._m_starts, markup_offset) - 1]
        rel = markup_offset - seg.m_start
        if not seg.replaced:
            return seg.s_start + rel
        nl = bisect_right(seg.m_newlines, markup_offset - 1)
        if nl == 0:
            return seg.s_start
        return seg.s_newlines[nl - 1] + 1

    def markup_line_of(self, markup_offset: int) -> int:
        return bisect_right(self._markup_lines, markup_offset)

    def source_line_of(self, source_offset: int) -> int:
        return bisect_right(self._source_lines, source_offset)

    def markup_offset(self, line: int, col: int = 0) -> int:
        line = max(1, min(line, len(self._markup_lines)))
        return self._markup_lines[line - 1] + col

    def source_line(self, markup_line: int) -> int:
        return self.source_line_of(self.source_offset(self.markup_offset(markup_line)))

    def line_of(self, markup_offset: int) -> int:
        """Template line of a markup offset."""
        return self.source_line_of(self.source_offset(markup_offset))

    def source_position(self, markup_line: int, markup_col: int) -> tuple[int, int]:
        offset = self.source_offset(self.markup_offset(markup_line, markup_col))
        line = self.source_line_of(offset)
        return line, offset - self._source_lines[line - 1]

    @property
    def line_count(self) -> int:
        return len(self._markup_lines)


@dataclass
class Extraction:
    markup: str
    position_map: PositionMap
    regions: list[CodeRegion] = field(default_factory=list)

    @property
    def includes(self) -> list[str]:
        return [r.code for r in self.regions if r.kind == "include"]


def is_dynamic(value: str | None) -> bool:
    return bool(value) and DYNAMIC_PLACEHOLDER in str(value)


def _attr(value: str) -> str:
    return html_mod.escape(value.replace("\n", " "), quote=True)


def _tag(tag: str, attrs: dict[str, str | None], text: str | None = None, *, close: bool = True) -> str:
    rendered = "".join(f' {k}="{_attr(v)}"' for k, v in attrs.items() if v is not None)
    if text is None and not close:
        return f"<{tag}{rendered}>"
    return f"<{tag}{rendered}>{html_mod.escape(text or '', quote=False)}</{tag}>"


def _option(code: str, key: str) -> str | None:
    """Literal value of a `key: "v"` / `"key" => "v"` option, the placeholder for a
    non-literal value, or None when the option is absent."""
    m = re.search(rf"""(?<![\w-]){re.escape(key)}:\s*["']([^"'\n]*)["']""", code) or re.search(
        rf"""["']{re.escape(key)}["']\s*(?:=>|:)\s*["']([^"'\n]*)["']""", code
    )
    if m:
        return m.group(1)
    if re.search(rf"""(?<![\w-]){re.escape(key)}:\s*[^\s,)]""", code):
        return DYNAMIC_PLACEHOLDER
    return None


def _aria_label(code: str) -> str | None:
    m = re.search(r"""aria:\s*\{[^}]*\blabel:\s*["']([^"'\n]*)["']""", code)
    if m:
        return m.group(1)
    return _option(code, "aria-label")


def _humanize(name: str) -> str:
    return name.replace("_", " ").strip().capitalize()


def partial_name_of(code: str) -> str | None:
    """Template name referenced by a `render` call, or None."""
    m = _RE_RENDER_NAMED.match(code)
    if m:
        return m.group(1)
    m = _RE_RENDER_MODEL.match(code)
    if m:
        name = m.group(1)
        return name[:-1] if name.endswith("s") and len(name) > 1 else name
    return None


def find_includes(source: str) -> list[str]:
    """Partial names rendered by a template, in source order, without duplicates.

    Works on raw template text so it also succeeds for files that fail full
    extraction.
    """
    names: list[str] = []
    for m in _RE_RENDER_ANY.finditer(source):
        name = partial_name_of(m.group(1).strip())
        if name and name not in names:
            names.append(name)
    return names


def expand_output(code: str) -> str:
    """Markup equivalent of a single-expression output region (no newlines)."""
    if _RE_YIELD.match(code):
        return _tag(YIELD_TAG, {}, DYNAMIC_PLACEHOLDER)
    partial = partial_name_of(code)
    if partial:
        return _tag(INCLUDE_TAG, {"data-partial": partial}, DYNAMIC_PLACEHOLDER)

    m = _RE_IMAGE_TAG.match(code)
    if m:
        return _tag("img", {"src": m.group(1) or DYNAMIC_PLACEHOLDER, "alt": _option(code, "alt")}, close=False)

    m = _RE_FIELD_TAG.match(code)
    if m and m.group(1) in _FIELD_TYPES:
        name = m.group(2) or m.group(3)
        attrs = {
            "type": _FIELD_TYPES[m.group(1)],
            "name": name,
            "id": _option(code, "id") or name,
            "aria-label": _aria_label(code),
        }
        return _tag("input", attrs, close=False)

    m = _RE_TEXT_AREA_TAG.match(code) or _RE_SELECT_TAG.match(code)
    if m:
        name = m.group(1) or m.group(2)
        tag = "textarea" if code.startswith("text_area_tag") else "select"
        return _tag(tag, {"name": name, "id": _option(code, "id") or name, "aria-label": _aria_label(code)})

    m = _RE_LABEL_TAG.match(code)
    if m:
        name = m.group(1) or m.group(2)
        return _tag("label", {"for": name}, m.group(3) if m.group(3) is not None else _humanize(name))

    m = _RE_BUILDER_FIELD.match(code)
    if m:
        kind, name = m.group(1), m.group(2)
        ident = _option(code, "id") or f"{DYNAMIC_PLACEHOLDER}_{name}"
        aria = _aria_label(code)
        if kind in {"text_area", "select"}:
            tag = "textarea" if kind == "text_area" else "select"
            return _tag(tag, {"id": ident, "aria-label": aria})
        input_type = _BUILDER_TYPES.get(kind) or _FIELD_TYPES.get(kind[: -len("_field")], "text")
        return _tag("input", {"type": input_type, "id": ident, "aria-label": aria}, close=False)

    m = _RE_BUILDER_LABEL.match(code)
    if m:
        name = m.group(1)
        text = m.group(2) if m.group(2) is not None else _humanize(name)
        return _tag("label", {"for": _option(code, "for") or f"{DYNAMIC_PLACEHOLDER}_{name}"}, text)

    m = _RE_SUBMIT.match(code)
    if m:
        return _tag("input", {"type": "submit", "value": m.group(1) or "Submit"}, close=False)

    m = _RE_LINK_TO.match(code)
    if m:
        text = m.group(1) if m.group(1) is not None else DYNAMIC_PLACEHOLDER
        attrs = {"href": DYNAMIC_PLACEHOLDER, "aria-label": _aria_label(code), "title": _option(code, "title")}
        return _tag("a", attrs, text)

    m = _RE_BUTTON_TAG.match(code)
    if m:
        text = m.group(1) if m.group(1) is not None else DYNAMIC_PLACEHOLDER
        return _tag("button", {"aria-label": _aria_label(code)}, text)

    m = _RE_CONTENT_TAG.match(code)
    if m:
        text = m.group(2) if m.group(2) is not None else DYNAMIC_PLACEHOLDER
        return _tag(m.group(1), {"id": _option(code, "id"), "class": _option(code, "class")}, text)

    return DYNAMIC_PLACEHOLDER


def _open_block(code: str) -> tuple[str, str | None]:
    for pattern, tag, attrs in _BLOCK_HELPERS:
        if pattern.match(code):
            merged = dict(attrs)
            if tag != "form":
                merged["aria-label"] = _aria_label(code)
            return _tag(tag, merged, close=False), tag
    m = _RE_CONTENT_TAG.match(code)
    if m:
        return _tag(m.group(1), {"id": _option(code, "id"), "class": _option(code, "class")}, close=False), m.group(1)
    return DYNAMIC_PLACEHOLDER, None


class _Extractor:
    def __init__(self, source: str) -> None:
        self.source = source
        self.out: list[str] = []
        self.m_pos = 0
        self.segments: list[_Segment] = []
        self.regions: list[CodeRegion] = []
        self.blocks: list[str | None] = []
        self._source_lines = _line_starts(source)

    def _line(self, offset: int) -> int:
        return bisect_right(self._source_lines, offset)

    def _copy(self, s_start: int, s_end: int) -> None:
        if s_end <= s_start:
            return
        text = self.source[s_start:s_end]
        self.segments.append(_Segment(self.m_pos, self.m_pos + len(text), s_start, s_end, False))
        self.out.append(text)
        self.m_pos += len(text)

    def _replace(self, s_start: int, s_end: int, replacement: str) -> None:
        original = self.source[s_start:s_end]
        text = replacement + "\n" * original.count("\n")
        m_nl = tuple(self.m_pos + i for i, ch in enumerate(text) if ch == "\n")
        s_nl = tuple(s_start + i for i, ch in enumerate(original) if ch == "\n")
        self.segments.append(_Segment(self.m_pos, self.m_pos + len(text), s_start, s_end, True, m_nl, s_nl))
        self.out.append(text)
        self.m_pos += len(text)

    def _find_end(self, start: int) -> int:
        pos = start
        while True:
            idx = self.source.find(END_MARKER, pos)
            if idx < 0:
                return -1
            if idx > start and self.source[idx - 1] == "%":
                pos = idx + len(END_MARKER)
                continue
            return idx

    def _region(self, start: int, end: int) -> tuple[str, str]:
        inner = self.source[start + 2 : end]
        if inner.endswith("-"):
            inner = inner[:-1]
        if inner.startswith("#"):
            return "comment", inner[1:].strip()
        if inner.startswith("=="):
            return "output", inner[2:].strip()
        if inner.startswith("="):
            return "output", inner[1:].strip()
        if inner.startswith("-"):
            return "silent", inner[1:].strip()
        return "silent", inner.strip()

    def _replacement(self, kind: str, code: str, span: int) -> tuple[str, str]:
        if kind == "comment":
            return " " * span, kind
        if kind == "silent":
            if _END.match(code):
                tag = self.blocks.pop() if self.blocks else None
                return (f"</{tag}>" if tag else " " * span), kind
            if _SILENT_OPENER.match(code) or _BLOCK_TAIL.search(code):
                self.blocks.append(None)
            return " " * span, kind
        if _BLOCK_TAIL.search(code):
            markup, tag = _open_block(code)
            self.blocks.append(tag)
            return markup, kind
        markup = expand_output(code)
        if markup.startswith(f"<{INCLUDE_TAG}") or markup.startswith(f"<{YIELD_TAG}"):
            return markup, "include" if markup.startswith(f"<{INCLUDE_TAG}") else "yield"
        return markup, kind

    def run(self) -> Extraction:
        src = self.source
        pos = 0
        while True:
            idx = src.find(START_MARKER, pos)
            if idx < 0:
                self._copy(pos, len(src))
                break
            self._copy(pos, idx)
            if src.startswith("<%%", idx):
                self._replace(idx, idx + 3, "&lt;%")
                pos = idx + 3
                continue
            end = self._find_end(idx + 2)
            if end < 0:
                raise ExtractionError("unterminated code region (missing %>)", line=self._line(idx))
            stop = end + len(END_MARKER)
            kind, code = self._region(idx, end)
            first_line = src[idx:stop].split("\n", 1)[0]
            replacement, kind = self._replacement(kind, code, len(first_line))
            if kind == "include":
                code = partial_name_of(code) or code
            self.regions.append(CodeRegion(kind=kind, code=code, start=idx, end=stop, line=self._line(idx)))
            self._replace(idx, stop, replacement)
            pos = stop
        markup = "".join(self.out)
        return Extraction(markup=markup, position_map=PositionMap(self.segments, markup, src), regions=self.regions)


def extract(source: str, *, path: str | None = None) -> Extraction:
    """Strip code regions from template `source`.

    Raises ExtractionError for a start marker with no end marker before the
    end of the file. The returned markup has exactly as many newlines as
    `source`.
    """
    try:
        return _Extractor(source).run()
    except ExtractionError as exc:
        if path is not None:
            raise exc.with_path(path) from None
        raise
