# SPDX-License-Identifier: AGPL-3.0-only
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class RuleId(str, Enum):
    FORM_LABELS = "form-labels"
    IMAGE_ALT_TEXT = "image-alt-text"
    INTERACTIVE_ELEMENTS = "interactive-elements"
    HEADING_HIERARCHY = "heading-hierarchy"
    KEYBOARD_DIALOGS = "keyboard-dialogs"
    LANDMARK_PRESENCE = "landmark-presence"
    FORM_ERRORS = "form-errors"
    TABLE_HEADERS = "table-headers"
    DUPLICATE_IDS = "duplicate-ids"
    SKIP_LINKS = "skip-links"
    COLOR_CONTRAST = "color-contrast"

    @classmethod
    def parse(cls, value: str | RuleId) -> RuleId:
        """Accept `form-labels`, `form_labels` or a RuleId; raise ValueError otherwise."""
        if isinstance(value, RuleId):
            return value
        text = str(value or "").strip().lower().replace("_", "-")
        for item in cls:
            if item.value == text:
                return item
        raise ValueError(f"unknown rule id {value!r}")


class A11yViewError(Exception):
    pass


class ExtractionError(A11yViewError):
    """Malformed code region in one template; scoped to that file."""

    def __init__(self, message: str, *, line: int | None = None, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.path = path

    def with_path(self, path: str) -> ExtractionError:
        return ExtractionError(self.message, line=self.line, path=path)

    def __str__(self) -> str:
        where = self.path or "<template>"
        if self.line is not None:
            where = f"{where}:{self.line}"
        return f"{where}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "line": self.line, "message": self.message}


class ConfigurationError(A11yViewError, ValueError):
    pass


@dataclass(frozen=True)
class ParentSummary:
    tag: str
    id: str | None = None
    classes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"tag": self.tag, "id": self.id, "classes": list(self.classes)}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ParentSummary:
        return cls(str(raw["tag"]), raw.get("id"), tuple(raw.get("classes") or ()))


@dataclass(frozen=True)
class ElementContext:
    tag: str
    id: str | None = None
    classes: tuple[str, ...] = ()
    href: str | None = None
    src: str | None = None
    text: str = ""
    parent: ParentSummary | None = None
    # Read-only view; left out of the hash so violations stay hashable.
    details: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", _freeze(self.details))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "id": self.id,
            "classes": list(self.classes),
            "href": self.href,
            "src": self.src,
            "text": self.text,
            "parent": self.parent.to_dict() if self.parent else None,
            "details": _thaw(self.details),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ElementContext:
        parent = raw.get("parent")
        return cls(
            tag=str(raw["tag"]),
            id=raw.get("id"),
            classes=tuple(raw.get("classes") or ()),
            href=raw.get("href"),
            src=raw.get("src"),
            text=str(raw.get("text") or ""),
            parent=ParentSummary.from_dict(parent) if parent else None,
            details=raw.get("details") or {},
        )


@dataclass(frozen=True)
class PageContext:
    """Where a violation was found.

    `identity` is the route or file path that was asked for. `view_file` is the
    resolved primary template; `fragment_file` is set when the element came from
    another file of the composition (a partial or the layout). `scope` is
    `page` for routable units and `fragment` for partials scanned on their own.
    """

    identity: str
    view_file: str | None = None
    fragment_file: str | None = None
    scope: str = "page"

    @property
    def is_fragment(self) -> bool:
        return self.scope == "fragment"

    def attributed(self, source: str | None) -> PageContext:
        if not source or source == self.view_file:
            return self
        return PageContext(
            identity=self.identity,
            view_file=self.view_file,
            fragment_file=source,
            scope=self.scope,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "view_file": self.view_file,
            "fragment_file": self.fragment_file,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PageContext:
        return cls(
            identity=str(raw["identity"]),
            view_file=raw.get("view_file"),
            fragment_file=raw.get("fragment_file"),
            scope=str(raw.get("scope") or "page"),
        )


@dataclass(frozen=True)
class Violation:
    rule_id: RuleId
    message: str
    severity: Severity
    element_context: ElementContext
    page_context: PageContext
    wcag_reference: str | None = None
    remediation: str | None = None
    source_line: int | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def location(self) -> str | None:
        path = self.page_context.fragment_file or self.page_context.view_file
        if path is None:
            return None
        return f"{path}:{self.source_line}" if self.source_line is not None else path

    def sort_key(self) -> tuple[str, int, str]:
        return (self.location or self.page_context.identity, self.source_line or 0, self.rule_id.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id.value,
            "message": self.message,
            "severity": self.severity.value,
            "element_context": self.element_context.to_dict(),
            "page_context": self.page_context.to_dict(),
            "wcag_reference": self.wcag_reference,
            "remediation": self.remediation,
            "source_line": self.source_line,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Violation:
        line = raw.get("source_line")
        return cls(
            rule_id=RuleId.parse(raw["rule_id"]),
            message=str(raw["message"]),
            severity=Severity(raw["severity"]),
            element_context=ElementContext.from_dict(raw["element_context"]),
            page_context=PageContext.from_dict(raw["page_context"]),
            wcag_reference=raw.get("wcag_reference"),
            remediation=raw.get("remediation"),
            source_line=int(line) if line is not None else None,
        )


@dataclass(frozen=True)
class CheckFault:
    rule_id: RuleId
    target: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id.value,
            "target": self.target,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass(frozen=True)
class ResolutionAmbiguity:
    identity: str
    candidates: tuple[str, ...]
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"identity": self.identity, "candidates": list(self.candidates), "reason": self.reason}
