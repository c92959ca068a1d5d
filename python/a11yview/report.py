# SPDX-License-Identifier: AGPL-3.0-only
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .types import CheckFault, ExtractionError, ResolutionAmbiguity, Severity, Violation

REPORT_SCHEMA_ID = "a11yview.report.v1"

_NULLABLE_STR = {"type": ["string", "null"]}
_NULLABLE_INT = {"type": ["integer", "null"]}

REPORT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": REPORT_SCHEMA_ID,
    "type": "object",
    "required": ["violations", "summary"],
    "properties": {
        "violations": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "rule_id",
                    "message",
                    "severity",
                    "element_context",
                    "page_context",
                    "wcag_reference",
                    "remediation",
                    "source_line",
                ],
                "properties": {
                    "rule_id": {"type": "string"},
                    "message": {"type": "string"},
                    "severity": {"enum": ["error", "warning"]},
                    "element_context": {
                        "type": "object",
                        "required": ["tag", "id", "classes", "text", "parent"],
                        "properties": {
                            "tag": {"type": "string"},
                            "id": _NULLABLE_STR,
                            "classes": {"type": "array", "items": {"type": "string"}},
                            "href": _NULLABLE_STR,
                            "src": _NULLABLE_STR,
                            "text": {"type": "string"},
                            "parent": {"type": ["object", "null"]},
                            "details": {"type": "object"},
                        },
                    },
                    "page_context": {
                        "type": "object",
                        "required": ["identity", "view_file", "fragment_file"],
                        "properties": {
                            "identity": {"type": "string"},
                            "view_file": _NULLABLE_STR,
                            "fragment_file": _NULLABLE_STR,
                            "scope": {"enum": ["page", "fragment"]},
                        },
                    },
                    "wcag_reference": _NULLABLE_STR,
                    "remediation": _NULLABLE_STR,
                    "source_line": _NULLABLE_INT,
                },
            },
        },
        "summary": {
            "type": "object",
            "required": ["total_errors", "total_warnings", "files_scanned"],
            "properties": {
                "total_errors": {"type": "integer", "minimum": 0},
                "total_warnings": {"type": "integer", "minimum": 0},
                "files_scanned": {"type": "integer", "minimum": 0},
            },
        },
        "extraction_errors": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["path", "line", "message"],
                "properties": {"path": _NULLABLE_STR, "line": _NULLABLE_INT, "message": {"type": "string"}},
            },
        },
        "faults": {"type": "array", "items": {"type": "object"}},
        "unresolved": {"type": "array", "items": {"type": "object"}},
    },
}


@dataclass
class BatchReport:
    violations: list[Violation] = field(default_factory=list)
    scanned_files: list[str] = field(default_factory=list)
    extraction_errors: list[ExtractionError] = field(default_factory=list)
    faults: list[CheckFault] = field(default_factory=list)
    unresolved: list[ResolutionAmbiguity] = field(default_factory=list)

    @property
    def files_scanned(self) -> int:
        return len(set(self.scanned_files))

    @property
    def total_errors(self) -> int:
        return sum(1 for v in self.violations if v.severity is Severity.ERROR)

    @property
    def total_warnings(self) -> int:
        return sum(1 for v in self.violations if v.severity is Severity.WARNING)

    @property
    def ok(self) -> bool:
        return self.total_errors == 0

    def extend(self, other: BatchReport) -> None:
        self.violations.extend(other.violations)
        self.scanned_files.extend(f for f in other.scanned_files if f not in self.scanned_files)
        self.extraction_errors.extend(other.extraction_errors)
        self.faults.extend(other.faults)
        self.unresolved.extend(other.unresolved)

    def summary(self) -> dict[str, int]:
        return {
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
            "files_scanned": self.files_scanned,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "violations": [v.to_dict() for v in self.violations],
            "summary": self.summary(),
            "extraction_errors": [e.to_dict() for e in self.extraction_errors],
            "faults": [f.to_dict() for f in self.faults],
            "unresolved": [u.to_dict() for u in self.unresolved],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def write(self, path: str | Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_json(), encoding="utf-8")

    def format_human(self, *, show_remediation: bool = False) -> str:
        lines: list[str] = []
        for v in self.violations:
            where = v.location or v.page_context.identity
            ref = f" [WCAG {v.wcag_reference}]" if v.wcag_reference else ""
            lines.append(f"{where}: {v.severity.value}: {v.rule_id.value}: {v.message}{ref}")
            if v.element_context.id or v.element_context.text:
                lines.append(f"    <{v.element_context.tag}> id={v.element_context.id!r} text={v.element_context.text!r}")
            if show_remediation and v.remediation:
                lines.extend("    " + line for line in v.remediation.splitlines())
        if self.extraction_errors:
            lines.append("")
            lines.append("Malformed templates (not accessibility findings):")
            lines.extend(f"  {e}" for e in self.extraction_errors)
        if self.faults:
            lines.append("")
            lines.append("Check faults (rule skipped):")
            lines.extend(f"  {f.rule_id.value} on {f.target}: {f.error_type}: {f.message}" for f in self.faults)
        if self.unresolved:
            lines.append("")
            lines.append("Unresolved pages:")
            lines.extend(f"  {u.identity}: {u.reason}" for u in self.unresolved)
        s = self.summary()
        lines.append("")
        lines.append(
            f"{s['files_scanned']} file(s) scanned, {s['total_errors']} error(s), {s['total_warnings']} warning(s)"
        )
        return "\n".join(lines)


def validate_report(payload: dict[str, Any]) -> None:
    """Raise jsonschema.ValidationError when `payload` is not a valid report."""
    import jsonschema  # type: ignore

    jsonschema.Draft202012Validator(REPORT_SCHEMA).validate(payload)
