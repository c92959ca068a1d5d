from __future__ import annotations

import json
from pathlib import Path

import pytest

from a11yview.report import REPORT_SCHEMA, BatchReport, validate_report
from a11yview.types import (
    CheckFault,
    ElementContext,
    ExtractionError,
    PageContext,
    ParentSummary,
    ResolutionAmbiguity,
    RuleId,
    Severity,
    Violation,
)


def _violation(rule: RuleId, severity: Severity = Severity.ERROR, line: int | None = 3) -> Violation:
    return Violation(
        rule_id=rule,
        message="Form input missing label",
        severity=severity,
        element_context=ElementContext(tag="input", id="email", parent=ParentSummary("form")),
        page_context=PageContext(
            "/users/new",
            view_file="app/views/users/new.html.erb",
            fragment_file="app/views/users/_form.html.erb",
        ),
        wcag_reference="1.3.1",
        remediation="Add a <label>\nor aria-label",
        source_line=line,
    )


def _report() -> BatchReport:
    return BatchReport(
        violations=[
            _violation(RuleId.FORM_LABELS),
            _violation(RuleId.LANDMARK_PRESENCE, Severity.WARNING, None),
        ],
        scanned_files=["a.erb", "b.erb", "a.erb"],
        extraction_errors=[ExtractionError("unterminated code region", line=4, path="c.erb")],
        faults=[CheckFault(RuleId.TABLE_HEADERS, "a.erb", "RuntimeError", "boom")],
        unresolved=[ResolutionAmbiguity("/x", (), "no template matches this route")],
    )


def test_summary_counts() -> None:
    report = _report()
    assert report.summary() == {"total_errors": 1, "total_warnings": 1, "files_scanned": 2}
    assert not report.ok
    assert BatchReport().ok


def test_extend_merges_unique_files() -> None:
    report = BatchReport(scanned_files=["a.erb"])
    report.extend(_report())
    assert report.scanned_files == ["a.erb", "b.erb"]
    assert len(report.violations) == 2


def test_report_validates_against_schema() -> None:
    pytest.importorskip("jsonschema")
    validate_report(_report().to_dict())
    assert REPORT_SCHEMA["$schema"].endswith("2020-12/schema")


def test_schema_rejects_bad_severity() -> None:
    jsonschema = pytest.importorskip("jsonschema")
    payload = _report().to_dict()
    payload["violations"][0]["severity"] = "fatal"
    with pytest.raises(jsonschema.ValidationError):
        validate_report(payload)


def test_json_output_and_write(tmp_path: Path) -> None:
    report = _report()
    out = tmp_path / "reports" / "a11y.json"
    report.write(out)
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload == json.loads(report.to_json())
    assert payload["violations"][0]["page_context"]["fragment_file"] == "app/views/users/_form.html.erb"
    assert payload["violations"][0]["element_context"]["parent"] == {"tag": "form", "id": None, "classes": []}
    assert payload["extraction_errors"] == [{"path": "c.erb", "line": 4, "message": "unterminated code region"}]


def test_human_format_separates_findings_from_tool_problems() -> None:
    text = _report().format_human(show_remediation=True)
    lines = text.splitlines()
    assert lines[0] == (
        "app/views/users/_form.html.erb:3: error: form-labels: Form input missing label [WCAG 1.3.1]"
    )
    assert "    Add a <label>" in lines
    assert "Malformed templates (not accessibility findings):" in lines
    assert "  c.erb:4: unterminated code region" in lines
    assert "  table-headers on a.erb: RuntimeError: boom" in lines
    assert "  /x: no template matches this route" in lines
    assert lines[-1] == "2 file(s) scanned, 1 error(s), 1 warning(s)"
    assert "Add a <label>" not in _report().format_human()
