# SPDX-License-Identifier: AGPL-3.0-only
"""Command-line entry point for a11yview.

Exit status: 0 when no error-severity violation was found, 1 when at least one
was (or, with --strict, when a template failed to extract), 3 on a
configuration or usage error.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from a11yview import RULES, BatchReport, Config, RuleId, Scanner, ScanState
from a11yview.report import REPORT_SCHEMA, REPORT_SCHEMA_ID, validate_report

from . import __version__

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _get_version():
    return __version__


def _configure_logging(args):
    logging.basicConfig(
        level=LOG_LEVELS.get(args.log_level, logging.INFO),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_config(args):
    path = Path(args.config) if args.config else None
    return Config.load(path, profile=args.profile)


def _emit_report(report, args):
    """Write the report in the requested format; returns the payload dict."""
    payload = report.to_dict()
    if getattr(args, "validate_schema", False):
        validate_report(payload)
    if getattr(args, "out", None):
        report.write(args.out)
    if args.json:
        sys.stdout.write(json.dumps(payload, ensure_ascii=True) + "\n")
    else:
        sys.stdout.write(report.format_human(show_remediation=getattr(args, "remediation", False)) + "\n")
        if report.ok:
            sys.stdout.write(f"[ok] {report.files_scanned} file(s) scanned, no errors\n")
        else:
            sys.stderr.write(f"[error] {report.total_errors} accessibility error(s)\n")
    return payload


def _exit_for(report, args):
    if not report.ok:
        raise SystemExit(1)
    if getattr(args, "strict", False) and report.extraction_errors:
        raise SystemExit(1)


def cmd_check(args):
    """CLI handler for `a11yview check`."""
    config = _load_config(args)
    scanner = Scanner(config)
    jobs = args.jobs or config.jobs
    if args.changed:
        state = ScanState.load(config.state_path)
        report, changes = scanner.run_incremental(state, force=args.force, jobs=jobs)
        state.save(config.state_path)
        if not args.json:
            sys.stdout.write(
                f"[ok] {len(changes.affected_pages)} page(s) affected ({changes.blast_radius.value})\n"
            )
    else:
        targets = list(args.targets) or [page.identity for page in scanner.resolver.pages()]
        if not targets:
            sys.stderr.write(f"[warn] no templates found under {config.views_dir}\n")
        report = scanner.scan(targets, jobs=jobs)
    _emit_report(report, args)
    _exit_for(report, args)


def cmd_rendered(args):
    """CLI handler for `a11yview rendered`: scan pre-rendered HTML for a route."""
    config = _load_config(args)
    scanner = Scanner(config)
    html = sys.stdin.read() if args.html == "-" else Path(args.html).read_text(encoding="utf-8")
    report = scanner.scan_rendered(html, args.identity)
    _emit_report(report, args)
    _exit_for(report, args)


def cmd_watch(args):
    """Watch the view tree and rescan affected pages on change."""
    from a11yview.watcher import watch

    config = _load_config(args)
    sys.stdout.write(f"[watch] Watching {config.views_dir} for changes...\n")

    def on_report(report: BatchReport, changes):
        if changes.empty:
            return
        sys.stdout.write(
            f"[watch] {len(changes.affected_pages)} page(s) rescanned ({changes.blast_radius.value})\n"
        )
        _emit_report(report, args)

    watch(config, on_report=on_report, force_first=args.force)


def cmd_rules(args):
    """List the rule battery and its configured state."""
    config = _load_config(args)
    enabled = set(config.enabled_rule_ids())
    ignored = config.ignored_rules()
    rows = []
    for rid in RuleId:
        rule = RULES[rid]
        rows.append(
            {
                "rule_id": rid.value,
                "wcag": rule.wcag,
                "severity": rule.severity.value,
                "enabled": rid in enabled and rid not in ignored,
                "ignored_reason": ignored.get(rid),
            }
        )
    if args.json:
        sys.stdout.write(json.dumps(rows, ensure_ascii=True) + "\n")
        return
    for row in rows:
        state = "on " if row["enabled"] else "off"
        note = f"  (ignored: {row['ignored_reason']})" if row["ignored_reason"] else ""
        sys.stdout.write(f"{state} {row['rule_id']:<22} WCAG {row['wcag']:<6} {row['severity']}{note}\n")


def _add_report_flags(p):
    p.add_argument("--out", help="Also write the JSON report to this path")
    p.add_argument("--remediation", action="store_true", help="Print remediation text under each violation")
    p.add_argument("--validate-schema", action="store_true", help="Validate the JSON report before emitting")
    p.add_argument("--strict", action="store_true", help="Exit non-zero when a template fails to extract")


def _build_parser():
    """Construct and return the top-level CLI parser."""
    parser = argparse.ArgumentParser(prog="a11yview")
    parser.add_argument("--config", help="Path to a11yview.toml")
    parser.add_argument("--profile", default="test", help="Configuration profile (development, test, ci, ...)")
    parser.add_argument("--log-level", choices=["error", "warn", "info", "debug"], default="warn")
    parser.add_argument("--version", action="version", version="a11yview " + _get_version())
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--schema", action="store_true", help="Print the JSON report schema and exit")

    sub = parser.add_subparsers(dest="command")

    p_check = sub.add_parser("check", help="Scan templates or routes (all pages when none given)")
    p_check.add_argument("targets", nargs="*", help="Template paths or route paths such as /users/1")
    p_check.add_argument("--jobs", type=int, help="Parallel workers (default from config)")
    p_check.add_argument("--changed", action="store_true", help="Only rescan pages affected since the last run")
    p_check.add_argument("--force", action="store_true", help="With --changed, rescan everything")
    p_check.add_argument("--json", action="store_true")
    _add_report_flags(p_check)
    p_check.set_defaults(func=cmd_check)

    p_rendered = sub.add_parser("rendered", help="Scan pre-rendered HTML served for a route")
    p_rendered.add_argument("identity", help="Route or template path the HTML belongs to")
    p_rendered.add_argument("--html", required=True, help="Path to HTML file or - for stdin")
    p_rendered.add_argument("--json", action="store_true")
    _add_report_flags(p_rendered)
    p_rendered.set_defaults(func=cmd_rendered)

    p_watch = sub.add_parser("watch", help="Watch templates and rescan affected pages on change")
    p_watch.add_argument("--force", action="store_true", help="Full scan before watching")
    p_watch.add_argument("--json", action="store_true")
    p_watch.add_argument("--remediation", action="store_true")
    p_watch.set_defaults(func=cmd_watch)

    p_rules = sub.add_parser("rules", help="List rules and whether they are enabled")
    p_rules.add_argument("--json", action="store_true")
    p_rules.set_defaults(func=cmd_rules)
    return parser


def main(argv=None):
    """Execute CLI command dispatch and standardized error handling."""
    argv = list(sys.argv[1:] if argv is None else argv)
    force_json = "--json" in argv
    if "--schema" in argv:
        payload = {"schema": "a11yview.schema.v1", "target": REPORT_SCHEMA_ID, "definition": REPORT_SCHEMA}
        sys.stdout.write(json.dumps(payload, ensure_ascii=True) + "\n")
        return 0

    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return 3 if exc.code else 0
    if force_json:
        args.json = True
    if not getattr(args, "func", None):
        parser.print_usage(sys.stderr)
        return 3
    _configure_logging(args)
    try:
        args.func(args)
    except SystemExit as exc:
        return int(exc.code or 0)
    except Exception as exc:
        if args.json:
            err = {
                "schema": "a11yview.error.v1",
                "ok": False,
                "code": "CLI_ERROR",
                "message": str(exc),
            }
            sys.stdout.write(json.dumps(err, ensure_ascii=True) + "\n")
        else:
            sys.stderr.write(f"[error] {exc}\n")
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
