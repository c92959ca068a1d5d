# SPDX-License-Identifier: AGPL-3.0-only
"""Static accessibility checks for server-rendered view templates.

Templates are stripped of embedded code with line numbers preserved, parsed,
run through a fixed WCAG-aligned rule battery and reported per file and line.
Layouts, views and partials are composed the way the framework renders them,
and an incremental tracker limits repeated scans to affected pages.
"""
from .checks import RULES
from .config import Config
from .engine import EngineRun, RuleEngine, run
from .extract import DYNAMIC_PLACEHOLDER, Extraction, PositionMap, extract
from .markup import Document, Node, parse
from .report import BatchReport, validate_report
from .resolver import InclusionGraph, LogicalPage, Resolution, ViewResolver, attribute_element
from .scanner import Scanner
from .tracker import BlastRadius, ChangeSet, ChangeTracker, ScanState
from .types import (
    CheckFault,
    ConfigurationError,
    ElementContext,
    ExtractionError,
    PageContext,
    ResolutionAmbiguity,
    RuleId,
    Severity,
    Violation,
)

SPDX_LICENSE_EXPRESSION = "AGPL-3.0-only"

__all__ = [
    "BatchReport",
    "BlastRadius",
    "ChangeSet",
    "ChangeTracker",
    "CheckFault",
    "Config",
    "ConfigurationError",
    "DYNAMIC_PLACEHOLDER",
    "Document",
    "ElementContext",
    "EngineRun",
    "Extraction",
    "ExtractionError",
    "InclusionGraph",
    "LogicalPage",
    "Node",
    "PageContext",
    "PositionMap",
    "RULES",
    "Resolution",
    "ResolutionAmbiguity",
    "RuleEngine",
    "RuleId",
    "ScanState",
    "Scanner",
    "Severity",
    "ViewResolver",
    "Violation",
    "attribute_element",
    "extract",
    "parse",
    "run",
    "validate_report",
]
