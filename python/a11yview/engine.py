# SPDX-License-Identifier: AGPL-3.0-only
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .checks import RULES, Rule
from .markup import Document
from .types import CheckFault, ConfigurationError, PageContext, RuleId, Violation

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


@dataclass
class EngineRun:
    violations: list[Violation] = field(default_factory=list)
    faults: list[CheckFault] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "violations": [v.to_dict() for v in self.violations],
            "faults": [f.to_dict() for f in self.faults],
        }


def _rule_id(value: Any, where: str) -> RuleId:
    try:
        return RuleId.parse(value)
    except ValueError:
        raise ConfigurationError(f"{where}: unknown rule id {value!r}") from None


def normalize_ignored(ignored_rule_ids: Mapping[Any, Any] | None) -> dict[RuleId, str]:
    """Validate an ignored-rule mapping (rule -> reason)."""
    if ignored_rule_ids is None:
        return {}
    if not isinstance(ignored_rule_ids, Mapping):
        raise ConfigurationError("ignored rules must map each rule id to a reason")
    out: dict[RuleId, str] = {}
    for key, reason in ignored_rule_ids.items():
        rid = _rule_id(key, "ignored rule")
        text = str(reason or "").strip()
        if not text:
            raise ConfigurationError(f"ignored rule {rid.value!r} requires a non-empty reason")
        out[rid] = text
    return out


def active_rules(
    enabled_rule_ids: Iterable[Any] | None = None,
    ignored_rule_ids: Mapping[Any, Any] | None = None,
) -> list[RuleId]:
    """Rules to run, in the fixed battery order."""
    ignored = normalize_ignored(ignored_rule_ids)
    if enabled_rule_ids is None:
        enabled = set(RuleId)
    else:
        enabled = {_rule_id(r, "enabled rule") for r in enabled_rule_ids}
    return [rid for rid in RuleId if rid in enabled and rid not in ignored]


def evaluate(
    tree: Document,
    page_context: PageContext,
    rule_ids: Iterable[RuleId] | None = None,
    *,
    rules: Mapping[RuleId, Rule] = RULES,
) -> EngineRun:
    result = EngineRun()
    target = page_context.view_file or page_context.identity
    for rid in rule_ids if rule_ids is not None else list(RuleId):
        rule = rules.get(rid)
        if rule is None:
            continue
        try:
            found = rule(tree, page_context)
        except Exception as exc:
            logger.error("check %s failed on %s: %s: %s", rid.value, target, type(exc).__name__, exc)
            result.faults.append(
                CheckFault(rule_id=rid, target=target, error_type=type(exc).__name__, message=str(exc))
            )
            continue
        result.violations.extend(found)
    return result


def run(
    tree: Document,
    page_context: PageContext,
    enabled_rule_ids: Iterable[Any] | None = None,
    ignored_rule_ids: Mapping[Any, Any] | None = None,
) -> list[Violation]:
    return evaluate(tree, page_context, active_rules(enabled_rule_ids, ignored_rule_ids)).violations


class RuleEngine:
    """Configured rule battery. Configuration problems raise at construction."""

    def __init__(self, config: Config | None = None, *, rules: Mapping[RuleId, Rule] | None = None) -> None:
        self.rules = dict(rules or RULES)
        enabled = config.enabled_rule_ids() if config is not None else None
        ignored = config.ignored_rules() if config is not None else None
        self.rule_ids = active_rules(enabled, ignored)

    def evaluate(self, tree: Document, page_context: PageContext) -> EngineRun:
        return evaluate(tree, page_context, self.rule_ids, rules=self.rules)

    def run(self, tree: Document, page_context: PageContext) -> list[Violation]:
        return self.evaluate(tree, page_context).violations
