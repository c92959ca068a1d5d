# SPDX-License-Identifier: AGPL-3.0-only
"""The fixed rule battery.

Each rule is a pure function `(document, page) -> list[Violation]` paired with
its id, WCAG criterion and default severity in `RULES`. Rules only look at the
tree; they never render, fetch or execute anything.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from .extract import DYNAMIC_PLACEHOLDER, INCLUDE_TAG, YIELD_TAG
from .markup import Document, Node, parent_summary
from .types import ElementContext, PageContext, RuleId, Severity, Violation

CheckFn = Callable[[Document, PageContext], "list[Violation]"]

TEXT_MAX = 120
LABELABLE_EXEMPT_TYPES = frozenset({"hidden", "submit", "button", "reset", "image"})
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
INVALID_CLASSES = frozenset({"is-invalid", "invalid"})
ERROR_MESSAGE_CLASSES = frozenset({"error", "invalid-feedback", "field-error", "error-message", "errors"})
_STYLING_TEXT = re.compile(r"^[•→…\s\-_=*~|.·]+$")


@dataclass(frozen=True)
class Rule:
    rule_id: RuleId
    wcag: str
    severity: Severity
    evaluate: CheckFn
    page_level: bool = False

    def __call__(self, document: Document, page: PageContext) -> list[Violation]:
        # Page-level rules need the whole composed page; a lone fragment has none.
        if self.page_level and page.is_fragment:
            return []
        return self.evaluate(document, page)


def _idrefs(value: str | None) -> list[str]:
    return [t for t in str(value or "").split() if t.strip()]


def _trueish(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _nonempty(value: str | None) -> bool:
    return bool(str(value or "").strip())


def _dynamic(value: str | None) -> bool:
    return DYNAMIC_PLACEHOLDER in str(value or "")


def _id_pattern(value: str) -> re.Pattern[str]:
    parts = [re.escape(p) for p in value.split(DYNAMIC_PLACEHOLDER)]
    return re.compile(".*".join(parts), re.DOTALL)


def could_match(a: str, b: str) -> bool:
    """True when two id values may be equal at render time."""
    if not _dynamic(a) and not _dynamic(b):
        return a == b
    return bool(_id_pattern(a).fullmatch(b) or _id_pattern(b).fullmatch(a))


def _literal_part(value: str) -> str:
    return value.replace(DYNAMIC_PLACEHOLDER, "").strip("_-. ")


def label_matches(ident: str, target: str, claimed: frozenset[str] = frozenset()) -> bool:
    """True when `<label for=target>` can label the control with id `ident`.

    A placeholder id only pairs with a literal `for` that shares a literal
    fragment with it and is not already the exact target of a literal id.
    A bare placeholder id pairs only with a `for` that is itself dynamic.
    """
    if not _dynamic(ident) and not _dynamic(target):
        return ident == target
    if not could_match(ident, target):
        return False
    if _dynamic(ident) and _dynamic(target):
        return True
    pattern, literal = (ident, target) if _dynamic(ident) else (target, ident)
    if literal in claimed and literal != ident:
        return False
    return bool(_literal_part(pattern))


def _refs_resolve(document: Document, value: str | None) -> bool:
    refs = _idrefs(value)
    if not refs:
        return False
    ids = document.ids()
    return any(_dynamic(ref) or ref in ids for ref in refs)


def _hidden(node: Node) -> bool:
    return node.has("hidden") or _trueish(node.get("aria-hidden"))


def _has_unresolved_content(node: Node) -> bool:
    return any(n.tag in {INCLUDE_TAG, YIELD_TAG} for n in node.find_all())


def _img_name(node: Node) -> bool:
    return any(_nonempty(img.get("alt")) for img in node.find_all("img"))


def element_context(node: Node, **details: Any) -> ElementContext:
    text = node.text()
    if len(text) > TEXT_MAX:
        text = text[: TEXT_MAX - 3] + "..."
    return ElementContext(
        tag=node.tag,
        id=node.id,
        classes=node.classes,
        href=node.get("href"),
        src=node.get("src"),
        text=text,
        parent=parent_summary(node),
        details={k: v for k, v in details.items() if v is not None},
    )


def _violation(
    rule_id: RuleId,
    node: Node,
    page: PageContext,
    message: str,
    *,
    severity: Severity | None = None,
    wcag: str | None = None,
    remediation: str | None = None,
    **details: Any,
) -> Violation:
    rule = RULES[rule_id]
    return Violation(
        rule_id=rule_id,
        message=message,
        severity=severity or rule.severity,
        element_context=element_context(node, **details),
        page_context=page.attributed(node.source),
        wcag_reference=wcag or rule.wcag,
        remediation=remediation,
        source_line=node.line or None,
    )


def _page_anchor(document: Document) -> Node:
    for tag in ("body", "html"):
        found = document.find_all(tag)
        if found:
            return found[0]
    elements = document.element_children()
    if elements:
        return elements[0]
    return document


# -- form-labels --------------------------------------------------------------


def _labelable(node: Node) -> bool:
    if node.tag in {"textarea", "select"}:
        return True
    if node.tag != "input":
        return False
    return (node.get("type") or "text").strip().lower() not in LABELABLE_EXEMPT_TYPES


def _form_labels_remediation(ident: str | None, input_type: str) -> str:
    ident = ident or "field_id"
    return (
        "Choose ONE of these solutions:\n\n"
        "1. Add a <label> element:\n"
        f'   <label for="{ident}">Field Label</label>\n'
        f'   <input type="{input_type}" id="{ident}" name="field_name">\n\n'
        "2. Add aria-label attribute:\n"
        f'   <input type="{input_type}" id="{ident}" aria-label="Field Label">\n\n'
        "3. Use a form builder label:\n"
        "   <%= form.label :field_name, 'Field Label' %>\n"
        f"   <%= form.text_field :field_name, id: '{ident}' %>"
    )


def check_form_labels(document: Document, page: PageContext) -> list[Violation]:
    label_targets = [lbl.get("for") or "" for lbl in document.find_all("label")]
    literal_ids = {n.id for n in document.iter() if _labelable(n) and n.id and not _dynamic(n.id)}
    claimed = frozenset(t for t in label_targets if t in literal_ids)
    out: list[Violation] = []
    for node in document.iter():
        if not _labelable(node) or _hidden(node):
            continue
        if _nonempty(node.get("aria-label")) or _refs_resolve(document, node.get("aria-labelledby")):
            continue
        if node.closest("label") is not None:
            continue
        ident = node.id
        if ident and any(target and label_matches(ident, target, claimed) for target in label_targets):
            continue
        input_type = (node.get("type") or ("text" if node.tag == "input" else node.tag)).lower()
        out.append(
            _violation(
                RuleId.FORM_LABELS,
                node,
                page,
                "Form input missing label",
                remediation=_form_labels_remediation(ident, input_type),
                input_type=input_type,
                dynamic_id=_dynamic(ident) or None,
            )
        )
    return out


# -- image-alt-text -----------------------------------------------------------


def _alt_remediation(src: str | None) -> str:
    src = src or "image.png"
    return (
        "Choose ONE of these solutions:\n\n"
        "1. Add alt text for informative images:\n"
        f'   <img src="{src}" alt="Description of image">\n\n'
        "2. Add empty alt for decorative images:\n"
        f'   <img src="{src}" alt="">\n\n'
        "3. Use the image_tag helper:\n"
        "   <%= image_tag 'image.png', alt: 'Description' %>"
    )


def check_image_alt_text(document: Document, page: PageContext) -> list[Violation]:
    out: list[Violation] = []
    for img in document.find_all("img"):
        if not img.has("alt"):
            out.append(
                _violation(
                    RuleId.IMAGE_ALT_TEXT,
                    img,
                    page,
                    "Image missing alt attribute",
                    remediation=_alt_remediation(img.get("src")),
                )
            )
        elif not _nonempty(img.get("alt")):
            out.append(
                _violation(
                    RuleId.IMAGE_ALT_TEXT,
                    img,
                    page,
                    "Image has empty alt attribute - ensure this image is purely decorative. "
                    "If it conveys information, add descriptive alt text.",
                    severity=Severity.WARNING,
                    remediation=_alt_remediation(img.get("src")),
                )
            )
    return out


# -- interactive-elements -----------------------------------------------------


def _interactive(node: Node) -> str | None:
    role = (node.get("role") or "").strip().lower()
    if node.tag == "button" or role == "button":
        return "button"
    if (node.tag == "a" and node.has("href")) or role == "link":
        return "link"
    return None


def _accessible_name(node: Node, document: Document) -> bool:
    if node.text() or _img_name(node):
        return True
    if _nonempty(node.get("aria-label")) or _nonempty(node.get("title")):
        return True
    return _nonempty(node.get("aria-labelledby"))


def _name_remediation(kind: str, ctx_href: str | None) -> str:
    if kind == "link":
        href = ctx_href if ctx_href and not _dynamic(ctx_href) else "/path"
        return (
            "Choose ONE of these solutions:\n\n"
            "1. Add visible link text:\n"
            f'   <a href="{href}">Descriptive link text</a>\n\n'
            "2. Add aria-label for icon-only links:\n"
            f'   <a href="{href}" aria-label="Descriptive action"><i class="icon"></i></a>\n\n'
            "3. Use link_to with text:\n"
            "   <%= link_to 'Descriptive link text', path %>"
        )
    return (
        "Choose ONE of these solutions:\n\n"
        "1. Add visible button text:\n"
        "   <button>Save</button>\n\n"
        "2. Add aria-label for icon-only buttons:\n"
        '   <button aria-label="Close"><i class="icon-close"></i></button>'
    )


def check_interactive_elements(document: Document, page: PageContext) -> list[Violation]:
    out: list[Violation] = []
    for node in document.iter():
        kind = _interactive(node)
        if kind is None or _hidden(node):
            continue
        if kind == "button":
            for heading in node.find_all(*HEADING_TAGS):
                text = heading.text()
                out.append(
                    _violation(
                        RuleId.INTERACTIVE_ELEMENTS,
                        node,
                        page,
                        f"Button contains {heading.tag.upper()} heading - headings should not be nested inside buttons",
                        remediation=(
                            "Remove the heading from inside the button. Use plain text or aria-label instead:\n\n"
                            f"<button aria-label='{text}'>{text}</button>"
                        ),
                        nested_heading=heading.tag,
                        heading_text=text,
                    )
                )
        if _accessible_name(node, document):
            continue
        out.append(
            _violation(
                RuleId.INTERACTIVE_ELEMENTS,
                node,
                page,
                f"{kind.capitalize()} missing accessible name",
                wcag="2.4.4" if kind == "link" else "4.1.2",
                remediation=_name_remediation(kind, node.get("href")),
            )
        )
    return out


# -- heading-hierarchy --------------------------------------------------------


def _level(node: Node) -> int:
    return int(node.tag[1])


def check_heading_hierarchy(document: Document, page: PageContext) -> list[Violation]:
    headings = document.find_all(*HEADING_TAGS)
    if not headings:
        return []
    rid = RuleId.HEADING_HIERARCHY
    out: list[Violation] = []

    if not page.is_fragment:
        h1s = [h for h in headings if h.tag == "h1"]
        if not h1s:
            first = headings[0]
            out.append(
                _violation(
                    rid,
                    first,
                    page,
                    f"Page has {first.tag} but no h1 heading",
                    remediation=(
                        f"Add an <h1> heading before the first {first.tag}:\n\n"
                        f"<h1>Main Page Title</h1>\n<{first.tag}>{first.text()}</{first.tag}>"
                    ),
                )
            )
        for extra in h1s[1:]:
            out.append(
                _violation(
                    rid,
                    extra,
                    page,
                    f"Page has multiple h1 headings ({len(h1s)} total) - only one h1 should be used per page",
                    remediation=(
                        "Use only one <h1> per page. Convert additional h1s to h2 or lower:\n\n"
                        "<h1>Main Title</h1>\n<h2>Section Title</h2>"
                    ),
                )
            )

    previous: int | None = None
    for heading in headings:
        current = _level(heading)
        if previous is not None and current > previous + 1:
            out.append(
                _violation(
                    rid,
                    heading,
                    page,
                    f"Heading hierarchy skipped (h{previous} to h{current})",
                    remediation=(
                        f"Fix the heading hierarchy. Don't skip levels. Use h{previous + 1} instead of h{current}."
                    ),
                    previous_level=previous,
                    level=current,
                )
            )
        previous = current

    for heading in headings:
        text = heading.text()
        if not text and not _img_name(heading):
            out.append(
                _violation(
                    rid,
                    heading,
                    page,
                    f"Empty heading detected (<{heading.tag}>) - headings must have accessible text",
                    wcag="4.1.2",
                    remediation=(
                        f"Add descriptive text to the heading:\n\n<{heading.tag}>Descriptive Heading Text</{heading.tag}>"
                    ),
                )
            )
        elif text and len(text) <= 2 and _STYLING_TEXT.match(text):
            out.append(
                _violation(
                    rid,
                    heading,
                    page,
                    f"Heading appears to be used for styling only (text: '{text}') - headings should be descriptive",
                    severity=Severity.WARNING,
                    wcag="2.4.6",
                    remediation=(
                        "Use CSS for styling instead of headings. "
                        "Replace with a <div> or <span> with appropriate CSS classes."
                    ),
                )
            )
    return out


# -- keyboard-dialogs ---------------------------------------------------------


def _focusable(node: Node) -> bool:
    if _hidden(node):
        return False
    tabindex = node.get("tabindex")
    if tabindex is not None:
        if _dynamic(tabindex):
            return True
        try:
            return int(tabindex.strip()) >= 0
        except ValueError:
            return False
    if node.tag in {"button", "textarea", "select"}:
        return True
    if node.tag == "a":
        return node.has("href")
    if node.tag == "input":
        return (node.get("type") or "").strip().lower() != "hidden"
    return False


def check_keyboard_dialogs(document: Document, page: PageContext) -> list[Violation]:
    out: list[Violation] = []
    for node in document.iter():
        if (node.get("role") or "").strip().lower() not in {"dialog", "alertdialog"}:
            continue
        if _has_unresolved_content(node):
            continue
        if any(_focusable(child) for child in node.find_all()):
            continue
        out.append(
            _violation(
                RuleId.KEYBOARD_DIALOGS,
                node,
                page,
                "Modal dialog has no focusable elements",
                remediation="Add focusable elements to the modal (buttons, links, inputs)",
            )
        )
    return out


# -- landmark-presence --------------------------------------------------------


def check_landmark_presence(document: Document, page: PageContext) -> list[Violation]:
    for node in document.iter():
        if node.tag == "main" or (node.get("role") or "").strip().lower() == "main":
            return []
    return [
        _violation(
            RuleId.LANDMARK_PRESENCE,
            _page_anchor(document),
            page,
            "Page missing MAIN landmark",
            remediation="Wrap main content in <main> tag:\n\n<main>\n  <%= yield %>\n</main>",
        )
    ]


# -- form-errors --------------------------------------------------------------


def _invalid(node: Node) -> bool:
    if _trueish(node.get("aria-invalid")):
        return True
    if INVALID_CLASSES.intersection(node.classes):
        return True
    return any("field_with_errors" in a.classes for a in node.ancestors())


def _is_error_message(node: Node | None) -> bool:
    return node is not None and bool(ERROR_MESSAGE_CLASSES.intersection(node.classes))


def _error_associated(node: Node, document: Document) -> bool:
    if _refs_resolve(document, node.get("aria-describedby")):
        return True
    if _refs_resolve(document, node.get("aria-errormessage")):
        return True
    if _is_error_message(node.next_element()):
        return True
    wrapper = next((a for a in node.ancestors() if "field_with_errors" in a.classes), None)
    return wrapper is not None and _is_error_message(wrapper.next_element())


def check_form_errors(document: Document, page: PageContext) -> list[Violation]:
    out: list[Violation] = []
    for node in document.find_all("input", "textarea", "select"):
        if not _invalid(node) or _error_associated(node, document):
            continue
        ident = node.id or "field_id"
        out.append(
            _violation(
                RuleId.FORM_ERRORS,
                node,
                page,
                "Form input error message not associated",
                remediation=(
                    "Associate error message with input using aria-describedby:\n\n"
                    f'<input id="{ident}" aria-invalid="true" aria-describedby="{ident}-error">\n'
                    f'<span id="{ident}-error" class="error">Describe the problem</span>'
                ),
            )
        )
    return out


# -- table-headers ------------------------------------------------------------


def check_table_headers(document: Document, page: PageContext) -> list[Violation]:
    out: list[Violation] = []
    for table in document.find_all("table"):
        if (table.get("role") or "").strip().lower() in {"presentation", "none"}:
            continue
        if table.find_all("th"):
            continue
        out.append(
            _violation(
                RuleId.TABLE_HEADERS,
                table,
                page,
                "Table missing headers",
                remediation=(
                    "Add <th> headers to your table:\n\n"
                    "<table>\n  <thead>\n    <tr><th>Column 1</th></tr>\n  </thead>\n</table>"
                ),
            )
        )
    return out


# -- duplicate-ids ------------------------------------------------------------


def check_duplicate_ids(document: Document, page: PageContext) -> list[Violation]:
    order = {id(n): i for i, n in enumerate(document.iter())}
    dupes = [(value, nodes) for value, nodes in document.ids().items() if len(nodes) > 1 and not _dynamic(value)]
    dupes.sort(key=lambda item: order[id(item[1][1])])
    out: list[Violation] = []
    for value, nodes in dupes:
        occurrences = [{"tag": n.tag, "line": n.line or None, "source": n.source} for n in nodes]
        out.append(
            _violation(
                RuleId.DUPLICATE_IDS,
                nodes[1],
                page,
                f"Duplicate ID '{value}' found ({len(nodes)} occurrences)",
                remediation="Ensure each ID is unique on the page",
                duplicate_id=value,
                occurrences=occurrences,
            )
        )
    return out


# -- reserved -----------------------------------------------------------------


def check_skip_links(document: Document, page: PageContext) -> list[Violation]:
    return []


def check_color_contrast(document: Document, page: PageContext) -> list[Violation]:
    # Needs computed styles; nothing to evaluate in extracted markup.
    return []


RULES: dict[RuleId, Rule] = {
    RuleId.FORM_LABELS: Rule(RuleId.FORM_LABELS, "1.3.1", Severity.ERROR, check_form_labels),
    RuleId.IMAGE_ALT_TEXT: Rule(RuleId.IMAGE_ALT_TEXT, "1.1.1", Severity.ERROR, check_image_alt_text),
    RuleId.INTERACTIVE_ELEMENTS: Rule(RuleId.INTERACTIVE_ELEMENTS, "4.1.2", Severity.ERROR, check_interactive_elements),
    RuleId.HEADING_HIERARCHY: Rule(RuleId.HEADING_HIERARCHY, "1.3.1", Severity.ERROR, check_heading_hierarchy),
    RuleId.KEYBOARD_DIALOGS: Rule(RuleId.KEYBOARD_DIALOGS, "2.1.1", Severity.ERROR, check_keyboard_dialogs),
    RuleId.LANDMARK_PRESENCE: Rule(
        RuleId.LANDMARK_PRESENCE, "1.3.1", Severity.WARNING, check_landmark_presence, page_level=True
    ),
    RuleId.FORM_ERRORS: Rule(RuleId.FORM_ERRORS, "3.3.1", Severity.ERROR, check_form_errors),
    RuleId.TABLE_HEADERS: Rule(RuleId.TABLE_HEADERS, "1.3.1", Severity.ERROR, check_table_headers),
    RuleId.DUPLICATE_IDS: Rule(RuleId.DUPLICATE_IDS, "4.1.1", Severity.ERROR, check_duplicate_ids),
    RuleId.SKIP_LINKS: Rule(RuleId.SKIP_LINKS, "2.4.1", Severity.WARNING, check_skip_links),
    RuleId.COLOR_CONTRAST: Rule(RuleId.COLOR_CONTRAST, "1.4.3", Severity.WARNING, check_color_contrast),
}
