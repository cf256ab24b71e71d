"""
Selector grammar for the Direct backend.

The model only sees a textual snapshot of the page, so it writes selectors
in one of three forms:

    button:"Sign in"    role plus accessible name (copied from a snapshot)
    textbox             a bare ARIA role
    #search input       anything else is a literal Playwright selector

parse_selector() turns a selector into ordered candidate tiers and
resolve_locator() picks the first tier that matches something on the page.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


ROLE_NAME_PATTERN = re.compile(r'^(\w+):"([^"]*)"$')
BARE_WORD_PATTERN = re.compile(r"^[A-Za-z]+$")

# ARIA roles accepted by Playwright's get_by_role()
KNOWN_ROLES = frozenset({
    "alert", "alertdialog", "application", "article", "banner", "blockquote",
    "button", "caption", "cell", "checkbox", "code", "columnheader",
    "combobox", "complementary", "contentinfo", "definition", "deletion",
    "dialog", "directory", "document", "emphasis", "feed", "figure", "form",
    "generic", "grid", "gridcell", "group", "heading", "img", "insertion",
    "link", "list", "listbox", "listitem", "log", "main", "marquee", "math",
    "meter", "menu", "menubar", "menuitem", "menuitemcheckbox",
    "menuitemradio", "navigation", "none", "note", "option", "paragraph",
    "presentation", "progressbar", "radio", "radiogroup", "region", "row",
    "rowgroup", "rowheader", "scrollbar", "search", "searchbox", "separator",
    "slider", "spinbutton", "status", "strong", "subscript", "superscript",
    "switch", "tab", "table", "tablist", "tabpanel", "term", "textbox",
    "time", "timer", "toolbar", "tooltip", "tree", "treegrid", "treeitem",
})


@dataclass(frozen=True)
class SelectorTier:
    """One way of locating an element."""
    kind: str  # "role_name" | "role" | "literal"
    value: str
    role: Optional[str] = None
    name: Optional[str] = None

    def build(self, page: Any) -> Any:
        """Build the Playwright locator (first match) for this tier."""
        if self.kind == "role_name":
            return page.get_by_role(self.role, name=self.name, exact=False).first
        if self.kind == "role":
            return page.get_by_role(self.role).first
        return page.locator(self.value).first


def parse_selector(selector: str) -> list[SelectorTier]:
    """Split a selector into candidate tiers, highest precedence first.

    Args:
        selector: Raw selector written by the model

    Returns:
        Non-empty list of tiers; the literal tier is always last
    """
    selector = selector.strip()
    tiers: list[SelectorTier] = []

    match = ROLE_NAME_PATTERN.match(selector)
    if match:
        role, name = match.group(1).lower(), match.group(2)
        tiers.append(SelectorTier("role_name", selector, role=role, name=name))
        tiers.append(SelectorTier("role", selector, role=role))
    elif BARE_WORD_PATTERN.match(selector) and selector.lower() in KNOWN_ROLES:
        tiers.append(SelectorTier("role", selector, role=selector.lower()))

    tiers.append(SelectorTier("literal", selector))
    return tiers


async def resolve_locator(page: Any, selector: str) -> Any:
    """Resolve a selector to a locator, trying every tier in order.

    A tier whose probe raises (e.g. an invalid CSS string) is skipped. When
    no tier matches anything yet, the highest-precedence locator is returned
    so the action waits and fails with Playwright's own timeout error.
    """
    tiers = parse_selector(selector)
    first_locator = None

    for tier in tiers:
        try:
            locator = tier.build(page)
            if first_locator is None:
                first_locator = locator
            if await locator.count() > 0:
                logger.debug("Selector %r resolved via %s tier", selector, tier.kind)
                return locator
        except Exception as e:
            logger.debug("Selector tier %s failed for %r: %s", tier.kind, selector, e)
            continue

    if first_locator is None:
        first_locator = page.locator(selector).first
    return first_locator
