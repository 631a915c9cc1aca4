"""Extraction of addressable text units from a document."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from .documents import DocumentModel
from .structures import (
    ATTRIBUTE_KINDS,
    GroupMember,
    Locator,
    TextUnit,
    TextUnitKind,
    format_outline,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 10
DEFAULT_DENY_PHRASES = (
    "click here",
    "read more",
    "learn more",
    "view more",
    "cookie",
    "privacy",
    "terms",
    "copyright",
    "menu",
    "navigation",
    "skip to",
    "back to top",
)
SECTION_NAMES = ("header", "main", "footer", "sidebar", "forms")

HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
GROUP_MEMBER_KINDS = frozenset(
    {
        TextUnitKind.HEADING,
        TextUnitKind.PARAGRAPH,
        TextUnitKind.BUTTON,
        TextUnitKind.LIST_ITEM,
    }
)
_ATTRIBUTE_PREFIXES = {
    "alt": "ALT",
    "title": "TITLE",
    "placeholder": "PLACEHOLDER",
}


class TextUnitExtractor:
    """Walks a document and produces units in document order."""

    def __init__(
        self,
        *,
        min_length: int = DEFAULT_MIN_LENGTH,
        deny_phrases: Sequence[str] = DEFAULT_DENY_PHRASES,
        group_sections: bool = False,
        sections: Optional[Sequence[str]] = None,
    ) -> None:
        self.min_length = max(1, min_length)
        self.deny_phrases = tuple(phrase.lower() for phrase in deny_phrases)
        self.group_sections = group_sections
        self.sections = set(sections) if sections else None
        self._counter = 0

    def extract(self, document: DocumentModel) -> List[TextUnit]:
        self._counter = 0
        groups: Dict[int, TextUnit] = {}
        claimed: Set[int] = set()
        if self.group_sections:
            groups = self._collect_groups(document, claimed)

        units: List[TextUnit] = []
        for element in document.iter_elements():
            if document.is_skipped(element):
                continue
            section = classify_section(document, element)
            if self.sections is not None and section not in self.sections:
                continue

            group = groups.get(id(element))
            if group is not None:
                group.unit_id = self._next_id("SECTION")
                units.append(group)

            if id(element) not in claimed:
                unit = self._element_unit(document, element, section)
                if unit is not None:
                    units.append(unit)

            units.extend(self._attribute_units(document, element, section))

        logger.info("Extracted %d text units", len(units))
        return units

    def is_localizable(self, text: str) -> bool:
        """Content-worthiness test applied to every candidate string."""

        if len(text) < self.min_length:
            return False
        if not any(char.isalpha() for char in text):
            return False
        lowered = text.lower()
        return not any(phrase in lowered for phrase in self.deny_phrases)

    # --- Internal helpers -------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        unit_id = f"{prefix}_{self._counter}"
        self._counter += 1
        return unit_id

    def _element_unit(
        self,
        document: DocumentModel,
        element: Any,
        section: str,
    ) -> Optional[TextUnit]:
        kind = element_kind(document, element)
        if kind is None:
            return None
        text = document.direct_text(element)
        if not self.is_localizable(text):
            return None
        return TextUnit(
            unit_id=self._next_id("TEXT"),
            original_text=text,
            locator=locator_for(document, element),
            kind=kind,
            section=section,
        )

    def _attribute_units(
        self,
        document: DocumentModel,
        element: Any,
        section: str,
    ) -> List[TextUnit]:
        units: List[TextUnit] = []
        for attribute, kind in ATTRIBUTE_KINDS.items():
            value = document.get_attribute(element, attribute)
            if value is None:
                continue
            text = value.strip()
            if not self.is_localizable(text):
                continue
            units.append(
                TextUnit(
                    unit_id=self._next_id(_ATTRIBUTE_PREFIXES[attribute]),
                    original_text=text,
                    locator=locator_for(document, element, attribute=attribute),
                    kind=kind,
                    section=section,
                )
            )
        return units

    def _collect_groups(
        self,
        document: DocumentModel,
        claimed: Set[int],
    ) -> Dict[int, TextUnit]:
        """Find outermost section containers and fold their copy into groups.

        Group ids are assigned later, when the walk reaches the container.
        """

        groups: Dict[int, TextUnit] = {}
        for element in document.iter_elements():
            if document.is_skipped(element):
                continue
            section = container_section(document, element)
            if section is None:
                continue
            if any(id(parent) in groups for parent in document.ancestors(element)):
                continue

            members: List[GroupMember] = []
            member_nodes: List[int] = []
            for child in document.iter_elements(element):
                if document.is_skipped(child) or id(child) in claimed:
                    continue
                kind = element_kind(document, child)
                if kind not in GROUP_MEMBER_KINDS:
                    continue
                text = document.direct_text(child)
                if not self.is_localizable(text):
                    continue
                members.append(
                    GroupMember(kind=kind, text=text, locator=locator_for(document, child))
                )
                member_nodes.append(id(child))

            if len(members) < 2:
                continue

            claimed.update(member_nodes)
            groups[id(element)] = TextUnit(
                unit_id="",
                original_text=format_outline(members),
                locator=locator_for(document, element),
                kind=TextUnitKind.SECTION_GROUP,
                section=section,
                group_members=members,
            )
        return groups


def element_kind(document: DocumentModel, element: Any) -> Optional[TextUnitKind]:
    """Map a text-bearing element to its unit kind."""

    tag = document.tag_name(element)
    if tag in HEADING_TAGS:
        return TextUnitKind.HEADING
    if tag == "p":
        return TextUnitKind.PARAGRAPH
    if tag == "button":
        return TextUnitKind.BUTTON
    if tag == "a":
        classes = document.get_attribute(element, "class") or ""
        if "button" in classes.split() or "btn" in classes:
            return TextUnitKind.BUTTON
        return TextUnitKind.LINK
    if tag == "li":
        return TextUnitKind.LIST_ITEM
    if tag == "label":
        return TextUnitKind.LABEL
    return None


def locator_for(
    document: DocumentModel,
    element: Any,
    *,
    attribute: Optional[str] = None,
) -> Locator:
    """Pick the most reliable locator the element supports."""

    tag = document.tag_name(element)
    node_id = (document.get_attribute(element, "id") or "").strip()
    if node_id:
        return Locator.by_id(node_id, tag=tag, attribute=attribute)
    classes = document.class_tokens(element)
    if classes:
        return Locator.by_class(classes[0], tag=tag, attribute=attribute)
    return Locator.by_text(tag, attribute=attribute)


def _markers(document: DocumentModel, element: Any) -> tuple[str, str, str, str]:
    return (
        document.tag_name(element),
        (document.get_attribute(element, "role") or "").lower(),
        (document.get_attribute(element, "id") or "").lower(),
        (document.get_attribute(element, "class") or "").lower(),
    )


def container_section(document: DocumentModel, element: Any) -> Optional[str]:
    """Return the section a container element opens, if any."""

    tag, role, node_id, classes = _markers(document, element)
    if tag == "header" or role == "banner" or node_id == "header" or "header" in classes:
        return "header"
    if tag == "footer" or role == "contentinfo" or node_id == "footer" or "footer" in classes:
        return "footer"
    if tag == "aside" or role == "complementary" or node_id == "sidebar" or "sidebar" in classes:
        return "sidebar"
    if tag == "form" or "form" in classes.split():
        return "forms"
    if tag in {"main", "article", "section"} or role == "main" or node_id == "main":
        return "main"
    if "main" in classes.split():
        return "main"
    return None


def classify_section(document: DocumentModel, element: Any) -> str:
    """Determine which page section an element belongs to."""

    for node in [element, *document.ancestors(element)]:
        tag, role, node_id, classes = _markers(document, node)
        if tag == "header" or role == "banner" or "header" in node_id or "header" in classes:
            return "header"
        if tag == "footer" or role == "contentinfo" or "footer" in node_id or "footer" in classes:
            return "footer"
        if tag == "form" or "form" in node_id or "form" in classes.split():
            return "forms"
        if tag == "aside" or role == "complementary" or "sidebar" in node_id or "sidebar" in classes:
            return "sidebar"
    return "main"
