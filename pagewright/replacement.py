"""Write localized values back into the document they were extracted from."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .documents import DocumentModel
from .structures import (
    LocalizationResult,
    Locator,
    LocatorStrategy,
    TextUnit,
    split_outline,
)

logger = logging.getLogger(__name__)

TIER_ORDER = (LocatorStrategy.ID, LocatorStrategy.CLASS_TAG, LocatorStrategy.TEXT)

NodeKey = Tuple[int, Optional[str]]


@dataclass
class _Target:
    unit_id: str
    locator: Locator
    original: str
    replacement: Optional[str]


@dataclass
class PlannedEdit:
    """One node-level change computed before the document is touched."""

    unit_id: str
    node: Any
    original: str
    replacement: str
    attribute: Optional[str] = None
    replace_content: bool = False

    def apply(self, document: DocumentModel) -> bool:
        if self.replace_content:
            document.set_text(self.node, self.replacement)
            return True
        if self.attribute:
            current = document.get_attribute(self.node, self.attribute)
            if current is None or self.original not in current:
                return False
            document.set_attribute(
                self.node,
                self.attribute,
                current.replace(self.original, self.replacement),
            )
            return True
        return document.replace_direct_text(self.node, self.original, self.replacement)


@dataclass
class ReplacementStats:
    """Outcome of one replacement pass."""

    document: DocumentModel
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    untouched: List[str] = field(default_factory=list)
    edits: int = 0

    @property
    def processed(self) -> int:
        return len(self.applied)


class ReplacementEngine:
    """Plans edits tier by tier, then applies them in a single pass."""

    def apply(
        self,
        document: DocumentModel,
        units: Sequence[TextUnit],
        result: LocalizationResult,
    ) -> ReplacementStats:
        stats = ReplacementStats(document=document)
        planned = self.plan(document, units, result, stats)

        failed: Set[str] = set()
        for edit in planned:
            if edit.apply(document):
                stats.edits += 1
            else:
                logger.warning("Could not apply edit for %s", edit.unit_id)
                failed.add(edit.unit_id)

        if failed:
            stats.applied = [unit_id for unit_id in stats.applied if unit_id not in failed]
            stats.skipped.extend(sorted(failed))

        logger.info(
            "Replacement applied %d units, skipped %d, left %d without a value",
            len(stats.applied),
            len(stats.skipped),
            len(stats.untouched),
        )
        return stats

    def plan(
        self,
        document: DocumentModel,
        units: Sequence[TextUnit],
        result: LocalizationResult,
        stats: Optional[ReplacementStats] = None,
    ) -> List[PlannedEdit]:
        """Compute the edits for every unit that has a localized value.

        Units without a value still claim their own node, so a look-alike
        unit further down cannot be written into it.
        """

        if stats is None:
            stats = ReplacementStats(document=document)
        consumed: Set[NodeKey] = set()
        targets: List[_Target] = []
        groups: List[Tuple[TextUnit, str]] = []

        for unit in units:
            value = result.get(unit.unit_id)
            if value is None:
                stats.untouched.append(unit.unit_id)
                if unit.is_group:
                    targets.extend(
                        _Target(unit.unit_id, member.locator, member.text, None)
                        for member in unit.group_members
                    )
                    continue
            elif unit.is_group:
                groups.append((unit, value))
                continue
            targets.append(_Target(unit.unit_id, unit.locator, unit.original_text, value))

        resolved: Dict[str, PlannedEdit] = {}
        for strategy in TIER_ORDER:
            for target in targets:
                if target.locator.strategy is not strategy:
                    continue
                edit = self._resolve(document, target, consumed)
                if edit is not None and target.replacement is not None:
                    resolved[target.unit_id] = edit

        edits: List[PlannedEdit] = []
        for target in targets:
            if target.replacement is None:
                continue
            edit = resolved.get(target.unit_id)
            if edit is None:
                logger.debug("No node found for %s (%s)", target.unit_id, target.locator)
                stats.skipped.append(target.unit_id)
                continue
            edits.append(edit)
            stats.applied.append(target.unit_id)

        for unit, value in groups:
            group_edits = self._plan_group(document, unit, value, consumed)
            if group_edits is None:
                logger.debug("Section group %s could not be placed", unit.unit_id)
                stats.skipped.append(unit.unit_id)
                continue
            edits.extend(group_edits)
            stats.applied.append(unit.unit_id)

        return edits

    # --- Internal helpers -------------------------------------------------

    def _candidates(self, document: DocumentModel, locator: Locator) -> List[Any]:
        if locator.strategy is LocatorStrategy.ID:
            node = document.select_by_id(locator.node_id or "")
            return [node] if node is not None else []
        if locator.strategy is LocatorStrategy.CLASS_TAG:
            return [
                node
                for node in document.select_by_tag_and_class(locator.tag, locator.class_name or "")
                if not (document.get_attribute(node, "id") or "").strip()
            ]
        if not locator.tag:
            return []
        return [
            node
            for node in document.select_by_tag(locator.tag)
            if not document.get_attribute(node, "id")
            and not document.get_attribute(node, "class")
        ]

    def _resolve(
        self,
        document: DocumentModel,
        target: _Target,
        consumed: Set[NodeKey],
    ) -> Optional[PlannedEdit]:
        locator = target.locator
        exact = locator.strategy is not LocatorStrategy.ID
        for node in self._candidates(document, locator):
            key = (id(node), locator.attribute)
            if key in consumed or document.is_skipped(node):
                continue
            if not self._matches(document, node, target, exact=exact):
                continue
            consumed.add(key)
            return PlannedEdit(
                unit_id=target.unit_id,
                node=node,
                original=target.original,
                replacement=target.original if target.replacement is None else target.replacement,
                attribute=locator.attribute,
            )
        return None

    @staticmethod
    def _matches(
        document: DocumentModel,
        node: Any,
        target: _Target,
        *,
        exact: bool,
    ) -> bool:
        original = target.original
        attribute = target.locator.attribute
        if attribute:
            value = document.get_attribute(node, attribute)
            if value is None:
                return False
            return value.strip() == original if exact else original in value
        if not document.direct_text_contains(node, original):
            return False
        return not exact or document.direct_text(node) == original

    def _plan_group(
        self,
        document: DocumentModel,
        unit: TextUnit,
        value: str,
        consumed: Set[NodeKey],
    ) -> Optional[List[PlannedEdit]]:
        parts = split_outline(value, len(unit.group_members))
        if parts is not None:
            trial = set(consumed)
            member_edits: List[PlannedEdit] = []
            for member, text in zip(unit.group_members, parts):
                edit = self._resolve(
                    document,
                    _Target(unit.unit_id, member.locator, member.text, text),
                    trial,
                )
                if edit is None:
                    break
                member_edits.append(edit)
            else:
                consumed.update(trial)
                return member_edits

        if unit.locator.strategy is not LocatorStrategy.ID:
            return None
        container = document.select_by_id(unit.locator.node_id or "")
        if container is None:
            return None
        inner = {id(container)}
        inner.update(id(child) for child in document.iter_elements(container))
        if any(node_key in inner for node_key, _ in consumed):
            return None
        consumed.add((id(container), None))
        return [
            PlannedEdit(
                unit_id=unit.unit_id,
                node=container,
                original=unit.original_text,
                replacement=value,
                replace_content=True,
            )
        ]
