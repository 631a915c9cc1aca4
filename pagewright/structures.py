"""Core data structures for the Pagewright localization engine."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class TextUnitKind(Enum):
    """Kinds of localizable text a unit can carry."""

    HEADING = "heading"
    PARAGRAPH = "paragraph"
    BUTTON = "button"
    LIST_ITEM = "list-item"
    LINK = "link"
    LABEL = "label"
    ATTRIBUTE_ALT = "attribute-alt"
    ATTRIBUTE_TITLE = "attribute-title"
    ATTRIBUTE_PLACEHOLDER = "attribute-placeholder"
    SECTION_GROUP = "section-group"


ATTRIBUTE_KINDS = {
    "alt": TextUnitKind.ATTRIBUTE_ALT,
    "title": TextUnitKind.ATTRIBUTE_TITLE,
    "placeholder": TextUnitKind.ATTRIBUTE_PLACEHOLDER,
}


class LocatorStrategy(Enum):
    """Ways of re-finding a node, most reliable first."""

    ID = "id"
    CLASS_TAG = "class"
    TEXT = "text"


_SELECTOR_PATTERN = re.compile(
    r"^(?P<tag>[A-Za-z][\w-]*)?"
    r"(?:#(?P<id>[^.\[\s]+)|\.(?P<cls>[^.#\[\s]+))?"
    r"(?:\[(?P<attr>[\w-]+)\])?$"
)


@dataclass(frozen=True)
class Locator:
    """Describes how to find the node a unit was extracted from."""

    strategy: LocatorStrategy
    tag: Optional[str] = None
    node_id: Optional[str] = None
    class_name: Optional[str] = None
    attribute: Optional[str] = None

    @classmethod
    def by_id(
        cls, node_id: str, *, tag: str | None = None, attribute: str | None = None
    ) -> "Locator":
        return cls(LocatorStrategy.ID, tag=tag, node_id=node_id, attribute=attribute)

    @classmethod
    def by_class(
        cls, class_name: str, *, tag: str | None = None, attribute: str | None = None
    ) -> "Locator":
        return cls(
            LocatorStrategy.CLASS_TAG,
            tag=tag,
            class_name=class_name,
            attribute=attribute,
        )

    @classmethod
    def by_text(cls, tag: str, *, attribute: str | None = None) -> "Locator":
        return cls(LocatorStrategy.TEXT, tag=tag, attribute=attribute)

    @classmethod
    def parse(cls, selector: str) -> "Locator":
        """Build a locator from `#id`, `tag.class`, `.class` or `tag` forms.

        Any form may carry an `[attribute]` suffix for attribute units.
        """

        match = _SELECTOR_PATTERN.match(selector.strip())
        if not match or not any(match.group(name) for name in ("tag", "id", "cls")):
            raise ValueError(f"Unsupported locator syntax: {selector!r}")
        tag = match.group("tag").lower() if match.group("tag") else None
        attribute = match.group("attr")
        if match.group("id"):
            return cls.by_id(match.group("id"), tag=tag, attribute=attribute)
        if match.group("cls"):
            return cls.by_class(match.group("cls"), tag=tag, attribute=attribute)
        return cls.by_text(tag, attribute=attribute)  # type: ignore[arg-type]

    def __str__(self) -> str:
        tag = self.tag or ""
        if self.strategy is LocatorStrategy.ID:
            text = f"{tag}#{self.node_id}"
        elif self.strategy is LocatorStrategy.CLASS_TAG:
            text = f"{tag}.{self.class_name}"
        else:
            text = tag
        if self.attribute:
            text += f"[{self.attribute}]"
        return text


@dataclass(frozen=True)
class GroupMember:
    """One element folded into a section-group unit."""

    kind: TextUnitKind
    text: str
    locator: Locator


def format_outline(members: Iterable[GroupMember]) -> str:
    """Render group members as the typed outline sent to the backend."""

    lines: List[str] = []
    for member in members:
        if member.kind is TextUnitKind.HEADING:
            lines.append(f"**{member.text}**")
        elif member.kind is TextUnitKind.BUTTON:
            lines.append(f"[{member.text}]")
        elif member.kind is TextUnitKind.LIST_ITEM:
            lines.append(f"• {member.text}")
        else:
            lines.append(member.text)
    return "\n\n".join(lines)


_OUTLINE_SPLIT = re.compile(r"\n[ \t]*\n")
_BULLET_PREFIX = re.compile(r"^(?:[•\-*·]\s+)")


def split_outline(block: str, expected: int) -> Optional[List[str]]:
    """Split a localized outline back into member texts.

    Returns None when the block does not contain exactly `expected` parts.
    """

    parts = [part.strip() for part in _OUTLINE_SPLIT.split(block.strip())]
    parts = [part for part in parts if part]
    if len(parts) != expected:
        return None

    cleaned: List[str] = []
    for part in parts:
        if part.startswith("**") and part.endswith("**") and len(part) > 4:
            part = part[2:-2].strip()
        elif part.startswith("[") and part.endswith("]") and len(part) > 2:
            part = part[1:-1].strip()
        else:
            part = _BULLET_PREFIX.sub("", part, count=1)
        cleaned.append(part)
    return cleaned


@dataclass
class TextUnit:
    """Represents a single addressable piece of localizable text."""

    unit_id: str
    original_text: str
    locator: Locator
    kind: TextUnitKind = TextUnitKind.PARAGRAPH
    section: Optional[str] = None
    group_members: List[GroupMember] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return bool(self.group_members)

    @property
    def attribute(self) -> Optional[str]:
        return self.locator.attribute

    @property
    def context(self) -> str:
        return self.kind.value

    @property
    def prompt_text(self) -> str:
        if self.group_members:
            return format_outline(self.group_members)
        return self.original_text


@dataclass(frozen=True)
class LocalizationRequest:
    """Target parameters for one localization run."""

    target_language: str
    target_country: Optional[str] = None
    writing_style: str = "professional and friendly"
    audience: str = "general users"
    instructions: Optional[str] = None


class LocalizationResult:
    """Append-only mapping of unit id to localized text."""

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self._values: Dict[str, str] = {}
        if values:
            self.merge(values)

    def merge(
        self,
        values: Mapping[str, str],
        *,
        allowed_ids: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Add values for new ids and return the ids that were accepted."""

        allowed = set(allowed_ids) if allowed_ids is not None else None
        accepted: List[str] = []
        for unit_id, text in values.items():
            if allowed is not None and unit_id not in allowed:
                logger.debug("Ignoring localized value for unknown id %s", unit_id)
                continue
            if unit_id in self._values:
                logger.warning("Localized value for %s already merged; keeping it", unit_id)
                continue
            if not isinstance(text, str) or not text.strip():
                continue
            self._values[unit_id] = text
            accepted.append(unit_id)
        return accepted

    def get(self, unit_id: str) -> Optional[str]:
        return self._values.get(unit_id)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._values.items())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._values

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class Chunk:
    """A contiguous slice of units sent to the backend in one request."""

    chunk_id: int
    units: List[TextUnit]

    @property
    def unit_ids(self) -> List[str]:
        return [unit.unit_id for unit in self.units]

    def payload(self) -> List[Dict[str, str]]:
        return [
            {"id": unit.unit_id, "text": unit.prompt_text, "context": unit.context}
            for unit in self.units
        ]


@dataclass
class CompletionReport:
    """Report returned after localizing a document."""

    mode: str
    units_total: int
    units_processed: int
    units_unresolved: int
    units_skipped: int = 0
    units_missing: int = 0
    chunks_total: int = 0
    chunks_failed: int = 0
    target_language: str = ""
    target_country: Optional[str] = None
    model: Optional[str] = None
    elapsed_seconds: float = 0.0
    error_messages: List[str] = field(default_factory=list)

    @property
    def completeness(self) -> float:
        if not self.units_total:
            return 0.0
        return self.units_processed / self.units_total


@dataclass
class PageSource:
    """A crawled page as handed over by the crawling collaborator."""

    html: str
    final_url: Optional[str] = None
    title: Optional[str] = None


@dataclass
class LocalizationOutput:
    """Localized markup plus metadata for the persistence collaborator."""

    html: str
    report: CompletionReport
    request: LocalizationRequest
    source_url: Optional[str] = None
    generated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def metadata(self) -> Dict[str, Any]:
        report = self.report
        return {
            "original_url": self.source_url,
            "target_language": self.request.target_language,
            "target_country": self.request.target_country,
            "writing_style": self.request.writing_style,
            "audience": self.request.audience,
            "mode": report.mode,
            "model": report.model,
            "units_total": report.units_total,
            "units_processed": report.units_processed,
            "units_unresolved": report.units_unresolved,
            "units_skipped": report.units_skipped,
            "chunks_total": report.chunks_total,
            "chunks_failed": report.chunks_failed,
            "completeness": round(report.completeness, 4),
            "generated_at": self.generated_at.isoformat(),
        }
