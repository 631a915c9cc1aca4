"""Recovery of structured payloads from free-form model responses.

Each strategy is a pure function ``raw -> Optional[str]`` returning a
candidate payload text. The parsers walk their strategy list in order and
accept the first candidate that decodes or validates.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import InvalidDocumentStructure, ParseFailed

logger = logging.getLogger(__name__)

Strategy = Callable[[str], Optional[str]]

_GREEDY_ARRAY = re.compile(r"\[[\s\S]*\]")
_LEADING_FENCE = re.compile(r"^\s*```(?:json|html)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_LEAD_IN_PATTERNS = (
    re.compile(
        r"(?:here'?s? the|here is the|output|result|localized content).*?\n*(\[[\s\S]*\])",
        re.IGNORECASE,
    ),
    re.compile(r"(?:begin|start).*?\n*(\[[\s\S]*\])", re.IGNORECASE),
    re.compile(r"\n\s*(\[[\s\S]*\])"),
)

_OUTPUT_TAG = re.compile(r"<output>([\s\S]*?)</output>", re.IGNORECASE)
_DOCTYPE_LAZY = re.compile(r"<!DOCTYPE[\s\S]*?</html>", re.IGNORECASE)
_HTML_LAZY = re.compile(r"<html[\s\S]*?</html>", re.IGNORECASE)
_DOCTYPE_GREEDY = re.compile(r"<!DOCTYPE[\s\S]+</html>", re.IGNORECASE)
_REQUIRED_MARKERS = ("<html", "</html>", "<body", "</body>")


def strip_fences(text: str) -> str:
    """Remove one leading and one trailing markdown fence marker."""

    cleaned = _LEADING_FENCE.sub("", text.strip(), count=1)
    return _TRAILING_FENCE.sub("", cleaned, count=1).strip()


# --- Unit mode strategies -------------------------------------------------


def direct_array(raw: str) -> Optional[str]:
    match = _GREEDY_ARRAY.search(raw)
    return match.group(0) if match else None


def fence_stripped_array(raw: str) -> Optional[str]:
    return direct_array(strip_fences(raw))


def fenced_block(raw: str) -> Optional[str]:
    match = _FENCED_BLOCK.search(raw)
    if not match:
        return None
    body = match.group(1).strip()
    if body.startswith("[") and "]" in body:
        return body
    return None


def bracket_span(raw: str) -> Optional[str]:
    """Everything between the first ``[`` and the last ``]``."""

    start = raw.find("[")
    end = raw.rfind("]")
    if start == -1 or end <= start:
        return None
    span = raw[start : end + 1]
    if '"' in span and "{" in span:
        return span
    return None


def lead_in_phrase(raw: str) -> Optional[str]:
    for pattern in _LEAD_IN_PATTERNS:
        match = pattern.search(raw)
        if match:
            return match.group(1)
    return None


UNIT_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("direct_array", direct_array),
    ("strip_fences", fence_stripped_array),
    ("fenced_block", fenced_block),
    ("bracket_span", bracket_span),
    ("lead_in_phrase", lead_in_phrase),
)


def decode_units(candidate: str) -> Optional[Dict[str, str]]:
    """Decode a JSON array of ``{id, localized}`` objects.

    Returns None when the text is not such an array or holds no usable entry.
    """

    try:
        data = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(data, list):
        return None

    values: Dict[str, str] = {}
    for item in data:
        if not isinstance(item, dict):
            continue
        unit_id = item.get("id")
        localized = item.get("localized")
        if isinstance(unit_id, str) and isinstance(localized, str) and unit_id and localized:
            values.setdefault(unit_id, localized)
    return values or None


def parse_units(
    raw: str,
    strategies: Sequence[Tuple[str, Strategy]] = UNIT_STRATEGIES,
) -> Dict[str, str]:
    """Return the id to localized-text map carried by a unit-mode response."""

    attempted: List[str] = []
    for name, strategy in strategies:
        attempted.append(name)
        candidate = strategy(raw)
        if candidate is None:
            continue
        values = decode_units(candidate)
        if values is None:
            logger.debug("Strategy %s produced a candidate that did not decode", name)
            continue
        logger.debug("Strategy %s recovered %d values", name, len(values))
        return values

    logger.error("No parsing strategy recovered a JSON array (%d chars)", len(raw))
    raise ParseFailed(attempted, len(raw))


# --- Document mode strategies ---------------------------------------------


def output_tag(text: str) -> Optional[str]:
    match = _OUTPUT_TAG.search(text)
    return match.group(1).strip() if match else None


def doctype_span(text: str) -> Optional[str]:
    match = _DOCTYPE_LAZY.search(text)
    return match.group(0).strip() if match else None


def html_span(text: str) -> Optional[str]:
    match = _HTML_LAZY.search(text)
    return match.group(0).strip() if match else None


def whole_response(text: str) -> Optional[str]:
    lowered = text.lstrip().lower()
    if lowered.startswith("<!doctype") or lowered.startswith("<html"):
        return text.strip()
    return None


def doctype_anywhere(text: str) -> Optional[str]:
    match = _DOCTYPE_GREEDY.search(text)
    return match.group(0).strip() if match else None


def html_anywhere(text: str) -> Optional[str]:
    lowered = text.lower()
    end = lowered.rfind("</html>")
    if end == -1:
        return None
    start = lowered.find("<!doctype")
    if start == -1:
        start = lowered.find("<html")
    if start == -1 or start > end:
        return None
    return text[start : end + len("</html>")].strip()


DOCUMENT_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("output_tag", output_tag),
    ("doctype_span", doctype_span),
    ("html_span", html_span),
    ("whole_response", whole_response),
    ("doctype_anywhere", doctype_anywhere),
    ("html_anywhere", html_anywhere),
)


def validate_document(html: str) -> bool:
    lowered = html.lower()
    return all(marker in lowered for marker in _REQUIRED_MARKERS)


def parse_document(
    raw: str,
    strategies: Sequence[Tuple[str, Strategy]] = DOCUMENT_STRATEGIES,
) -> str:
    """Return the full document carried by a document-mode response."""

    cleaned = strip_fences(raw)
    attempted: List[str] = []
    found_candidate = False
    for name, strategy in strategies:
        attempted.append(name)
        candidate = strategy(cleaned)
        if not candidate:
            continue
        found_candidate = True
        if validate_document(candidate):
            logger.debug("Strategy %s recovered a %d character document", name, len(candidate))
            return candidate
        logger.debug("Strategy %s candidate lacks the document skeleton", name)

    if found_candidate:
        raise InvalidDocumentStructure(
            "Model response contains markup but is missing <html> or <body> structure."
        )
    raise ParseFailed(attempted, len(raw))


def parse_response(raw: str, mode: str) -> Union[Dict[str, str], str]:
    """Dispatch to the parser for ``mode`` ("unit" or "document")."""

    if mode == "document":
        return parse_document(raw)
    if mode == "unit":
        return parse_units(raw)
    raise ValueError(f"Unknown parse mode: {mode!r}")
