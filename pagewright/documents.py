"""Document model adapter over a parsed HTML tree."""

from __future__ import annotations

import html as html_module
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString
from bs4.dammit import EntitySubstitution
from bs4.element import (
    CData,
    Comment,
    Declaration,
    Doctype,
    PreformattedString,
    ProcessingInstruction,
    Tag,
)
from bs4.formatter import HTMLFormatter

logger = logging.getLogger(__name__)

# Elements whose contents are never treated as page copy.
SKIPPED_CONTAINERS = frozenset({"script", "style", "noscript", "template", "head"})

URL_ATTRIBUTES = ("href", "src", "action", "data-src", "data-href")
_UNTOUCHED_URL_PREFIXES = (
    "http://",
    "https://",
    "data:",
    "mailto:",
    "tel:",
    "javascript:",
    "#",
)
_CSS_URL_PATTERN = re.compile(r"url\((['\"]?)([^'\")]+)\1\)", re.IGNORECASE)

# Raw source scanning, following what html.parser accepts as markup.
_MARKUP_START = re.compile(r"<[a-zA-Z/!?]")
_END_TAG = re.compile(r"</[a-zA-Z][^>]*>")
_TAG_NAME = re.compile(r"<[^\s/>]+")
_RAW_ATTRIBUTE = re.compile(r"""([^\s/>=][^\s/>=]*)(?:\s*=\s*('[^']*'|"[^"]*"|[^\s>]*))?""")
_UNQUOTED_VALUE = re.compile(r"[^\s\"'=<>`]+")
_ESCAPED_CHARACTERS = re.compile(r"[&<>]")
_RAW_TEXT_ELEMENTS = frozenset({"script", "style", "textarea", "title"})


class _SourceOrderFormatter(HTMLFormatter):
    """Keeps non-ASCII text and attribute order, writes void elements without a slash."""

    def attributes(self, tag: Tag):
        return list(tag.attrs.items()) if tag.attrs else []


_OUTPUT_FORMATTER = _SourceOrderFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)


@dataclass
class _RawAttribute:
    name: str
    name_end: int
    value_start: Optional[int] = None
    value_end: Optional[int] = None
    quote: str = ""


@dataclass
class _RawStartTag:
    """Where a start tag and its attributes sit in the source text."""

    start: int
    end: int
    insert_at: int
    attributes: List[_RawAttribute] = field(default_factory=list)

    def find(self, name: str) -> Optional[_RawAttribute]:
        # Later duplicates win, as they do in the parsed tree.
        for attribute in reversed(self.attributes):
            if attribute.name == name:
                return attribute
        return None


class DocumentModel(ABC):
    """Node selection, text access and serialization over one document.

    Nodes are opaque to callers; they are only ever handed back to the
    adapter that produced them.
    """

    @abstractmethod
    def iter_elements(self, root: Any = None) -> Iterator[Any]:
        """Yield element nodes in document order."""

    @abstractmethod
    def select_by_id(self, node_id: str) -> Optional[Any]:
        """Return the first element carrying the given id."""

    @abstractmethod
    def select_by_tag_and_class(self, tag: Optional[str], class_name: str) -> List[Any]:
        """Return elements with the tag (any tag when None) and class token."""

    @abstractmethod
    def select_by_tag(self, tag: str) -> List[Any]:
        """Return elements with the given tag name."""

    @abstractmethod
    def tag_name(self, node: Any) -> str:
        """Return the lower-case tag name of the node."""

    @abstractmethod
    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        """Return an attribute value, or None when absent."""

    @abstractmethod
    def ancestors(self, node: Any) -> Iterator[Any]:
        """Yield the element ancestors of the node, nearest first."""

    @abstractmethod
    def direct_text(self, node: Any) -> str:
        """Return the stripped text of the node's own text children."""

    @abstractmethod
    def direct_text_contains(self, node: Any, text: str) -> bool:
        """Tell whether a single direct text child contains the text."""

    @abstractmethod
    def replace_direct_text(self, node: Any, original: str, replacement: str) -> bool:
        """Swap `original` for `replacement` inside the node's own text children."""

    @abstractmethod
    def set_attribute(self, node: Any, name: str, value: str) -> None:
        """Overwrite one attribute of the node."""

    @abstractmethod
    def set_text(self, node: Any, text: str) -> None:
        """Replace the whole content of the node with text."""

    @abstractmethod
    def serialize(self) -> str:
        """Return the document markup."""

    def class_tokens(self, node: Any) -> List[str]:
        value = self.get_attribute(node, "class")
        return value.split() if value else []

    def is_skipped(self, node: Any) -> bool:
        """Tell whether the node lives inside a script-like container."""

        if self.tag_name(node) in SKIPPED_CONTAINERS:
            return True
        return any(
            self.tag_name(parent) in SKIPPED_CONTAINERS
            for parent in self.ancestors(node)
        )


class SoupDocument(DocumentModel):
    """BeautifulSoup-backed document using the standard library HTML parser.

    Edits go to the parsed tree and are also recorded as splices over the
    source text, so serialization copies every untouched byte through. When
    the source cannot be mapped onto the tree the whole tree is rendered
    instead.
    """

    def __init__(self, html: str) -> None:
        self.source = html
        self.soup = BeautifulSoup(html, "html.parser", multi_valued_attributes=None)
        self._modified = False
        self._tags: Dict[int, Tuple[Tag, _RawStartTag]] = {}
        self._strings: Dict[int, Tuple[NavigableString, Tuple[int, int]]] = {}
        self._splices: Dict[Tuple[Any, ...], Tuple[int, int, str]] = {}
        self._spliceable = self._map_source()

    @property
    def is_modified(self) -> bool:
        return self._modified

    def iter_elements(self, root: Any = None) -> Iterator[Tag]:
        container = root if root is not None else self.soup
        return iter(container.find_all(True))

    def select_by_id(self, node_id: str) -> Optional[Tag]:
        return self.soup.find(attrs={"id": node_id})

    def select_by_tag_and_class(self, tag: Optional[str], class_name: str) -> List[Tag]:
        return [
            element
            for element in self.soup.find_all(tag or True)
            if class_name in self.class_tokens(element)
        ]

    def select_by_tag(self, tag: str) -> List[Tag]:
        return list(self.soup.find_all(tag))

    def tag_name(self, node: Tag) -> str:
        return (node.name or "").lower()

    def get_attribute(self, node: Tag, name: str) -> Optional[str]:
        value = node.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def ancestors(self, node: Tag) -> Iterator[Tag]:
        for parent in node.parents:
            if isinstance(parent, BeautifulSoup):
                return
            yield parent

    def direct_text(self, node: Tag) -> str:
        return "".join(str(child) for child in self._direct_strings(node)).strip()

    def direct_text_contains(self, node: Tag, text: str) -> bool:
        return any(text in str(child) for child in self._direct_strings(node))

    def replace_direct_text(self, node: Tag, original: str, replacement: str) -> bool:
        replaced = False
        for child in self._direct_strings(node):
            value = str(child)
            if original not in value:
                continue
            updated = NavigableString(value.replace(original, replacement))
            child.replace_with(updated)
            self._splice_text(child, updated, value, original, replacement)
            replaced = True
        if replaced:
            self._modified = True
        return replaced

    def set_attribute(self, node: Tag, name: str, value: str) -> None:
        node[name] = value
        self._modified = True
        self._splice_attribute(node, name, value)

    def set_text(self, node: Tag, text: str) -> None:
        span = self._content_span(node)
        node.string = text
        self._modified = True
        if span is None:
            self._spliceable = False
            return
        self._splices[("content", span[0])] = (span[0], span[1], _escape_text(text))

    def absolutize_urls(self, base_url: str) -> int:
        """Rewrite relative URLs in link attributes and inline styles.

        Returns the number of rewritten values.
        """

        rewritten = 0
        for element in self.soup.find_all(True):
            for attribute in URL_ATTRIBUTES:
                value = self.get_attribute(element, attribute)
                if not value or value.strip().lower().startswith(_UNTOUCHED_URL_PREFIXES):
                    continue
                absolute = urljoin(base_url, value.strip())
                if absolute != value:
                    self.set_attribute(element, attribute, absolute)
                    rewritten += 1

            style = self.get_attribute(element, "style")
            if style and "url(" in style.lower():
                updated = _CSS_URL_PATTERN.sub(
                    lambda match: _absolute_css_url(match, base_url), style
                )
                if updated != style:
                    self.set_attribute(element, "style", updated)
                    rewritten += 1

        return rewritten

    def serialize(self) -> str:
        if not self._modified:
            return self.source
        if self._spliceable:
            spliced = self._apply_splices()
            if spliced is not None:
                return spliced
        logger.debug("Edits could not be mapped onto the source; rendering the tree")
        return self.soup.decode(formatter=_OUTPUT_FORMATTER)

    # --- Internal helpers -------------------------------------------------

    @staticmethod
    def _direct_strings(node: Tag) -> List[NavigableString]:
        return [
            child
            for child in node.children
            if isinstance(child, NavigableString)
            and not isinstance(child, PreformattedString)
        ]

    def _map_source(self) -> bool:
        """Record the source span of every start tag and string in the tree."""

        source = self.source
        line_starts = [0] + [match.end() for match in re.finditer("\n", source)]
        cursor = 0
        for node in self.soup.descendants:
            if isinstance(node, Tag):
                line, column = node.sourceline, node.sourcepos
                if line is None or column is None or line > len(line_starts):
                    return False
                start = line_starts[line - 1] + column
                if start < cursor:
                    return False
                start_tag = _scan_start_tag(source, start)
                if start_tag is None:
                    return False
                self._tags[id(node)] = (node, start_tag)
                cursor = start_tag.end
                continue

            while True:
                closing = _END_TAG.match(source, cursor)
                if closing is None:
                    break
                cursor = closing.end()
            end = _string_end(source, cursor, node)
            if end is None or not _same_text(node, source[cursor:end]):
                return False
            self._strings[id(node)] = (node, (cursor, end))
            cursor = end
        return True

    def _splice_text(
        self,
        old: NavigableString,
        new: NavigableString,
        value: str,
        original: str,
        replacement: str,
    ) -> None:
        entry = self._strings.pop(id(old), None)
        if entry is None or entry[0] is not old:
            self._spliceable = False
            return
        start, end = entry[1]
        self._strings[id(new)] = (new, (start, end))
        key = ("text", start)
        raw = self._splices[key][2] if key in self._splices else self.source[start:end]
        if (
            not _ESCAPED_CHARACTERS.search(original)
            and raw.count(original) == value.count(original)
        ):
            text = raw.replace(original, _escape_text(replacement))
        else:
            text = _escape_text(str(new))
        self._splices[key] = (start, end, text)

    def _splice_attribute(self, node: Tag, name: str, value: str) -> None:
        entry = self._tags.get(id(node))
        if entry is None or entry[0] is not node:
            self._spliceable = False
            return
        start_tag = entry[1]
        raw = start_tag.find(name)
        if raw is None:
            position = start_tag.insert_at
            text = " " + name + "=" + _quote_attribute(value, '"')
            self._splices[("attr", start_tag.start, name)] = (position, position, text)
        elif raw.value_start is None or raw.value_end is None:
            text = "=" + _quote_attribute(value, '"')
            self._splices[("attr", start_tag.start, name)] = (raw.name_end, raw.name_end, text)
        else:
            quote = raw.quote
            if not quote and not _UNQUOTED_VALUE.fullmatch(value):
                quote = '"'
            self._splices[("attr", start_tag.start, name)] = (
                raw.value_start,
                raw.value_end,
                _quote_attribute(value, quote),
            )

    def _content_span(self, node: Tag) -> Optional[Tuple[int, int]]:
        """Return the source span between the node's start and matching end tag."""

        entry = self._tags.get(id(node))
        if entry is None or entry[0] is not node:
            return None
        start_tag = entry[1]
        pattern = re.compile(
            r"<!--.*?-->|<(/?)%s(?=[\s/>])" % re.escape(node.name),
            re.IGNORECASE | re.DOTALL,
        )
        depth = 0
        for match in pattern.finditer(self.source, start_tag.end):
            closing = match.group(1)
            if closing is None:
                continue
            if not closing:
                depth += 1
            elif depth:
                depth -= 1
            else:
                return start_tag.end, match.start()
        return None

    def _apply_splices(self) -> Optional[str]:
        pieces: List[str] = []
        cursor = 0
        for start, end, text in sorted(self._splices.values(), key=lambda item: item[:2]):
            if start < cursor:
                return None
            pieces.append(self.source[cursor:start])
            pieces.append(text)
            cursor = end
        pieces.append(self.source[cursor:])
        return "".join(pieces)


def _scan_start_tag(source: str, start: int) -> Optional[_RawStartTag]:
    match = _TAG_NAME.match(source, start)
    if match is None:
        return None
    position = insert_at = match.end()
    attributes: List[_RawAttribute] = []
    while position < len(source):
        char = source[position]
        if char == ">":
            return _RawStartTag(start, position + 1, insert_at, attributes)
        if char.isspace() or char == "/":
            position += 1
            continue
        found = _RAW_ATTRIBUTE.match(source, position)
        if found is None:
            return None
        attribute = _RawAttribute(name=found.group(1).lower(), name_end=found.end(1))
        value = found.group(2)
        if value is not None:
            attribute.value_start, attribute.value_end = found.span(2)
            if len(value) > 1 and value[0] in "'\"" and value[-1] == value[0]:
                attribute.quote = value[0]
        attributes.append(attribute)
        position = insert_at = found.end()
    return None


def _string_end(source: str, start: int, node: NavigableString) -> Optional[int]:
    if isinstance(node, Comment):
        if source.startswith("<!--", start):
            return _end_of(source, "-->", start + 4)
        if source.startswith(("<!", "<?", "</"), start):
            return _end_of(source, ">", start + 2)
        return None
    if isinstance(node, CData):
        return _end_of(source, "]]>", start) if source.startswith("<![", start) else None
    if isinstance(node, (Doctype, Declaration)):
        return _end_of(source, ">", start) if source.startswith("<!", start) else None
    if isinstance(node, ProcessingInstruction):
        return _end_of(source, ">", start) if source.startswith("<?", start) else None
    if isinstance(node, PreformattedString):
        return None

    parent = (node.parent.name or "").lower() if node.parent is not None else ""
    if parent in _RAW_TEXT_ELEMENTS:
        closing = re.compile(r"</%s" % re.escape(parent), re.IGNORECASE).search(source, start)
        return closing.start() if closing else len(source)
    if _MARKUP_START.match(source, start):
        return None
    following = _MARKUP_START.search(source, start)
    return following.start() if following else len(source)


def _end_of(source: str, marker: str, start: int) -> int:
    position = source.find(marker, start)
    return len(source) if position < 0 else position + len(marker)


def _same_text(node: NavigableString, raw: str) -> bool:
    if isinstance(node, PreformattedString):
        return True
    value = str(node)
    parent = node.parent
    if parent is not None and (parent.name or "").lower() in _RAW_TEXT_ELEMENTS:
        return True
    if not value.strip():
        # The parser collapses whitespace-only strings.
        return not raw.strip()
    return html_module.unescape(raw) == value


def _escape_text(text: str) -> str:
    return EntitySubstitution.substitute_xml(text)


def _quote_attribute(value: str, quote: str) -> str:
    escaped = EntitySubstitution.substitute_xml(value)
    if quote == '"':
        escaped = escaped.replace('"', "&quot;")
    elif quote == "'":
        escaped = escaped.replace("'", "&#39;")
    return quote + escaped + quote


def _absolute_css_url(match: "re.Match[str]", base_url: str) -> str:
    quote, url = match.group(1), match.group(2)
    if url.lower().startswith(("http://", "https://", "data:")):
        return match.group(0)
    return f"url({quote}{urljoin(base_url, url)}{quote})"
