"""
Tolerant Atom feed parsing for the Service Bus management API.

The management API answers with Atom feeds whose entries carry a nested
``<content type="application/xml">`` payload (``QueueDescription`` and
friends). Responses are not always well-formed from a strict parser's
point of view: count fields arrive under foreign prefixes
(``d2p1:ActiveMessageCount``), sometimes without a namespace declaration,
payloads are occasionally entity-escaped text, and the ``next`` link mixes
attribute and element encodings.

Parsing is done in two stages:

1. Structural parse with ElementTree. Leaf fields are keyed by local name
   so prefixes do not matter; escaped payloads get a second parse.
2. Span extraction over the raw text, used for the whole document when the
   structural parse fails, or per entry (correlated by ``<title>``) when the
   structural parse yields an empty payload.

The rest of the client only sees ``AtomEntry``/``AtomFeed`` and never
branches on which stage produced them.
"""

import html
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constants import XML_SCHEMA_INSTANCE_NAMESPACE

logger = logging.getLogger(__name__)

# Containers whose leaves must not leak into entity fields
_SKIPPED_CONTAINERS = {"AuthorizationRules", "DefaultRuleDescription"}

_NIL_ATTRIBUTE = f"{{{XML_SCHEMA_INSTANCE_NAMESPACE}}}nil"

_ENTRY_SPAN_RE = re.compile(r'<(?:[\w.-]+:)?entry\b[^>]*>(.*?)</(?:[\w.-]+:)?entry\s*>', re.DOTALL)
_TITLE_RE = re.compile(r'<(?:[\w.-]+:)?title\b[^>]*>(.*?)</(?:[\w.-]+:)?title\s*>', re.DOTALL)
_CONTENT_RE = re.compile(r'<(?:[\w.-]+:)?content\b[^>]*>(.*?)</(?:[\w.-]+:)?content\s*>', re.DOTALL)
_LEAF_RE = re.compile(
    r'<(?:[\w.-]+:)?([\w.-]+)((?:\s[^<>]*?)?)(?<!/)>([^<]*)</(?:[\w.-]+:)?\1\s*>'
)
_CONTAINER_SPAN_RE = re.compile(
    r'<(?:[\w.-]+:)?(' + '|'.join(sorted(_SKIPPED_CONTAINERS)) + r')\b[^>]*>.*?</(?:[\w.-]+:)?\1\s*>',
    re.DOTALL,
)
_LINK_TAG_RE = re.compile(r'<(?:[\w.-]+:)?link\b[^>]*>', re.IGNORECASE)
_REL_NEXT_RE = re.compile(r'\brel\s*=\s*["\']next["\']', re.IGNORECASE)
_HREF_RE = re.compile(r'\bhref\s*=\s*["\']([^"\']+)["\']', re.IGNORECASE)
_NIL_RE = re.compile(r'\bnil\s*=\s*["\']true["\']', re.IGNORECASE)


@dataclass
class AtomEntry:
    """One ``<entry>``: its title and the flattened leaf fields of its content."""

    title: str
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class AtomFeed:
    """One page of a management listing."""

    entries: List[AtomEntry] = field(default_factory=list)
    next_link: Optional[str] = None


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1].split(':')[-1]


# ========== Structural stage ==========

def _flatten_element(element: ET.Element, fields: Dict[str, str]) -> None:
    for child in element:
        name = _local_name(child.tag)
        if name in _SKIPPED_CONTAINERS:
            continue
        if len(child):
            _flatten_element(child, fields)
            continue
        if child.get(_NIL_ATTRIBUTE, "").lower() == "true":
            continue
        # First occurrence wins for duplicated names
        fields.setdefault(name, (child.text or "").strip())


def _structural_content_fields(content: Optional[ET.Element]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    if content is None:
        return fields

    if len(content):
        _flatten_element(content, fields)
        return fields

    # Payload delivered as escaped text: parse it a second time
    text = (content.text or "").strip()
    if text.startswith('<'):
        try:
            inner = ET.fromstring(text)
        except ET.ParseError:
            return _span_leaf_fields(text)
        holder = ET.Element("content")
        holder.append(inner)
        _flatten_element(holder, fields)
    return fields


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _structural_entries(root: ET.Element) -> List[AtomEntry]:
    if _local_name(root.tag) == "entry":
        entry_elements = [root]
    else:
        entry_elements = [child for child in root if _local_name(child.tag) == "entry"]

    entries = []
    for element in entry_elements:
        title_element = _child(element, "title")
        title = (title_element.text or "").strip() if title_element is not None else ""
        entries.append(AtomEntry(
            title=title,
            fields=_structural_content_fields(_child(element, "content")),
        ))
    return entries


def _structural_next_link(root: ET.Element) -> Optional[str]:
    for child in root:
        if _local_name(child.tag) != "link":
            continue
        rel = child.get("rel")
        href = child.get("href")
        if rel is None:
            # Element-style encoding: <link><rel>next</rel><href>...</href></link>
            rel_element = _child(child, "rel")
            href_element = _child(child, "href")
            rel = rel_element.text if rel_element is not None else None
            href = href_element.text if href_element is not None else None
        if (rel or "").strip().lower() == "next" and href:
            return href.strip()
    return None


# ========== Span-extraction stage ==========

def _span_leaf_fields(content_xml: str) -> Dict[str, str]:
    if "&lt;" in content_xml and '<' not in content_xml.strip()[:1]:
        content_xml = html.unescape(content_xml)
    content_xml = _CONTAINER_SPAN_RE.sub("", content_xml)

    fields: Dict[str, str] = {}
    for match in _LEAF_RE.finditer(content_xml):
        name, attributes, text = match.group(1), match.group(2), match.group(3)
        if name in ("entry", "content", "title"):
            continue
        if attributes and _NIL_RE.search(attributes):
            continue
        fields.setdefault(name, html.unescape(text).strip())
    return fields


def _span_entries(xml_text: str) -> List[AtomEntry]:
    entries = []
    for span in _ENTRY_SPAN_RE.finditer(xml_text):
        body = span.group(1)
        title_match = _TITLE_RE.search(body)
        content_match = _CONTENT_RE.search(body)
        entries.append(AtomEntry(
            title=html.unescape(title_match.group(1)).strip() if title_match else "",
            fields=_span_leaf_fields(content_match.group(1)) if content_match else {},
        ))
    return entries


def _span_next_link(xml_text: str) -> Optional[str]:
    for tag in _LINK_TAG_RE.finditer(xml_text):
        text = tag.group(0)
        if not _REL_NEXT_RE.search(text):
            continue
        href = _HREF_RE.search(text)
        if href:
            return href.group(1).replace("&amp;", "&")
    return None


# ========== Public API ==========

def _parse_root(xml_text: str) -> Optional[ET.Element]:
    try:
        return ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.debug(f"Structural XML parse failed, using span extraction: {e}")
        return None


def extract_entries(xml_text: str) -> List[AtomEntry]:
    """
    Extract every entry's title and content fields from a feed or a single entry.

    Args:
        xml_text: Raw response body

    Returns:
        List of AtomEntry in document order
    """
    root = _parse_root(xml_text)
    if root is None:
        return _span_entries(xml_text)

    entries = _structural_entries(root)

    if any(not entry.fields for entry in entries):
        spans = {entry.title: entry.fields for entry in _span_entries(xml_text)}
        for entry in entries:
            if not entry.fields and spans.get(entry.title):
                logger.debug(f"Recovered content for entry '{entry.title}' by span extraction")
                entry.fields = spans[entry.title]

    return entries


def extract_next_link(xml_text: str) -> Optional[str]:
    """
    Find the feed's ``rel="next"`` link.

    Tries the parsed document first, then pattern-matches the raw text
    (attributes in either order, ``&amp;`` decoded).
    """
    root = _parse_root(xml_text)
    if root is not None:
        link = _structural_next_link(root)
        if link:
            return link
    return _span_next_link(xml_text)


def parse_feed(xml_text: str) -> AtomFeed:
    """Parse one listing page."""
    return AtomFeed(
        entries=extract_entries(xml_text),
        next_link=extract_next_link(xml_text),
    )


def parse_entry(xml_text: str) -> Optional[AtomEntry]:
    """
    Parse a single-entity response.

    Returns:
        The entry, or None if the body holds no entry (Azure answers an
        empty feed for some missing entities)
    """
    entries = extract_entries(xml_text)
    return entries[0] if entries else None
