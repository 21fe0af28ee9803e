#!/usr/bin/env python3
"""
XML Tree Adapter

This module turns parsed XML documents into a uniform node model that the
matcher and classifier can walk without caring how the parser represented
the document.

Key Features:
- Parse XML text with lxml (no entity resolution, no network access)
- Strip namespace prefixes from tag and attribute names
- Represent every child occurrence as a list entry, single or repeated
- Adapt mapping-shaped parse results (attribute bag under "$" or "@" keys)
- Iterative depth-first traversal for arbitrarily deep trees
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from lxml import etree


# Reserved keys used by mapping-shaped parsers
ATTRIBUTE_BAG_KEY = "$"
ATTRIBUTE_PREFIX = "@"
TEXT_KEYS = ("#text", "_")


class MalformedDocument(ValueError):
    """Raised when a document cannot be parsed or has no identifiable root."""
    pass


@dataclass(frozen=True)
class XmlNode:
    """
    One XML element with normalized names.

    Attributes:
        tag: Element name with any namespace prefix removed
        attributes: Attribute name to value, in document order
        children: Child nodes grouped by tag, each group in document order
        text: Stripped text content, or None when the element has none
    """
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    children: Dict[str, List["XmlNode"]] = field(default_factory=dict)
    text: Optional[str] = None

    def iter_children(self) -> Iterator["XmlNode"]:
        """Yield direct children, group by group."""
        for group in self.children.values():
            yield from group

    def is_empty(self) -> bool:
        return not self.children and not self.attributes and self.text is None


def normalize_tag(name: str) -> str:
    """
    Strip a namespace from a tag or attribute name.

    Handles both the Clark notation lxml produces ("{uri}Tag") and raw
    prefixes ("ns:Tag"). Applying it twice gives the same result.

    Example:
        >>> normalize_tag("ns:City")
        'City'
        >>> normalize_tag("{http://example.com/ns}City")
        'City'
    """
    if name.startswith("{"):
        name = name.rpartition("}")[2]
    return name.rpartition(":")[2]


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _from_element(element: Any) -> XmlNode:
    """Build an XmlNode from an lxml element without recursion."""
    root_children: Dict[str, List[XmlNode]] = {}
    root = XmlNode(tag=normalize_tag(element.tag), attributes=_attributes(element),
                   children=root_children, text=_clean_text(element.text))

    stack: List[Tuple[Any, Dict[str, List[XmlNode]]]] = [(element, root_children)]
    while stack:
        current, groups = stack.pop()
        for child in current:
            # Comments and processing instructions have non-string tags
            if not isinstance(child.tag, str):
                continue
            child_groups: Dict[str, List[XmlNode]] = {}
            node = XmlNode(tag=normalize_tag(child.tag), attributes=_attributes(child),
                           children=child_groups, text=_clean_text(child.text))
            groups.setdefault(node.tag, []).append(node)
            stack.append((child, child_groups))

    return root


def _attributes(element: Any) -> Dict[str, str]:
    return {normalize_tag(name): value for name, value in element.attrib.items()}


def _from_mapping(tag: str, value: Any) -> XmlNode:
    """
    Build an XmlNode from one entry of a mapping-shaped parse result.

    Args:
        tag: Raw tag name for this entry
        value: Mapping, string, None, or list of those

    Returns:
        XmlNode for the entry
    """
    root_node, pending = _mapping_node(tag, value)
    stack = list(pending)

    while stack:
        groups, child_tag, child_value = stack.pop()
        items = child_value if isinstance(child_value, list) else [child_value]
        group = groups.setdefault(normalize_tag(child_tag), [])
        for item in items:
            node, more = _mapping_node(child_tag, item)
            group.append(node)
            stack.extend(more)

    return root_node


def _mapping_node(tag: str, value: Any):
    """Create a node shell and return the child entries still to expand."""
    attrs: Dict[str, str] = {}
    children: Dict[str, List[XmlNode]] = {}
    text: Optional[str] = None
    pending = []

    if isinstance(value, Mapping):
        for key, item in value.items():
            if key == ATTRIBUTE_BAG_KEY and isinstance(item, Mapping):
                for name, attr_value in item.items():
                    attrs[normalize_tag(name)] = str(attr_value)
            elif key.startswith(ATTRIBUTE_PREFIX):
                attrs[normalize_tag(key[1:])] = str(item)
            elif key in TEXT_KEYS:
                text = _clean_text(str(item))
            else:
                # Reserve the group now so sibling order follows the mapping
                children.setdefault(normalize_tag(key), [])
                pending.append((children, key, item))
        # Expand in reverse so the stack pops them in mapping order
        pending.reverse()
    elif value is not None:
        text = _clean_text(str(value))

    return XmlNode(tag=normalize_tag(tag), attributes=attrs, children=children, text=text), pending


def adapt(parsed: Any) -> XmlNode:
    """
    Turn a parsed XML document into an XmlNode tree.

    Accepts an lxml element or element tree, or a mapping with exactly one
    root entry such as {"Flights": {"$": {...}, "GetSectors": ""}}.

    Args:
        parsed: Parser output

    Returns:
        Root XmlNode

    Raises:
        MalformedDocument: If no root element can be identified
    """
    if parsed is None:
        raise MalformedDocument("Document is empty")

    if isinstance(parsed, etree._ElementTree):
        parsed = parsed.getroot()
        if parsed is None:
            raise MalformedDocument("Document has no root element")

    if etree.iselement(parsed):
        if not isinstance(parsed.tag, str):
            raise MalformedDocument("Document root is not an element")
        return _from_element(parsed)

    if isinstance(parsed, Mapping):
        if len(parsed) != 1:
            raise MalformedDocument(
                f"Expected exactly one root element, found {len(parsed)}"
            )
        root_tag, root_value = next(iter(parsed.items()))
        if isinstance(root_value, list):
            raise MalformedDocument(f"Root element '{root_tag}' is repeated")
        return _from_mapping(root_tag, root_value)

    raise MalformedDocument(f"Unsupported document type: {type(parsed).__name__}")


def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
        huge_tree=True,
    )


def parse_xml(text: str) -> XmlNode:
    """
    Parse XML text and adapt it to an XmlNode tree.

    Args:
        text: Decoded document text

    Returns:
        Root XmlNode

    Raises:
        MalformedDocument: If the text is empty or not well-formed XML
    """
    if not text or not text.strip():
        raise MalformedDocument("Document is empty")

    try:
        # Encode so documents with an encoding declaration are accepted
        root = etree.fromstring(text.encode("utf-8"), parser=_make_parser())
    except etree.XMLSyntaxError as e:
        raise MalformedDocument(f"XML syntax error: {e}") from e

    return adapt(root)


def iter_nodes(node: XmlNode, include_root: bool = True) -> Iterator[XmlNode]:
    """
    Walk a tree depth-first in pre-order.

    Uses an explicit stack, so depth is limited only by input size.

    Args:
        node: Root of the tree
        include_root: Whether to yield the root itself

    Yields:
        Each node once
    """
    if include_root:
        stack = [node]
    else:
        stack = list(node.iter_children())
        stack.reverse()

    while stack:
        current = stack.pop()
        yield current
        children = list(current.iter_children())
        children.reverse()
        stack.extend(children)
