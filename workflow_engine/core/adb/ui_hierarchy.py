"""
UI Hierarchy - uiautomator dump parsing and element lookup

Parses the XML produced by `uiautomator dump` into a UINode tree and resolves
element selectors against it. Selector types:
    text, id, contentDesc/desc, className/class, contains, xpath, bounds, advanced
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")


@dataclass
class UINode:
    """Single node of the on-screen view hierarchy"""

    text: str = ""
    resource_id: str = ""
    class_name: str = ""
    package: str = ""
    content_desc: str = ""
    bounds: str = ""
    clickable: str = ""
    enabled: str = ""
    focusable: str = ""
    focused: str = ""
    scrollable: str = ""
    checkable: str = ""
    checked: str = ""
    long_clickable: str = ""
    selected: str = ""
    children: List["UINode"] = field(default_factory=list)

    def iter(self) -> Iterator["UINode"]:
        """Depth-first, document-order traversal including self"""
        yield self
        for child in self.children:
            yield from child.iter()

    def center(self) -> Optional[Tuple[int, int]]:
        rect = parse_bounds(self.bounds)
        if rect is None:
            return None
        x1, y1, x2, y2 = rect
        return x1 + (x2 - x1) // 2, y1 + (y2 - y1) // 2

    def get_attribute(self, name: str) -> str:
        """Attribute lookup by XML or camelCase name (case-insensitive)"""
        attr = _ATTRIBUTE_ALIASES.get(name.strip().lower())
        if attr is None:
            return ""
        return getattr(self, attr)

    def to_dict(self) -> Dict:
        return {
            "text": self.text,
            "resource_id": self.resource_id,
            "class": self.class_name,
            "content_desc": self.content_desc,
            "bounds": self.bounds,
            "clickable": self.clickable == "true",
        }


_ATTRIBUTE_ALIASES = {
    "text": "text",
    "resource-id": "resource_id",
    "resourceid": "resource_id",
    "id": "resource_id",
    "class": "class_name",
    "classname": "class_name",
    "package": "package",
    "content-desc": "content_desc",
    "contentdesc": "content_desc",
    "description": "content_desc",
    "desc": "content_desc",
    "bounds": "bounds",
    "clickable": "clickable",
    "enabled": "enabled",
    "focusable": "focusable",
    "focused": "focused",
    "scrollable": "scrollable",
    "checkable": "checkable",
    "checked": "checked",
    "long-clickable": "long_clickable",
    "longclickable": "long_clickable",
    "selected": "selected",
}


def parse_bounds(bounds_str: str) -> Optional[Tuple[int, int, int, int]]:
    """
    Parse UI element bounds string.

    Args:
        bounds_str: Format "[x1,y1][x2,y2]"

    Returns:
        (x1, y1, x2, y2) or None if invalid
    """
    if not bounds_str:
        return None
    match = _BOUNDS_RE.search(bounds_str)
    if not match:
        return None
    return tuple(int(v) for v in match.groups())


def _node_from_element(element: ET.Element) -> UINode:
    node = UINode(
        text=element.get("text", ""),
        resource_id=element.get("resource-id", ""),
        class_name=element.get("class", ""),
        package=element.get("package", ""),
        content_desc=element.get("content-desc", ""),
        bounds=element.get("bounds", ""),
        clickable=element.get("clickable", ""),
        enabled=element.get("enabled", ""),
        focusable=element.get("focusable", ""),
        focused=element.get("focused", ""),
        scrollable=element.get("scrollable", ""),
        checkable=element.get("checkable", ""),
        checked=element.get("checked", ""),
        long_clickable=element.get("long-clickable", ""),
        selected=element.get("selected", ""),
    )
    node.children = [_node_from_element(child) for child in element.findall("node")]
    return node


def parse_hierarchy(xml_str: str) -> UINode:
    """
    Parse uiautomator output into a UINode tree.

    The returned root is a synthetic "hierarchy" node whose children are the
    top-level window nodes. Leading/trailing shell noise is stripped.

    Raises:
        ValueError: If no XML document can be found
    """
    xml_start = xml_str.find("<?xml")
    if xml_start == -1:
        xml_start = xml_str.find("<hierarchy")
    if xml_start == -1:
        raise ValueError("No XML data in uiautomator output")

    xml_str = xml_str[xml_start:]
    xml_end = xml_str.find("</hierarchy>")
    if xml_end > 0:
        xml_str = xml_str[: xml_end + len("</hierarchy>")]

    try:
        root = ET.fromstring(xml_str)
    except ET.ParseError as e:
        raise ValueError(f"Invalid UI hierarchy XML: {e}") from e

    hierarchy = UINode(class_name="hierarchy")
    hierarchy.children = [_node_from_element(child) for child in root.findall("node")]
    return hierarchy


# =============================================================================
# Selector lookup
# =============================================================================


def _iter_nodes(root: UINode) -> Iterator[UINode]:
    # The synthetic hierarchy root never matches a selector
    for node in root.iter():
        if node is root and root.class_name == "hierarchy":
            continue
        yield node


def _collect(root: UINode, predicate: Callable[[UINode], bool]) -> List[UINode]:
    return [node for node in _iter_nodes(root) if predicate(node)]


def _id_matches(node: UINode, value: str) -> bool:
    return node.resource_id == value or node.resource_id.endswith(":id/" + value)


def find_all_elements(root: Optional[UINode], selector_type: str, value: str) -> List[UINode]:
    """Return every node matching the selector, in document order"""
    if root is None:
        return []

    if selector_type == "text":
        return _collect(root, lambda n: n.text == value or n.content_desc == value)
    if selector_type == "id":
        return _collect(root, lambda n: _id_matches(n, value))
    if selector_type in ("contentDesc", "desc", "description"):
        return _collect(root, lambda n: n.content_desc == value)
    if selector_type in ("className", "class"):
        return _collect(root, lambda n: n.class_name == value)
    if selector_type == "contains":
        return _collect(root, lambda n: value in n.text or value in n.content_desc)
    if selector_type == "xpath":
        return search_xpath(root, value)
    if selector_type == "advanced":
        return _collect(root, lambda n: match_advanced_query(n, value))
    if selector_type == "bounds":
        return [UINode(bounds=value)]

    logger.debug(f"[UIHierarchy] Unsupported selector type: {selector_type}")
    return []


def find_element(
    root: Optional[UINode], selector_type: str, value: str, index: int = 0
) -> Optional[UINode]:
    """Return the index-th node matching the selector, or None"""
    matches = find_all_elements(root, selector_type, value)
    if 0 <= index < len(matches):
        return matches[index]
    return None


# =============================================================================
# XPath subset: //Class[@attr='v' and contains(@attr, 'v') and @attr]
# =============================================================================

_CONTAINS_RE = re.compile(r"""contains\(@([\w-]+),\s*['"]([^'"]*)['"]\)""")
_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)


def _parse_xpath(xpath: str) -> Optional[Tuple[str, List[Tuple[str, str, str]]]]:
    xpath = xpath.strip()
    if not xpath.startswith("//"):
        return None

    query = xpath[2:]
    conditions = []
    bracket = query.find("[")
    if bracket == -1:
        return query, conditions

    class_name = query[:bracket]
    predicate = query[bracket + 1 :].rstrip("]")
    for part in _AND_RE.split(predicate):
        part = part.strip()
        if part.startswith("contains("):
            match = _CONTAINS_RE.match(part)
            if match:
                conditions.append((match.group(1), "contains", match.group(2)))
        elif part.startswith("@"):
            part = part[1:]
            if "=" in part:
                attr, value = part.split("=", 1)
                conditions.append((attr.strip(), "=", value.strip().strip("'\"")))
            else:
                conditions.append((part.strip(), "exists", ""))
    return class_name, conditions


def search_xpath(root: UINode, xpath: str) -> List[UINode]:
    """Evaluate the supported XPath subset against the tree"""
    parsed = _parse_xpath(xpath)
    if parsed is None:
        logger.debug(f"[UIHierarchy] Unsupported xpath: {xpath}")
        return []
    class_name, conditions = parsed

    def matches(node: UINode) -> bool:
        if class_name not in ("", "node", "*"):
            short_name = node.class_name.rsplit(".", 1)[-1]
            if class_name not in (node.class_name, short_name):
                return False
        for attr, op, value in conditions:
            actual = node.get_attribute(attr)
            if op == "=" and actual != value:
                return False
            if op == "contains" and value.lower() not in actual.lower():
                return False
            if op == "exists" and not actual:
                return False
        return True

    return _collect(root, matches)


# =============================================================================
# Advanced query: "attr:v", "attr~v", "attr=v", "attr^v", "attr$v", AND / OR
# =============================================================================

_ADVANCED_OPERATORS = ("~", "^", "$", "=", ":")


def _split_keyword(query: str, keyword: str) -> List[str]:
    return [p.strip() for p in re.split(rf"\s+{keyword}\s+", query, flags=re.IGNORECASE)]


def match_advanced_query(node: UINode, query: str) -> bool:
    query = query.strip()
    if not query:
        return False

    or_parts = _split_keyword(query, "OR")
    if len(or_parts) > 1:
        return any(match_advanced_query(node, part) for part in or_parts)

    and_parts = _split_keyword(query, "AND")
    if len(and_parts) > 1:
        return all(match_advanced_query(node, part) for part in and_parts)

    return _evaluate_condition(node, query)


def _evaluate_condition(node: UINode, condition: str) -> bool:
    for operator in _ADVANCED_OPERATORS:
        idx = condition.find(operator)
        if idx > 0:
            attr = condition[:idx].strip()
            expected = condition[idx + 1 :].strip().lower()
            actual = node.get_attribute(attr).lower()
            if operator == "=":
                return actual == expected
            if operator == "^":
                return actual.startswith(expected)
            if operator == "$":
                return actual.endswith(expected)
            return expected in actual

    # No operator: free-text search
    needle = condition.lower()
    return (
        needle in node.text.lower()
        or needle in node.content_desc.lower()
        or needle in node.resource_id.lower()
    )
