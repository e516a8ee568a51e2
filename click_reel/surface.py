"""In-memory model of the live visual surface that gets recorded.

The recorder never talks to a real display toolkit; it operates on this tree
of :class:`Node` objects, mutates it reversibly (exclusion, masking, marker
overlay) and hands it to a :class:`~click_reel.renderer.Renderer`.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from click_reel.models import Point, Size

ROOT_PATH = "ROOT"
OUT_OF_BOUNDS_PATH = "OUT_OF_BOUNDS"

NON_VISUAL_TAGS = frozenset({"script", "style", "noscript", "template"})
VOID_TAGS = frozenset({"img", "input", "br", "hr", "meta", "link"})


@dataclass(frozen=True)
class Rect:
    """Viewport-relative bounding box."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def offset_of(self, point: Point) -> Point:
        return Point(point.x - self.x, point.y - self.y)

    def contains(self, point: Point) -> bool:
        return (
            self.x <= point.x <= self.x + self.width
            and self.y <= point.y <= self.y + self.height
        )


class Node:
    """A single element of the surface tree."""

    def __init__(
        self,
        tag: str,
        *,
        attributes: Optional[Dict[str, str]] = None,
        style: Optional[Dict[str, str]] = None,
        text: str = "",
        value: Optional[str] = None,
        rect: Optional[Rect] = None,
        children: Optional[List["Node"]] = None,
    ) -> None:
        self.tag = tag.lower()
        self.attributes: Dict[str, str] = dict(attributes or {})
        self.style: Dict[str, str] = dict(style or {})
        self.text = text
        self.value = value
        self.rect = rect or Rect()
        self.parent: Optional[Node] = None
        self.children: List[Node] = []
        self.handlers: Dict[str, List[Callable[["Node", object], None]]] = {}
        for child in children or []:
            self.append_child(child)

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        return f"<Node {self.tag}{ident}>"

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.attributes.get("id", "")

    @property
    def classes(self) -> Tuple[str, ...]:
        return tuple(self.attributes.get("class", "").split())

    @property
    def position(self) -> str:
        return self.style.get("position", "static")

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.attributes[name] = value

    def remove_attribute(self, name: str) -> None:
        self.attributes.pop(name, None)

    def add_handler(self, event_type: str, handler: Callable[["Node", object], None]) -> None:
        self.handlers.setdefault(event_type, []).append(handler)

    # ------------------------------------------------------------------
    # Tree operations
    # ------------------------------------------------------------------

    def append_child(self, child: "Node") -> "Node":
        if child.parent is not None:
            child.parent.remove_child(child)
        child.parent = self
        self.children.append(child)
        return child

    def remove_child(self, child: "Node") -> None:
        self.children.remove(child)
        child.parent = None

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.remove_child(self)

    def iter(self) -> Iterator["Node"]:
        """Pre-order traversal including ``self``."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def descendants(self) -> Iterator["Node"]:
        iterator = self.iter()
        next(iterator)
        return iterator

    def ancestors(self) -> Iterator["Node"]:
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    def contains(self, other: "Node") -> bool:
        return other is self or any(ancestor is self for ancestor in other.ancestors())

    def closest(self, selector: str) -> Optional["Node"]:
        if self.matches(selector):
            return self
        for ancestor in self.ancestors():
            if ancestor.matches(selector):
                return ancestor
        return None

    def matches(self, selector: str) -> bool:
        return any(_matches_complex(self, part) for part in _split_selector_list(selector))

    def query_all(self, selector: str) -> List["Node"]:
        return [node for node in self.descendants() if node.matches(selector)]


# ----------------------------------------------------------------------
# Selector matching
# ----------------------------------------------------------------------

_COMPOUND_TOKEN = re.compile(
    r"""
    (?P<tag>^[a-zA-Z][a-zA-Z0-9-]*|^\*)
    |\#(?P<id>[\w-]+)
    |\.(?P<cls>[\w-]+)
    |\[\s*(?P<attr>[\w-]+)\s*(?:=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\]\s]+)))?\s*\]
    """,
    re.VERBOSE,
)


def _split_selector_list(selector: str) -> List[str]:
    return [part.strip() for part in selector.split(",") if part.strip()]


def _tokenize_complex(selector: str) -> List[Tuple[str, str]]:
    """Split ``"nav > a.link"`` into ``[(" ", "nav"), (">", "a.link")]``."""
    spaced = re.sub(r"\s*>\s*", " > ", selector.strip())
    parts: List[Tuple[str, str]] = []
    combinator = " "
    for token in spaced.split():
        if token == ">":
            combinator = ">"
            continue
        parts.append((combinator, token))
        combinator = " "
    return parts


def _matches_compound(node: Node, compound: str) -> bool:
    position = 0
    matched_any = False
    while position < len(compound):
        match = _COMPOUND_TOKEN.match(compound, position)
        if match is None or match.end() == position:
            return False
        matched_any = True
        if match.group("tag"):
            tag = match.group("tag").lower()
            if tag != "*" and node.tag != tag:
                return False
        elif match.group("id"):
            if node.id != match.group("id"):
                return False
        elif match.group("cls"):
            if match.group("cls") not in node.classes:
                return False
        elif match.group("attr"):
            name = match.group("attr")
            if not node.has_attribute(name):
                return False
            expected = next(
                (
                    group
                    for group in (match.group("dq"), match.group("sq"), match.group("bare"))
                    if group is not None
                ),
                None,
            )
            if expected is not None and node.get_attribute(name) != expected:
                return False
        position = match.end()
        compound_rest = compound[position:]
        if compound_rest and compound_rest[0] not in "#.[":
            return False
    return matched_any


def _matches_complex(node: Node, selector: str) -> bool:
    parts = _tokenize_complex(selector)
    if not parts:
        return False
    return _match_from(node, parts, len(parts) - 1)


def _match_from(node: Node, parts: List[Tuple[str, str]], index: int) -> bool:
    combinator, compound = parts[index]
    if not _matches_compound(node, compound):
        return False
    if index == 0:
        return True
    if combinator == ">":
        return node.parent is not None and _match_from(node.parent, parts, index - 1)
    return any(_match_from(ancestor, parts, index - 1) for ancestor in node.ancestors())


# ----------------------------------------------------------------------
# Paths and serialization
# ----------------------------------------------------------------------


def element_path(node: Node, root: Node) -> str:
    """Return a stable structural path identifying ``node`` under ``root``."""
    if node is root:
        return ROOT_PATH
    if not root.contains(node):
        return OUT_OF_BOUNDS_PATH

    test_id = node.get_attribute("data-testid")
    if test_id:
        return f'[data-testid="{test_id}"]'
    if node.id:
        return f"#{node.id}"

    segments: List[str] = []
    current: Optional[Node] = node
    while current is not None and current is not root:
        parent = current.parent
        if parent is None:
            break
        same_tag = [sibling for sibling in parent.children if sibling.tag == current.tag]
        if len(same_tag) > 1:
            index = next(i for i, sibling in enumerate(same_tag) if sibling is current) + 1
            segments.append(f"{current.tag}:nth-of-type({index})")
        else:
            segments.append(current.tag)
        current = parent

    return " > ".join([ROOT_PATH, *reversed(segments)])


def sanitized_html(node: Node) -> str:
    """Serialize ``node`` as HTML without scripts or inline event handlers."""
    if node.tag == "script":
        return ""

    attributes = []
    for name, value in node.attributes.items():
        if name.lower().startswith("on"):
            continue
        attributes.append(f' {name}="{html.escape(value, quote=True)}"')
    if node.style:
        style_text = "; ".join(f"{key}: {value}" for key, value in node.style.items())
        attributes.append(f' style="{html.escape(style_text, quote=True)}"')
    if node.value is not None and "value" not in node.attributes:
        attributes.append(f' value="{html.escape(node.value, quote=True)}"')

    opening = f"<{node.tag}{''.join(attributes)}>"
    if node.tag in VOID_TAGS:
        return opening

    inner = html.escape(node.text, quote=False) + "".join(
        sanitized_html(child) for child in node.children
    )
    return f"{opening}{inner}</{node.tag}>"


# ----------------------------------------------------------------------
# Surface
# ----------------------------------------------------------------------

Listener = Callable[[object], None]


class Surface:
    """The recorded surface: a node tree, its viewport, scroll state and events."""

    def __init__(
        self,
        root: Node,
        *,
        viewport: Size = Size(1280, 720),
        scroll: Point = Point(0, 0),
        url: Optional[str] = None,
        user_agent: str = "click-reel",
    ) -> None:
        self.root = root
        self.viewport = viewport
        self.scroll = scroll
        self.url = url
        self.user_agent = user_agent
        self._capture_listeners: Dict[str, List[Listener]] = {}
        self._bubble_listeners: Dict[str, List[Listener]] = {}

    def add_listener(self, event_type: str, listener: Listener, *, capture: bool = False) -> None:
        registry = self._capture_listeners if capture else self._bubble_listeners
        registry.setdefault(event_type, []).append(listener)

    def remove_listener(self, event_type: str, listener: Listener, *, capture: bool = False) -> None:
        registry = self._capture_listeners if capture else self._bubble_listeners
        listeners = registry.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch(self, event: object) -> None:
        """Deliver ``event`` through capture listeners, target handlers, then bubble listeners.

        ``event`` must expose ``type``, ``target`` and ``propagation_stopped``.
        """
        event_type = getattr(event, "type")
        for listener in list(self._capture_listeners.get(event_type, [])):
            listener(event)
            if getattr(event, "propagation_stopped", False):
                return

        target = getattr(event, "target", None) or self.root
        path = [target, *target.ancestors()]
        for node in path:
            for handler in list(node.handlers.get(event_type, [])):
                handler(node, event)
            if getattr(event, "propagation_stopped", False):
                return

        for listener in list(self._bubble_listeners.get(event_type, [])):
            listener(event)

    def node_at(self, point: Point) -> Node:
        """Deepest node whose rectangle contains the viewport ``point``."""
        hit = self.root
        for node in self.root.iter():
            if node.tag in NON_VISUAL_TAGS:
                continue
            if node.rect.width > 0 and node.rect.height > 0 and node.rect.contains(point):
                hit = node
        return hit

    def to_document(self, point: Point) -> Point:
        """Convert a viewport point into root (document) coordinates."""
        return Point(point.x + self.scroll.x, point.y + self.scroll.y)


__all__ = [
    "NON_VISUAL_TAGS",
    "Node",
    "OUT_OF_BOUNDS_PATH",
    "ROOT_PATH",
    "Rect",
    "Surface",
    "element_path",
    "sanitized_html",
]
