"""
SoupDocument - In-memory page snapshot.

Backs the `Document` interface with a BeautifulSoup tree. Selectors are
evaluated by soupsieve; geometry comes from an explicit layout map since
there is no rendering engine. Used for offline rule audits and tests.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse
import logging

import soupsieve as sv
from bs4 import BeautifulSoup, Tag

from webcleaner.core.errors import SelectorInvalid
from webcleaner.layers.sense.document import (
    Document,
    MutationCallback,
    MutationRecord,
    Rect,
    Subscription,
    Viewport,
)

logger = logging.getLogger(__name__)


INLINE_TAGS = frozenset([
    "a", "abbr", "b", "cite", "code", "em", "i", "img", "label", "mark",
    "q", "small", "span", "strong", "sub", "sup", "time", "u", "iframe",
    "video", "canvas",
])
INLINE_BLOCK_TAGS = frozenset(["button", "input", "select", "textarea"])
NON_RENDERED_TAGS = frozenset(["head", "script", "style", "template", "meta", "link", "title"])


def parse_style(text: Optional[str]) -> Dict[str, Tuple[str, str]]:
    """Parse an inline ``style`` attribute into {property: (value, priority)}."""
    declarations: Dict[str, Tuple[str, str]] = {}
    if not text:
        return declarations
    for chunk in text.split(";"):
        if ":" not in chunk:
            continue
        name, _, value = chunk.partition(":")
        name = name.strip().lower()
        value = value.strip()
        if not name:
            continue
        priority = ""
        if value.lower().endswith("!important"):
            value = value[: -len("!important")].strip()
            priority = "important"
        declarations[name] = (value, priority)
    return declarations


def serialize_style(declarations: Mapping[str, Tuple[str, str]]) -> str:
    parts = []
    for name, (value, priority) in declarations.items():
        if priority:
            parts.append(f"{name}: {value} !{priority};")
        else:
            parts.append(f"{name}: {value};")
    return " ".join(parts)


class _SoupSubscription(Subscription):
    def __init__(self, document: "SoupDocument", callback: MutationCallback):
        self._document = document
        self.callback = callback
        self._active = True

    def disconnect(self) -> None:
        if self._active:
            self._active = False
            self._document._subscriptions.remove(self)

    @property
    def active(self) -> bool:
        return self._active


class SoupDocument(Document):
    """
    Document backed by a BeautifulSoup tree.

    Example:
        >>> doc = SoupDocument(
        ...     "<html><body><div id='ad'>Buy</div></body></html>",
        ...     layout={"#ad": Rect(0, 0, 300, 250)},
        ... )
        >>> doc.query_all("#ad")
        [<div id="ad">Buy</div>]

    Layout:
        `layout` maps CSS selectors to rects, applied to every match. A node
        without an explicit rect takes the union of its children's rects, so
        leaves without a rect are treated as not rendered. Inline
        ``display: none`` always yields an empty rect.
    """

    def __init__(
        self,
        markup: str,
        url: str = "https://example.com/",
        viewport: Viewport = Viewport(1280, 800),
        layout: Optional[Mapping[str, Rect]] = None,
    ):
        self.url = url
        self._viewport = viewport
        self.soup = BeautifulSoup(markup, "html.parser")
        if self.soup.find("body") is None:
            self.soup = BeautifulSoup(f"<html><body>{markup}</body></html>", "html.parser")
        self._rects: Dict[int, Tuple[Tag, Rect]] = {}
        self._subscriptions: List[_SoupSubscription] = []
        if layout:
            self.set_layout(layout)

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "SoupDocument":
        with open(path, "r", encoding="utf-8") as handle:
            return cls(handle.read(), **kwargs)

    # Layout

    def set_layout(self, layout: Mapping[str, Rect]) -> None:
        for selector, rect in layout.items():
            matches = self.query_all(selector)
            if not matches:
                logger.warning(f"[SoupDocument] Layout selector matched nothing: {selector}")
            for node in matches:
                self.set_rect(node, rect)

    def set_rect(self, node: Tag, rect: Rect) -> None:
        self._rects[id(node)] = (node, rect)

    # Document interface

    @property
    def origin(self) -> str:
        return urlparse(self.url).hostname or ""

    def viewport(self) -> Viewport:
        return self._viewport

    def body(self) -> Optional[Tag]:
        return self.soup.find("body")

    def query_all(self, selector: str, scope: Optional[Tag] = None) -> List[Tag]:
        container = self.soup if scope is None else scope
        try:
            return list(container.select(selector))
        except (sv.SelectorSyntaxError, ValueError, NotImplementedError) as e:
            raise SelectorInvalid(selector, str(e).splitlines()[0] if str(e) else type(e).__name__)

    def is_element(self, node: Any) -> bool:
        return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)

    def is_same(self, a: Any, b: Any) -> bool:
        return a is b

    def tag_name(self, node: Tag) -> str:
        return node.name.lower()

    def element_id(self, node: Tag) -> str:
        value = node.get("id")
        return value if isinstance(value, str) else ""

    def class_list(self, node: Tag) -> List[str]:
        value = node.get("class")
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return [c for c in value if c]

    def parent(self, node: Tag) -> Optional[Tag]:
        parent = node.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return parent

    def children(self, node: Tag) -> List[Tag]:
        return [child for child in node.children if isinstance(child, Tag)]

    def rect(self, node: Tag) -> Rect:
        if self.tag_name(node) in NON_RENDERED_TAGS:
            return Rect()
        if parse_style(node.get("style")).get("display", ("", ""))[0] == "none":
            return Rect()
        entry = self._rects.get(id(node))
        if entry is not None and entry[0] is node:
            return entry[1]
        box = Rect()
        for child in self.children(node):
            box = box.union(self.rect(child))
        return box

    def has_class(self, node: Tag, class_name: str) -> bool:
        return class_name in self.class_list(node)

    def add_class(self, node: Tag, class_name: str) -> None:
        classes = self.class_list(node)
        if class_name not in classes:
            node["class"] = classes + [class_name]

    def remove_class(self, node: Tag, class_name: str) -> None:
        classes = [c for c in self.class_list(node) if c != class_name]
        if classes:
            node["class"] = classes
        elif node.has_attr("class"):
            del node["class"]

    def get_attribute(self, node: Tag, name: str) -> Optional[str]:
        value = node.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def set_attribute(self, node: Tag, name: str, value: str) -> None:
        node[name] = value

    def remove_attribute(self, node: Tag, name: str) -> None:
        if node.has_attr(name):
            del node[name]

    def get_style(self, node: Tag, prop: str) -> Tuple[str, str]:
        return parse_style(node.get("style")).get(prop.lower(), ("", ""))

    def set_style(self, node: Tag, prop: str, value: str, priority: str = "") -> None:
        declarations = parse_style(node.get("style"))
        declarations[prop.lower()] = (value, priority)
        node["style"] = serialize_style(declarations)

    def remove_style(self, node: Tag, prop: str) -> None:
        declarations = parse_style(node.get("style"))
        if declarations.pop(prop.lower(), None) is None:
            return
        if declarations:
            node["style"] = serialize_style(declarations)
        else:
            del node["style"]

    def computed_display(self, node: Tag) -> str:
        inline = self.get_style(node, "display")[0]
        if inline:
            return inline
        tag = self.tag_name(node)
        if tag in NON_RENDERED_TAGS:
            return "none"
        if tag in INLINE_BLOCK_TAGS:
            return "inline-block"
        if tag in INLINE_TAGS:
            return "inline"
        return "block"

    def subscribe(self, callback: MutationCallback) -> Subscription:
        subscription = _SoupSubscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    # Page-side mutations (what a page script would do)

    def insert_html(
        self,
        parent: Tag,
        markup: str,
        layout: Optional[Mapping[str, Rect]] = None,
        index: Optional[int] = None,
    ) -> List[Tag]:
        """Parse `markup` and insert its top-level elements under `parent`."""
        fragment = BeautifulSoup(markup, "html.parser")
        inserted = [node for node in list(fragment.contents) if isinstance(node, Tag)]
        position = len(parent.contents) if index is None else index
        for offset, node in enumerate(inserted):
            parent.insert(position + offset, node.extract())
        if layout:
            self.set_layout(layout)
        self._notify([MutationRecord(target_tag=self.tag_name(parent), added=len(inserted))])
        return inserted

    def remove(self, node: Tag) -> None:
        parent = self.parent(node)
        node.extract()
        self._rects.pop(id(node), None)
        self._notify([MutationRecord(target_tag=self.tag_name(parent) if parent else "", removed=1)])

    def replace_html(
        self, node: Tag, markup: str, layout: Optional[Mapping[str, Rect]] = None
    ) -> List[Tag]:
        """Swap `node` for freshly parsed markup, as client-side re-renders do."""
        parent = self.parent(node)
        if parent is None:
            raise ValueError("Cannot replace the document element")
        # bs4 compares tags structurally, so locate by identity
        index = next(i for i, child in enumerate(parent.contents) if child is node)
        node.extract()
        self._rects.pop(id(node), None)
        fragment = BeautifulSoup(markup, "html.parser")
        inserted = [n for n in list(fragment.contents) if isinstance(n, Tag)]
        for offset, new_node in enumerate(inserted):
            parent.insert(index + offset, new_node.extract())
        if layout:
            self.set_layout(layout)
        self._notify([MutationRecord(
            target_tag=self.tag_name(parent), added=len(inserted), removed=1,
        )])
        return inserted

    def _notify(self, records: List[MutationRecord]) -> None:
        for subscription in list(self._subscriptions):
            subscription.callback(records)

    def to_html(self) -> str:
        return str(self.soup)
