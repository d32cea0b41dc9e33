"""
Document - the host page abstraction.

Everything the cleaning core knows about a page goes through this
interface: selector evaluation, node geometry, class and inline-style
edits, and batched mutation notifications. Backends adapt a live
Selenium page or an in-memory HTML snapshot to it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class Rect:
    """Rendered bounding box of a node, in CSS pixels."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        """True when the box has no rendered area at all."""
        return self.width <= 0 or self.height <= 0

    def union(self, other: "Rect") -> "Rect":
        if self.is_empty:
            return other
        if other.is_empty:
            return self
        left = min(self.x, other.x)
        top = min(self.y, other.y)
        right = max(self.x + self.width, other.x + other.width)
        bottom = max(self.y + self.height, other.y + other.height)
        return Rect(left, top, right - left, bottom - top)


@dataclass(frozen=True)
class Viewport:
    """Visible window size."""
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class MutationRecord:
    """One childList change delivered to subscribers."""
    type: str = "childList"
    target_tag: str = ""
    added: int = 0
    removed: int = 0


MutationCallback = Callable[[List[MutationRecord]], None]


class Subscription(ABC):
    """Handle returned by `Document.subscribe`."""

    @abstractmethod
    def disconnect(self) -> None:
        """Stop delivering mutation batches. Idempotent."""

    @property
    @abstractmethod
    def active(self) -> bool:
        pass


class Document(ABC):
    """
    Abstract host document.

    Node handles are backend specific (a `bs4.Tag`, a Selenium
    `WebElement`). Never compare them with ``==``; use `is_same`.
    """

    @property
    @abstractmethod
    def origin(self) -> str:
        """Hostname the rules for this page are keyed by."""

    @abstractmethod
    def viewport(self) -> Viewport:
        pass

    @abstractmethod
    def body(self) -> Optional[Any]:
        pass

    @abstractmethod
    def query_all(self, selector: str, scope: Optional[Any] = None) -> List[Any]:
        """
        Evaluate a CSS selector.

        Args:
            selector: CSS selector text
            scope: Optional node; only its descendants are searched

        Returns:
            Matching nodes in document order

        Raises:
            SelectorInvalid: if the selector cannot be parsed
        """

    @abstractmethod
    def is_element(self, node: Any) -> bool:
        pass

    @abstractmethod
    def is_same(self, a: Any, b: Any) -> bool:
        """Node identity."""

    @abstractmethod
    def tag_name(self, node: Any) -> str:
        """Lower-case tag name."""

    @abstractmethod
    def element_id(self, node: Any) -> str:
        """The ``id`` attribute, or an empty string."""

    @abstractmethod
    def class_list(self, node: Any) -> List[str]:
        pass

    @abstractmethod
    def parent(self, node: Any) -> Optional[Any]:
        """Parent element, or None at the document element."""

    @abstractmethod
    def children(self, node: Any) -> List[Any]:
        """Element children in document order."""

    @abstractmethod
    def rect(self, node: Any) -> Rect:
        pass

    @abstractmethod
    def has_class(self, node: Any, class_name: str) -> bool:
        pass

    @abstractmethod
    def add_class(self, node: Any, class_name: str) -> None:
        pass

    @abstractmethod
    def remove_class(self, node: Any, class_name: str) -> None:
        pass

    @abstractmethod
    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_attribute(self, node: Any, name: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_attribute(self, node: Any, name: str) -> None:
        pass

    @abstractmethod
    def get_style(self, node: Any, prop: str) -> Tuple[str, str]:
        """Inline style value and priority (``""`` or ``"important"``)."""

    @abstractmethod
    def set_style(self, node: Any, prop: str, value: str, priority: str = "") -> None:
        pass

    @abstractmethod
    def remove_style(self, node: Any, prop: str) -> None:
        pass

    @abstractmethod
    def computed_display(self, node: Any) -> str:
        pass

    @abstractmethod
    def subscribe(self, callback: MutationCallback) -> Subscription:
        """Deliver batches of node insertions/removals under the body."""

    # Derived helpers

    def ancestors(self, node: Any) -> Iterator[Any]:
        """Yield parent, grandparent, ... up to the document element."""
        current = self.parent(node)
        while current is not None:
            yield current
            current = self.parent(current)

    def contains_class(self, node: Any, class_name: str) -> bool:
        """True if any descendant of `node` carries `class_name`."""
        return bool(self.query_all("." + class_name, scope=node))

    def describe(self, node: Any) -> str:
        """Short human-readable label for logs."""
        if not self.is_element(node):
            return repr(node)
        label = self.tag_name(node)
        ident = self.element_id(node)
        if ident:
            label += f"#{ident}"
        classes = self.class_list(node)
        if classes:
            label += "." + ".".join(classes[:3])
        return label
