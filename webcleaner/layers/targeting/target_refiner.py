"""
Target Refiner - Smart element detection under the pointer.

Pointer events land on the innermost node under the cursor, which is
often a padding wrapper or, at the other extreme, a page-sized shell.
The refiner walks toward the element the user most likely means.
"""

from typing import Any, Iterable, List, Optional, TYPE_CHECKING
import logging
import re

from webcleaner.core.config import CleanerConfig
from webcleaner.core.errors import RefinementRejected

if TYPE_CHECKING:
    from webcleaner.layers.sense.document import Document, Rect, Viewport

logger = logging.getLogger(__name__)


GENERIC_TAGS = frozenset(["div", "section", "article", "aside", "header", "footer", "nav"])

# Wrapper-ish class names that signal an intentional component
MEANINGFUL_CLASS_PATTERN = re.compile(
    r"container|wrapper|content|box|card|panel|widget|component", re.IGNORECASE
)

# Content-bearing or interactive tags, preferred when descending
MEANINGFUL_TAGS = ("img", "video", "iframe", "button", "a", "form", "input", "textarea", "select")

ROOT_TAGS = frozenset(["html", "body"])


class TargetRefiner:
    """
    Refine a raw pointer target to the meaningful element.

    The 90% (root) and 70% (too large) viewport thresholds are separate
    behavioural constants; do not unify them.

    Example:
        >>> refiner = TargetRefiner(document)
        >>> element = refiner.refine(hovered_node)
        >>> if element is None:
        ...     pass  # nothing worth designating under the cursor
    """

    def __init__(
        self,
        document: "Document",
        config: Optional[CleanerConfig] = None,
        marker_classes: Iterable[str] = ("webcleaner-hidden",),
    ):
        self.document = document
        self.config = config or CleanerConfig()
        self.marker_classes = tuple(marker_classes)

    def refine(self, raw_target: Any, viewport: Optional["Viewport"] = None) -> Optional[Any]:
        """
        Return the refined element, or None when nothing meaningful is under the cursor.
        """
        try:
            return self.refine_or_raise(raw_target, viewport)
        except RefinementRejected as e:
            logger.debug(f"[Refiner] Rejected: {e}")
            return None

    def refine_or_raise(self, raw_target: Any, viewport: Optional["Viewport"] = None) -> Any:
        doc = self.document
        if raw_target is None or not doc.is_element(raw_target):
            raise RefinementRejected("target is not an element")

        viewport = viewport or doc.viewport()
        candidate = raw_target

        # Step 1: never settle on the page shell
        if self.is_root(candidate, viewport):
            candidate = self.find_meaningful_child(candidate) or candidate

        # Step 2: collapse single-child wrappers
        if self.is_generic_container(candidate):
            deeper = self.find_meaningful_child(candidate)
            if deeper is not None:
                candidate = deeper

        # Step 3: one more descent, only if it actually shrinks the footprint
        if self.is_too_large(doc.rect(candidate), viewport):
            better = self.find_meaningful_child(candidate)
            if better is not None and not self.is_too_large(doc.rect(better), viewport):
                candidate = better

        self.validate(candidate)
        return candidate

    def is_root(self, node: Any, viewport: "Viewport") -> bool:
        """html/body, or anything covering more than 90% of the viewport."""
        if self.document.tag_name(node) in ROOT_TAGS:
            return True
        return self.covers(self.document.rect(node), viewport, self.config.root_area_ratio)

    def is_too_large(self, rect: "Rect", viewport: "Viewport") -> bool:
        return self.covers(rect, viewport, self.config.large_area_ratio)

    @staticmethod
    def covers(rect: "Rect", viewport: "Viewport", ratio: float) -> bool:
        if viewport.area <= 0:
            return False
        return rect.area > viewport.area * ratio

    def is_generic_container(self, node: Any) -> bool:
        doc = self.document
        if doc.tag_name(node) not in GENERIC_TAGS:
            return False
        class_name = " ".join(doc.class_list(node))
        if class_name and MEANINGFUL_CLASS_PATTERN.search(class_name):
            return False
        return len(self.visible_children(node)) == 1

    def visible_children(self, node: Any) -> List[Any]:
        return [child for child in self.document.children(node) if not self.document.rect(child).is_empty]

    def find_meaningful_child(self, node: Any) -> Optional[Any]:
        """
        Pick the child most worth designating.

        Preference: first visible child with a meaningful tag, then the only
        visible child, then the visible child with the largest area.
        """
        doc = self.document
        visible = self.visible_children(node)
        if not visible:
            return None

        for child in visible:
            if doc.tag_name(child) in MEANINGFUL_TAGS:
                return child

        if len(visible) == 1:
            return visible[0]

        largest = visible[0]
        largest_area = doc.rect(largest).area
        for child in visible[1:]:
            area = doc.rect(child).area
            if area > largest_area:
                largest, largest_area = child, area
        return largest

    def validate(self, node: Any) -> None:
        """
        Raise RefinementRejected unless `node` may receive an effect.
        """
        doc = self.document
        if node is None or not doc.is_element(node):
            raise RefinementRejected("candidate is not an element")

        if doc.tag_name(node) in ROOT_TAGS:
            raise RefinementRejected(f"refusing page root <{doc.tag_name(node)}>")

        for marker in self.marker_classes:
            if doc.has_class(node, marker):
                raise RefinementRejected(f"{doc.describe(node)} already carries {marker}")
            # Wrapping an already-marked node would stack effects
            if doc.contains_class(node, marker):
                raise RefinementRejected(f"{doc.describe(node)} contains a {marker} descendant")

        if doc.rect(node).is_empty:
            raise RefinementRejected(f"{doc.describe(node)} has no rendered area")
