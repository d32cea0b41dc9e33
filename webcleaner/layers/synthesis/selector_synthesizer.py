"""
Selector Synthesizer - Durable selectors for designated nodes.

Computes a short CSS selector that re-matches a node on future page
loads. Strategies are tried in order and the first verified one wins:

1. Unique ID            -> ``#main-ad``
2. Unique class list    -> ``div.promo.sticky``
3. Positional path      -> ``div#feed > div.card:nth-child(3) > aside:nth-child(2)``

Only verified selectors are returned; anything else raises
`SynthesisFailure`.
"""

from typing import Any, List, Optional, TYPE_CHECKING
import logging

import soupsieve as sv

from webcleaner.core.config import CleanerConfig
from webcleaner.core.errors import SelectorInvalid, SynthesisFailure

if TYPE_CHECKING:
    from webcleaner.layers.sense.document import Document

logger = logging.getLogger(__name__)

# Classes added by WebCleaner itself; they describe transient UI state.
RUNTIME_CLASS_PREFIXES = ("webcleaner-", "highlight")


def css_escape(value: str) -> str:
    """Escape an identifier the way ``CSS.escape`` does."""
    return sv.escape(value)


def is_runtime_class(class_name: str) -> bool:
    return class_name.startswith(RUNTIME_CLASS_PREFIXES)


class SelectorSynthesizer:
    """
    Build stable selectors for DOM nodes.

    Example:
        >>> synthesizer = SelectorSynthesizer(document)
        >>> synthesizer.synthesize(node)
        '#sidebar-ad'
    """

    def __init__(self, document: "Document", config: Optional[CleanerConfig] = None):
        self.document = document
        self.config = config or CleanerConfig()

    def synthesize(self, node: Any) -> str:
        """
        Compute a selector for `node`.

        Raises:
            SynthesisFailure: if no strategy yields a verified selector
        """
        doc = self.document
        if not doc.is_element(node):
            raise SynthesisFailure("Node is not an element", repr(node))

        selector = self._by_id(node) or self._by_classes(node)
        if selector:
            logger.debug(f"[Synthesizer] {doc.describe(node)} -> {selector}")
            return selector

        selector = self._by_path(node)
        if not selector:
            raise SynthesisFailure("No selector path could be built", doc.describe(node))

        try:
            matches = doc.query_all(selector)
        except SelectorInvalid as e:
            logger.error(f"[Synthesizer] Generated invalid selector: {selector} ({e.reason})")
            raise SynthesisFailure(f"Generated selector is invalid: {selector}", doc.describe(node))

        if not matches:
            raise SynthesisFailure(f"Generated selector matches nothing: {selector}", doc.describe(node))
        if not any(doc.is_same(match, node) for match in matches):
            raise SynthesisFailure(f"Generated selector misses the node: {selector}", doc.describe(node))

        logger.debug(f"[Synthesizer] {doc.describe(node)} -> {selector} ({len(matches)} match(es))")
        return selector

    def synthesize_or_none(self, node: Any) -> Optional[str]:
        try:
            return self.synthesize(node)
        except SynthesisFailure as e:
            logger.warning(f"[Synthesizer] {e}")
            return None

    def stable_classes(self, node: Any) -> List[str]:
        """Node classes minus WebCleaner's own runtime classes."""
        return [c for c in self.document.class_list(node) if not is_runtime_class(c)]

    def _by_id(self, node: Any) -> Optional[str]:
        ident = self.document.element_id(node)
        if not ident.strip():
            return None
        return self._unique(node, "#" + css_escape(ident))

    def _by_classes(self, node: Any) -> Optional[str]:
        classes = self.stable_classes(node)
        if not classes:
            return None
        selector = self.document.tag_name(node) + "".join("." + css_escape(c) for c in classes)
        return self._unique(node, selector)

    def _unique(self, node: Any, selector: str) -> Optional[str]:
        """Return `selector` if it resolves to exactly `node`."""
        try:
            matches = self.document.query_all(selector)
        except SelectorInvalid:
            return None
        if len(matches) == 1 and self.document.is_same(matches[0], node):
            return selector
        return None

    def _by_path(self, node: Any) -> str:
        doc = self.document
        segments: List[str] = []
        current = node
        depth = 0

        while current is not None and doc.is_element(current) and depth < self.config.max_path_depth:
            tag = doc.tag_name(current)
            if tag == "html":
                break
            if tag == "body":
                segments.insert(0, "body")
                break

            ident = doc.element_id(current)
            if ident.strip():
                # An id anchors the path; nothing above it is needed
                segments.insert(0, f"{tag}#{css_escape(ident)}")
                break

            segment = tag
            classes = self.stable_classes(current)[: self.config.max_path_classes]
            segment += "".join("." + css_escape(c) for c in classes)

            parent = doc.parent(current)
            if parent is not None:
                for index, sibling in enumerate(doc.children(parent)):
                    if doc.is_same(sibling, current):
                        segment += f":nth-child({index + 1})"
                        break

            segments.insert(0, segment)
            current = parent
            depth += 1

        return " > ".join(segments)
