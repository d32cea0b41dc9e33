"""
Interaction Controller - Pointer events to rules.

Single owner of the interaction mode. Hover moves a highlight, click
designates: the target is refined, named by the synthesizer, and handed
to the engine. The controller reads the DOM and toggles its own
highlight class but never writes effect markers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING
import logging

from webcleaner.core.errors import SelectorInvalid

if TYPE_CHECKING:
    from webcleaner.layers.reconciliation.engine import ReconciliationEngine
    from webcleaner.layers.sense.document import Document
    from webcleaner.layers.synthesis.selector_synthesizer import SelectorSynthesizer
    from webcleaner.layers.targeting.target_refiner import TargetRefiner

logger = logging.getLogger(__name__)

HIGHLIGHT_CLASS = "webcleaner-highlight"


class Mode(Enum):
    IDLE = "idle"
    DESIGNATING = "designating"
    RESIZING = "resizing"


@dataclass
class Designation:
    """What a click did."""
    mode: Mode
    selector: str
    action: str  # "added", "removed"
    nodes: int = 0


class InteractionController:
    """
    Mode-aware dispatcher for pointer and key events.

    Example:
        >>> controller = InteractionController(doc, synthesizer, refiner, engine)
        >>> controller.enter(Mode.DESIGNATING)
        >>> controller.on_hover(node)
        >>> designation = await controller.on_click(node)
    """

    def __init__(
        self,
        document: "Document",
        synthesizer: "SelectorSynthesizer",
        refiner: "TargetRefiner",
        engine: "ReconciliationEngine",
        enlarge_engine: Optional["ReconciliationEngine"] = None,
    ):
        self.document = document
        self.synthesizer = synthesizer
        self.refiner = refiner
        self.engine = engine
        self.enlarge_engine = enlarge_engine
        self.mode = Mode.IDLE
        self._highlighted: Optional[Any] = None

    def enter(self, mode: Mode) -> Mode:
        """
        Switch mode. Entering a mode always leaves the previous one.
        """
        if mode is Mode.RESIZING and self.enlarge_engine is None:
            raise ValueError("Resizing needs an enlarge engine")
        if mode is self.mode:
            return self.mode

        previous = self.mode
        self.clear_highlight()
        self.mode = mode
        logger.info(f"[Controller] {previous.value} -> {mode.value}")
        return self.mode

    @property
    def is_active(self) -> bool:
        return self.mode is not Mode.IDLE

    def on_hover(self, target: Any) -> Optional[Any]:
        """Move the highlight to the element a click would designate."""
        if not self.is_active:
            return None

        element = self._resolve_target(target)
        if element is None:
            self.clear_highlight()
            return None

        if self._highlighted is not None and self.document.is_same(self._highlighted, element):
            return element

        self.clear_highlight()
        self.document.add_class(element, HIGHLIGHT_CLASS)
        self._highlighted = element
        return element

    async def on_click(self, target: Any) -> Optional[Designation]:
        """
        Designate the element under the pointer.

        Returns:
            The resulting Designation, or None if nothing was designated

        Raises:
            SynthesisFailure: if the element cannot be named
            PersistenceFailure: if the rule could not be saved
        """
        if not self.is_active:
            return None

        element = self._resolve_target(target)
        if element is None:
            logger.warning("[Controller] No valid element found")
            return None

        self.clear_highlight()
        selector = self.synthesizer.synthesize(element)
        self._check_match(selector, element)

        if self.mode is Mode.DESIGNATING:
            report = await self.engine.add_selector(selector)
            return Designation(self.mode, selector, "added", report.applied)

        enlarge = self.enlarge_engine
        if enlarge.effect.is_applied(self.document, element):
            restored = await enlarge.remove_selector(selector)
            return Designation(self.mode, selector, "removed", restored)
        report = await enlarge.add_selector(selector)
        return Designation(self.mode, selector, "added", report.applied)

    def on_key(self, key: str) -> Mode:
        if key == "Escape" and self.is_active:
            return self.enter(Mode.IDLE)
        return self.mode

    def clear_highlight(self) -> None:
        if self._highlighted is not None:
            try:
                self.document.remove_class(self._highlighted, HIGHLIGHT_CLASS)
            except Exception as e:
                # node may have been detached by the page
                logger.debug(f"[Controller] Could not clear highlight: {e}")
            self._highlighted = None

    def _resolve_target(self, target: Any) -> Optional[Any]:
        if self.mode is Mode.DESIGNATING:
            return self.refiner.refine(target)
        # Resizing acts on the raw target, without refinement
        doc = self.document
        if target is None or not doc.is_element(target):
            return None
        if doc.tag_name(target) in ("html", "body") or doc.rect(target).is_empty:
            return None
        return target

    def _check_match(self, selector: str, element: Any) -> None:
        try:
            matches = self.document.query_all(selector)
        except SelectorInvalid as e:
            logger.warning(f"[Controller] {e}")
            return
        logger.debug(f"[Controller] Selector matches {len(matches)} element(s)")
        if not any(self.document.is_same(m, element) for m in matches):
            logger.warning("[Controller] Selector does not match the target element, but matches others")
