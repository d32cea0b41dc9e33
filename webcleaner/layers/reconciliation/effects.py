"""
Visual effects applied to designated nodes.

Each effect writes a fixed set of inline style properties, remembers
what was there before in a ``data-webcleaner-restore-<name>`` attribute,
and tags the node with its marker class. Reversal restores exactly the
recorded properties, so unrelated author styles are never touched.
"""

from typing import Any, Dict, Optional, TYPE_CHECKING
import json
import logging

if TYPE_CHECKING:
    from webcleaner.layers.sense.document import Document

logger = logging.getLogger(__name__)

HIDDEN_MARKER = "webcleaner-hidden"
ENLARGED_MARKER = "webcleaner-enlarged"
RESTORE_ATTRIBUTE_PREFIX = "data-webcleaner-restore-"

MEDIA_TAGS = frozenset(["img", "video", "iframe", "canvas"])


class Effect:
    """Base class for reversible inline-style effects."""

    name = "effect"
    marker_class = HIDDEN_MARKER

    @property
    def restore_attribute(self) -> str:
        return RESTORE_ATTRIBUTE_PREFIX + self.name

    def properties(self, document: "Document", node: Any) -> Dict[str, str]:
        """Style properties (all set with ``!important``) for this node."""
        raise NotImplementedError

    def is_applied(self, document: "Document", node: Any) -> bool:
        return document.has_class(node, self.marker_class)

    def apply(self, document: "Document", node: Any) -> None:
        properties = self.properties(document, node)
        saved: Dict[str, Optional[list]] = {}
        for prop, value in properties.items():
            old_value, old_priority = document.get_style(node, prop)
            saved[prop] = [old_value, old_priority] if old_value else None
            document.set_style(node, prop, value, "important")

        document.set_attribute(node, self.restore_attribute, json.dumps(saved, sort_keys=True))
        document.add_class(node, self.marker_class)

    def reverse(self, document: "Document", node: Any) -> None:
        raw = document.get_attribute(node, self.restore_attribute)
        saved: Dict[str, Optional[list]] = {}
        if raw:
            try:
                saved = json.loads(raw)
            except ValueError:
                logger.warning(f"[Effect] Corrupt restore record on {document.describe(node)}")

        for prop, previous in saved.items():
            if previous:
                document.set_style(node, prop, previous[0], previous[1])
            else:
                document.remove_style(node, prop)

        document.remove_attribute(node, self.restore_attribute)
        document.remove_class(node, self.marker_class)


class BlurEffect(Effect):
    """Blur the node and make it inert."""

    name = "blur"
    marker_class = HIDDEN_MARKER

    def __init__(self, radius_px: int = 8):
        self.radius_px = radius_px

    def properties(self, document: "Document", node: Any) -> Dict[str, str]:
        props = {
            "filter": f"blur({self.radius_px}px)",
            "pointer-events": "none",
            "user-select": "none",
        }
        # filter has no effect on plain inline boxes
        if document.computed_display(node) in ("inline", "inline-block"):
            props["display"] = "inline-block"
        return props


class HideEffect(Effect):
    """Remove the node from layout entirely."""

    name = "hide"
    marker_class = HIDDEN_MARKER

    def properties(self, document: "Document", node: Any) -> Dict[str, str]:
        return {"display": "none"}


class EnlargeEffect(Effect):
    """Make the node stand out and grow."""

    name = "enlarge"
    marker_class = ENLARGED_MARKER
    SCALE = 1.7

    def properties(self, document: "Document", node: Any) -> Dict[str, str]:
        props = {
            "border": "2px solid #10B981",
            "border-radius": "6px",
            "box-shadow": "0 0 15px rgba(16, 185, 129, 0.3)",
            "outline": "1px dashed #10B981",
            "outline-offset": "3px",
            "z-index": "999999",
            "position": "relative",
        }
        if document.tag_name(node) in MEDIA_TAGS:
            width = document.rect(node).width
            if width > 0:
                props["width"] = f"{round(width * self.SCALE)}px"
                props["height"] = "auto"
                props["max-width"] = "none"
        else:
            props["font-size"] = "130%"
        return props


EFFECTS = {
    "blur": BlurEffect,
    "hide": HideEffect,
    "enlarge": EnlargeEffect,
}


def effect_for(name: str, blur_radius_px: int = 8) -> Effect:
    """Instantiate an effect by its config name."""
    try:
        effect_class = EFFECTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown effect '{name}'. Choose from: {', '.join(sorted(EFFECTS))}")
    if effect_class is BlurEffect:
        return BlurEffect(radius_px=blur_radius_px)
    return effect_class()
