"""Sense Layer - Host document backends."""

from webcleaner.layers.sense.document import (
    Document,
    MutationRecord,
    Rect,
    Subscription,
    Viewport,
)
from webcleaner.layers.sense.soup_document import SoupDocument

__all__ = ["Document", "MutationRecord", "Rect", "Subscription", "Viewport", "SoupDocument"]
