"""Messaging - In-process action dispatch."""

from webcleaner.messaging.bus import (
    REFRESH,
    RESET,
    RULE_ADDED,
    TOGGLE_EDIT_MODE,
    TOGGLE_ENLARGE_MODE,
    TOGGLE_SITE,
    MessageBus,
)

__all__ = [
    "MessageBus",
    "REFRESH",
    "RESET",
    "RULE_ADDED",
    "TOGGLE_EDIT_MODE",
    "TOGGLE_ENLARGE_MODE",
    "TOGGLE_SITE",
]
