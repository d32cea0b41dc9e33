"""Core module - Session wiring, configuration and driver management."""

from webcleaner.core.config import CleanerConfig
from webcleaner.core.controller import InteractionController, Mode
from webcleaner.core.driver_factory import create_driver
from webcleaner.core.session import CleanerSession, SessionResult

__all__ = [
    "CleanerConfig",
    "CleanerSession",
    "InteractionController",
    "Mode",
    "SessionResult",
    "create_driver",
]
