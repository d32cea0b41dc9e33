"""
WebCleaner - Per-site distraction removal for web pages

Designate an element once; a durable CSS selector is stored for the
site and the element stays blurred (or hidden, or enlarged) across
reloads and re-renders.
"""

__version__ = "0.4.0"
__author__ = "WebCleaner Contributors"

from webcleaner.core.config import CleanerConfig
from webcleaner.core.session import CleanerSession

__all__ = [
    "CleanerConfig",
    "CleanerSession",
    "__version__",
]
