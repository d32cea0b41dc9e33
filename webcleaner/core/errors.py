"""
Error taxonomy for the cleaning core.

Nothing raised here is fatal to the hosting page: callers degrade to
"no effect applied" rather than leaving the DOM half-modified.
"""

from typing import Optional


class CleanerError(RuntimeError):
    """Base class for all WebCleaner errors."""


class SynthesisFailure(CleanerError):
    """No valid selector could be derived for a node."""

    def __init__(self, message: str, node_description: Optional[str] = None):
        super().__init__(message)
        self.node_description = node_description


class RefinementRejected(CleanerError):
    """No meaningful target under the cursor. Never surfaced to the user."""


class SelectorStale(CleanerError):
    """A stored selector no longer matches anything on the page."""

    def __init__(self, selector: str):
        super().__init__(f"Selector matches no elements: {selector}")
        self.selector = selector


class SelectorInvalid(CleanerError):
    """A selector could not be parsed or evaluated."""

    def __init__(self, selector: str, reason: str = ""):
        message = f"Invalid selector: {selector}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.selector = selector
        self.reason = reason


class PersistenceFailure(CleanerError):
    """The rule store rejected a read or write."""

    def __init__(self, operation: str, origin: str, cause: Optional[BaseException] = None):
        message = f"Rule store {operation} failed for {origin}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.origin = origin
        self.cause = cause
