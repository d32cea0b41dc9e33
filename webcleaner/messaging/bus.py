"""
In-process message bus.

Controller layers send an action with a payload and a single handler per
action answers. Fire-and-forget callers simply ignore the response.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Union
import inspect
import logging

logger = logging.getLogger(__name__)

# Actions understood by a bound CleanerSession
RULE_ADDED = "RULE_ADDED"
RESET = "RESET"
REFRESH = "REFRESH"
TOGGLE_SITE = "TOGGLE_SITE"
TOGGLE_EDIT_MODE = "TOGGLE_EDIT_MODE"
TOGGLE_ENLARGE_MODE = "TOGGLE_ENLARGE_MODE"

Handler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class MessageBus:
    """
    Action -> handler dispatch.

    Handlers may be plain or async functions. A handler error never
    propagates to the sender; it is logged and answered with
    ``{"success": False, "error": ...}``.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def subscribe(self, action: str, handler: Handler) -> None:
        if action in self._handlers:
            logger.warning(f"[MessageBus] Replacing handler for {action}")
        self._handlers[action] = handler

    def unsubscribe(self, action: str) -> None:
        self._handlers.pop(action, None)

    def has_handler(self, action: str) -> bool:
        return action in self._handlers

    async def send(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        payload = payload or {}
        logger.debug(f"[MessageBus] {action} {payload}")
        handler = self._handlers.get(action)
        if handler is None:
            logger.warning(f"[MessageBus] No handler for {action}")
            return None
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.error(f"[MessageBus] {action} handler failed: {e}")
            return {"success": False, "error": str(e)}
