"""
SeleniumDocument - Live browser page.

Adapts a Selenium WebDriver page to the `Document` interface. Node
queries go through `find_elements`, everything else through small
`execute_script` snippets. Mutation notifications come from a
browser-side MutationObserver buffer that is polled from asyncio.
"""

from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING
from urllib.parse import urlparse
import asyncio
import logging

from selenium.common.exceptions import InvalidSelectorException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement

from webcleaner.core.errors import SelectorInvalid
from webcleaner.layers.sense.document import (
    Document,
    MutationCallback,
    MutationRecord,
    Rect,
    Subscription,
    Viewport,
)

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver

logger = logging.getLogger(__name__)


INSTALL_OBSERVER_SCRIPT = r"""
if (!window.__webcleanerMutations) {
  window.__webcleanerMutations = [];
}
if (!window.__webcleanerObserver && document.body) {
  window.__webcleanerObserver = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      window.__webcleanerMutations.push({
        targetTag: mutation.target && mutation.target.tagName ? mutation.target.tagName.toLowerCase() : "",
        added: mutation.addedNodes ? mutation.addedNodes.length : 0,
        removed: mutation.removedNodes ? mutation.removedNodes.length : 0,
      });
    }
    if (window.__webcleanerMutations.length > 500) {
      window.__webcleanerMutations = window.__webcleanerMutations.slice(-500);
    }
  });
  window.__webcleanerObserver.observe(document.body, { childList: true, subtree: true });
}
return !!window.__webcleanerObserver;
"""

FLUSH_MUTATIONS_SCRIPT = """
const records = window.__webcleanerMutations || [];
window.__webcleanerMutations = [];
return records;
"""

DISCONNECT_OBSERVER_SCRIPT = """
if (window.__webcleanerObserver) {
  window.__webcleanerObserver.disconnect();
  window.__webcleanerObserver = null;
}
window.__webcleanerMutations = [];
"""

INSTALL_POINTER_SCRIPT = r"""
if (!window.__webcleanerPointer) {
  const state = { hover: null, clicks: [], keys: [], capturing: false };
  window.__webcleanerPointer = state;
  document.addEventListener("mouseover", (e) => {
    if (state.capturing) { state.hover = e.target; }
  }, true);
  document.addEventListener("mousedown", (e) => {
    if (state.capturing) { e.preventDefault(); e.stopPropagation(); }
  }, true);
  document.addEventListener("click", (e) => {
    if (!state.capturing) return;
    e.preventDefault();
    e.stopPropagation();
    e.stopImmediatePropagation();
    state.clicks.push(e.target);
  }, true);
  document.addEventListener("keydown", (e) => {
    if (state.capturing) { state.keys.push(e.key); }
  }, true);
}
window.__webcleanerPointer.capturing = !!arguments[0];
"""

FLUSH_POINTER_SCRIPT = """
const state = window.__webcleanerPointer;
if (!state) return null;
const events = { hover: state.hover, clicks: state.clicks, keys: state.keys };
state.hover = null;
state.clicks = [];
state.keys = [];
return events;
"""

INSTALL_STYLESHEET_SCRIPT = """
let style = document.getElementById(arguments[0]);
if (!style) {
  style = document.createElement("style");
  style.id = arguments[0];
  (document.head || document.documentElement).appendChild(style);
}
style.textContent = arguments[1];
"""


class _MutationSubscription(Subscription):
    """Handle for one subscriber of the shared mutation poller."""

    def __init__(self, document: "SeleniumDocument", callback: MutationCallback):
        self._document = document
        self.callback = callback
        self._active = True

    def disconnect(self) -> None:
        if not self._active:
            return
        self._active = False
        self._document._unsubscribe(self)

    @property
    def active(self) -> bool:
        return self._active


class SeleniumDocument(Document):
    """
    Document backed by a live Selenium page.

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
        >>> doc = SeleniumDocument(driver)
        >>> doc.query_all("h1")
    """

    def __init__(self, driver: "WebDriver", poll_interval_ms: int = 100):
        self.driver = driver
        self.poll_interval_ms = poll_interval_ms
        self._subscribers: List[_MutationSubscription] = []
        self._poll_task: Optional[asyncio.Task] = None

    def _script(self, script: str, *args: Any) -> Any:
        return self.driver.execute_script(script, *args)

    @property
    def origin(self) -> str:
        return urlparse(self.driver.current_url).hostname or ""

    def viewport(self) -> Viewport:
        width, height = self._script("return [window.innerWidth, window.innerHeight];")
        return Viewport(float(width), float(height))

    def body(self) -> Optional[WebElement]:
        return self._script("return document.body;")

    def query_all(self, selector: str, scope: Optional[WebElement] = None) -> List[WebElement]:
        container = self.driver if scope is None else scope
        try:
            return list(container.find_elements(By.CSS_SELECTOR, selector))
        except InvalidSelectorException as e:
            raise SelectorInvalid(selector, e.msg or "invalid selector")

    def is_element(self, node: Any) -> bool:
        return isinstance(node, WebElement)

    def is_same(self, a: Any, b: Any) -> bool:
        return isinstance(a, WebElement) and isinstance(b, WebElement) and a == b

    def tag_name(self, node: WebElement) -> str:
        return node.tag_name.lower()

    def element_id(self, node: WebElement) -> str:
        return node.get_dom_attribute("id") or ""

    def class_list(self, node: WebElement) -> List[str]:
        return list(self._script("return Array.from(arguments[0].classList);", node) or [])

    def parent(self, node: WebElement) -> Optional[WebElement]:
        return self._script("return arguments[0].parentElement;", node)

    def children(self, node: WebElement) -> List[WebElement]:
        return list(self._script("return Array.from(arguments[0].children);", node) or [])

    def rect(self, node: WebElement) -> Rect:
        x, y, width, height = self._script(
            "const r = arguments[0].getBoundingClientRect(); return [r.x, r.y, r.width, r.height];",
            node,
        )
        return Rect(float(x), float(y), float(width), float(height))

    def has_class(self, node: WebElement, class_name: str) -> bool:
        return bool(self._script("return arguments[0].classList.contains(arguments[1]);", node, class_name))

    def add_class(self, node: WebElement, class_name: str) -> None:
        self._script("arguments[0].classList.add(arguments[1]);", node, class_name)

    def remove_class(self, node: WebElement, class_name: str) -> None:
        self._script("arguments[0].classList.remove(arguments[1]);", node, class_name)

    def get_attribute(self, node: WebElement, name: str) -> Optional[str]:
        return node.get_dom_attribute(name)

    def set_attribute(self, node: WebElement, name: str, value: str) -> None:
        self._script("arguments[0].setAttribute(arguments[1], arguments[2]);", node, name, value)

    def remove_attribute(self, node: WebElement, name: str) -> None:
        self._script("arguments[0].removeAttribute(arguments[1]);", node, name)

    def get_style(self, node: WebElement, prop: str) -> Tuple[str, str]:
        value, priority = self._script(
            "const s = arguments[0].style;"
            "return [s.getPropertyValue(arguments[1]), s.getPropertyPriority(arguments[1])];",
            node, prop,
        )
        return value or "", priority or ""

    def set_style(self, node: WebElement, prop: str, value: str, priority: str = "") -> None:
        self._script(
            "arguments[0].style.setProperty(arguments[1], arguments[2], arguments[3]);",
            node, prop, value, priority,
        )

    def remove_style(self, node: WebElement, prop: str) -> None:
        self._script("arguments[0].style.removeProperty(arguments[1]);", node, prop)

    def computed_display(self, node: WebElement) -> str:
        return self._script("return window.getComputedStyle(arguments[0]).display;", node) or ""

    def subscribe(self, callback: MutationCallback) -> Subscription:
        """
        Install the page observer and join the shared poller.

        One poll task drains the page buffer and hands every batch to all
        active subscribers. Must be called from inside a running event loop.
        """
        self._script(INSTALL_OBSERVER_SCRIPT)
        subscription = _MutationSubscription(self, callback)
        self._subscribers.append(subscription)
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll())
        return subscription

    def _unsubscribe(self, subscription: _MutationSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        if self._subscribers:
            return

        # last subscriber gone
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        try:
            self._script(DISCONNECT_OBSERVER_SCRIPT)
        except WebDriverException as e:
            # page may already be gone
            logger.debug(f"[SeleniumDocument] Observer disconnect failed: {e.msg}")

    async def _poll(self) -> None:
        interval = self.poll_interval_ms / 1000
        while self._subscribers:
            await asyncio.sleep(interval)
            if not self._subscribers:
                break
            try:
                records = self.flush_mutations()
            except WebDriverException as e:
                logger.warning(f"[SeleniumDocument] Mutation poll failed: {e.msg}")
                continue
            if not records:
                continue
            for subscription in list(self._subscribers):
                subscription.callback(list(records))

    def flush_mutations(self) -> List[MutationRecord]:
        raw = self._script(FLUSH_MUTATIONS_SCRIPT) or []
        return [
            MutationRecord(
                target_tag=item.get("targetTag", ""),
                added=int(item.get("added", 0)),
                removed=int(item.get("removed", 0)),
            )
            for item in raw
        ]

    # Pointer bridge for interactive designation

    def set_pointer_capture(self, capturing: bool) -> None:
        """Install (once) the capture-phase pointer listeners and toggle them."""
        self._script(INSTALL_POINTER_SCRIPT, capturing)

    def flush_pointer_events(self) -> Dict[str, Any]:
        """Latest hover target, queued clicks and keys since the last flush."""
        events = self._script(FLUSH_POINTER_SCRIPT)
        if not events:
            return {"hover": None, "clicks": [], "keys": []}
        return {
            "hover": events.get("hover"),
            "clicks": list(events.get("clicks") or []),
            "keys": list(events.get("keys") or []),
        }

    def install_stylesheet(self, style_id: str, css: str) -> None:
        self._script(INSTALL_STYLESHEET_SCRIPT, style_id, css)
