"""
Cleaner Session - The page-level wiring.

Opens a page in a browser, builds the document backend, the two
reconciliation engines (hide/blur and enlarge), the refiner, the
synthesizer and the interaction controller, and keeps them running on
one asyncio loop.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging

from webcleaner.core.config import CleanerConfig
from webcleaner.core.controller import HIGHLIGHT_CLASS, Designation, InteractionController, Mode
from webcleaner.core.driver_factory import WebDriverType, create_driver
from webcleaner.core.errors import CleanerError
from webcleaner.layers.reconciliation.effects import EnlargeEffect, effect_for
from webcleaner.layers.reconciliation.engine import EngineState, ReconciliationEngine
from webcleaner.layers.sense.document import Document
from webcleaner.layers.synthesis.selector_synthesizer import SelectorSynthesizer
from webcleaner.layers.targeting.target_refiner import TargetRefiner
from webcleaner.messaging import bus as messages
from webcleaner.storage.rule_store import ENLARGED_PREFIX, JsonRuleStore, RuleStore

logger = logging.getLogger(__name__)

HIGHLIGHT_STYLESHEET = f"""
.{HIGHLIGHT_CLASS} {{
  outline: 2px solid #DC2626 !important;
  outline-offset: -2px !important;
  cursor: crosshair !important;
}}
"""


@dataclass
class SessionResult:
    """Summary of a cleaning session."""
    url: str
    origin: str
    state: str
    rules: List[str]
    applied: int
    pruned: List[str]
    start_time: datetime
    end_time: datetime
    designations: List[Designation] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "origin": self.origin,
            "state": self.state,
            "rules": list(self.rules),
            "applied": self.applied,
            "pruned": list(self.pruned),
            "duration_seconds": self.duration_seconds,
            "designations": [
                {"mode": d.mode.value, "selector": d.selector, "action": d.action, "nodes": d.nodes}
                for d in self.designations
            ],
            "error": self.error,
        }


class CleanerSession:
    """
    One page, one set of engines.

    Example:
        >>> session = CleanerSession("https://news.example.com", headless=True)
        >>> result = asyncio.run(session.run(duration=30))
        >>> print(result.applied, result.pruned)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        config: Optional[CleanerConfig] = None,
        store: Optional[RuleStore] = None,
        driver: Optional[WebDriverType] = None,
        document: Optional[Document] = None,
        headless: Optional[bool] = None,
    ):
        self.url = url
        self.config = (config or CleanerConfig()).with_overrides(headless=headless)
        self.store = store or JsonRuleStore(self.config.resolved_store_path)

        self._driver = driver
        self._owns_driver = driver is None and document is None
        self._document = document

        self.engine: Optional[ReconciliationEngine] = None
        self.enlarge_engine: Optional[ReconciliationEngine] = None
        self.synthesizer: Optional[SelectorSynthesizer] = None
        self.refiner: Optional[TargetRefiner] = None
        self.controller: Optional[InteractionController] = None
        self.designations: List[Designation] = []
        self._initialized = False

    @property
    def driver(self) -> WebDriverType:
        """Get the WebDriver instance, creating it if needed."""
        if self._driver is None:
            self._driver = create_driver(headless=self.config.headless)
        return self._driver

    @property
    def document(self) -> Document:
        if self._document is None:
            from webcleaner.layers.sense.selenium_document import SeleniumDocument
            if self.url:
                self.driver.get(self.url)
            self._document = SeleniumDocument(self.driver, poll_interval_ms=self.config.poll_interval_ms)
        return self._document

    @property
    def origin(self) -> str:
        return self.document.origin

    def _initialize(self) -> None:
        """Build all components lazily."""
        if self._initialized:
            return

        document = self.document
        self.engine = ReconciliationEngine(
            document,
            self.store,
            effect=effect_for(self.config.effect, self.config.blur_radius_px),
            config=self.config,
        )
        self.enlarge_engine = ReconciliationEngine(
            document,
            self.store.namespaced(ENLARGED_PREFIX),
            origin=self.engine.origin,
            effect=EnlargeEffect(),
            config=self.config,
        )
        self.synthesizer = SelectorSynthesizer(document, self.config)
        self.refiner = TargetRefiner(
            document,
            self.config,
            marker_classes=(self.engine.marker_class,),
        )
        self.controller = InteractionController(
            document, self.synthesizer, self.refiner, self.engine, self.enlarge_engine,
        )
        self._initialized = True

    async def start(self) -> EngineState:
        self._initialize()
        state = await self.engine.start()
        await self.enlarge_engine.start()
        logger.info(f"[Session] {self.engine.origin}: {state.value} with {len(self.engine.rules)} rule(s)")
        return state

    async def run(self, duration: float = 10.0) -> SessionResult:
        """Start the engines and keep reconciling for `duration` seconds."""
        start_time = datetime.now()
        error = None
        try:
            await self.start()
            await asyncio.sleep(duration)
        except CleanerError as e:
            logger.error(f"[Session] {e}")
            error = str(e)
        return await self._finish(start_time, error)

    async def edit(
        self,
        duration: float = 120.0,
        mode: Mode = Mode.DESIGNATING,
        on_designation: Optional[Callable[[Designation], None]] = None,
    ) -> SessionResult:
        """
        Interactive designation on the live page.

        Pointer events are captured page-side and polled; the session ends
        after `duration` seconds or when the user presses Escape.
        """
        from webcleaner.layers.sense.selenium_document import SeleniumDocument

        start_time = datetime.now()
        await self.start()
        document = self.document
        if not isinstance(document, SeleniumDocument):
            raise TypeError("Interactive editing needs a live browser page")

        document.install_stylesheet("webcleaner-style", HIGHLIGHT_STYLESHEET)
        document.set_pointer_capture(True)
        self.controller.enter(mode)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration
        interval = self.config.poll_interval_ms / 1000
        try:
            while self.controller.is_active and loop.time() < deadline:
                await asyncio.sleep(interval)
                events = document.flush_pointer_events()
                for key in events["keys"]:
                    self.controller.on_key(key)
                if not self.controller.is_active:
                    break
                if events["hover"] is not None:
                    self.controller.on_hover(events["hover"])
                for target in events["clicks"]:
                    try:
                        designation = await self.controller.on_click(target)
                    except CleanerError as e:
                        logger.error(f"[Session] {e}")
                        continue
                    if designation is not None:
                        self.designations.append(designation)
                        if on_designation:
                            on_designation(designation)
        finally:
            self.controller.enter(Mode.IDLE)
            document.set_pointer_capture(False)

        return await self._finish(start_time, None)

    async def _finish(self, start_time: datetime, error: Optional[str]) -> SessionResult:
        engine = self.engine
        if engine is not None:
            await engine.drain()
            await self.enlarge_engine.drain()
        return SessionResult(
            url=self.url or "",
            origin=engine.origin if engine else "",
            state=engine.state.value if engine else EngineState.UNINITIALIZED.value,
            rules=list(engine.rules) if engine else [],
            applied=engine.total_applied if engine else 0,
            pruned=self._pruned_so_far(),
            start_time=start_time,
            end_time=datetime.now(),
            designations=list(self.designations),
            error=error,
        )

    def _pruned_so_far(self) -> List[str]:
        if self.engine is None or self.engine.last_report is None:
            return []
        return self.engine.last_report.pruned

    # Message bus

    def bind(self, bus: "messages.MessageBus") -> None:
        """Register this session's handlers on `bus`."""
        self._initialize()
        bus.subscribe(messages.RULE_ADDED, self._on_rule_added)
        bus.subscribe(messages.RESET, self._on_reset)
        bus.subscribe(messages.REFRESH, self._on_refresh)
        bus.subscribe(messages.TOGGLE_SITE, self._on_toggle_site)
        bus.subscribe(messages.TOGGLE_EDIT_MODE, self._on_toggle_edit_mode)
        bus.subscribe(messages.TOGGLE_ENLARGE_MODE, self._on_toggle_enlarge_mode)

    def _for_this_page(self, payload: Dict[str, Any]) -> bool:
        origin = payload.get("origin")
        return origin is None or origin == self.engine.origin

    async def _on_rule_added(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        report = await self.engine.add_selector(payload["selector"])
        return {"success": True, "applied": report.applied}

    async def _on_reset(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._for_this_page(payload):
            return {"success": False, "error": "origin mismatch"}
        restored = self.engine.reset() + self.enlarge_engine.reset()
        if payload.get("clear_store"):
            await self.store.clear(self.engine.origin)
            await self.enlarge_engine.store.clear(self.engine.origin)
        return {"success": True, "restored": restored}

    async def _on_refresh(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._for_this_page(payload):
            return {"success": False, "error": "origin mismatch"}
        state = await self.engine.refresh()
        await self.enlarge_engine.refresh()
        return {"success": True, "state": state.value}

    async def _on_toggle_site(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._for_this_page(payload):
            return {"success": False, "error": "origin mismatch"}
        state = await self.engine.set_disabled(bool(payload.get("disabled")))
        await self.enlarge_engine.refresh()
        return {"success": True, "state": state.value}

    def _on_toggle_edit_mode(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        mode = self.controller.enter(Mode.DESIGNATING if payload.get("enable") else Mode.IDLE)
        return {"success": True, "mode": mode.value}

    def _on_toggle_enlarge_mode(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        mode = self.controller.enter(Mode.RESIZING if payload.get("enable") else Mode.IDLE)
        return {"success": True, "mode": mode.value}

    def close(self) -> None:
        for engine in (self.engine, self.enlarge_engine):
            if engine is not None:
                engine.stop()
        if self._owns_driver and self._driver is not None:
            try:
                self._driver.quit()
            except Exception as e:
                logger.debug(f"[Session] Driver quit failed: {e}")
            self._driver = None

    def __enter__(self) -> "CleanerSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
