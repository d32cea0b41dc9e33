"""
Reconciliation Engine - Keeps the page in line with its RuleSet.

Owns the cached RuleSet for one loaded page, applies the effect of every
selector, watches the DOM for re-renders (debounced), prunes selectors
that stopped matching, and never stacks an effect inside another.

State machine:

    UNINITIALIZED -> LOADING -> ACTIVE <-> (mutation / refresh)
                             -> DISABLED
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Set, Tuple, TYPE_CHECKING
import asyncio
import logging

from webcleaner.core.config import CleanerConfig
from webcleaner.core.errors import PersistenceFailure, SelectorInvalid, SelectorStale
from webcleaner.layers.reconciliation.effects import Effect, effect_for

if TYPE_CHECKING:
    from webcleaner.layers.sense.document import Document, MutationRecord, Subscription
    from webcleaner.storage.rule_store import RuleStore

logger = logging.getLogger(__name__)


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    ACTIVE = "active"
    DISABLED = "disabled"


@dataclass
class ApplyReport:
    """Outcome of one apply pass. Observability only."""
    applied: int = 0
    skipped: int = 0
    unwrapped: int = 0  # narrower markers folded into a newly marked ancestor
    stale: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def pruned(self) -> List[str]:
        return self.stale + self.invalid

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "skipped": self.skipped,
            "unwrapped": self.unwrapped,
            "stale": list(self.stale),
            "invalid": list(self.invalid),
            "failed": list(self.failed),
        }


class ReconciliationEngine:
    """
    Apply and maintain one effect for one page.

    Example:
        >>> engine = ReconciliationEngine(document, store)
        >>> await engine.start()
        >>> await engine.add_selector("#sidebar-ad")
        >>> engine.reset()
    """

    def __init__(
        self,
        document: "Document",
        store: "RuleStore",
        origin: Optional[str] = None,
        effect: Optional[Effect] = None,
        config: Optional[CleanerConfig] = None,
    ):
        self.document = document
        self.store = store
        self.config = config or CleanerConfig()
        self.origin = origin if origin is not None else document.origin
        self.effect = effect or effect_for(self.config.effect, self.config.blur_radius_px)

        self.state = EngineState.UNINITIALIZED
        self.rules: List[str] = []
        self.last_report: Optional[ApplyReport] = None
        self.total_applied = 0

        self._subscription: Optional["Subscription"] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._deferred_prunes: List[str] = []

    @property
    def marker_class(self) -> str:
        return self.effect.marker_class

    # Lifecycle

    async def start(self) -> EngineState:
        """Load the RuleSet and, unless the site is disabled, go ACTIVE."""
        if self.state in (EngineState.LOADING, EngineState.ACTIVE):
            return self.state

        self.state = EngineState.LOADING
        logger.info(f"[Engine] Loading {self.effect.name} rules for {self.origin}")

        try:
            disabled = await self.store.is_disabled(self.origin)
            rules = await self.store.load(self.origin)
        except PersistenceFailure as e:
            # An unreadable store must not block the page
            logger.warning(f"[Engine] {e}; continuing with an empty RuleSet")
            disabled, rules = False, []

        if self.state is not EngineState.LOADING:
            # stopped while the store call was in flight
            return self.state

        if disabled:
            self.state = EngineState.DISABLED
            logger.info(f"[Engine] Cleaning disabled for {self.origin}")
            return self.state

        # keep selectors added while the store call was in flight
        self.rules = list(dict.fromkeys(rules + self.rules))
        self.state = EngineState.ACTIVE
        self.apply_rules()
        self._start_observer()
        return self.state

    def stop(self) -> None:
        """Stop observing and drop any pending debounce timer."""
        self._cancel_debounce()
        if self._subscription is not None:
            self._subscription.disconnect()
            self._subscription = None
        self.state = EngineState.UNINITIALIZED

    async def refresh(self) -> EngineState:
        """Reverse everything and start over from the store."""
        self.reverse_all()
        self.stop()
        self.rules = []
        return await self.start()

    async def set_disabled(self, disabled: bool) -> EngineState:
        try:
            await self.store.set_disabled(self.origin, disabled)
        except PersistenceFailure as e:
            logger.error(f"[Engine] {e}")
            raise
        return await self.refresh()

    # Reconciliation

    def apply_rules(self) -> ApplyReport:
        """
        Run one apply pass over the cached RuleSet against the live DOM.

        Safe to call repeatedly: already-covered nodes are skipped, so a
        second pass on an unchanged DOM changes nothing.
        """
        report = ApplyReport()
        if self.state is not EngineState.ACTIVE:
            return report

        for selector in list(self.rules):
            self._apply_selector(selector, report)

        if report.pruned:
            logger.warning(f"[Engine] Removing {len(report.pruned)} stale/invalid selector(s)")
            for selector in report.pruned:
                self._prune(selector)

        if report.applied:
            logger.info(f"[Engine] Applied {report.applied} {self.effect.name} rule(s) on {self.origin}")

        self.total_applied += report.applied
        self.last_report = report
        return report

    def _apply_selector(self, selector: str, report: ApplyReport) -> None:
        try:
            nodes = self.document.query_all(selector)
            if not nodes:
                raise SelectorStale(selector)
            for node in nodes:
                self._apply_to(node, report)
        except SelectorStale:
            logger.warning(f"[Engine] No elements found for selector: {selector}")
            report.stale.append(selector)
        except SelectorInvalid as e:
            logger.warning(f"[Engine] {e}")
            report.invalid.append(selector)
        except Exception as e:
            # Backend hiccup (detached node, closed window); retry next pass
            logger.warning(f"[Engine] Failed to apply {selector}: {e}")
            report.failed.append(selector)

    def _apply_to(self, node: Any, report: ApplyReport) -> bool:
        doc = self.document
        marker = self.marker_class

        if doc.has_class(node, marker):
            report.skipped += 1
            return False

        # Nested effects would double-blur
        if any(doc.has_class(ancestor, marker) for ancestor in doc.ancestors(node)):
            report.skipped += 1
            return False

        rect = doc.rect(node)
        if rect.width == 0 and rect.height == 0:
            report.skipped += 1
            return False

        # A broader match supersedes narrower markers inside it
        for inner in doc.query_all("." + marker, scope=node):
            self.effect.reverse(doc, inner)
            report.unwrapped += 1

        self.effect.apply(doc, node)
        report.applied += 1
        return True

    def _prune(self, selector: str) -> None:
        if selector in self.rules:
            self.rules.remove(selector)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deferred_prunes.append(selector)
            return
        self._track(loop.create_task(self._remove_from_store(selector)))

    async def _remove_from_store(self, selector: str) -> None:
        try:
            await self.store.remove_one(self.origin, selector)
        except PersistenceFailure as e:
            logger.warning(f"[Engine] Could not prune {selector}: {e}")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for background store writes scheduled by apply passes."""
        while self._deferred_prunes:
            await self._remove_from_store(self._deferred_prunes.pop(0))
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Mutation observation

    def _start_observer(self) -> None:
        if self._subscription is None:
            self._subscription = self.document.subscribe(self.on_mutations)

    def on_mutations(self, records: List["MutationRecord"]) -> None:
        """Restart the quiet-period timer; apply once the page settles."""
        if self.state is not EngineState.ACTIVE:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.apply_rules()
            return
        self._cancel_debounce()
        self._debounce_handle = loop.call_later(self.config.debounce_ms / 1000, self._debounced_apply)

    def _debounced_apply(self) -> None:
        self._debounce_handle = None
        self.apply_rules()

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    @property
    def pending_refresh(self) -> bool:
        return self._debounce_handle is not None

    # Rule edits

    async def add_selector(self, selector: str) -> ApplyReport:
        """
        Apply `selector` now, remember it, then persist it.

        The visual effect is never rolled back; a store failure is raised
        as PersistenceFailure after the effect is already on the page.

        Raises:
            SelectorInvalid: if the selector cannot be evaluated
            PersistenceFailure: if the store rejects the write
        """
        report = ApplyReport()
        if self.state is not EngineState.DISABLED:
            for node in self.document.query_all(selector):
                self._apply_to(node, report)
            self.total_applied += report.applied

        if selector not in self.rules:
            self.rules.append(selector)

        try:
            await self.store.add(self.origin, selector)
        except PersistenceFailure as e:
            logger.error(f"[Engine] Failed to save rule {selector}: {e}")
            raise

        logger.info(f"[Engine] Added {selector} ({report.applied} node(s))")
        return report

    async def remove_selector(self, selector: str) -> int:
        """
        Reverse the effect on nodes marked via `selector` and forget it.

        Returns:
            Number of nodes whose effect was reversed
        """
        reversed_count = 0
        try:
            nodes = self.document.query_all(selector)
        except SelectorInvalid as e:
            logger.warning(f"[Engine] {e}")
            nodes = []

        for node in nodes:
            if self.effect.is_applied(self.document, node):
                self.effect.reverse(self.document, node)
                reversed_count += 1

        if selector in self.rules:
            self.rules.remove(selector)

        # narrower rules unwrapped under the removed match get their marker back
        if reversed_count and self.state is EngineState.ACTIVE:
            self.apply_rules()

        try:
            await self.store.remove_one(self.origin, selector)
        except PersistenceFailure as e:
            logger.error(f"[Engine] Failed to remove rule {selector}: {e}")
            raise

        logger.info(f"[Engine] Removed {selector} ({reversed_count} node(s) restored)")
        return reversed_count

    def reset(self) -> int:
        """
        Reverse every applied effect and clear the cached RuleSet.

        The store is left alone; callers decide whether to clear it too.
        """
        count = self.reverse_all()
        self.rules = []
        self._cancel_debounce()
        logger.info(f"[Engine] Reset {self.origin}: {count} node(s) restored")
        return count

    def reverse_all(self) -> int:
        count = 0
        for node in self.document.query_all("." + self.marker_class):
            self.effect.reverse(self.document, node)
            count += 1
        return count

    def marked_nodes(self) -> List[Any]:
        return self.document.query_all("." + self.marker_class)

    def summary(self) -> Tuple[str, int, int]:
        """(state, rule count, marked node count)"""
        return self.state.value, len(self.rules), len(self.marked_nodes())
