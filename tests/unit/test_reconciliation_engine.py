import asyncio
from unittest.mock import patch

import pytest
from webcleaner.core.config import CleanerConfig
from webcleaner.core.errors import PersistenceFailure, SelectorInvalid
from webcleaner.layers.reconciliation.effects import HIDDEN_MARKER, HideEffect
from webcleaner.layers.reconciliation.engine import ApplyReport, EngineState, ReconciliationEngine
from webcleaner.layers.sense.document import Rect
from webcleaner.layers.sense.soup_document import SoupDocument
from webcleaner.storage.rule_store import DISABLED_SITES_KEY, MemoryRuleStore

ORIGIN = "news.example.com"

PAGE = """
<html><body>
  <header><div id="ad-banner">Ad</div><nav id="menu">Menu</nav></header>
  <div class="promo">One</div>
  <div class="promo">Two</div>
  <div class="promo">Three</div>
  <section id="outer"><div id="inner">Inner</div></section>
  <div id="collapsed"></div>
</body></html>
"""

LAYOUT = {
    "#ad-banner": Rect(0, 0, 728, 90),
    "#menu": Rect(0, 90, 728, 30),
    ".promo": Rect(0, 120, 300, 250),
    "#inner": Rect(0, 400, 300, 100),
}


class ReadFailingStore(MemoryRuleStore):
    async def _read(self):
        raise OSError("disk gone")


class WriteFailingStore(MemoryRuleStore):
    async def _write(self, data):
        raise OSError("read-only filesystem")


def page():
    return SoupDocument(PAGE, url=f"https://{ORIGIN}/articles/1", layout=LAYOUT)


def one(doc, selector):
    return doc.query_all(selector)[0]


def make_engine(doc, rules=None, store=None, **config):
    store = store or MemoryRuleStore({ORIGIN: list(rules or [])})
    config.setdefault("debounce_ms", 10)
    return ReconciliationEngine(doc, store, config=CleanerConfig(**config)), store


def test_end_to_end_stale_selector_is_pruned():
    """Test apply, re-render and pruning of a selector whose node disappeared."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#ad-banner", "div.promo:nth-child(3)"])

        assert await engine.start() is EngineState.ACTIVE

        banner = one(doc, "#ad-banner")
        promo = one(doc, "div.promo:nth-child(3)")
        for node in (banner, promo):
            assert doc.has_class(node, HIDDEN_MARKER)
            assert doc.get_style(node, "filter") == ("blur(8px)", "important")
            assert doc.get_style(node, "pointer-events") == ("none", "important")

        doc.remove(banner)
        assert engine.pending_refresh

        await asyncio.sleep(0.1)
        await engine.drain()

        assert await store.load(ORIGIN) == ["div.promo:nth-child(3)"]
        assert engine.rules == ["div.promo:nth-child(3)"]
        assert engine.last_report.stale == ["#ad-banner"]
        assert doc.has_class(one(doc, "div.promo:nth-child(3)"), HIDDEN_MARKER)

    asyncio.run(scenario())


def test_apply_is_idempotent():
    """Test that a second pass on an unchanged page changes nothing."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, ["#ad-banner", ".promo"])
        await engine.start()
        first = engine.last_report
        snapshot = doc.to_html()

        second = engine.apply_rules()

        assert first.applied == 4
        assert second.applied == 0
        assert second.skipped == 4
        assert doc.to_html() == snapshot

    asyncio.run(scenario())


def test_no_effect_nested_inside_another():
    """Test that nodes under a marked ancestor are skipped."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, ["#outer", "#inner"])
        await engine.start()

        assert doc.has_class(one(doc, "#outer"), HIDDEN_MARKER)
        assert not doc.has_class(one(doc, "#inner"), HIDDEN_MARKER)
        assert engine.last_report.skipped == 1

    asyncio.run(scenario())


def test_broader_selector_unwraps_inner_marker():
    """Test that a broader match takes over the markers inside it."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#inner"])
        await engine.start()
        inner = one(doc, "#inner")
        assert doc.has_class(inner, HIDDEN_MARKER)

        report = await engine.add_selector("#outer")

        assert report.applied == 1
        assert report.unwrapped == 1
        assert not doc.has_class(inner, HIDDEN_MARKER)
        assert doc.get_attribute(inner, "style") is None
        assert await store.load(ORIGIN) == ["#inner", "#outer"]

    asyncio.run(scenario())


def test_invalid_selector_does_not_abort_the_pass():
    """Test that one invalid selector is pruned and the rest still apply."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["div[", "#ad-banner"])
        await engine.start()
        await engine.drain()

        assert doc.has_class(one(doc, "#ad-banner"), HIDDEN_MARKER)
        assert engine.last_report.invalid == ["div["]
        assert await store.load(ORIGIN) == ["#ad-banner"]

    asyncio.run(scenario())


def test_zero_sized_matches_are_skipped_not_pruned():
    """Test that zero-sized matches are skipped but the rule is kept."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#collapsed"])
        await engine.start()
        await engine.drain()

        assert not doc.has_class(one(doc, "#collapsed"), HIDDEN_MARKER)
        assert engine.last_report.skipped == 1
        assert await store.load(ORIGIN) == ["#collapsed"]

    asyncio.run(scenario())


def test_duplicate_stored_selectors_are_collapsed():
    """Test that duplicate stored selectors apply once."""
    async def scenario():
        engine, _ = make_engine(page(), ["#ad-banner", "#ad-banner"])
        await engine.start()
        assert engine.rules == ["#ad-banner"]

    asyncio.run(scenario())


def test_rerender_is_healed_after_debounce():
    """Test that replaced nodes are blurred again after the quiet period."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, [".promo"])
        await engine.start()

        old = doc.query_all(".promo")[1]
        fresh = doc.replace_html(old, '<div class="promo">Two again</div>', layout={".promo": Rect(0, 120, 300, 250)})[0]
        assert not doc.has_class(fresh, HIDDEN_MARKER)

        await asyncio.sleep(0.1)

        assert doc.has_class(fresh, HIDDEN_MARKER)
        assert engine.last_report.applied == 1

    asyncio.run(scenario())


def test_mutation_bursts_are_coalesced():
    """Test that a burst of mutations triggers a single apply pass."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, [".promo"], debounce_ms=30)
        await engine.start()
        body = doc.body()

        with patch.object(engine, "apply_rules", wraps=engine.apply_rules) as apply_rules:
            for i in range(5):
                doc.insert_html(body, f'<div class="promo">Late {i}</div>')
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.1)

        assert apply_rules.call_count == 1

    asyncio.run(scenario())


def test_mutation_without_running_loop_applies_immediately():
    """Test that mutations outside an event loop apply synchronously."""
    doc = page()
    engine, store = make_engine(doc, ["#ad-banner", "#menu"])
    asyncio.run(engine.start())

    doc.remove(one(doc, "#ad-banner"))

    assert engine.rules == ["#menu"]
    asyncio.run(engine.drain())
    assert asyncio.run(store.load(ORIGIN)) == ["#menu"]


def test_disabled_site_applies_nothing():
    """Test that a disabled site gets no effects and no observer."""
    async def scenario():
        doc = page()
        store = MemoryRuleStore({ORIGIN: ["#ad-banner"], DISABLED_SITES_KEY: [ORIGIN]})
        engine, _ = make_engine(doc, store=store)

        assert await engine.start() is EngineState.DISABLED
        assert engine.marked_nodes() == []

        doc.remove(one(doc, "#menu"))
        assert not engine.pending_refresh

        assert await engine.set_disabled(False) is EngineState.ACTIVE
        assert doc.has_class(one(doc, "#ad-banner"), HIDDEN_MARKER)

    asyncio.run(scenario())


def test_disabling_reverses_effects():
    """Test that disabling a site reverses effects already applied."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#ad-banner"])
        await engine.start()

        assert await engine.set_disabled(True) is EngineState.DISABLED
        assert engine.marked_nodes() == []
        assert await store.is_disabled(ORIGIN)
        assert await store.load(ORIGIN) == ["#ad-banner"]

    asyncio.run(scenario())


def test_unreadable_store_yields_empty_ruleset():
    """Test that a failing store read leaves the engine active with no rules."""
    async def scenario():
        engine, _ = make_engine(page(), store=ReadFailingStore())
        assert await engine.start() is EngineState.ACTIVE
        assert engine.rules == []

    asyncio.run(scenario())


def test_add_selector_keeps_effect_when_save_fails():
    """Test that the effect stays on the page when persisting fails."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, store=WriteFailingStore({ORIGIN: []}))
        await engine.start()

        with pytest.raises(PersistenceFailure):
            await engine.add_selector("#ad-banner")

        assert doc.has_class(one(doc, "#ad-banner"), HIDDEN_MARKER)
        assert "#ad-banner" in engine.rules

    asyncio.run(scenario())


def test_add_invalid_selector_raises():
    """Test that adding an invalid selector raises SelectorInvalid."""
    async def scenario():
        engine, store = make_engine(page())
        await engine.start()
        with pytest.raises(SelectorInvalid):
            await engine.add_selector("div[")
        assert await store.load(ORIGIN) == []

    asyncio.run(scenario())


def test_add_selector_while_disabled_only_persists():
    """Test that adding on a disabled site stores the rule without applying it."""
    async def scenario():
        doc = page()
        store = MemoryRuleStore({DISABLED_SITES_KEY: [ORIGIN]})
        engine, _ = make_engine(doc, store=store)
        await engine.start()

        report = await engine.add_selector("#ad-banner")

        assert report.applied == 0
        assert not doc.has_class(one(doc, "#ad-banner"), HIDDEN_MARKER)
        assert await store.load(ORIGIN) == ["#ad-banner"]

    asyncio.run(scenario())


def test_remove_selector_restores_nodes():
    """Test that removing a rule restores its nodes and updates the store."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#ad-banner", ".promo"])
        await engine.start()

        restored = await engine.remove_selector(".promo")

        assert restored == 3
        assert engine.rules == ["#ad-banner"]
        assert await store.load(ORIGIN) == ["#ad-banner"]
        assert all(not doc.has_class(n, HIDDEN_MARKER) for n in doc.query_all(".promo"))

    asyncio.run(scenario())


def test_reset_reverses_everything_but_keeps_store():
    """Test that reset restores the page but leaves stored rules alone."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#ad-banner", ".promo"])
        await engine.start()

        assert engine.reset() == 4
        assert engine.rules == []
        assert engine.marked_nodes() == []
        assert await store.load(ORIGIN) == ["#ad-banner", ".promo"]

    asyncio.run(scenario())


def test_refresh_reloads_from_store():
    """Test that refresh picks up rules written to the store elsewhere."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#ad-banner"])
        await engine.start()
        await store.add(ORIGIN, "#menu")

        assert await engine.refresh() is EngineState.ACTIVE
        assert engine.rules == ["#ad-banner", "#menu"]
        assert doc.has_class(one(doc, "#menu"), HIDDEN_MARKER)

    asyncio.run(scenario())


def test_hide_effect_engine():
    """Test an engine running the hide effect."""
    async def scenario():
        doc = page()
        store = MemoryRuleStore({ORIGIN: ["#ad-banner"]})
        engine = ReconciliationEngine(doc, store, effect=HideEffect())
        await engine.start()
        assert doc.get_style(one(doc, "#ad-banner"), "display") == ("none", "important")
        assert engine.summary() == ("active", 1, 1)

    asyncio.run(scenario())


def test_stop_disconnects_observer():
    """Test that stop disconnects the observer and cancels the timer."""
    async def scenario():
        doc = page()
        engine, _ = make_engine(doc, [".promo"])
        await engine.start()
        engine.stop()

        doc.insert_html(doc.body(), '<div class="promo">Late</div>')

        assert engine.state is EngineState.UNINITIALIZED
        assert not engine.pending_refresh

    asyncio.run(scenario())


def test_apply_report_to_dict():
    """Test ApplyReport serialization."""
    report = ApplyReport(applied=2, stale=["#a"], invalid=["b["])
    assert report.pruned == ["#a", "b["]
    assert report.to_dict()["applied"] == 2


def test_removing_broader_selector_restores_inner_rule():
    """Test that removing a broader rule re-marks the narrower rule it had unwrapped."""
    async def scenario():
        doc = page()
        engine, store = make_engine(doc, ["#inner"])
        await engine.start()
        await engine.add_selector("#outer")
        inner = one(doc, "#inner")
        assert not doc.has_class(inner, HIDDEN_MARKER)

        restored = await engine.remove_selector("#outer")

        assert restored == 1
        assert engine.rules == ["#inner"]
        assert not doc.has_class(one(doc, "#outer"), HIDDEN_MARKER)
        assert doc.has_class(inner, HIDDEN_MARKER)
        assert doc.get_style(inner, "filter") == ("blur(8px)", "important")
        assert await store.load(ORIGIN) == ["#inner"]

    asyncio.run(scenario())


def test_selector_added_while_loading_survives_start():
    """Test that a rule added during the initial store read is kept in the RuleSet."""
    class SlowStore(MemoryRuleStore):
        def __init__(self, initial):
            super().__init__(initial)
            self.gate = asyncio.Event()

        async def load(self, origin):
            rules = await super().load(origin)
            await self.gate.wait()
            return rules

    async def scenario():
        doc = page()
        store = SlowStore({ORIGIN: ["#ad-banner"]})
        engine, _ = make_engine(doc, store=store)

        starting = asyncio.create_task(engine.start())
        await asyncio.sleep(0.01)
        assert engine.state is EngineState.LOADING

        await engine.add_selector("#menu")
        store.gate.set()
        assert await starting is EngineState.ACTIVE

        assert engine.rules == ["#ad-banner", "#menu"]
        assert doc.has_class(one(doc, "#menu"), HIDDEN_MARKER)
        assert doc.has_class(one(doc, "#ad-banner"), HIDDEN_MARKER)

    asyncio.run(scenario())
