#!/usr/bin/env python3
"""
Offline Audit Example
=====================

Works on a saved HTML snapshot, no browser needed: synthesizes
selectors, applies them, then simulates a client-side re-render and
shows the engine healing the page and pruning what went stale.

Usage:
    python examples/offline_audit.py
"""

import asyncio

from webcleaner import CleanerConfig
from webcleaner.layers.reconciliation import ReconciliationEngine
from webcleaner.layers.sense import Rect, SoupDocument
from webcleaner.layers.synthesis import SelectorSynthesizer
from webcleaner.storage import MemoryRuleStore

SNAPSHOT = """
<html><body>
  <header><div id="ad-banner">Sponsored</div></header>
  <main id="feed">
    <div class="story">Story one</div>
    <div class="story promo">Promoted story</div>
    <div class="story">Story three</div>
  </main>
</body></html>
"""

LAYOUT = {
    "#ad-banner": Rect(0, 0, 728, 90),
    ".story": Rect(0, 100, 600, 120),
}


async def run():
    doc = SoupDocument(SNAPSHOT, url="https://news.example.com/", layout=LAYOUT)
    store = MemoryRuleStore()
    engine = ReconciliationEngine(doc, store, config=CleanerConfig(debounce_ms=50))
    synthesizer = SelectorSynthesizer(doc)

    await engine.start()

    for target in ("#ad-banner", ".promo"):
        node = doc.query_all(target)[0]
        selector = synthesizer.synthesize(node)
        report = await engine.add_selector(selector)
        print(f"Designated {doc.describe(node):<24} -> {selector} ({report.applied} node)")

    print(f"\nStored: {await store.load(doc.origin)}")

    # The page re-renders the promo and drops the banner
    promo = doc.query_all(".promo")[0]
    doc.replace_html(promo, '<div class="story promo">Promoted again</div>', layout=LAYOUT)
    doc.remove(doc.query_all("#ad-banner")[0])

    await asyncio.sleep(0.2)
    await engine.drain()

    print(f"After re-render: {engine.last_report.to_dict()}")
    print(f"Stored: {await store.load(doc.origin)}")


def main():
    print("=" * 60)
    print("🧹 WebCleaner - Offline Audit Example")
    print("=" * 60)
    print()
    asyncio.run(run())


if __name__ == "__main__":
    main()
