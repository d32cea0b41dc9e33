#!/usr/bin/env python3
"""
Clean Page Example
==================

Opens a page in Chrome, applies the rules stored for its site and keeps
them applied while the page re-renders.

Usage:
    python examples/clean_page.py https://news.ycombinator.com
"""

import asyncio
import sys

from webcleaner import CleanerConfig, CleanerSession
from webcleaner.storage import MemoryRuleStore


def main():
    """Blur a couple of elements on a live page."""
    url = sys.argv[1] if len(sys.argv) > 1 else "https://news.ycombinator.com"

    print("=" * 60)
    print("🧹 WebCleaner - Clean Page Example")
    print("=" * 60)
    print()

    # An in-memory store keeps this demo from touching ~/.webcleaner
    store = MemoryRuleStore({
        "news.ycombinator.com": ["#hnmain > tbody > tr:nth-child(1)", ".yclinks"],
    })
    config = CleanerConfig(debounce_ms=200, headless=False)

    with CleanerSession(url, config=config, store=store) as session:
        result = asyncio.run(session.run(duration=15))

    print(f"Origin:  {result.origin}")
    print(f"State:   {result.state}")
    print(f"Applied: {result.applied}")
    print(f"Pruned:  {', '.join(result.pruned) or '-'}")


if __name__ == "__main__":
    main()
