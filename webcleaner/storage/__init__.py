"""Storage - Rule persistence."""

from webcleaner.storage.rule_store import (
    JsonRuleStore,
    MemoryRuleStore,
    NamespacedRuleStore,
    RuleStore,
    SiteStats,
)

__all__ = ["JsonRuleStore", "MemoryRuleStore", "NamespacedRuleStore", "RuleStore", "SiteStats"]
