"""
Rule Store - Per-origin selector persistence.

The cleaning core only talks to the async `RuleStore` interface. Two
reference implementations ship with the package: an in-memory store and
a JSON file store holding one flat key/value mapping:

    {
        "news.example.com": ["#ad-banner", "div.promo:nth-child(3)"],
        "enlarged_news.example.com": ["article > img:nth-child(1)"],
        "settings_disabled_sites": ["bank.example.com"]
    }
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import asyncio
import copy
import json
import logging
import os
import tempfile

from webcleaner.core.errors import PersistenceFailure

logger = logging.getLogger(__name__)

DISABLED_SITES_KEY = "settings_disabled_sites"
ENLARGED_PREFIX = "enlarged_"
# Keys that are not plain origin rule lists
RESERVED_PREFIXES = ("settings_", "stats_", "editmode_", "enlargemode_", "preset_", "disabled_")


@dataclass
class SiteStats:
    """Totals across every stored origin."""
    total_blurred: int = 0
    total_enlarged: int = 0
    total_sites: int = 0
    total_rules: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_blurred": self.total_blurred,
            "total_enlarged": self.total_enlarged,
            "total_sites": self.total_sites,
            "total_rules": self.total_rules,
        }


class RuleStore(ABC):
    """
    Async key/value persistence keyed by page origin.

    Subclasses implement `_read` and `_write` over a flat mapping; every
    public operation is a read-modify-write under one lock.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _read(self) -> Dict[str, Any]:
        """Return a private copy of the whole mapping."""

    @abstractmethod
    async def _write(self, data: Dict[str, Any]) -> None:
        pass

    async def load(self, origin: str) -> List[str]:
        data = await self._guarded("load", origin, self._read)
        return list(data.get(origin) or [])

    async def save(self, origin: str, rules: List[str]) -> None:
        async def op() -> None:
            data = await self._read()
            data[origin] = list(dict.fromkeys(rules))
            await self._write(data)
        await self._guarded("save", origin, op)

    async def add(self, origin: str, selector: str) -> bool:
        """Append `selector` unless present. Returns True if it was added."""
        async def op() -> bool:
            data = await self._read()
            rules = list(data.get(origin) or [])
            if selector in rules:
                return False
            rules.append(selector)
            data[origin] = rules
            await self._write(data)
            return True
        added = await self._guarded("add", origin, op)
        if added:
            logger.info(f"[RuleStore] Rule saved for {origin}: {selector}")
        return added

    async def remove_one(self, origin: str, selector: str) -> bool:
        """Drop `selector`. Returns True if it was stored."""
        async def op() -> bool:
            data = await self._read()
            rules = list(data.get(origin) or [])
            if selector not in rules:
                return False
            data[origin] = [r for r in rules if r != selector]
            await self._write(data)
            return True
        removed = await self._guarded("remove", origin, op)
        if removed:
            logger.info(f"[RuleStore] Rule removed for {origin}: {selector}")
        return removed

    async def clear(self, origin: str) -> None:
        async def op() -> None:
            data = await self._read()
            if data.pop(origin, None) is not None:
                await self._write(data)
        await self._guarded("clear", origin, op)

    async def is_disabled(self, origin: str) -> bool:
        data = await self._guarded("read settings", origin, self._read)
        return origin in (data.get(DISABLED_SITES_KEY) or [])

    async def set_disabled(self, origin: str, disabled: bool) -> None:
        async def op() -> None:
            data = await self._read()
            sites = [s for s in (data.get(DISABLED_SITES_KEY) or []) if s != origin]
            if disabled:
                sites.append(origin)
            data[DISABLED_SITES_KEY] = sites
            await self._write(data)
        await self._guarded("write settings", origin, op)

    async def origins(self) -> List[str]:
        """Origins that currently have at least one rule."""
        data = await self._guarded("list", "*", self._read)
        return sorted(
            key for key, value in data.items()
            if not key.startswith(RESERVED_PREFIXES)
            and not key.startswith(ENLARGED_PREFIX)
            and isinstance(value, list) and value
        )

    async def stats(self) -> SiteStats:
        data = await self._guarded("stats", "*", self._read)
        stats = SiteStats()
        for key, value in data.items():
            if not isinstance(value, list) or key.startswith(RESERVED_PREFIXES):
                continue
            if key.startswith(ENLARGED_PREFIX):
                stats.total_enlarged += len(value)
            elif value:
                stats.total_blurred += len(value)
                stats.total_rules += len(value)
                stats.total_sites += 1
        return stats

    def namespaced(self, prefix: str) -> "NamespacedRuleStore":
        """View of this store whose origin keys carry `prefix` (e.g. ``enlarged_``)."""
        return NamespacedRuleStore(self, prefix)

    async def _guarded(self, operation: str, origin: str, func):
        async with self._lock:
            try:
                return await func()
            except PersistenceFailure:
                raise
            except (OSError, ValueError, TypeError) as e:
                logger.error(f"[RuleStore] {operation} failed for {origin}: {e}")
                raise PersistenceFailure(operation, origin, e)


class NamespacedRuleStore(RuleStore):
    """
    Prefixes origin keys before delegating to a parent store.

    The disabled flag is shared with the parent so one toggle disables
    every effect on a site.
    """

    def __init__(self, parent: RuleStore, prefix: str):
        super().__init__()
        self.parent = parent
        self.prefix = prefix

    def _key(self, origin: str) -> str:
        return f"{self.prefix}{origin}"

    async def _read(self) -> Dict[str, Any]:
        return await self.parent._read()

    async def _write(self, data: Dict[str, Any]) -> None:
        await self.parent._write(data)

    async def load(self, origin: str) -> List[str]:
        return await self.parent.load(self._key(origin))

    async def save(self, origin: str, rules: List[str]) -> None:
        await self.parent.save(self._key(origin), rules)

    async def add(self, origin: str, selector: str) -> bool:
        return await self.parent.add(self._key(origin), selector)

    async def remove_one(self, origin: str, selector: str) -> bool:
        return await self.parent.remove_one(self._key(origin), selector)

    async def clear(self, origin: str) -> None:
        await self.parent.clear(self._key(origin))

    async def is_disabled(self, origin: str) -> bool:
        return await self.parent.is_disabled(origin)

    async def set_disabled(self, origin: str, disabled: bool) -> None:
        await self.parent.set_disabled(origin, disabled)

    async def origins(self) -> List[str]:
        data = await self.parent._guarded("list", "*", self.parent._read)
        return sorted(
            key[len(self.prefix):] for key, value in data.items()
            if key.startswith(self.prefix) and isinstance(value, list) and value
        )

    async def stats(self) -> SiteStats:
        return await self.parent.stats()


class MemoryRuleStore(RuleStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def _read(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    async def _write(self, data: Dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonRuleStore(RuleStore):
    """
    Single JSON file store.

    File I/O runs in a worker thread; writes go to a temp file that
    replaces the old file so a crash never leaves half a document.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = os.path.abspath(os.path.expanduser(path))

    async def _read(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read_sync)

    async def _write(self, data: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_sync, data)

    def _read_sync(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as handle:
            content = handle.read()
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write_sync(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".rules-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
