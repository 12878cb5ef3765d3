# keyledger/registry/resolver.py
"""
keyledger Registry: History View and Key Resolver

Read-side helpers on top of KeyLedger or KeyLedgerClient.

    load_history():  full history with the active entry flagged
    KeyResolver:     owner -> active key, with a TTL cache

Usage:
    rows = load_history(client, owner)
    for row in rows:
        marker = "*" if row.active else " "
        print(marker, row.index, row.entry.alg)

    resolver = KeyResolver(client, cache_ttl=60)
    pk = resolver.resolve_public_key(owner)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from web3 import Web3

from .errors import NoActiveKeyError
from .history import KeyEntry

if TYPE_CHECKING:
    from .key_store import KeyLedgerClient
    from .ledger import KeyLedger

logger = logging.getLogger(__name__)

Store = Union["KeyLedger", "KeyLedgerClient"]


# =============================================================================
# History View
# =============================================================================

@dataclass(frozen=True)
class HistoryRow:
    """One history entry as displayed, with its index and active flag."""
    index: int
    entry: KeyEntry
    active: bool = False


def load_history(store: Store, owner: str, now: Optional[int] = None) -> List[HistoryRow]:
    """
    Read an owner's whole history and flag the active entry.

    At most one row is flagged: the newest entry that is neither revoked
    nor expired at `now`. `now` defaults to the store's clock, which for
    KeyLedgerClient is the latest block time.
    """
    if now is None:
        now = _store_now(store)

    count = store.get_history_count(owner)
    entries = [store.get_key(owner, i) for i in range(count)]

    active_index = None
    for index in range(count - 1, -1, -1):
        if entries[index].is_active(now):
            active_index = index
            break

    return [
        HistoryRow(index=i, entry=entry, active=(i == active_index))
        for i, entry in enumerate(entries)
    ]


def _store_now(store: Store) -> int:
    now = getattr(store, "now", None)
    if callable(now):
        return int(now())
    return int(time.time())


# =============================================================================
# Cache Entry
# =============================================================================

@dataclass
class CacheEntry:
    """Cached active key for one owner."""
    entry: KeyEntry
    index: int
    cached_at: float
    ttl: float

    def is_stale(self, now: float) -> bool:
        if now > self.cached_at + self.ttl:
            return True
        # key's own expiry ends the cache entry too
        return self.entry.is_expired(int(now))


# =============================================================================
# KeyResolver
# =============================================================================

class KeyResolver:
    """
    Resolve an owner's active key, caching results for `cache_ttl` seconds.

    Revocations made through another client are only seen once the cache
    entry goes stale or `invalidate()` is called.
    """

    def __init__(
        self,
        store: Store,
        cache_ttl: float = 300.0,  # 5 minutes
        enable_cache: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._store = store
        self._cache_ttl = cache_ttl
        self._enable_cache = enable_cache
        self._clock = clock or time.time

        self._cache: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def resolve_active(self, owner: str) -> KeyEntry:
        """
        Active key of `owner`.

        Raises:
            NoActiveKeyError: no unrevoked, unexpired entry
        """
        owner = Web3.to_checksum_address(owner)
        now = self._clock()

        if self._enable_cache and owner in self._cache:
            cached = self._cache[owner]
            if not cached.is_stale(now):
                self._hits += 1
                return cached.entry
            del self._cache[owner]

        self._misses += 1
        active = self._store.get_active_key(owner)
        if not active.found:
            raise NoActiveKeyError(owner)

        if self._enable_cache:
            self._cache[owner] = CacheEntry(
                entry=active.entry,
                index=active.index,
                cached_at=now,
                ttl=self._cache_ttl,
            )
        logger.debug("Resolved active key %s[%d]", owner, active.index)
        return active.entry

    def resolve_public_key(self, owner: str) -> bytes:
        return self.resolve_active(owner).public_key

    def invalidate(self, owner: Optional[str] = None) -> None:
        """Drop one owner's cache entry, or all of them."""
        if owner is None:
            self._cache.clear()
        else:
            self._cache.pop(Web3.to_checksum_address(owner), None)

    def cache_stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
        }
