"""Time-bounded collection name -> id lookup.

Every miss costs one ``list_collections`` call, and that single response
refreshes the entry of *every* collection, so a pass touching ten
collections usually pays for one listing.  Staleness is an accepted
trade-off: entries live for ``ttl`` seconds and are otherwise trusted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from kb_sync.errors import CollectionExistsError, RemoteError
from kb_sync.sync.ports import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CollectionCacheEntry:
    collection_id: str
    cached_at: float


class CollectionDirectory:
    """Resolves collection names to remote ids through a TTL cache.

    Refreshes and creates are serialised behind one ``asyncio.Lock``:
    documents reconciled in parallel that both need a brand-new
    collection see the same id instead of creating it twice.

    Within a :meth:`pass_scope`, a name that has been resolved once stays
    resolved until the scope ends, even if its entry ages past the TTL.

    Args:
        remote: The remote store used for list/create calls.
        ttl: Entry lifetime in seconds.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        remote: RemoteStore,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._remote = remote
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CollectionCacheEntry] = {}
        self._listed_at: float | None = None
        self._pinned: set[str] | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Pass scoping
    # ------------------------------------------------------------------

    @contextmanager
    def pass_scope(self) -> Iterator[None]:
        """Pin names resolved inside the block for the block's duration."""
        self._pinned = set()
        try:
            yield
        finally:
            self._pinned = None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def resolve(self, name: str) -> str | None:
        """Return the id of collection *name*, or ``None`` if it does not exist.

        Raises:
            RemoteError: If the listing call fails.
        """
        cached = self._lookup(name)
        if cached is not None or self._listing_fresh():
            return cached

        async with self._lock:
            # Another task may have refreshed while we waited.
            cached = self._lookup(name)
            if cached is not None or self._listing_fresh():
                return cached
            await self._refresh()
            return self._lookup(name)

    async def get_or_create(self, name: str) -> str:
        """Return the id of collection *name*, creating it when absent.

        A create refused with "already exists" (someone else won the
        race) falls back to a forced re-listing.

        Raises:
            RemoteError: If the collection can be neither found nor created.
        """
        existing = await self.resolve(name)
        if existing is not None:
            return existing

        async with self._lock:
            existing = self._lookup(name)
            if existing is not None:
                return existing
            try:
                collection_id = await self._remote.create_collection(name)
            except CollectionExistsError:
                logger.debug("Collection %s already exists, re-listing", name)
                await self._refresh()
                existing = self._lookup(name)
                if existing is None:
                    raise
                return existing
            self._store(name, collection_id)
            logger.info("Created collection %s (%s)", name, collection_id)
            return collection_id

    def invalidate(self, name: str | None = None) -> None:
        """Evict one entry, or everything (forcing a re-list) when *name* is None."""
        if name is None:
            self._entries.clear()
            self._listed_at = None
            if self._pinned is not None:
                self._pinned.clear()
            return
        self._entries.pop(name, None)
        self._listed_at = None
        if self._pinned is not None:
            self._pinned.discard(name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, name: str) -> str | None:
        entry = self._entries.get(name)
        if entry is None:
            return None
        pinned = self._pinned is not None and name in self._pinned
        if not pinned and self._clock() - entry.cached_at >= self._ttl:
            return None
        if self._pinned is not None:
            self._pinned.add(name)
        return entry.collection_id

    def _listing_fresh(self) -> bool:
        return self._listed_at is not None and self._clock() - self._listed_at < self._ttl

    def _store(self, name: str, collection_id: str) -> None:
        self._entries[name] = CollectionCacheEntry(collection_id, self._clock())
        if self._pinned is not None:
            self._pinned.add(name)

    async def _refresh(self) -> None:
        try:
            collections = await self._remote.list_collections()
        except RemoteError:
            self._listed_at = None
            raise
        now = self._clock()
        fresh: dict[str, CollectionCacheEntry] = {}
        for collection in collections:
            # First match wins when the service holds duplicate names.
            fresh.setdefault(collection.name, CollectionCacheEntry(collection.id, now))
        self._entries = fresh
        self._listed_at = now
        logger.debug("Collection cache refreshed: %d collection(s)", len(fresh))
