"""
Content cache: page bodies keyed by id, with max-age, LRU capacity and single-flight fetches.

Responsibility: Shield the workspace API from repeated body fetches. A stale
entry is served when a refresh fails; only a miss with a failing fetch
raises FetchError.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from workspace_rag.core.config import (
    CACHE_MAX_AGE_SECONDS,
    CACHE_MAX_ENTRIES,
    CACHE_MAX_TOTAL_CHARS,
)
from workspace_rag.core.errors import FetchError, WorkspaceRAGError
from workspace_rag.core.models import CacheEntry, CachedContent, PageBody
from workspace_rag.services.text_processing import clean_text

logger = logging.getLogger(__name__)

# A fetcher returns the bare body, or a PageBody when it collects links in the same walk.
BodyFetcher = Callable[[str], Awaitable[str | PageBody]]


class _InFlight:
    """One shared fetch plus the number of callers currently awaiting it."""

    def __init__(self) -> None:
        self.task: asyncio.Task | None = None
        self.waiters = 0


class ContentCache:
    """
    Async LRU cache of page bodies.

    Concurrent get() calls for the same id share one fetch task. Each caller
    awaits it through asyncio.shield, so one caller being cancelled does not
    cancel the fetch for the others; the fetch is cancelled only when its
    last waiter leaves. A fetch stores its result only while its slot is
    still registered, so invalidation detaches in-flight fetches.
    """

    def __init__(
        self,
        fetcher: BodyFetcher,
        *,
        max_age: float = CACHE_MAX_AGE_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        max_total_chars: int = CACHE_MAX_TOTAL_CHARS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._fetcher = fetcher
        self.max_age = max_age
        self.max_entries = max_entries
        self.max_total_chars = max_total_chars
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_chars = 0
        self._inflight: dict[str, _InFlight] = {}
        self.hits = 0
        self.misses = 0
        self.stale_serves = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at <= self.max_age

    def peek(self, page_id: str) -> CacheEntry | None:
        """Stored entry without fetching or touching recency."""
        return self._entries.get(page_id)

    async def get(self, page_id: str) -> CachedContent:
        entry = self._entries.get(page_id)
        if entry is not None and self._is_fresh(entry):
            self._entries.move_to_end(page_id)
            self.hits += 1
            return CachedContent(
                id=entry.id, content=entry.content, fetched_at=entry.fetched_at, related=entry.related
            )

        self.misses += 1
        slot = self._inflight.get(page_id) or self._start_fetch(page_id)
        slot.waiters += 1
        try:
            fresh = await asyncio.shield(slot.task)
        except asyncio.CancelledError:
            if slot.waiters == 1 and not slot.task.done():
                logger.info("[cache:get] last waiter cancelled, cancelling fetch page_id=%s", page_id)
                self._release(page_id, slot)
                slot.task.cancel()
            raise
        except FetchError as e:
            return self._stale_or_raise(page_id, e)
        finally:
            slot.waiters -= 1
        return CachedContent(id=fresh.id, content=fresh.content, fetched_at=fresh.fetched_at, related=fresh.related)

    def _release(self, page_id: str, slot: _InFlight) -> None:
        if self._inflight.get(page_id) is slot:
            del self._inflight[page_id]

    def _start_fetch(self, page_id: str) -> _InFlight:
        slot = _InFlight()
        slot.task = asyncio.ensure_future(self._fetch_and_store(page_id, slot))
        self._inflight[page_id] = slot

        def _on_done(done: asyncio.Task) -> None:
            self._release(page_id, slot)
            # Mark the outcome as observed; waiters already received it.
            if not done.cancelled():
                done.exception()

        slot.task.add_done_callback(_on_done)
        return slot

    async def _fetch_and_store(self, page_id: str, slot: _InFlight) -> CacheEntry:
        logger.info("[cache:fetch] IN  page_id=%s", page_id)
        try:
            body = await self._fetcher(page_id)
        except WorkspaceRAGError:
            raise
        except Exception as e:
            logger.warning("[cache:fetch] fetch failed page_id=%s: %s", page_id, e)
            raise FetchError(f"Failed to fetch page {page_id}: {e}") from e
        related = None
        if isinstance(body, PageBody):
            body, related = body.content, body.related
        content = clean_text(body or "")
        entry = CacheEntry(
            id=page_id, content=content, fetched_at=self._clock(), size_hint=len(content), related=related
        )
        if self._inflight.get(page_id) is slot:
            self._store(entry)
        else:
            logger.info("[cache:fetch] page_id=%s invalidated during fetch, not stored", page_id)
        logger.info("[cache:fetch] OUT page_id=%s len=%d", page_id, entry.size_hint)
        return entry

    def _store(self, entry: CacheEntry) -> None:
        previous = self._entries.pop(entry.id, None)
        if previous is not None:
            self._total_chars -= previous.size_hint
        self._entries[entry.id] = entry
        self._total_chars += entry.size_hint
        while len(self._entries) > 1 and (
            len(self._entries) > self.max_entries or self._total_chars > self.max_total_chars
        ):
            evicted_id, evicted = self._entries.popitem(last=False)
            self._total_chars -= evicted.size_hint
            logger.info("[cache:store] evicted page_id=%s", evicted_id)

    def _stale_or_raise(self, page_id: str, error: FetchError) -> CachedContent:
        entry = self._entries.get(page_id)
        if entry is None:
            raise error
        self.stale_serves += 1
        self._entries.move_to_end(page_id)
        logger.warning(
            "[cache:get] refresh failed, serving stale page_id=%s age=%.0fs: %s",
            page_id, self._clock() - entry.fetched_at, error.message,
        )
        return CachedContent(
            id=entry.id, content=entry.content, fetched_at=entry.fetched_at, stale=True, related=entry.related
        )

    def invalidate(self, page_id: str) -> None:
        entry = self._entries.pop(page_id, None)
        if entry is not None:
            self._total_chars -= entry.size_hint
        # A detached fetch still answers its current waiters but is not stored.
        self._inflight.pop(page_id, None)

    def invalidate_all(self) -> None:
        dropped = len(self._entries)
        self._entries.clear()
        self._total_chars = 0
        self._inflight.clear()
        logger.info("[cache:invalidate_all] cleared entries=%d", dropped)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "total_chars": self._total_chars,
            "hits": self.hits,
            "misses": self.misses,
            "stale_serves": self.stale_serves,
            "in_flight": len(self._inflight),
        }
