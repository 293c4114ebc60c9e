"""Stale-while-revalidate cache for content reads.

Every distinct read (kind, path and query parameters) is one ``CacheKey``.
The first read of a key waits for the fetch; later reads get the cached
value straight away and, when the entry is stale, start a background refetch
that replaces it. An entry is stale when it is older than ``stale_after``,
when its kind was invalidated after the entry's fetch started, or when the
server has reported a newer revision for its kind than the one the entry was
read at.

A fetch that fails with one of the ``evict_on`` errors is authoritative: the
entry is dropped, so the next read waits for a fresh fetch and sees the
error itself. Any other failure keeps the cached value.

Only one fetch per key runs at a time. Callers share it through
``asyncio.shield`` so a caller that is cancelled does not abort a fetch other
callers still wait on.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    kind: str
    path: str
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(cls, kind: str, path: str, params: Optional[Mapping[str, Any]] = None) -> "CacheKey":
        items = sorted((str(name), _param_text(value)) for name, value in (params or {}).items() if value is not None)
        return cls(kind=kind, path=path, params=tuple(items))


def _param_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class CacheFetch:
    value: Any
    revision: Optional[int] = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    coalesced: int = 0
    background_refreshes: int = 0
    refresh_failures: int = 0


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: float
    revision: Optional[int]
    generation: int


@dataclass
class _Flight:
    task: "asyncio.Task[Any]"
    keep_alive: bool
    waiters: int = 0


Fetcher = Callable[[CacheKey], Awaitable[CacheFetch]]


@dataclass
class ContentCache:
    fetcher: Fetcher
    stale_after: float = 30.0
    clock: Callable[[], float] = time.monotonic
    evict_on: Tuple[Type[BaseException], ...] = ()
    stats: CacheStats = field(default_factory=CacheStats)

    def __post_init__(self) -> None:
        self._entries: Dict[CacheKey, _CacheEntry] = {}
        self._inflight: Dict[CacheKey, _Flight] = {}
        # Fetches detached by clear(); still covered by drain() and aclose().
        self._orphans: Set["asyncio.Task[Any]"] = set()
        self._generations: Dict[str, int] = defaultdict(int)
        self._revisions: Dict[str, int] = {}
        self._epoch = 0

    async def read(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return await self._join(key, keep_alive=False)
        self.stats.hits += 1
        if self.is_stale(key):
            self._refresh_in_background(key)
        return entry.value

    async def refresh(self, key: CacheKey) -> Any:
        """Refetch now; failures propagate and the previous value stays cached."""
        return await self._join(key, keep_alive=True)

    def peek(self, key: CacheKey) -> Optional[Any]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        if entry.generation < self._generations[key.kind]:
            return True
        known = self._revisions.get(key.kind)
        if known is not None and entry.revision is not None and entry.revision < known:
            return True
        return self.clock() - entry.fetched_at >= self.stale_after

    def invalidate(self, kind: str) -> None:
        """Mark every entry of ``kind`` stale; the next read of each refetches."""
        self._generations[kind] += 1
        logger.debug("Invalidated cached %s (generation %s)", kind, self._generations[kind])

    def observe_revision(self, kind: str, revision: int) -> None:
        if revision > self._revisions.get(kind, -1):
            self._revisions[kind] = revision

    def clear(self) -> None:
        """Drop every entry; fetches still running finish without storing."""
        for flight in self._inflight.values():
            if not flight.task.done():
                self._orphans.add(flight.task)
                flight.task.add_done_callback(self._orphans.discard)
        self._entries.clear()
        self._inflight.clear()
        self._revisions.clear()
        self._generations.clear()
        self._epoch += 1

    def _running(self) -> List["asyncio.Task[Any]"]:
        tasks = [flight.task for flight in self._inflight.values()]
        tasks.extend(task for task in self._orphans if task not in tasks)
        return [task for task in tasks if not task.done()]

    async def drain(self) -> None:
        """Wait until no fetch is running, including ones detached by ``clear``."""
        tasks = self._running()
        while tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            tasks = self._running()

    async def aclose(self) -> None:
        tasks = self._running()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.clear()
        self._orphans.clear()

    def _start(self, key: CacheKey, keep_alive: bool) -> _Flight:
        generation = self._generations[key.kind]
        epoch = self._epoch
        task = asyncio.get_running_loop().create_task(self._fetch(key, generation, epoch))
        flight = _Flight(task=task, keep_alive=keep_alive)
        self._inflight[key] = flight

        def _done(finished: "asyncio.Task[Any]") -> None:
            current = self._inflight.get(key)
            if current is not None and current.task is finished:
                del self._inflight[key]

        task.add_done_callback(_done)
        return flight

    async def _fetch(self, key: CacheKey, generation: int, epoch: int) -> Any:
        self.stats.fetches += 1
        known = self._revisions.get(key.kind)
        try:
            result = await self.fetcher(key)
        except self.evict_on:
            if epoch == self._epoch and self._entries.pop(key, None) is not None:
                logger.info("Dropped cached %s: the server no longer serves it", key)
            raise
        if epoch != self._epoch:
            return result.value
        revision = result.revision
        if revision is None:
            # Responses without a revision are as current as the newest
            # revision seen when the fetch started.
            revision = known
        else:
            self.observe_revision(key.kind, revision)
        # Keep the generation seen at start: an invalidation that landed
        # while this fetch ran leaves the entry stale.
        self._entries[key] = _CacheEntry(
            value=result.value,
            fetched_at=self.clock(),
            revision=revision,
            generation=generation,
        )
        return result.value

    async def _join(self, key: CacheKey, keep_alive: bool) -> Any:
        flight = self._inflight.get(key)
        if flight is None:
            flight = self._start(key, keep_alive)
        else:
            self.stats.coalesced += 1
            flight.keep_alive = flight.keep_alive or keep_alive
        flight.waiters += 1
        cancelled = False
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            flight.waiters -= 1
            if cancelled and flight.waiters == 0 and not flight.keep_alive and not flight.task.done():
                logger.debug("Abandoning fetch for %s: no callers left", key)
                flight.task.cancel()

    def _refresh_in_background(self, key: CacheKey) -> None:
        if key in self._inflight:
            return
        self.stats.background_refreshes += 1
        flight = self._start(key, keep_alive=True)
        flight.task.add_done_callback(lambda finished: self._log_refresh_failure(key, finished))

    def _log_refresh_failure(self, key: CacheKey, task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, self.evict_on):
            return
        if exc is not None:
            self.stats.refresh_failures += 1
            logger.warning("Background refresh of %s failed, keeping cached value: %s", key, exc)
