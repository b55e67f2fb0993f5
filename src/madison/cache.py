"""In-memory cache of parsed index files, keyed by archive coordinate."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from typing import Protocol

from madison.errors import FetchError
from madison.models import ArchiveCoordinate, CachedIndex, FetchedIndex, PackageRecord
from madison.parser import parse_index

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


class Fetcher(Protocol):
    async def fetch(self, coordinate: ArchiveCoordinate) -> FetchedIndex: ...


class IndexCache:
    """Parsed records per coordinate, refreshed lazily once their time-to-live has passed.

    At most one refresh per coordinate is in flight. Callers that ask for a
    coordinate while its refresh is running wait for that refresh instead of
    starting their own, and all of them get its result. If a refresh fails and
    an expired entry exists, the expired entry is served and the failure is
    logged; without one the ``FetchError`` propagates.

    Refreshes run as their own tasks, so a caller that is cancelled while
    waiting does not abort the download; the result still lands in the cache.

    The cache belongs to the event loop it is first used on.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            fetcher: Object with an async ``fetch(coordinate)`` returning a ``FetchedIndex``
            ttl: Seconds a parsed index stays fresh
            clock: Monotonic time source, replaceable in tests
        """
        if ttl < 0:
            raise ValueError(f"Cache TTL must not be negative, got {ttl}")
        self._fetcher = fetcher
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[ArchiveCoordinate, CachedIndex] = {}
        self._inflight: dict[ArchiveCoordinate, asyncio.Task[tuple[CachedIndex, bool]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, coordinate: ArchiveCoordinate) -> bool:
        return coordinate in self._entries

    def peek(self, coordinate: ArchiveCoordinate) -> CachedIndex | None:
        """Return the stored entry, fresh or not, without fetching."""
        return self._entries.get(coordinate)

    def is_fresh(self, entry: CachedIndex) -> bool:
        return entry.is_fresh(self._clock())

    def invalidate(self, coordinate: ArchiveCoordinate | None = None) -> None:
        """Drop one entry, or every entry when no coordinate is given."""
        if coordinate is None:
            self._entries.clear()
        else:
            self._entries.pop(coordinate, None)

    async def lookup(self, coordinate: ArchiveCoordinate) -> tuple[CachedIndex, bool]:
        """Return the cached index for a coordinate, refreshing it if it is missing or expired.

        Returns:
            The entry and whether it is stale, i.e. an expired entry served because its refresh failed.

        Raises:
            FetchError: the refresh failed and there is no previous entry to fall back on.
        """
        entry = self._entries.get(coordinate)
        if entry is not None and self.is_fresh(entry):
            return entry, False

        task = self._inflight.get(coordinate)
        # a finished task may linger until its done callback runs
        if task is None or task.done():
            task = asyncio.create_task(self._refresh(coordinate), name=f"refresh {coordinate}")
            self._inflight[coordinate] = task
            task.add_done_callback(partial(self._refresh_done, coordinate))
        return await asyncio.shield(task)

    async def get_entry(self, coordinate: ArchiveCoordinate) -> CachedIndex:
        entry, _ = await self.lookup(coordinate)
        return entry

    async def get_or_fetch(self, coordinate: ArchiveCoordinate) -> tuple[PackageRecord, ...]:
        """Return the records for a coordinate, from cache when fresh."""
        entry = await self.get_entry(coordinate)
        return entry.records

    def _refresh_done(self, coordinate: ArchiveCoordinate, task: asyncio.Task) -> None:
        if self._inflight.get(coordinate) is task:
            del self._inflight[coordinate]
        # mark the exception retrieved; every waiter may have been cancelled
        if not task.cancelled():
            task.exception()

    async def _refresh(self, coordinate: ArchiveCoordinate) -> tuple[CachedIndex, bool]:
        previous = self._entries.get(coordinate)
        try:
            fetched = await self._fetcher.fetch(coordinate)
        except FetchError as e:
            if previous is None:
                raise
            fetched_at = previous.fetched_at.strftime("%Y-%m-%d %H:%M:%S")
            logger.warning(f"Refreshing {coordinate} failed, serving data fetched at {fetched_at}: {e}")
            return previous, True

        if fetched.missing:
            records: tuple[PackageRecord, ...] = ()
        else:
            # parsing is CPU bound; keep the event loop free for other coordinates
            records = await asyncio.to_thread(parse_index, fetched.content, coordinate)

        entry = CachedIndex(
            coordinate=coordinate,
            records=records,
            fetched_at=datetime.now(tz=UTC),
            expires_at=self._clock() + self.ttl,
            last_modified=fetched.last_modified,
            missing=fetched.missing,
        )
        self._entries[coordinate] = entry
        logger.debug(f"Cached {len(records)} records for {coordinate}")
        return entry, False
