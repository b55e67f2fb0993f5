"""Synchronous entry point wiring settings, catalog, fetcher, cache and query engine together."""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Iterable, Sequence

from madison.cache import Fetcher, IndexCache
from madison.catalog import SuiteCatalog
from madison.constants import MadisonSettings, get_settings
from madison.fetcher import IndexFetcher
from madison.formatter import render_table
from madison.models import GroupBy, PackageRecord, QueryMode, QueryResult
from madison.query import QueryEngine

logger = logging.getLogger(__name__)


def build_catalog(settings: MadisonSettings) -> SuiteCatalog:
    """Catalog from an apt sources file if one is configured, else from the built-in family table."""
    if settings.sources_file is not None:
        return SuiteCatalog.from_path(
            settings.sources_file,
            architectures=settings.architectures or None,
        )
    return SuiteCatalog.for_family(
        settings.family,
        mirror_url=settings.mirror_url,
        suites=settings.suites or None,
        architectures=settings.architectures or None,
        compression=settings.compression,
    )


class MadisonService:
    """Blocking query interface for callers that are not running an event loop.

    The fetcher, cache and engine live on one event loop run by a background
    thread, so ``lookup`` may be called from any number of threads at once and
    they all share one cache.
    """

    def __init__(
        self,
        settings: MadisonSettings | None = None,
        catalog: SuiteCatalog | None = None,
        fetcher: Fetcher | None = None,
    ):
        """Build the service. Configuration errors raise ``UnknownCoordinate`` here.

        Args:
            settings: Defaults to the settings read from the environment
            catalog: Defaults to one built from ``settings``
            fetcher: Defaults to an ``IndexFetcher`` using the settings' limits
        """
        self.settings = settings or get_settings()
        self.catalog = catalog or build_catalog(self.settings)
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or IndexFetcher(
            timeout=self.settings.fetch_timeout,
            max_download_bytes=self.settings.max_download_bytes,
            max_index_bytes=self.settings.max_index_bytes,
        )
        self.cache = IndexCache(self.fetcher, ttl=self.settings.cache_ttl)
        self.engine = QueryEngine(self.catalog, self.cache)

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="madison-loop", daemon=True)
        self._thread.start()
        self._closed = False

    def __enter__(self) -> "MadisonService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_fetcher:
            asyncio.run_coroutine_threadsafe(self.fetcher.aclose(), self._loop).result()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def query(
        self,
        packages: Sequence[str],
        mode: QueryMode = QueryMode.SOURCE,
        suites: Iterable[str] | None = None,
        architectures: Iterable[str] | None = None,
        group_by: GroupBy = GroupBy.DIST,
        timeout: float | None = None,
    ) -> QueryResult:
        """Run a query on the service loop and wait for its result.

        If ``timeout`` passes the query is abandoned, but index downloads it
        started keep running and still fill the cache.
        """
        if self._closed:
            raise RuntimeError("MadisonService is closed")
        future = asyncio.run_coroutine_threadsafe(
            self.engine.query_many(list(packages), mode, suites, architectures, group_by),
            self._loop,
        )
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def lookup(self, name: str, mode: QueryMode = QueryMode.SOURCE) -> list[PackageRecord]:
        """Every record published for ``name`` (space separated names allowed), in display order."""
        return self.query(name.split(), mode).records

    def madison(
        self,
        name: str,
        mode: QueryMode = QueryMode.SOURCE,
        suites: Iterable[str] | None = None,
        architectures: Iterable[str] | None = None,
        group_by: GroupBy = GroupBy.DIST,
    ) -> str:
        """The rendered table for a space separated list of package names."""
        return render_table(self.query(name.split(), mode, suites, architectures, group_by).rows)
