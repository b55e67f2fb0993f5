"""Resolve package names to the versions published across every configured suite."""

import asyncio
import logging
from collections.abc import Iterable, Sequence

from madison.cache import IndexCache
from madison.catalog import SuiteCatalog, sort_architectures
from madison.errors import FetchError
from madison.models import (
    ArchiveCoordinate,
    CoordinateOutcome,
    CoordinateStatus,
    GroupBy,
    MadisonRow,
    PackageRecord,
    QueryMode,
    QueryResult,
    dist_name,
)
from madison.version import version_key

logger = logging.getLogger(__name__)


def _match_kind(record: PackageRecord, name: str, mode: QueryMode) -> str | None:
    """How ``record`` shows up in a query for ``name``: its architecture, ``source``, or not at all.

    In binary mode a binary built from a source package of that name counts as
    the source, unless the binary itself has the name.
    """
    if record.name == name:
        return record.architecture
    if mode == QueryMode.BINARY and record.source == name:
        return "source"
    return None


class QueryEngine:
    """Answers package queries from the suite catalog and the index cache.

    Holds no state between calls, so queries for different packages may run
    concurrently on the same engine.
    """

    def __init__(self, catalog: SuiteCatalog, cache: IndexCache):
        self.catalog = catalog
        self.cache = cache

    async def query(
        self,
        package: str,
        mode: QueryMode = QueryMode.SOURCE,
        suites: Iterable[str] | None = None,
        architectures: Iterable[str] | None = None,
        group_by: GroupBy = GroupBy.DIST,
    ) -> QueryResult:
        """Find every published version of one package.

        Args:
            package: Exact source (or binary, in binary mode) package name
            mode: Which indices to consult
            suites: Optional suite filter, see ``SuiteCatalog.coordinates``
            architectures: Optional architecture filter for binary mode
            group_by: List versions per dist (suite and pocket) or per component

        Returns:
            The grouped rows, the matching records and per-coordinate outcomes.
            An unknown package gives an empty result, not an error.
        """
        return await self.query_many([package], mode, suites, architectures, group_by)

    async def query_many(
        self,
        packages: Sequence[str],
        mode: QueryMode = QueryMode.SOURCE,
        suites: Iterable[str] | None = None,
        architectures: Iterable[str] | None = None,
        group_by: GroupBy = GroupBy.DIST,
    ) -> QueryResult:
        """Like ``query`` for several names at once; rows come out grouped per name in request order."""
        names = list(dict.fromkeys(p.strip() for p in packages if p and p.strip()))
        coordinates = self.catalog.coordinates(mode, suites, architectures)
        if not names or not coordinates:
            return QueryResult(packages=names, mode=mode)

        outcomes = await asyncio.gather(*(self._collect(c, names, mode) for c in coordinates))

        records: dict[tuple, PackageRecord] = {}
        for outcome in outcomes:
            for record in outcome.records:
                records.setdefault(record.identity, record)

        rows = self._group(names, mode, records.values(), group_by)
        failed = sum(1 for o in outcomes if o.status == CoordinateStatus.FAILED)
        logger.info(
            f"Query {' '.join(names)} ({mode.value}): {len(rows)} rows from {len(coordinates)} indices"
            + (f", {failed} unavailable" if failed else "")
        )
        return QueryResult(
            packages=names,
            mode=mode,
            rows=rows,
            records=sorted(records.values(), key=self._record_sort_key),
            outcomes=list(outcomes),
        )

    async def _collect(
        self,
        coordinate: ArchiveCoordinate,
        names: list[str],
        mode: QueryMode,
    ) -> CoordinateOutcome:
        try:
            entry, stale = await self.cache.lookup(coordinate)
        except FetchError as e:
            logger.warning(f"No data for {coordinate}: {e}")
            return CoordinateOutcome(coordinate=coordinate, status=CoordinateStatus.FAILED, error=str(e))

        if entry.missing:
            status = CoordinateStatus.MISSING
        elif stale:
            status = CoordinateStatus.STALE
        else:
            status = CoordinateStatus.OK
        matches = tuple(
            record
            for record in entry.records
            if any(_match_kind(record, name, mode) is not None for name in names)
        )
        return CoordinateOutcome(coordinate=coordinate, status=status, records=matches)

    def _record_sort_key(self, record: PackageRecord):
        return (
            self.catalog.suite_rank(record.suite),
            version_key(record.version),
            self.catalog.pocket_rank(record.pocket),
            record.name,
            record.architecture,
            record.component,
        )

    def _group(
        self,
        names: list[str],
        mode: QueryMode,
        records: Iterable[PackageRecord],
        group_by: GroupBy = GroupBy.DIST,
    ) -> list[MadisonRow]:
        """Merge records into one row per (package, version, dist) or (package, version, component)."""
        groups: dict[tuple[str, str, str, str, str], tuple[set[str], set[str], set[tuple[str, str]]]] = {}
        for record in records:
            for name in names:
                kind = _match_kind(record, name, mode)
                if kind is None:
                    continue
                if group_by == GroupBy.COMPONENT:
                    key = (name, record.version, "", "", record.component)
                else:
                    key = (name, record.version, record.suite, record.pocket, "")
                arches, components, dists = groups.setdefault(key, (set(), set(), set()))
                arches.add(kind)
                components.add(record.component)
                dists.add((record.suite, record.pocket))

        name_rank = {name: idx for idx, name in enumerate(names)}

        def dist_rank(dist: tuple[str, str]):
            suite, pocket = dist
            return (self.catalog.suite_rank(suite), self.catalog.pocket_rank(pocket))

        def sort_fn(key):
            name, version, suite, pocket, component = key
            return (
                name_rank[name],
                self.catalog.suite_rank(suite),
                version_key(version),
                self.catalog.pocket_rank(pocket),
                component,
            )

        rows = []
        for key in sorted(groups, key=sort_fn):
            name, version, suite, pocket, _ = key
            arches, components, dists = groups[key]
            rows.append(
                MadisonRow(
                    package=name,
                    version=version,
                    suite=suite,
                    pocket=pocket,
                    components=tuple(sorted(components)),
                    architectures=tuple(sort_architectures(arches)),
                    dists=tuple(dist_name(*dist) for dist in sorted(dists, key=dist_rank)),
                    group_by=group_by,
                )
            )
        return rows
