"""Data models for archive coordinates, package records and query results."""

from datetime import datetime
from enum import Enum
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, computed_field

OptionalStr: TypeAlias = str | None


def dist_name(suite: str, pocket: str) -> str:
    """Join a suite and pocket the way the archive names its dists/ directories."""
    return f"{suite}-{pocket}" if pocket else suite


class QueryMode(str, Enum):
    """Which index family a query consults.
    SOURCE: Sources indices, matched on the source package name.
    BINARY: Packages indices, matched on the binary (or its Source) name.
    """

    SOURCE = "source"
    BINARY = "binary"


class GroupBy(str, Enum):
    """What the third column of a madison row names.
    DIST: the suite and pocket a version was seen in, e.g. ``focal-updates``.
    COMPONENT: the archive component, e.g. ``main``, merging every suite.
    """

    DIST = "dist"
    COMPONENT = "component"


class ArchiveCoordinate(BaseModel):
    """One fetchable index file: a (suite, pocket, component, architecture) tuple and its URL."""

    model_config = ConfigDict(frozen=True)

    suite: str
    pocket: str = ""
    component: str
    architecture: str
    url: str

    @property
    def dist(self) -> str:
        return dist_name(self.suite, self.pocket)

    @property
    def is_source(self) -> bool:
        return self.architecture == "source"

    def __str__(self) -> str:
        return f"{self.dist}/{self.component}/{self.architecture}"


class PackageRecord(BaseModel):
    """A single archive entry parsed from a Sources or Packages stanza."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    architecture: str
    suite: str
    pocket: str = ""
    component: str
    source: OptionalStr = None

    @property
    def dist(self) -> str:
        return dist_name(self.suite, self.pocket)

    @property
    def identity(self) -> tuple[str, str, str, str, str, str]:
        """Fields that make two records the same archive entry."""
        return (self.name, self.version, self.suite, self.pocket, self.architecture, self.component)

    @property
    def source_name(self) -> str:
        """Source package this record was built from, defaulting to its own name."""
        return self.source or self.name


class FetchedIndex(BaseModel):
    """Decompressed body of an index file as returned by the fetcher."""

    url: str
    content: bytes = b""
    last_modified: datetime | None = None
    missing: bool = False


class CachedIndex(BaseModel):
    """Parsed records for one coordinate plus their freshness deadline.

    Instances are replaced wholesale on refresh, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    coordinate: ArchiveCoordinate
    records: tuple[PackageRecord, ...] = ()
    fetched_at: datetime
    expires_at: float
    last_modified: datetime | None = None
    missing: bool = False

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class CoordinateStatus(str, Enum):
    """What a query got out of a single coordinate.
    OK: fresh data (possibly zero matches).
    STALE: refresh failed, an expired cache entry was used.
    MISSING: the archive has no such index (HTTP 404).
    FAILED: fetch failed and nothing was cached, contributes no records.
    """

    OK = "ok"
    STALE = "stale"
    MISSING = "missing"
    FAILED = "failed"


class CoordinateOutcome(BaseModel):
    """Per-coordinate result aggregated into a query response."""

    coordinate: ArchiveCoordinate
    status: CoordinateStatus
    records: tuple[PackageRecord, ...] = ()
    error: OptionalStr = None


class MadisonRow(BaseModel):
    """One output line: a package version, the group it is listed under and where it was seen.

    Rows grouped by dist carry their suite and pocket. Rows grouped by component
    leave both empty and list every dist the version was seen in under ``dists``.
    """

    model_config = ConfigDict(frozen=True)

    package: str
    version: str
    suite: str = ""
    pocket: str = ""
    components: tuple[str, ...] = ()
    architectures: tuple[str, ...] = ()
    dists: tuple[str, ...] = ()
    group_by: GroupBy = GroupBy.DIST

    @computed_field
    @property
    def dist(self) -> str:
        return dist_name(self.suite, self.pocket)

    @computed_field
    @property
    def label(self) -> str:
        if self.group_by == GroupBy.COMPONENT:
            return ", ".join(self.components)
        return self.dist


class QueryResult(BaseModel):
    """Rows for a query together with the outcome of every coordinate consulted."""

    packages: list[str]
    mode: QueryMode = QueryMode.SOURCE
    rows: list[MadisonRow] = Field(default_factory=list)
    records: list[PackageRecord] = Field(default_factory=list)
    outcomes: list[CoordinateOutcome] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def degraded(self) -> list[CoordinateOutcome]:
        """Outcomes whose data was stale or could not be fetched at all."""
        return [o for o in self.outcomes if o.status in (CoordinateStatus.STALE, CoordinateStatus.FAILED)]
