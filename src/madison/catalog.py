"""Static tables of known suites, pockets and components, and the coordinates derived from them."""

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import urlparse

from debian import deb822
from pydantic import BaseModel, Field

from madison.errors import UnknownCoordinate
from madison.fetcher import build_index_url
from madison.models import ArchiveCoordinate, QueryMode, dist_name
from madison.utils import split_words

logger = logging.getLogger(__name__)


# fmt: off
UBUNTU_SUITES = [
    "bionic", "focal", "jammy", "noble", "plucky", "questing",
]
UBUNTU_POCKETS = ["", "security", "updates", "proposed", "backports"]
UBUNTU_COMPONENTS = ["main", "restricted", "universe", "multiverse"]

DEBIAN_SUITES = [
    "bullseye", "bookworm", "trixie", "forky", "sid",
]
DEBIAN_POCKETS = ["", "updates", "proposed-updates", "backports"]
DEBIAN_COMPONENTS = ["main", "contrib", "non-free", "non-free-firmware"]
KNOWN_POCKETS = list(dict.fromkeys(UBUNTU_POCKETS + DEBIAN_POCKETS))

ORDERED_ARCHITECTURES = [
    "i386", "amd64", "amd64v3",
    "armel", "armhf", "arm64", "aarch64",
    "riscv32", "riscv64",
    "mipsel", "mips64el",
    "la64", "loong64", "loongarch64",
    "powerpc", "ppc32", "ppc64el",
    "s390", "s390x",
    "all",
]
N_ORDERED_ARCHITECTURES = len(ORDERED_ARCHITECTURES)
# fmt: on

SOURCE_TYPES = ("deb", "deb-src")
OPTIONS_MATCHER = re.compile(r"\[.*?\]")

URL_TEMPLATE_FIELDS = {
    "mirror": "http://mirror.invalid/debian/",
    "dist": "sid",
    "suite": "sid",
    "pocket": "",
    "component": "main",
    "architecture": "amd64",
}


class Family(BaseModel):
    """Built-in suite table for one distribution family."""

    name: str
    mirror_url: str
    suites: list[str]
    pockets: list[str]
    components: list[str]
    architectures: list[str] = Field(default_factory=lambda: ["amd64"])


FAMILIES: dict[str, Family] = {
    "ubuntu": Family(
        name="ubuntu",
        mirror_url="http://archive.ubuntu.com/ubuntu/",
        suites=UBUNTU_SUITES,
        pockets=UBUNTU_POCKETS,
        components=UBUNTU_COMPONENTS,
    ),
    "debian": Family(
        name="debian",
        mirror_url="http://deb.debian.org/debian/",
        suites=DEBIAN_SUITES,
        pockets=DEBIAN_POCKETS,
        components=DEBIAN_COMPONENTS,
    ),
}


def sort_architectures(names: Iterable[str]) -> list[str]:
    """Order architecture names for display: ``source`` first, then the preferred order, then the rest."""
    names = set(names)
    not_in_ordered = sorted(c for c in names if c not in ORDERED_ARCHITECTURES and c != "source")

    def sort_fn(c):
        if c == "source":
            return -1
        if c in ORDERED_ARCHITECTURES:
            return ORDERED_ARCHITECTURES.index(c)
        return N_ORDERED_ARCHITECTURES + not_in_ordered.index(c)

    return sorted(names, key=sort_fn)


def split_dist(dist: str, pockets: Iterable[str]) -> tuple[str, str]:
    """Split a dists/ name into suite and pocket.

    Examples:
        >>> split_dist("focal-updates", UBUNTU_POCKETS)
        ('focal', 'updates')
        >>> split_dist("bookworm-proposed-updates", DEBIAN_POCKETS)
        ('bookworm', 'proposed-updates')
        >>> split_dist("focal", UBUNTU_POCKETS)
        ('focal', '')
    """
    # longest pocket first so "proposed-updates" wins over "updates"
    for pocket in sorted((p for p in pockets if p), key=len, reverse=True):
        suffix = f"-{pocket}"
        if dist.endswith(suffix) and len(dist) > len(suffix):
            return dist[: -len(suffix)], pocket
    return dist, ""


def validate_url_template(template: str) -> None:
    """Raise UnknownCoordinate unless ``template`` formats with the known placeholders."""
    try:
        template.format(**URL_TEMPLATE_FIELDS)
    except (KeyError, IndexError, ValueError) as e:
        raise UnknownCoordinate(f"Unusable URL template {template!r}: {e!r}") from e


class ArchiveSource(BaseModel):
    """One archive location and the dists, components and architectures to read from it."""

    mirror_url: str
    dists: list[tuple[str, str]]
    components: list[str]
    architectures: list[str] = Field(default_factory=lambda: ["amd64"])
    types: list[str] = Field(default_factory=lambda: ["deb", "deb-src"])
    compression: str = "gz"
    url_template: str | None = None

    def validate_entry(self) -> None:
        parsed = urlparse(self.mirror_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise UnknownCoordinate(f"Archive URL {self.mirror_url!r} is not an http(s) URL")
        if not self.dists:
            raise UnknownCoordinate(f"No suites configured for {self.mirror_url}")
        if not self.components:
            raise UnknownCoordinate(f"No components configured for {self.mirror_url}")
        unknown_types = set(self.types) - set(SOURCE_TYPES)
        if unknown_types or not self.types:
            raise UnknownCoordinate(f"Unsupported source types for {self.mirror_url}: {self.types}")
        if "source" in self.architectures:
            raise UnknownCoordinate("'source' is not a binary architecture; use deb-src instead")
        if self.compression not in ("gz", "xz", ""):
            raise UnknownCoordinate(f"Unsupported index compression {self.compression!r}")
        for suite, _ in self.dists:
            if not suite or "/" in suite:
                raise UnknownCoordinate(f"Unsupported suite name {suite!r} for {self.mirror_url}")
        if self.url_template is not None:
            validate_url_template(self.url_template)

    def url_for(self, suite: str, pocket: str, component: str, architecture: str) -> str:
        dist = dist_name(suite, pocket)
        if self.url_template is None:
            return build_index_url(self.mirror_url, dist, component, architecture, self.compression)
        return self.url_template.format(
            mirror=self.mirror_url if self.mirror_url.endswith("/") else f"{self.mirror_url}/",
            dist=dist,
            suite=suite,
            pocket=pocket,
            component=component,
            architecture=architecture,
        )


class SuiteCatalog:
    """Enumerates the coordinates a query fans out to, and the order suites are reported in.

    The catalog is validated when it is built; a malformed entry raises
    ``UnknownCoordinate`` there rather than during a query.
    """

    def __init__(self, sources: list[ArchiveSource], pockets: list[str] | None = None):
        """Build and validate a catalog.

        Args:
            sources: Archive locations, in the order their suites should be reported
            pockets: Pocket order used to break ties between identical versions.
                Defaults to the order pockets first appear in ``sources``.
        """
        if not sources:
            raise UnknownCoordinate("Suite catalog is empty")
        for source in sources:
            source.validate_entry()

        self.sources = sources
        self._suite_rank: dict[str, int] = {}
        pocket_order = list(pockets or [])
        for source in sources:
            for suite, pocket in source.dists:
                self._suite_rank.setdefault(suite, len(self._suite_rank))
                if pocket not in pocket_order:
                    pocket_order.append(pocket)
        self._pocket_rank = {pocket: idx for idx, pocket in enumerate(pocket_order)}

        # every coordinate must resolve to exactly one URL
        seen: dict[tuple[str, str, str, str], str] = {}
        for coordinate in self._all_coordinates():
            key = (coordinate.suite, coordinate.pocket, coordinate.component, coordinate.architecture)
            if key in seen and seen[key] != coordinate.url:
                raise UnknownCoordinate(
                    f"{coordinate} maps to both {seen[key]} and {coordinate.url}"
                )
            seen[key] = coordinate.url
        logger.debug(f"Suite catalog has {len(seen)} coordinates across {len(self._suite_rank)} suites")

    @classmethod
    def for_family(
        cls,
        family: str = "ubuntu",
        mirror_url: str | None = None,
        suites: list[str] | None = None,
        components: list[str] | None = None,
        architectures: list[str] | None = None,
        compression: str = "gz",
        url_template: str | None = None,
    ) -> "SuiteCatalog":
        """Catalog for one of the built-in distribution families.

        Every suite is combined with every pocket of the family.
        """
        try:
            table = FAMILIES[family]
        except KeyError:
            raise UnknownCoordinate(
                f"Unknown distribution family {family!r}, expected one of {sorted(FAMILIES)}"
            ) from None

        source = ArchiveSource(
            mirror_url=mirror_url or table.mirror_url,
            dists=[(suite, pocket) for suite in (suites or table.suites) for pocket in table.pockets],
            components=components or table.components,
            architectures=architectures or table.architectures,
            compression=compression,
            url_template=url_template,
        )
        return cls([source], pockets=table.pockets)

    @classmethod
    def from_sources_file(
        cls,
        path: Path | str,
        pockets: list[str] | None = None,
        architectures: list[str] | None = None,
    ) -> "SuiteCatalog":
        """Catalog from an apt deb822 ``.sources`` file.

        Suite names like ``jammy-updates`` are split using ``pockets`` (the
        Ubuntu and Debian pocket names by default).

        Args:
            path: The .sources file
            pockets: Known pocket names, in tie-break order
            architectures: Architectures for entries without an Architectures field
        """
        path = Path(path)
        if pockets is None:
            pockets = KNOWN_POCKETS
        try:
            with path.open("rt", encoding="utf-8") as handle:
                paragraphs = list(deb822.Deb822.iter_paragraphs(handle))
        except OSError as e:
            raise UnknownCoordinate(f"Cannot read sources file {path}: {e}") from e

        sources: list[ArchiveSource] = []
        for paragraph in paragraphs:
            if paragraph.get("Enabled", "yes").strip().lower() == "no":
                continue
            uris = split_words(paragraph.get("URIs"))
            suites = split_words(paragraph.get("Suites"))
            if not uris or not suites:
                raise UnknownCoordinate(f"Entry in {path} is missing URIs or Suites")
            for uri in uris:
                sources.append(
                    ArchiveSource(
                        mirror_url=uri,
                        dists=[split_dist(suite, pockets) for suite in suites],
                        components=split_words(paragraph.get("Components")),
                        architectures=split_words(paragraph.get("Architectures"))
                        or architectures
                        or ["amd64"],
                        types=split_words(paragraph.get("Types")) or ["deb"],
                    )
                )
        logger.info(f"Loaded {len(sources)} archive source(s) from {path}")
        return cls(sources, pockets=pockets)

    @classmethod
    def from_sources_list(
        cls,
        path: Path | str,
        pockets: list[str] | None = None,
        architectures: list[str] | None = None,
    ) -> "SuiteCatalog":
        """Catalog from a classic one-line ``sources.list`` file.

        Each entry reads ``deb [arch=amd64,arm64 signed-by=...] URI SUITE COMPONENT...``.
        Comments and blank lines are skipped. Lines that share a type, URI,
        components and architectures are merged into one archive source, in
        the order their suites first appear.

        Args:
            path: The sources.list file
            pockets: Known pocket names, in tie-break order
            architectures: Architectures for lines without an ``arch=`` option
        """
        path = Path(path)
        if pockets is None:
            pockets = KNOWN_POCKETS
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise UnknownCoordinate(f"Cannot read sources file {path}: {e}") from e

        grouped: dict[tuple[str, str, tuple[str, ...], tuple[str, ...]], ArchiveSource] = {}
        for lineno, line in enumerate(lines, start=1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue

            options: dict[str, str] = {}
            for group in OPTIONS_MATCHER.findall(line):
                for option in group.strip("[]").split():
                    key, sep, value = option.partition("=")
                    if not sep:
                        raise UnknownCoordinate(f"{path}:{lineno}: malformed option {option!r}")
                    options[key] = value

            chunks = OPTIONS_MATCHER.sub(" ", line).split()
            if len(chunks) < 4 or chunks[0] not in SOURCE_TYPES:
                raise UnknownCoordinate(
                    f"{path}:{lineno}: expected 'deb URI SUITE COMPONENT...', got {line!r}"
                )
            repotype, uri, suite, *components = chunks
            arches = split_words(options.get("arch")) or architectures or ["amd64"]

            key = (repotype, uri, tuple(components), tuple(arches))
            dist = split_dist(suite, pockets)
            if key not in grouped:
                grouped[key] = ArchiveSource(
                    mirror_url=uri,
                    dists=[dist],
                    components=components,
                    architectures=arches,
                    types=[repotype],
                )
            elif dist not in grouped[key].dists:
                grouped[key].dists.append(dist)

        if not grouped:
            raise UnknownCoordinate(f"No archive entries in {path}")
        logger.info(f"Loaded {len(grouped)} archive source(s) from {path}")
        return cls(list(grouped.values()), pockets=pockets)

    @classmethod
    def from_path(
        cls,
        path: Path | str,
        pockets: list[str] | None = None,
        architectures: list[str] | None = None,
    ) -> "SuiteCatalog":
        """Catalog from an apt sources file: deb822 for ``*.sources``, one-line format otherwise."""
        loader = cls.from_sources_file if Path(path).suffix == ".sources" else cls.from_sources_list
        return loader(path, pockets=pockets, architectures=architectures)

    @property
    def suites(self) -> list[str]:
        return list(self._suite_rank)

    def suite_rank(self, suite: str) -> int:
        return self._suite_rank.get(suite, len(self._suite_rank))

    def pocket_rank(self, pocket: str) -> int:
        return self._pocket_rank.get(pocket, len(self._pocket_rank))

    def _iter_coordinates(
        self,
        mode: QueryMode,
        suite_filter: set[str] | None = None,
        arch_filter: set[str] | None = None,
    ) -> Iterable[ArchiveCoordinate]:
        wanted_type = "deb-src" if mode == QueryMode.SOURCE else "deb"
        for source in self.sources:
            if wanted_type not in source.types:
                continue
            arches = ["source"] if mode == QueryMode.SOURCE else source.architectures
            for suite, pocket in source.dists:
                if suite_filter is not None and not (
                    suite in suite_filter or dist_name(suite, pocket) in suite_filter
                ):
                    continue
                for component in source.components:
                    for arch in arches:
                        if arch_filter is not None and mode == QueryMode.BINARY and arch not in arch_filter:
                            continue
                        yield ArchiveCoordinate(
                            suite=suite,
                            pocket=pocket,
                            component=component,
                            architecture=arch,
                            url=source.url_for(suite, pocket, component, arch),
                        )

    def _all_coordinates(self) -> list[ArchiveCoordinate]:
        return [*self._iter_coordinates(QueryMode.SOURCE), *self._iter_coordinates(QueryMode.BINARY)]

    def coordinates(
        self,
        mode: QueryMode = QueryMode.SOURCE,
        suites: Iterable[str] | None = None,
        architectures: Iterable[str] | None = None,
    ) -> list[ArchiveCoordinate]:
        """List the coordinates a query in ``mode`` should consult.

        Args:
            mode: Source queries read Sources indices, binary queries Packages indices
            suites: Optional filter. ``focal`` selects every focal pocket,
                ``focal-updates`` only that one.
            architectures: Optional filter for binary queries

        Returns:
            Coordinates in catalog order, without duplicates.
        """
        result: dict[tuple[str, str, str, str], ArchiveCoordinate] = {}
        for coordinate in self._iter_coordinates(
            mode,
            set(suites) if suites else None,
            set(architectures) if architectures else None,
        ):
            key = (coordinate.suite, coordinate.pocket, coordinate.component, coordinate.architecture)
            result.setdefault(key, coordinate)
        return list(result.values())
