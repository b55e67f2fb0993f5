"""Shared fixtures: synthetic index files, fake fetchers and a small suite catalog."""

import asyncio
import gzip
from collections import Counter

import pytest
from debian import deb822

from madison.catalog import ArchiveSource, SuiteCatalog
from madison.errors import FetchError
from madison.fetcher import decompress
from madison.models import ArchiveCoordinate, FetchedIndex

MIRROR = "http://archive.test/ubuntu/"


def make_index(stanzas: list[dict[str, str]], compress: bool = True) -> bytes:
    """Render stanzas as an index file, gzip-compressed unless asked otherwise."""
    text = "\n".join(deb822.Deb822(stanza).dump() for stanza in stanzas)
    data = text.encode("utf-8")
    return gzip.compress(data) if compress else data


def source_stanza(name: str, version: str, **extra: str) -> dict[str, str]:
    return {"Package": name, "Version": version, "Architecture": "any", **extra}


def binary_stanza(name: str, version: str, arch: str = "amd64", **extra: str) -> dict[str, str]:
    return {"Package": name, "Version": version, "Architecture": arch, **extra}


class FakeFetcher:
    """Serves canned index bodies by URL and counts fetches per URL.

    A value may be bytes (served compressed or plain), an exception instance
    (raised), or None (reported as HTTP 404). Setting ``gate`` holds every
    fetch until the event is set.
    """

    def __init__(self, responses: dict[str, bytes | Exception | None] | None = None):
        self.responses = dict(responses or {})
        self.calls: Counter[str] = Counter()
        self.gate: asyncio.Event | None = None

    async def fetch(self, coordinate: ArchiveCoordinate) -> FetchedIndex:
        self.calls[coordinate.url] += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        body = self.responses.get(coordinate.url)
        if isinstance(body, Exception):
            raise body
        if body is None:
            return FetchedIndex(url=coordinate.url, missing=True)
        return FetchedIndex(url=coordinate.url, content=decompress(body, url=coordinate.url))

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sources_url(dist: str, component: str = "main") -> str:
    return f"{MIRROR}dists/{dist}/{component}/source/Sources.gz"


SYSTEMD_VERSIONS = {
    "bionic": "237-3ubuntu10",
    "focal": "245.4-4ubuntu3",
    "focal-updates": "245.4-4ubuntu3.18",
    "jammy": "249.11-0ubuntu3",
}

SYSTEMD_TABLE = (
    "systemd | 237-3ubuntu10     | bionic        | source\n"
    "systemd | 245.4-4ubuntu3    | focal         | source\n"
    "systemd | 245.4-4ubuntu3.18 | focal-updates | source\n"
    "systemd | 249.11-0ubuntu3   | jammy         | source\n"
)


@pytest.fixture
def catalog() -> SuiteCatalog:
    """bionic, focal, focal-updates and jammy, main only, source indices only."""
    return SuiteCatalog(
        [
            ArchiveSource(
                mirror_url=MIRROR,
                dists=[("bionic", ""), ("focal", ""), ("focal", "updates"), ("jammy", "")],
                components=["main"],
                types=["deb-src"],
            )
        ],
        pockets=["", "security", "updates"],
    )


@pytest.fixture
def systemd_fetcher() -> FakeFetcher:
    """One Sources index per suite, each carrying systemd plus an unrelated package."""
    return FakeFetcher(
        {
            sources_url(dist): make_index(
                [
                    source_stanza("systemd", version, Binary="systemd, udev"),
                    source_stanza("hello", "2.10-2"),
                ]
            )
            for dist, version in SYSTEMD_VERSIONS.items()
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetch_error() -> FetchError:
    return FetchError("HTTP 500", url="http://archive.test/broken", status_code=500)
