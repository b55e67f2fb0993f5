"""Index file retrieval for APT archives."""

import asyncio
import logging
import lzma
import zlib
from urllib.parse import urljoin

import httpx

from madison.errors import FetchError
from madison.models import ArchiveCoordinate, FetchedIndex
from madison.utils import try_parse_date

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
XZ_MAGIC = b"\xfd7zXZ\x00"

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_DOWNLOAD_BYTES = 64 * 1024 * 1024
DEFAULT_MAX_INDEX_BYTES = 512 * 1024 * 1024


def build_index_url(
    repo_url: str,
    dist: str,
    component: str,
    architecture: str,
    compression: str = "gz",
) -> str:
    """Construct the Sources/Packages index URL for a component + architecture.

    Examples:
        >>> build_index_url("http://archive.ubuntu.com/ubuntu", "focal-updates", "main", "source")
        'http://archive.ubuntu.com/ubuntu/dists/focal-updates/main/source/Sources.gz'
        >>> build_index_url("http://archive.ubuntu.com/ubuntu/", "jammy", "main", "amd64", "xz")
        'http://archive.ubuntu.com/ubuntu/dists/jammy/main/binary-amd64/Packages.xz'
    """
    repo_prefix = repo_url if repo_url.endswith("/") else f"{repo_url}/"
    suffix = f".{compression}" if compression else ""
    if architecture == "source":
        rel_path = f"dists/{dist}/{component}/source/Sources{suffix}"
    else:
        rel_path = f"dists/{dist}/{component}/binary-{architecture}/Packages{suffix}"
    return urljoin(repo_prefix, rel_path)


def decompress(data: bytes, max_size: int = DEFAULT_MAX_INDEX_BYTES, url: str | None = None) -> bytes:
    """Decompress a gzip or xz index body, or return plain text unchanged.

    The format is detected from the magic bytes rather than the URL suffix.

    Raises:
        FetchError: the stream is corrupt or truncated, or it expands beyond ``max_size``.
    """
    if data.startswith(GZIP_MAGIC):
        decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
        errors: tuple[type[Exception], ...] = (zlib.error,)
    elif data.startswith(XZ_MAGIC):
        decompressor = lzma.LZMADecompressor()
        errors = (lzma.LZMAError,)
    else:
        if len(data) > max_size:
            raise FetchError(f"Index {url} exceeds {max_size} bytes", url=url)
        return data

    try:
        content = decompressor.decompress(data, max_size + 1)
    except errors as e:
        raise FetchError(f"Failed to decompress {url}: {e}", url=url) from e
    if len(content) > max_size:
        raise FetchError(f"Index {url} expands beyond {max_size} bytes", url=url)
    if not decompressor.eof:
        raise FetchError(f"Compressed index {url} is truncated", url=url)
    return content


class IndexFetcher:
    """Download and decompress index files over HTTP.

    A 404 is reported as a missing index, not an error: archives do not carry
    every component for every suite.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES,
        max_index_bytes: int = DEFAULT_MAX_INDEX_BYTES,
    ):
        """Initialize the fetcher.

        Args:
            client: HTTP client to use. One is created (and owned) if not given.
            timeout: Per-request timeout in seconds
            max_download_bytes: Largest compressed body accepted
            max_index_bytes: Largest decompressed index accepted
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=timeout)
        self.timeout = timeout
        self.max_download_bytes = max_download_bytes
        self.max_index_bytes = max_index_bytes

    async def __aenter__(self) -> "IndexFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, coordinate: ArchiveCoordinate) -> FetchedIndex:
        """Fetch the index file for a coordinate.

        Returns:
            The decompressed index, or an empty index flagged ``missing`` on HTTP 404.

        Raises:
            FetchError: network failure, timeout, non-200 status, bad compression or size limit.
        """
        url = coordinate.url
        try:
            async with self._client.stream("GET", url, timeout=self.timeout) as response:
                if response.status_code == 404:
                    logger.debug(f"No index at {url} (404)")
                    return FetchedIndex(url=url, missing=True)
                if response.status_code != 200:
                    raise FetchError(
                        f"Failed to download {url}: HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                    )
                raw = await self._read_limited(response, url)
                last_modified = try_parse_date(response.headers.get("last-modified"))
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to download {url}: {e!r}", url=url) from e

        content = await asyncio.to_thread(decompress, raw, self.max_index_bytes, url)
        logger.debug(f"Downloaded {url} ({len(raw)} bytes, {len(content)} decompressed)")
        return FetchedIndex(url=url, content=content, last_modified=last_modified)

    async def _read_limited(self, response: httpx.Response, url: str) -> bytes:
        if remote_size := response.headers.get("content-length"):
            if remote_size.isdigit() and int(remote_size) > self.max_download_bytes:
                raise FetchError(
                    f"Index {url} is {remote_size} bytes, limit is {self.max_download_bytes}",
                    url=url,
                    status_code=response.status_code,
                )

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > self.max_download_bytes:
                raise FetchError(
                    f"Index {url} exceeds download limit of {self.max_download_bytes} bytes",
                    url=url,
                    status_code=response.status_code,
                )
            chunks.append(chunk)
        return b"".join(chunks)
