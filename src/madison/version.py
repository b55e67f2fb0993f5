"""Debian version ordering.

Versions have the form ``[epoch:]upstream_version[-debian_revision]`` and are
ordered the way dpkg orders them. The ordering itself comes from
``debian.debian_support``; this module validates version strings up front so
that a malformed version is rejected while parsing an index rather than while
sorting query results.

Examples:
    >>> compare_versions("1.0~beta1", "1.0")
    -1
    >>> compare_versions("1:1.0", "2.0")
    1
    >>> sorted(["5.0", "5.0~rc2", "5.0~rc1"], key=version_key)
    ['5.0~rc1', '5.0~rc2', '5.0']
"""

from functools import cmp_to_key
from typing import Iterable, NamedTuple

from debian import debian_support

from madison.errors import InvalidVersion

_DIGITS = frozenset("0123456789")


class DebianVersion(NamedTuple):
    """A version string split into its three parts."""

    epoch: int
    upstream: str
    revision: str

    def __str__(self) -> str:
        epoch = f"{self.epoch}:" if self.epoch else ""
        revision = f"-{self.revision}" if self.revision else ""
        return f"{epoch}{self.upstream}{revision}"


def parse_version(version: str) -> DebianVersion:
    """Split a version into epoch, upstream version and revision.

    Only the first ``:`` separates the epoch and only the last ``-`` separates
    the revision, so upstream versions may themselves contain hyphens.

    Raises:
        InvalidVersion: the epoch is empty or not a number, the upstream
            version or revision is empty, or the string has characters
            dpkg does not allow.
    """
    if not version:
        raise InvalidVersion("version string is empty")

    epoch = 0
    rest = version
    if ":" in version:
        epoch_str, rest = version.split(":", 1)
        if not epoch_str or not all(c in _DIGITS for c in epoch_str):
            raise InvalidVersion(f"epoch in version {version!r} is not a number")
        epoch = int(epoch_str)

    revision = ""
    if "-" in rest:
        rest, revision = rest.rsplit("-", 1)
        if not revision:
            raise InvalidVersion(f"revision in version {version!r} is empty")
    if not rest:
        raise InvalidVersion(f"upstream part of version {version!r} is empty")

    try:
        debian_support.Version(version)
    except ValueError as e:
        raise InvalidVersion(f"version {version!r} is not valid: {e}") from e

    return DebianVersion(epoch, rest, revision)


def compare_versions(a: str, b: str) -> int:
    """Compare two version strings.

    Returns:
        -1 if ``a`` sorts before ``b``, 0 if they are equal, 1 otherwise.

    Raises:
        InvalidVersion: either string is not a valid version.
    """
    if a == b:
        return 0
    parse_version(a)
    parse_version(b)
    result = debian_support.version_compare(a, b)
    return (result > 0) - (result < 0)


version_key = cmp_to_key(compare_versions)


def is_valid_version(version: str) -> bool:
    try:
        parse_version(version)
    except InvalidVersion:
        return False
    return True


def max_version(versions: Iterable[str]) -> str | None:
    """Return the newest version, or None for an empty iterable."""
    return max(versions, key=version_key, default=None)
