"""Parser for Sources and Packages index files.

Index files are a sequence of blank-line separated stanzas of ``Key: value``
fields. Lines starting with whitespace continue the previous field. A stanza
that is structurally broken, or lacks a name or version, is dropped on its own
and reported as a ``ParseWarning``; the rest of the file is still parsed.
"""

import logging
from collections.abc import Iterator
from typing import TypeAlias

from debian import deb822

from madison.errors import InvalidVersion, ParseWarning
from madison.models import ArchiveCoordinate, PackageRecord
from madison.version import parse_version

logger = logging.getLogger(__name__)

Stanza: TypeAlias = dict[str, str]
NumberedLine: TypeAlias = tuple[int, str]


def _decode(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _iter_lines(text: str) -> Iterator[NumberedLine]:
    # only LF (or CRLF) ends a line, never U+2028, form feed and the like
    for lineno, line in enumerate(text.split("\n"), start=1):
        yield lineno, line.removesuffix("\r")


def _warn(warnings: list[ParseWarning] | None, warning: ParseWarning) -> None:
    logger.warning(f"Dropping stanza: {warning}")
    if warnings is not None:
        warnings.append(warning)


def _check_structure(lines: list[NumberedLine], stanza: int) -> ParseWarning | None:
    """Find the first line that deb822 would silently misread."""
    seen: set[str] = set()
    have_field = False
    for lineno, line in lines:
        if line[0] in " \t":
            if not have_field:
                return ParseWarning("continuation line before any field", stanza, lineno)
            continue
        name, sep, _ = line.partition(":")
        name = name.rstrip()
        if not sep or not name or any(c.isspace() for c in name):
            return ParseWarning(f"malformed field line {line[:40]!r}", stanza, lineno)
        # deb822 keys are case-insensitive, so "Package" and "package" collide
        if name.lower() in seen:
            return ParseWarning(f"duplicate field {name!r}", stanza, lineno)
        seen.add(name.lower())
        have_field = True
    return None


def _join_continuations(value: str) -> str:
    return " ".join(part.strip() for part in value.split("\n") if part.strip())


def _build_stanza(lines: list[NumberedLine]) -> Stanza:
    paragraph = deb822.Deb822([line for _, line in lines])
    return {str(key): _join_continuations(value) for key, value in paragraph.items()}


def _iter_numbered_stanzas(
    data: bytes | str,
    warnings: list[ParseWarning] | None,
) -> Iterator[tuple[int, Stanza]]:
    stanza = 0
    paragraph_lines: list[NumberedLine] = []

    def finish() -> Iterator[tuple[int, Stanza]]:
        lines = [(lineno, line) for lineno, line in paragraph_lines if not line.startswith("#")]
        if not lines:
            return
        if (error := _check_structure(lines, stanza)) is not None:
            _warn(warnings, error)
            return
        yield stanza, _build_stanza(lines)

    for lineno, line in _iter_lines(_decode(data)):
        if line.strip() == "":
            if paragraph_lines:
                yield from finish()
                paragraph_lines = []
                stanza += 1
            continue
        paragraph_lines.append((lineno, line))

    if paragraph_lines:
        yield from finish()


def iter_stanzas(data: bytes | str, warnings: list[ParseWarning] | None = None) -> Iterator[Stanza]:
    """Stream the field dictionaries of every well-formed stanza.

    Args:
        data: Decompressed index contents
        warnings: Optional list that receives a ``ParseWarning`` per dropped stanza

    Yields:
        One ``{field: value}`` dict per stanza, in file order. Field names keep
        their original casing.
    """
    for _, fields in _iter_numbered_stanzas(data, warnings):
        yield fields


def _source_name(value: str | None) -> str | None:
    # binary stanzas may carry "Source: name (version)"
    if not value:
        return None
    return value.split(None, 1)[0]


def stanza_to_record(
    fields: Stanza,
    coordinate: ArchiveCoordinate,
    stanza: int = 0,
    warnings: list[ParseWarning] | None = None,
) -> PackageRecord | None:
    """Build a record from a stanza, or return None if it lacks a usable name or version."""
    name = fields.get("Package")
    if not name and coordinate.is_source:
        name = fields.get("Source")
    version = fields.get("Version")
    if not name or not version:
        # informational stanzas are expected, not worth a warning
        logger.debug(f"Skipping stanza {stanza} in {coordinate} without Package/Version")
        return None

    try:
        parse_version(version)
    except InvalidVersion as e:
        _warn(warnings, ParseWarning(f"{name}: {e}", stanza))
        return None

    if coordinate.is_source:
        architecture = "source"
        source = name
    else:
        architecture = fields.get("Architecture") or coordinate.architecture
        source = _source_name(fields.get("Source"))

    return PackageRecord(
        name=name,
        version=version,
        architecture=architecture,
        suite=coordinate.suite,
        pocket=coordinate.pocket,
        component=coordinate.component,
        source=source,
    )


def iter_records(
    data: bytes | str,
    coordinate: ArchiveCoordinate,
    warnings: list[ParseWarning] | None = None,
) -> Iterator[PackageRecord]:
    """Lazily parse index contents into records, in stanza order.

    Calling this again on the same buffer starts over from the beginning.
    """
    for idx, fields in _iter_numbered_stanzas(data, warnings):
        record = stanza_to_record(fields, coordinate, idx, warnings)
        if record is not None:
            yield record


def parse_index(data: bytes | str, coordinate: ArchiveCoordinate) -> tuple[PackageRecord, ...]:
    """Parse a whole index, dropping duplicate records and logging a summary of dropped stanzas."""
    warnings: list[ParseWarning] = []
    records: dict[tuple, PackageRecord] = {}
    for record in iter_records(data, coordinate, warnings):
        records.setdefault(record.identity, record)
    if warnings:
        logger.info(f"Dropped {len(warnings)} malformed stanza(s) from {coordinate}")
    logger.debug(f"Parsed {len(records)} records from {coordinate}")
    return tuple(records.values())
