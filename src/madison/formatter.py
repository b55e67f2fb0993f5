"""Render query results as the pipe-delimited madison table."""

import json
from collections.abc import Sequence

from madison.models import CoordinateStatus, MadisonRow, QueryResult


def row_cells(row: MadisonRow) -> list[str]:
    return [row.package, row.version, row.label, ", ".join(row.architectures)]


def render_table(rows: Sequence[MadisonRow]) -> str:
    """Format rows as aligned columns separated by ``|``.

    Column widths are taken from the widest value in each column. Trailing
    whitespace is stripped from each line.

    Examples:
        >>> row = MadisonRow(package="hello", version="2.10-2", suite="jammy", architectures=("source",))
        >>> render_table([row])
        'hello | 2.10-2 | jammy | source\\n'
    """
    if not rows:
        return ""
    table = [row_cells(row) for row in rows]
    widths = [max(len(cells[i]) for cells in table) for i in range(len(table[0]))]
    lines = [" | ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip() for cells in table]
    return "\n".join(lines) + "\n"


def render_notes(result: QueryResult) -> list[str]:
    """Human readable notes about suites whose data was stale or unavailable."""
    notes = []
    for outcome in result.degraded:
        if outcome.status == CoordinateStatus.STALE:
            notes.append(f"{outcome.coordinate}: using cached data, refresh failed")
        else:
            notes.append(f"{outcome.coordinate}: unavailable ({outcome.error})")
    return notes


def render_json(result: QueryResult) -> str:
    """Rows as a JSON list of objects, one per table line."""
    return json.dumps([row.model_dump(mode="json") for row in result.rows], indent=2)
