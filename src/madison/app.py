"""Command line interface: print the madison table for one or more packages."""

import logging
from pathlib import Path

import typer

from madison.constants import get_settings
from madison.errors import UnknownCoordinate
from madison.formatter import render_json, render_notes, render_table
from madison.models import GroupBy, QueryMode
from madison.service import MadisonService, build_catalog

cli = typer.Typer(add_completion=False)


@cli.command()
def madison(
    packages: list[str] = typer.Argument(..., help="Package name(s) to look up"),
    binary: bool = typer.Option(False, "--binary", "-b", help="Query binary packages instead of sources"),
    suite: list[str] = typer.Option([], "--suite", "-s", help="Only show these suites (repeatable)"),
    architecture: list[str] = typer.Option(
        [], "--architecture", "-a", help="Only show these architectures (binary mode, repeatable)"
    ),
    sources_file: Path | None = typer.Option(
        None, help="Read suites from an apt sources.list or deb822 .sources file"
    ),
    mirror: str | None = typer.Option(None, help="Archive mirror URL"),
    family: str | None = typer.Option(None, help="Built-in suite table to use (ubuntu, debian)"),
    by_component: bool = typer.Option(
        False, "--by-component", "-c", help="List versions per component instead of per suite"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print rows as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log fetches and cache activity"),
):
    """Show which versions of PACKAGES exist in which suite and pocket."""
    logging.getLogger("madison").setLevel(logging.DEBUG if verbose else logging.WARNING)

    try:
        overrides = {
            key: value
            for key, value in (("sources_file", sources_file), ("mirror_url", mirror), ("family", family))
            if value is not None
        }
        settings = get_settings().model_copy(update=overrides)
        catalog = build_catalog(settings)
    except UnknownCoordinate as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)

    mode = QueryMode.BINARY if binary else QueryMode.SOURCE
    with MadisonService(settings, catalog=catalog) as service:
        result = service.query(
            packages,
            mode,
            suites=suite or None,
            architectures=architecture or None,
            group_by=GroupBy.COMPONENT if by_component else GroupBy.DIST,
        )

    if json_output:
        typer.echo(render_json(result))
    else:
        typer.echo(render_table(result.rows), nl=False)
    for note in render_notes(result):
        typer.echo(f"warning: {note}", err=True)


def main() -> None:
    """Main entry point for the madison CLI."""
    cli()


if __name__ == "__main__":
    main()
