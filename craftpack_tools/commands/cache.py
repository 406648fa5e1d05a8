"""Metadata cache maintenance commands."""

from __future__ import annotations

import click
from rich.table import Table

from craftpack_tools.commands.common import KIND_CHOICE, get_context_objects, output_json
from craftpack_tools.core.cache import ResourceCache


@click.group(name="cache")
def cache_group() -> None:
    """Inspect and clear the metadata cache."""


@cache_group.command(name="stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show cached record counts per resource kind."""
    config, console, verbose, debug = get_context_objects(ctx)

    with ResourceCache(config.cache_db_path) as cache:
        stats = cache.stats()

    if config.output_format == "json":
        output_json(stats)
        return

    table = Table(title="Metadata Cache", show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Records", justify="right", style="green")
    for namespace, count in sorted(stats["namespaces"].items()):
        table.add_row(namespace, str(count))
    console.print(table)
    console.print(f"[dim]{stats['total']} records in {stats['path']}[/dim]")


@cache_group.command(name="clear")
@click.option("--kind", "-k", type=KIND_CHOICE, help="Only clear one resource kind")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def cache_clear(ctx: click.Context, kind: str | None, yes: bool) -> None:
    """Delete cached metadata records."""
    config, console, verbose, debug = get_context_objects(ctx)

    if not yes and not click.confirm(f"Clear {kind or 'all'} cached metadata?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    with ResourceCache(config.cache_db_path) as cache:
        removed = cache.clear(kind)

    if config.output_format == "json":
        output_json({"removed": removed, "kind": kind})
        return
    console.print(f"[green]Removed {removed} cached records[/green]")
