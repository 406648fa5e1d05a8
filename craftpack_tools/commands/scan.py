"""Scan commands: list, hash and describe resource directories."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from craftpack_tools.commands.common import KIND_CHOICE, get_context_objects, output_json, run_with_services
from craftpack_tools.core.errors import CraftpackError
from craftpack_tools.core.scanner import ScannedResource
from craftpack_tools.core.services import Services
from craftpack_tools.core.types import ResourceKind
from craftpack_tools.core.utils import format_size, is_disabled


def _resource_row(resource: ScannedResource) -> dict[str, object]:
    metadata = resource.metadata
    return {
        "file": resource.file_name,
        "digest": resource.digest,
        "id": metadata.id,
        "title": metadata.title,
        "version": metadata.versions[0] if metadata.versions else None,
        "source": str(metadata.provenance),
        "disabled": is_disabled(resource.file_name),
    }


def _resource_table(title: str, resources: list[ScannedResource]) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Version", style="yellow")
    table.add_column("Source", style="magenta")
    table.add_column("Digest", style="dim")
    for resource in resources:
        row = _resource_row(resource)
        file_label = f"[dim]{row['file']}[/dim]" if row["disabled"] else str(row["file"])
        table.add_row(file_label, str(row["title"]), str(row["version"] or "-"), str(row["source"]), resource.digest[:12])
    return table


@click.group(name="scan")
def scan_group() -> None:
    """Scan resource directories."""


@scan_group.command(name="files")
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.pass_context
def scan_files(ctx: click.Context, directory: Path, kind: str) -> None:
    """Resolve metadata for every file in DIRECTORY."""
    config, console, verbose, debug = get_context_objects(ctx)
    resource_kind = ResourceKind(kind)

    async def run(services: Services) -> list[ScannedResource]:
        return await services.scanner.scan_details(directory, resource_kind)

    try:
        resources = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({"directory": str(directory), "resources": [_resource_row(r) for r in resources]})
        return

    if not resources:
        console.print(f"[yellow]No {resource_kind.directory} found in {directory}[/yellow]")
        return
    console.print(_resource_table(f"{resource_kind.directory} in {directory}", resources))
    if verbose:
        total = sum(r.path.stat().st_size for r in resources if r.path.exists())
        console.print(f"[dim]{len(resources)} files, {format_size(total)}[/dim]")


@scan_group.command(name="digests")
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--target", "-t", help="Target whose installation index is updated")
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.option("--force", "-f", is_flag=True, help="Rehash even if the index has an entry")
@click.pass_context
def scan_digests(ctx: click.Context, directory: Path, target: str | None, kind: str, force: bool) -> None:
    """Compute content digests of every file in DIRECTORY."""
    config, console, verbose, debug = get_context_objects(ctx)

    async def run(services: Services) -> set[str]:
        return await services.scanner.scan_all(directory, target, ResourceKind(kind), force=force)

    try:
        digests = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({"directory": str(directory), "target": target, "digests": sorted(digests)})
        return
    for digest in sorted(digests):
        console.print(digest)
    console.print(f"[green]{len(digests)} digests[/green]")


@scan_group.command(name="page")
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--page", "-p", type=int, default=1, help="1-based page number")
@click.option("--size", "-s", "page_size", type=int, default=20, help="Items per page")
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.pass_context
def scan_page(ctx: click.Context, directory: Path, page: int, page_size: int, kind: str) -> None:
    """Resolve one page of DIRECTORY."""
    config, console, verbose, debug = get_context_objects(ctx)

    async def run(services: Services):
        return await services.scanner.scan_page(directory, page, page_size, ResourceKind(kind))

    try:
        result = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({
            "page": max(page, 1),
            "has_more": result.has_more,
            "total": result.total,
            "resources": [_resource_row(r) for r in result.items],
        })
        return
    console.print(_resource_table(f"Page {max(page, 1)} ({result.total} files)", result.items))
    if result.has_more:
        console.print(f"[dim]More results: --page {max(page, 1) + 1}[/dim]")
