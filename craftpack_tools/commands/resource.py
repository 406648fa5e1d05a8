"""Single-resource commands: add, enable/disable, remove."""

from __future__ import annotations

from pathlib import Path

import click

from craftpack_tools.commands.common import KIND_CHOICE, get_context_objects, output_json, run_with_services
from craftpack_tools.core.errors import CraftpackError
from craftpack_tools.core.layout import InstanceLayout
from craftpack_tools.core.scanner import ScannedResource
from craftpack_tools.core.services import Services
from craftpack_tools.core.types import ResourceKind
from craftpack_tools.core.utils import is_disabled


@click.group(name="resource")
def resource_group() -> None:
    """Manage individual resource files."""


@resource_group.command(name="toggle")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.pass_context
def toggle_resource(ctx: click.Context, path: Path, kind: str) -> None:
    """Enable or disable the resource at PATH."""
    config, console, verbose, debug = get_context_objects(ctx)

    async def run(services: Services) -> Path:
        return services.resources.toggle_disabled(path, ResourceKind(kind))

    try:
        new_path = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    disabled = is_disabled(new_path.name)
    if config.output_format == "json":
        output_json({"path": str(new_path), "disabled": disabled})
        return
    state = "[yellow]disabled[/yellow]" if disabled else "[green]enabled[/green]"
    console.print(f"{new_path.name} {state}")


@resource_group.command(name="add")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target")
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.pass_context
def add_resource(ctx: click.Context, file: Path, target: str, kind: str) -> None:
    """Copy FILE into instance TARGET."""
    config, console, verbose, debug = get_context_objects(ctx)
    resource_kind = ResourceKind(kind)

    async def run(services: Services) -> ScannedResource:
        layout = InstanceLayout(config.instances_dir, target)
        return await services.resources.add_local_file(file, layout.kind_dir(resource_kind), layout.name, resource_kind)

    try:
        resource = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({"path": str(resource.path), "digest": resource.digest, "title": resource.metadata.title})
        return
    console.print(f"[green]Added {resource.metadata.title}[/green] [dim]({resource.digest})[/dim]")


@resource_group.command(name="remove")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target")
@click.option("--kind", "-k", type=KIND_CHOICE, default="mod", help="Resource kind")
@click.pass_context
def remove_resource(ctx: click.Context, path: Path, target: str, kind: str) -> None:
    """Delete the resource at PATH from instance TARGET."""
    config, console, verbose, debug = get_context_objects(ctx)

    async def run(services: Services) -> str:
        return services.resources.remove(path, target, ResourceKind(kind))

    try:
        digest = run_with_services(config, run)
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({"removed": str(path), "digest": digest})
        return
    console.print(f"[green]Removed {path.name}[/green]")
