"""Pack commands: export an instance, install a pack."""

from __future__ import annotations

import shutil
from pathlib import Path

import click
from rich.table import Table

from craftpack_tools.commands.common import get_context_objects, job_progress, output_json, run_with_services
from craftpack_tools.core.errors import CraftpackError, OperationCancelled
from craftpack_tools.core.installer import InstallResult
from craftpack_tools.core.services import Services
from craftpack_tools.core.utils import format_size


@click.group(name="pack")
def pack_group() -> None:
    """Export and install packs."""


@pack_group.command(name="export")
@click.argument("target")
@click.option("--name", "-n", required=True, help="Pack name")
@click.option("--version", "-V", "pack_version", default="1.0.0", show_default=True, help="Pack version")
@click.option("--summary", "-s", help="Short pack description")
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(path_type=Path),
    help="Where to save the archive (defaults to the current directory)",
)
@click.pass_context
def export_pack(
    ctx: click.Context,
    target: str,
    name: str,
    pack_version: str,
    summary: str | None,
    output_path: Path | None,
) -> None:
    """Export instance TARGET as a pack archive."""
    config, console, verbose, debug = get_context_objects(ctx)

    async def run(services: Services) -> Path:
        exporter = services.exporter
        archive = await exporter.export(target, name, pack_version, summary)
        destination = output_path or Path.cwd() / archive.name
        if destination.is_dir():
            destination = destination / archive.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(archive), destination)
        exporter.mark_saved()
        return destination

    try:
        with job_progress(console, enabled=config.output_format == "rich") as channel:
            saved = run_with_services(config, run, channel=channel)
    except OperationCancelled as e:
        console.print("[yellow]Export cancelled[/yellow]")
        raise click.Abort() from e
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    if config.output_format == "json":
        output_json({"target": target, "archive": str(saved), "size": saved.stat().st_size})
        return
    console.print(f"[green]Exported {target} to {saved} ({format_size(saved.stat().st_size)})[/green]")


def _install_summary(result: InstallResult) -> dict[str, object]:
    loader, loader_version = result.manifest.loader
    return {
        "target": result.target,
        "path": str(result.root),
        "pack": result.manifest.name,
        "pack_version": result.manifest.version_id,
        "game_version": result.manifest.dependencies.minecraft,
        "loader": loader,
        "loader_version": loader_version,
        "files": result.files_installed,
        "overrides": result.overrides_copied,
        "dependencies_installed": result.dependencies_installed,
        "dependencies_skipped": result.dependencies_skipped,
        "optional_dependencies": [d.project_id for d in result.skipped_optional],
    }


@pack_group.command(name="install")
@click.argument("source")
@click.argument("target")
@click.option("--sha1", "expected_sha1", help="Expected SHA-1 of a downloaded archive")
@click.pass_context
def install_pack(ctx: click.Context, source: str, target: str, expected_sha1: str | None) -> None:
    """Install pack SOURCE (URL or file) as instance TARGET."""
    config, console, verbose, debug = get_context_objects(ctx)
    pack_source: str | Path = source if source.startswith(("http://", "https://")) else Path(source)

    async def run(services: Services) -> InstallResult:
        return await services.installer.install(pack_source, target, expected_sha1=expected_sha1)

    try:
        with job_progress(console, enabled=config.output_format == "rich") as channel:
            result = run_with_services(config, run, channel=channel)
    except OperationCancelled as e:
        console.print("[yellow]Install cancelled[/yellow]")
        raise click.Abort() from e
    except CraftpackError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    summary = _install_summary(result)
    if config.output_format == "json":
        output_json(summary)
        return

    table = Table(title=f"Installed {result.manifest.name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in summary.items():
        if key == "optional_dependencies":
            value = ", ".join(str(v) for v in value) or "-"  # type: ignore[union-attr]
        table.add_row(key.replace("_", " ").capitalize(), str(value if value is not None else "-"))
    console.print(table)
