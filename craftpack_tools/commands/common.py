"""Helpers shared by CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from craftpack_tools.core.config import AppConfig
from craftpack_tools.core.progress import JobOutcome, ProgressChannel, ProgressEvent
from craftpack_tools.core.services import Services
from craftpack_tools.core.types import ResourceKind

T = TypeVar("T")

KIND_CHOICE = click.Choice([k.value for k in ResourceKind], case_sensitive=False)


def get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def output_json(data: Any) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def run_with_services(
    config: AppConfig,
    func: Callable[[Services], Awaitable[T]],
    channel: ProgressChannel | None = None,
) -> T:
    """Build services, run ``func`` on a fresh event loop, then close them."""

    async def _main() -> T:
        async with Services.create(config, channel=channel) as services:
            return await func(services)

    return asyncio.run(_main())


@contextmanager
def job_progress(console: Console, enabled: bool = True) -> Iterator[ProgressChannel]:
    """Render a job's progress events as rich progress bars, one per phase."""
    channel = ProgressChannel(buffered=False)
    if not enabled:
        yield channel
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        tasks: dict[str, TaskID] = {}

        def on_event(event: ProgressEvent | JobOutcome) -> None:
            if not isinstance(event, ProgressEvent):
                return
            phase = str(event.phase)
            if phase not in tasks:
                tasks[phase] = progress.add_task(phase.replace("_", " ").capitalize(), total=event.total)
            progress.update(tasks[phase], completed=event.completed, total=event.total)

        channel.subscribe(on_event)
        yield channel
