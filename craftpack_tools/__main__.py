"""Main entry point for craftpack-tools CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console

from craftpack_tools import __version__
from craftpack_tools.commands.cache import cache_group
from craftpack_tools.commands.pack import pack_group
from craftpack_tools.commands.resource import resource_group
from craftpack_tools.commands.scan import scan_group
from craftpack_tools.core.config import AppConfig


def configure_logging(level: str = "INFO", colors: bool = False) -> None:
    """Configure structlog for console output at ``level``."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


configure_logging("WARNING")

logger = structlog.get_logger()


@click.group()
@click.version_option(version=__version__, prog_name="craftpack-tools")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json", "plain"], case_sensitive=False),
    default="rich",
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str,
) -> None:
    """Scan, export and install game add-on packs."""
    ctx.ensure_object(dict)

    try:
        app_config = AppConfig.load(config)
    except Exception as e:
        logger.error("config_load_failed", error=str(e))
        sys.exit(1)

    if verbose or debug:
        app_config.log_level = "DEBUG" if debug else "INFO"
    if output:
        app_config.output_format = output.lower()

    configure_logging(app_config.log_level if (verbose or debug) else "WARNING", colors=debug)

    console = Console(
        force_terminal=output == "rich",
        no_color=output != "rich",
        width=None if output == "rich" else 120,
    )

    ctx.obj["config"] = app_config
    ctx.obj["console"] = console
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["debug"] = debug

    logger.debug("cli_initialized", config=app_config.model_dump(mode="json"))


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console: Console = ctx.obj["console"]
    config: AppConfig = ctx.obj["config"]

    if config.output_format == "json":
        import json

        info = {
            "name": "craftpack-tools",
            "version": __version__,
            "python_version": sys.version.replace("\n", " "),
            "platform": sys.platform,
        }
        print(json.dumps(info, indent=2))
    else:
        console.print(f"craftpack-tools {__version__}")
        if ctx.obj["verbose"]:
            console.print(f"Python {sys.version}")
            console.print(f"Platform: {sys.platform}")


main.add_command(scan_group)
main.add_command(pack_group)
main.add_command(cache_group)
main.add_command(resource_group)


def handle_exception(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: Any) -> None:
    """Handle uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        logger.info("operation_cancelled_by_user")
        sys.exit(1)

    logger.error(
        "uncaught_exception",
        exc_info=(exc_type, exc_value, exc_traceback),
    )
    sys.exit(1)


if __name__ == "__main__":
    sys.excepthook = handle_exception

    try:
        main()
    except Exception as e:
        logger.error("cli_execution_failed", error=str(e))
        sys.exit(1)
