"""App configuration, callbacks, and shared helpers for the CLI.

This module contains the Typer application factories, the main callback
that loads settings and configures logging, and the runtime context every
command reads from ``ctx.obj``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from inkshelf import __version__
from inkshelf.console import console, print_error
from inkshelf.env_settings import (
    EnvSettings,
    clear_env_settings_cache,
    load_env_settings_from_file,
    load_settings,
)
from inkshelf.exceptions import InkshelfError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# Help Panel Names
# =============================================================================

LIBRARY_COMMANDS = "Library"
ENRICHMENT_COMMANDS = "Metadata Enrichment"


# =============================================================================
# Shared Enums
# =============================================================================


class ContentTypeFilter(str, Enum):
    """Content type filter options."""

    book = "book"
    comic = "comic"


class VisibilityValue(str, Enum):
    """Values accepted by the visibility command."""

    public = "public"
    private = "private"


# =============================================================================
# Runtime Context
# =============================================================================


@dataclass
class RuntimeContext:
    """Typed context stored in ctx.obj by the main callback.

    Example:
        @app.command()
        def my_command(ctx: typer.Context) -> None:
            runtime: RuntimeContext = ctx.obj
            print(runtime.settings.app.data_dir)
    """

    settings: EnvSettings
    json_output: bool = False


def get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if not isinstance(runtime, RuntimeContext):
        raise typer.BadParameter("CLI context was not initialized")
    return runtime


def run_command(factory: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run an async command body, turning InkshelfError into exit code 1."""
    try:
        return asyncio.run(factory())
    except InkshelfError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


# =============================================================================
# App Factory
# =============================================================================


MAIN_EPILOG = """
[bold cyan]Quick Start:[/]
  [dim]1.[/] inkshelf sources            [dim]# Check configured metadata sources[/]
  [dim]2.[/] inkshelf scan               [dim]# Ingest everything in WATCH_DIR[/]
  [dim]3.[/] inkshelf watch              [dim]# Keep watching for new files[/]
  [dim]4.[/] inkshelf quarantine list    [dim]# Review files that need a manual match[/]

[bold cyan]Tips:[/]
  - Settings come from env vars, [green]--env-file[/] and [green]--config[/]
  - Global flags go [bold]BEFORE[/] the command
"""


def make_app() -> typer.Typer:
    """Create and configure the main Typer application."""
    return typer.Typer(
        name="inkshelf",
        help="Self-hosted eBook and comic library - ingestion and metadata enrichment",
        epilog=MAIN_EPILOG,
        rich_markup_mode="rich",
        pretty_exceptions_enable=True,
        pretty_exceptions_show_locals=False,
        no_args_is_help=True,
        add_completion=False,
        context_settings={"help_option_names": ["-h", "--help"]},
    )


QUARANTINE_EPILOG = """
[bold cyan]Resolving a quarantined file:[/]
  inkshelf quarantine list                         [dim]# Find the record id[/]
  inkshelf search "Title" --source openlibrary     [dim]# Find the right match[/]
  inkshelf apply 42 --source openlibrary --id OL1W [dim]# Apply it[/]
"""


def make_quarantine_app() -> typer.Typer:
    """Create the quarantine sub-app."""
    return typer.Typer(
        name="quarantine",
        help="Inspect records whose automatic enrichment failed",
        epilog=QUARANTINE_EPILOG,
        rich_markup_mode="rich",
        no_args_is_help=True,
    )


# =============================================================================
# Main Callback
# =============================================================================


def version_callback(value: bool) -> None:
    if value:
        console.print(f"inkshelf {__version__}")
        raise typer.Exit()


def load_runtime_settings(env_file: Path | None, config: Path | None) -> EnvSettings:
    """Env vars, then the optional .env file, then the optional YAML overlay."""
    if env_file is not None:
        load_env_settings_from_file(env_file)
    else:
        clear_env_settings_cache()
    return load_settings(config)


def create_main_callback(app: typer.Typer) -> None:
    """Register the main callback on the app."""

    @app.callback(invoke_without_command=True)
    def main_callback(
        ctx: typer.Context,
        version: Annotated[
            bool,
            typer.Option(
                "--version",
                "-V",
                callback=version_callback,
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", "-l", help="Override LOG_LEVEL (DEBUG, INFO, ...)."),
        ] = None,
        env_file: Annotated[
            Path | None,
            typer.Option("--env-file", help="Load environment variables from this .env file."),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Optional YAML settings overlay."),
        ] = None,
        json_output: Annotated[
            bool,
            typer.Option("--json", "-j", help="Print machine-readable JSON."),
        ] = False,
    ) -> None:
        """Ingest EPUB/CBZ/CBR files and enrich them from online catalogs."""
        from inkshelf.logging_setup import setup_logging

        try:
            settings = load_runtime_settings(env_file, config)
        except InkshelfError as e:
            print_error(str(e))
            raise typer.Exit(1) from e

        setup_logging(
            log_level=log_level or settings.app.log_level,
            log_file=settings.app.log_file,
            rich_console=True,
            quiet_console=json_output,
        )
        ctx.obj = RuntimeContext(settings=settings, json_output=json_output)
