"""Library commands.

Commands: watch, scan, show, visibility
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer

from inkshelf.cli._app import (
    LIBRARY_COMMANDS,
    RuntimeContext,
    VisibilityValue,
    get_runtime,
    run_command,
)
from inkshelf.console import (
    console,
    print_error,
    print_info,
    print_record_table,
    print_scan_summary,
    print_success,
    print_warning,
)
from inkshelf.models import ScanResult, Visibility
from inkshelf.pipeline import Pipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_pipeline(runtime: RuntimeContext, action: Callable[[Pipeline], Awaitable[T]]) -> T:
    """Build a pipeline, prepare storage, run ``action`` and shut everything down."""
    pipeline = Pipeline.from_settings(runtime.settings)
    try:
        await asyncio.to_thread(pipeline.init_storage)
        return await action(pipeline)
    finally:
        await pipeline.shutdown()


def register_library_commands(app: typer.Typer) -> None:
    """Register library commands on the main app."""

    @app.command("watch", rich_help_panel=LIBRARY_COMMANDS)
    def watch(
        ctx: typer.Context,
        initial_scan: Annotated[
            bool,
            typer.Option("--scan/--no-scan", help="Run a force scan before watching."),
        ] = True,
    ) -> None:
        """Watch WATCH_DIR and ingest new files until interrupted.

        [bold]Examples:[/]
          inkshelf watch             # Scan once, then watch
          inkshelf watch --no-scan   # Only react to new files
        """
        runtime = get_runtime(ctx)
        errors = runtime.settings.validate_required_for_watch()
        if errors:
            for error in errors:
                print_error(error)
            raise typer.Exit(1)

        async def _watch() -> None:
            async with Pipeline.from_settings(runtime.settings) as pipeline:
                if not pipeline.watcher.running:
                    print_error("Directory watcher could not be started (see log)")
                    raise typer.Exit(1)
                print_success(f"Watching {pipeline.watcher_config.watch_dir}")
                if initial_scan:
                    print_scan_summary(await pipeline.scan.trigger_force_scan())
                print_info("Press Ctrl+C to stop")
                await asyncio.Event().wait()

        try:
            run_command(_watch)
        except KeyboardInterrupt:
            print_info("Stopped")

    @app.command("scan", rich_help_panel=LIBRARY_COMMANDS)
    def scan(ctx: typer.Context) -> None:
        """Ingest every supported file in WATCH_DIR that has no record yet.

        Enrichment started by the scan finishes before the command exits.
        """
        runtime = get_runtime(ctx)

        async def _run(pipeline: Pipeline) -> ScanResult:
            result = await pipeline.scan.trigger_force_scan()
            await pipeline.ingestion.drain()
            return result

        async def _scan() -> None:
            result = await with_pipeline(runtime, _run)
            if runtime.json_output:
                console.print_json(data=result.to_payload())
            else:
                print_scan_summary(result)

        run_command(_scan)

    @app.command("show", rich_help_panel=LIBRARY_COMMANDS)
    def show(
        ctx: typer.Context,
        record_id: Annotated[int, typer.Argument(metavar="RECORD_ID", help="Record id.")],
    ) -> None:
        """Show one content record."""
        runtime = get_runtime(ctx)

        async def _show() -> None:
            record = await with_pipeline(runtime, lambda p: p.repository.require(record_id))
            if runtime.json_output:
                console.print_json(data=record.to_dict())
                return
            print_record_table([record], title=record.filename)
            if record.description:
                console.print(f"[dim]{record.description}[/]")

        run_command(_show)

    @app.command("visibility", rich_help_panel=LIBRARY_COMMANDS)
    def visibility(
        ctx: typer.Context,
        record_id: Annotated[int, typer.Argument(metavar="RECORD_ID", help="Record id.")],
        value: Annotated[
            VisibilityValue,
            typer.Argument(metavar="VALUE", help="public or private."),
        ],
    ) -> None:
        """Make a record public or private (private = admins only)."""
        runtime = get_runtime(ctx)

        async def _set() -> None:
            record = await with_pipeline(
                runtime, lambda p: p.library.set_visibility(record_id, value.value)
            )
            if runtime.json_output:
                console.print_json(data=record.to_dict())
            elif record.visibility is Visibility.PRIVATE:
                print_warning(f"Record {record_id} is now private")
            else:
                print_success(f"Record {record_id} is now public")

        run_command(_set)
