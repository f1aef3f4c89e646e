"""Metadata enrichment commands.

Commands: sources, search, apply, quarantine list, quarantine count
"""

from __future__ import annotations

from typing import Annotated

import typer

from inkshelf.cli._app import (
    ENRICHMENT_COMMANDS,
    ContentTypeFilter,
    get_runtime,
    run_command,
)
from inkshelf.cli.library import with_pipeline
from inkshelf.console import (
    console,
    print_candidate_table,
    print_record_table,
    print_sources_table,
    print_success,
    print_warning,
)
from inkshelf.exceptions import NotFoundError
from inkshelf.models import ApplyResult, ContentStatus
from inkshelf.pipeline import Pipeline

SourceOpt = Annotated[
    str,
    typer.Option("--source", "-s", help="Source name (see 'inkshelf sources')."),
]


def register_enrichment_commands(app: typer.Typer, quarantine_app: typer.Typer) -> None:
    """Register enrichment commands on the main app and the quarantine sub-app."""

    @app.command("sources", rich_help_panel=ENRICHMENT_COMMANDS)
    def sources(
        ctx: typer.Context,
        content_type: Annotated[
            ContentTypeFilter | None,
            typer.Option("--type", "-t", help="Only sources for this content type."),
        ] = None,
    ) -> None:
        """List configured metadata sources in priority order.

        Sources that need credentials (Google Books, MyAnimeList) only show
        up once their API key or client id is set.
        """
        runtime = get_runtime(ctx)
        category = content_type.value if content_type else None

        async def _sources() -> list[dict[str, str | int]]:
            pipeline = Pipeline.from_settings(runtime.settings)
            try:
                return pipeline.search.list_available_sources(category)
            finally:
                await pipeline.shutdown()

        available = run_command(_sources)
        if runtime.json_output:
            console.print_json(data=available)
        else:
            print_sources_table(available)

    @app.command("search", rich_help_panel=ENRICHMENT_COMMANDS)
    def search(
        ctx: typer.Context,
        query: Annotated[str, typer.Argument(metavar="QUERY", help="Title or ISBN.")],
        source: SourceOpt,
        author: Annotated[
            str | None,
            typer.Option("--author", "-a", help="Narrow the search by author."),
        ] = None,
        limit: Annotated[
            int,
            typer.Option("--limit", "-n", min=1, max=20, help="Maximum results."),
        ] = 5,
    ) -> None:
        """Search one metadata source.

        [bold]Examples:[/]
          inkshelf search "Dune" --source openlibrary
          inkshelf search 9780441172719 --source googlebooks
          inkshelf search "Berserk" -s anilist
        """
        runtime = get_runtime(ctx)

        async def _search() -> None:
            results = await with_pipeline(
                runtime,
                lambda p: p.search.search_metadata(query, source, author=author, limit=limit),
            )
            if runtime.json_output:
                console.print_json(data=[c.model_dump() for c in results])
            else:
                print_candidate_table(results, title=f"Results from {source}")

        run_command(_search)

    @app.command("apply", rich_help_panel=ENRICHMENT_COMMANDS)
    def apply(
        ctx: typer.Context,
        record_id: Annotated[int, typer.Argument(metavar="RECORD_ID", help="Record id.")],
        source: SourceOpt,
        external_id: Annotated[
            str,
            typer.Option("--id", "-i", help="External id from 'inkshelf search'."),
        ],
        query: Annotated[
            str | None,
            typer.Option("--query", "-q", help="Search text (default: the record title)."),
        ] = None,
    ) -> None:
        """Apply a search result to a record, overwriting its metadata.

        Works for pending, quarantined and already enriched records. The
        record ends up enriched with source "manual".
        """
        runtime = get_runtime(ctx)

        async def _apply(pipeline: Pipeline) -> ApplyResult:
            record = await pipeline.repository.require(record_id)
            results = await pipeline.search.search_metadata(
                query or record.title, source, limit=20
            )
            candidate = next((c for c in results if c.external_id == external_id), None)
            if candidate is None:
                raise NotFoundError(
                    f"{external_id} not found in {source} results for {query or record.title!r}",
                    details={"results": len(results)},
                )
            return await pipeline.enrichment.apply(record_id, candidate)

        async def _run() -> None:
            result = await with_pipeline(runtime, _apply)
            if runtime.json_output:
                console.print_json(
                    data={
                        "bookId": result.record_id,
                        "fieldsUpdated": result.fields_updated,
                        "coverDownloaded": result.cover_downloaded,
                    }
                )
            elif result.fields_updated:
                print_success(
                    f"Record {record_id} updated: {', '.join(result.fields_updated)}"
                )
            else:
                print_success(f"Record {record_id} already matches {external_id}")

        run_command(_run)

    # =========================================================================
    # Quarantine sub-app
    # =========================================================================

    @quarantine_app.command("list")
    def quarantine_list(ctx: typer.Context) -> None:
        """List quarantined records with their failure reasons."""
        runtime = get_runtime(ctx)

        async def _list() -> None:
            records = await with_pipeline(runtime, lambda p: p.quarantine.list_quarantine())
            if runtime.json_output:
                console.print_json(data=[r.to_dict() for r in records])
            else:
                print_record_table(records, title="Quarantined Records")

        run_command(_list)

    @quarantine_app.command("count")
    def quarantine_count(ctx: typer.Context) -> None:
        """Count quarantined records."""
        runtime = get_runtime(ctx)

        async def _count() -> None:
            result = await with_pipeline(runtime, lambda p: p.quarantine.count_quarantine())
            if runtime.json_output:
                console.print_json(data=result)
            elif result["count"]:
                print_warning(f"{result['count']} record(s) in {ContentStatus.QUARANTINE.value}")
            else:
                print_success("Quarantine is empty")

        run_command(_count)
