"""inkshelf CLI built with Typer and Rich.

The CLI is organized into:
- Library commands (watch, scan, show, visibility)
- Metadata enrichment commands (sources, search, apply)
- Quarantine sub-app (quarantine list, quarantine count)
"""

from __future__ import annotations

from inkshelf.cli._app import (
    ENRICHMENT_COMMANDS,
    LIBRARY_COMMANDS,
    ContentTypeFilter,
    RuntimeContext,
    VisibilityValue,
    create_main_callback,
    get_runtime,
    make_app,
    make_quarantine_app,
    run_command,
)
from inkshelf.cli.enrichment import register_enrichment_commands
from inkshelf.cli.library import register_library_commands, with_pipeline

app = make_app()
quarantine_app = make_quarantine_app()

app.add_typer(quarantine_app, name="quarantine", rich_help_panel=ENRICHMENT_COMMANDS)

create_main_callback(app)
register_library_commands(app)
register_enrichment_commands(app, quarantine_app)


def main() -> None:
    """Entry point for the inkshelf command."""
    app()


__all__ = [
    "ENRICHMENT_COMMANDS",
    "LIBRARY_COMMANDS",
    "ContentTypeFilter",
    "RuntimeContext",
    "VisibilityValue",
    "app",
    "get_runtime",
    "main",
    "quarantine_app",
    "run_command",
    "with_pipeline",
]
