"""Rich console output for the inkshelf CLI.

Usage:
    from inkshelf.console import console, print_success

    print_success("Scan complete")
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from inkshelf.models import ContentRecord, ContentStatus, MetadataCandidate, ScanResult

# =============================================================================
# Theme Configuration
# =============================================================================

INKSHELF_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "dim": "dim",
        "title": "bold white",
        "path": "cyan",
        "author": "cyan",
        "source": "magenta",
        "hint": "dim italic",
    }
)

# =============================================================================
# Console Instances
# =============================================================================

console = Console(theme=INKSHELF_THEME, stderr=False)
err_console = Console(theme=INKSHELF_THEME, stderr=True)

STATUS_STYLES = {
    ContentStatus.PENDING: "warning",
    ContentStatus.ENRICHED: "success",
    ContentStatus.QUARANTINE: "error",
}


# =============================================================================
# Messages
# =============================================================================


def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"  [success]✓[/] {message}")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"  [error]✗[/] {message}")


def print_warning(message: str) -> None:
    console.print(f"  [warning]![/] {message}")


def print_info(message: str) -> None:
    console.print(f"  [info]→[/] {message}")


# =============================================================================
# Tables
# =============================================================================


def print_record_table(records: Sequence[ContentRecord], title: str = "Records") -> None:
    """Print content records with status and failure reason.

    Args:
        records: Records to show
        title: Table title
    """
    if not records:
        console.print(f"[dim]No {title.lower()} found[/]")
        return

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Title")
    table.add_column("Author", style="author")
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Reason", style="dim")

    for record in records:
        style = STATUS_STYLES.get(record.status, "dim")
        table.add_row(
            str(record.id),
            record.title,
            record.author or "-",
            record.category.value,
            f"[{style}]{record.status.value}[/]",
            record.failure_reason or "",
        )
    console.print(table)


def print_candidate_table(candidates: Sequence[MetadataCandidate], title: str = "Results") -> None:
    """Print metadata search results, numbered for `inkshelf apply`."""
    if not candidates:
        console.print(f"[dim]No {title.lower()} found[/]")
        return

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=4)
    table.add_column("External ID", style="source")
    table.add_column("Title")
    table.add_column("Author", style="author")
    table.add_column("Published", style="dim")
    table.add_column("Cover", justify="center")

    for i, candidate in enumerate(candidates, 1):
        table.add_row(
            str(i),
            candidate.external_id,
            candidate.title,
            candidate.author or "-",
            candidate.publication_date or "-",
            "[success]✓[/]" if candidate.cover_url else "[dim]-[/]",
        )
    console.print(table)


def print_sources_table(sources: Sequence[dict[str, str | int]]) -> None:
    if not sources:
        console.print("[dim]No metadata sources configured[/]")
        return

    table = Table(title="Metadata Sources", show_header=True, header_style="bold")
    table.add_column("Name", style="source")
    table.add_column("Label")
    table.add_column("Content Type")
    table.add_column("Priority", justify="right")
    for source in sources:
        table.add_row(
            str(source["name"]),
            str(source["label"]),
            str(source["contentType"]),
            str(source["priority"]),
        )
    console.print(table)


def print_scan_summary(result: ScanResult) -> None:
    table = Table(title="Force Scan", show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", justify="right")
    table.add_row("Files found", str(result.files_found))
    table.add_row("Processed", f"[success]{result.files_processed}[/]")
    table.add_row("Skipped", str(result.files_skipped))
    table.add_row("Errors", f"[error]{result.errors}[/]" if result.errors else "0")
    table.add_row("Duration", f"{result.duration_ms}ms")
    console.print(table)
