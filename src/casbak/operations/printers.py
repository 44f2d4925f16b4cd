"""
Human-readable output formatting.

Centralizes all CLI output formatting so CLI commands stay thin. Normal
output goes to stdout and errors to stderr, both through rich consoles.
"""
from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import BackupResult, TransferState
from ..settings import Options

_console = Console()
_err_console = Console(stderr=True)


def print_error(exc: BaseException) -> None:
    """Print an error message to stderr."""
    _err_console.print(f"[bold red]error:[/] {escape(str(exc))}", highlight=False, soft_wrap=True)


def print_plan_summary(result: BackupResult, options: Options, verbose: bool = False) -> None:
    """
    Print the dedup plan in human-readable format.

    Shows scan/hash counts, the number of missing distinct blobs and their
    total size, and the transfer decision.

    Args:
        result: Result of a planning (or full) run
        options: Options the run used
        verbose: List every upload candidate
    """
    plan = result.plan
    _console.print(f"[bold]Archive:[/] {options.destination.display()} [dim]({result.archive_id})[/]")
    _console.print(f"[bold]Scanned:[/] {result.files_scanned} files, {result.files_hashed} hashed")
    _console.print(
        f"[bold]Remote:[/] {plan.known_present} known present, {plan.checked} checked, "
        f"{plan.duplicates} duplicate paths"
    )
    _console.print(f"[bold]To transfer:[/] {len(plan.candidates)} blobs, {_format_bytes(plan.total_size)}")
    _console.print(f"[bold]Transfer:[/] {_describe_state(result.state, options)}")

    if verbose and plan.candidates:
        table = Table(title="Upload candidates")
        table.add_column("Path", style="cyan")
        table.add_column("SHA256", style="dim")
        table.add_column("Size", justify="right", style="yellow")

        for candidate in plan.candidates:
            table.add_row(candidate.relpath, candidate.sha256[:16] + "…", _format_bytes(candidate.size))

        _console.print(table)


def print_backup_summary(result: BackupResult, options: Options, verbose: bool = False) -> None:
    """Print the outcome of a direct backup run."""
    print_plan_summary(result, options, verbose=verbose)
    _console.print(
        f"[green]✓[/] Uploaded {result.uploaded} blobs ({_format_bytes(result.uploaded_bytes)})"
    )
    if result.manifest_name:
        _console.print(f"[green]✓[/] Manifest: manifests/{result.manifest_name}")


def print_sneakernet_ready(result: BackupResult, options: Options, verbose: bool = False) -> None:
    """Print the operator notice for media that is ready for transport."""
    if verbose:
        print_plan_summary(result, options, verbose=True)
    where = result.media_path.name if result.media_path else "?"
    _console.print(
        f"[bold green]Ready for transport:[/] device {options.sneakernet_device} "
        f"holds {result.staged} new blobs ({result.staged_skipped} already present) under {where}/"
    )
    _console.print("[dim]Nothing was uploaded and no manifest was published in this run.[/]")


def _describe_state(state: TransferState, options: Options) -> str:
    if state is TransferState.DIRECT:
        return "direct upload"
    return f"sneakernet via device {options.sneakernet_device}"


def _format_bytes(size_bytes: int) -> str:
    """Format byte count as human-readable string."""
    if size_bytes == 0:
        return "0 B"
    elif size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
