"""
InstallerClean - Interactive prompts using InquirerPy + Rich.

Uses arrow-key driven select/text prompts to choose the disposal mode and
vendor filters, with Rich panels and tables for summaries and reports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from InquirerPy import inquirer
from InquirerPy.separator import Separator

from config import DisposalMode, RunConfig, merge_vendor_filters, parse_vendor_list
from models import Classification, Outcome, RunReport, _format_duration, _format_size

console = Console()

MAX_FAILURES_SHOWN = 20

CLASS_COLORS = {
    Classification.KEPT: "green",
    Classification.EXCLUDED: "yellow",
    Classification.ORPHANED: "red",
}


@dataclass(frozen=True)
class InteractiveChoice:
    """Answers from one pass through the prompts."""
    dry_run: bool
    disposal_mode: DisposalMode
    vendor_filters: tuple
    quarantine_dir: Optional[str] = None


def prompt_run_options(
    default_vendors: Sequence[str],
    default_quarantine: str = "",
) -> Optional[InteractiveChoice]:
    """
    Ask for disposal mode, quarantine folder and extra vendor filters.

    Returns None if the user quits.
    """
    try:
        mode = inquirer.select(
            message="What should happen to orphaned installer files?",
            choices=[
                {"name": "Dry run — only report what would happen", "value": "dry"},
                {"name": "Quarantine — move them to a folder", "value": DisposalMode.QUARANTINE},
                {"name": "Delete — remove them permanently", "value": DisposalMode.DELETE},
                {"name": "No action — classify and report only", "value": DisposalMode.NO_ACTION},
                Separator(),
                {"name": "Quit", "value": None},
            ],
            default="dry",
        ).execute()
    except KeyboardInterrupt:
        return None

    if mode is None:
        return None

    dry_run = mode == "dry"
    disposal_mode = DisposalMode.NO_ACTION if dry_run else mode

    quarantine_dir = None
    try:
        if disposal_mode is DisposalMode.QUARANTINE:
            quarantine_dir = inquirer.filepath(
                message="Quarantine folder:",
                default=default_quarantine,
                only_directories=True,
                validate=lambda text: bool(text.strip()),
                invalid_message="A quarantine folder is required",
            ).execute().strip()

        console.print(f"[dim]Vendor filters: {', '.join(default_vendors) or '(none)'}[/]")
        use_defaults = inquirer.confirm(
            message="Keep the default vendor filters?",
            default=True,
        ).execute()
        extra = inquirer.text(
            message="Additional vendor patterns (comma-separated, blank for none):",
        ).execute()
    except KeyboardInterrupt:
        return None

    vendors = merge_vendor_filters(
        default_vendors if use_defaults else (),
        parse_vendor_list(extra),
    )
    return InteractiveChoice(
        dry_run=dry_run,
        disposal_mode=disposal_mode,
        vendor_filters=vendors,
        quarantine_dir=quarantine_dir,
    )


def confirm_run(config: RunConfig, orphan_count: int, orphan_size: int) -> bool:
    """
    Final confirmation before a destructive run.

    Delete mode requires typing DELETE, as nothing can be recovered.
    """
    if not config.destructive:
        return True

    if orphan_count == 0:
        console.print("[green]No orphaned installer files found.[/]")
        return False

    if config.disposal_mode is DisposalMode.QUARANTINE:
        console.print(Panel(
            f"[bold yellow]{orphan_count:,} orphaned files ({_format_size(orphan_size)}) "
            f"will be moved to:[/]\n  {config.quarantine_dir}",
            border_style="yellow",
        ))
        try:
            return inquirer.confirm(message="Move them now?", default=False).execute()
        except KeyboardInterrupt:
            return False

    console.print(Panel(
        f"[bold red]WARNING: This will permanently delete {orphan_count:,} orphaned "
        f"installer files ({_format_size(orphan_size)}).\n"
        f"Deleted files are NOT sent to the Recycle Bin and CANNOT be recovered.[/]",
        border_style="red",
    ))
    try:
        answer = inquirer.text(
            message="Type DELETE to confirm, or anything else to cancel:",
        ).execute()
    except KeyboardInterrupt:
        return False

    if answer and answer.strip() == "DELETE":
        return True

    console.print("[yellow]Aborted.[/]")
    return False


def ask_start_over() -> bool:
    try:
        return inquirer.confirm(message="Start over?", default=False).execute()
    except KeyboardInterrupt:
        return False


def show_run_config(config: RunConfig) -> None:
    if config.dry_run:
        mode = "[bold yellow]DRY-RUN[/] — no files will be changed"
    elif config.disposal_mode is DisposalMode.QUARANTINE:
        mode = f"[bold]QUARANTINE[/] to {config.quarantine_dir}"
    elif config.disposal_mode is DisposalMode.DELETE:
        mode = "[bold red]DELETE[/]"
    else:
        mode = "[bold]NO ACTION[/] — classify and report only"
    vendors = ", ".join(config.vendor_filters) or "(none)"
    console.print(Panel.fit(
        f"Installer cache: [cyan]{config.cache_dir}[/]\n"
        f"Mode:            {mode}\n"
        f"Vendor filters:  {vendors}",
        border_style="cyan",
    ))


def show_run_report(report: RunReport, log_path: Optional[str] = None) -> None:
    """Display classification totals, disposal outcomes and failures."""
    table = Table(
        box=box.ROUNDED,
        title="[bold]Installer Cache Summary[/]",
        title_style="bold cyan",
    )
    table.add_column("Class", min_width=12)
    table.add_column("Files", justify="right", width=8)
    table.add_column("Size", justify="right", width=12)

    for cls in Classification:
        totals = report.totals[cls]
        color = CLASS_COLORS[cls]
        table.add_row(f"[{color}]{cls.value.capitalize()}[/]",
                      f"{totals.count:,}", totals.size_human)
    table.add_section()
    table.add_row("[bold]TOTAL[/]", f"[bold]{report.total_scanned:,}[/]",
                  f"[bold]{_format_size(report.total_size)}[/]")

    console.print()
    console.print(table)

    if report.dry_run:
        action_line = (f"  Would act on: [bold]{report.outcomes[Outcome.SKIPPED]:,}[/] files "
                       f"({report.orphaned.size_human})")
    else:
        action_line = (
            f"  Moved:    [bold green]{report.outcomes[Outcome.MOVED]:,}[/]\n"
            f"  Deleted:  [bold green]{report.outcomes[Outcome.DELETED]:,}[/]\n"
            f"  Skipped:  [dim]{report.outcomes[Outcome.SKIPPED]:,}[/]\n"
            f"  Freed:    [bold green]{_format_size(report.reclaimed)}[/]"
        )
    failed = report.disposal_failures
    lines = [
        action_line,
        f"  Failed:   [bold {'red' if failed else 'dim'}]{failed:,}[/]",
        f"  Empty folders {'to prune' if report.dry_run else 'pruned'}: {report.dirs_pruned:,}",
        f"  Duration: [bold cyan]{_format_duration(report.duration_s)}[/]",
    ]
    if log_path:
        lines.append(f"\n  Log file: [cyan]{log_path}[/]")
    console.print(Panel.fit(
        "\n".join(lines),
        border_style="yellow" if report.dry_run else "green",
        title="[bold]InstallerClean Report[/]",
    ))

    if report.failures:
        _show_failures(list(report.failures))
    console.print()


def _show_failures(failures: List) -> None:
    table = Table(box=box.SIMPLE, title="[bold red]Failures[/]", show_header=True)
    table.add_column("Stage", width=9)
    table.add_column("Path", max_width=70)
    table.add_column("Reason", max_width=40)
    for failure in failures[:MAX_FAILURES_SHOWN]:
        table.add_row(failure.stage, failure.path, failure.reason)
    console.print(table)
    if len(failures) > MAX_FAILURES_SHOWN:
        console.print(f"  [dim]... and {len(failures) - MAX_FAILURES_SHOWN:,} more[/]")
