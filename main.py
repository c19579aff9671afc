r"""
InstallerClean - Orphaned Windows Installer cache cleanup

Entry point: keep set -> classify -> confirm -> dispose -> prune -> report.

Usage:
    python main.py                          Interactive mode
    python main.py --auto                   Live run with default vendor filters
    python main.py --auto-all               Live run, no default vendor filters
    python main.py --auto-dry               Dry run with default vendor filters
    python main.py --auto-dry-all           Dry run, no vendor filters
    python main.py --auto --quarantine D:\Q Move orphans to D:\Q instead of deleting
    python main.py --exclude-vendors "Adobe,Autodesk"
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from typing import List, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeRemainingColumn

from config import (
    AppConfig,
    ConfigError,
    DisposalMode,
    RunConfig,
    build_run_config,
    load_config,
    merge_vendor_filters,
    parse_vendor_list,
)
from keepset import build_keep_set, default_sources
from models import CacheFileRecord, Classification, InstallerCleanError, Outcome, RunReport
from pipeline import dispose, scan
from runlog import append_log_line
from system import PreconditionError, create_restore_point, is_admin

console = Console()

BANNER = r"""
  ___           _        _ _           ____ _
 |_ _|_ __  ___| |_ __ _| | | ___ _ __/ ___| | ___  __ _ _ __
  | || '_ \/ __| __/ _` | | |/ _ \ '__| |   | |/ _ \/ _` | '_ \
  | || | | \__ \ || (_| | | |  __/ |  | |___| |  __/ (_| | | | |
 |___|_| |_|___/\__\__,_|_|_|\___|_|   \____|_|\___|\__,_|_| |_|
  Orphaned Windows Installer cache cleanup
"""

AUTO_MODES = ("auto", "auto_all", "auto_dry", "auto_dry_all")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="InstallerClean - remove orphaned .msi/.msp files from the Windows Installer cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--auto", action="store_true",
                        help="Live run with the default vendor filters (deletes unless --quarantine)")
    parser.add_argument("--auto-all", action="store_true",
                        help="Live run without default vendor filters")
    parser.add_argument("--auto-dry", action="store_true",
                        help="Dry run with the default vendor filters")
    parser.add_argument("--auto-dry-all", action="store_true",
                        help="Dry run without vendor filters")
    parser.add_argument(
        "--exclude-vendors",
        type=str,
        default="",
        metavar="LIST",
        help="Comma-separated vendor patterns to keep, merged with the defaults",
    )
    parser.add_argument(
        "--quarantine",
        type=str,
        default=None,
        metavar="DIR",
        help="Move orphans to DIR instead of deleting them (auto modes)",
    )
    parser.add_argument(
        "--cache-dir",
        type=str,
        default=None,
        metavar="DIR",
        help="Installer cache to scan (default: %%SYSTEMROOT%%\\Installer)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        metavar="DIR",
        help="Directory for the run log (default: the config folder)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Scan worker threads (default: 4)",
    )
    parser.add_argument(
        "--no-restore-point",
        action="store_true",
        help="Skip creating a System Restore point before a live run",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def selected_mode(args: argparse.Namespace) -> Optional[str]:
    """Return the auto mode requested, None for interactive.

    Raises:
        ConfigError: more than one mode flag was given.
    """
    chosen = [m for m in AUTO_MODES if getattr(args, m)]
    if len(chosen) > 1:
        flags = ", ".join("--" + m.replace("_", "-") for m in chosen)
        raise ConfigError(f"Conflicting run modes: {flags}")
    return chosen[0] if chosen else None


def config_from_args(args: argparse.Namespace, mode: str, app: AppConfig) -> RunConfig:
    """Build the RunConfig for a headless run."""
    dry_run = mode in ("auto_dry", "auto_dry_all")
    use_defaults = mode in ("auto", "auto_dry")

    quarantine = args.quarantine or None
    if dry_run:
        disposal_mode = DisposalMode.NO_ACTION
    elif quarantine:
        disposal_mode = DisposalMode.QUARANTINE
    else:
        disposal_mode = DisposalMode.DELETE

    return build_run_config(
        cache_dir=args.cache_dir,
        vendor_filters=merge_vendor_filters(
            app.vendor_filters if use_defaults else (),
            parse_vendor_list(args.exclude_vendors),
        ),
        dry_run=dry_run,
        disposal_mode=disposal_mode,
        quarantine_dir=quarantine,
        workers=args.workers or app.workers,
        log_path=app.log_path,
    )


def require_elevation(config: RunConfig) -> None:
    """Live, destructive runs need admin rights."""
    if not config.destructive or is_admin():
        return
    console.print(Panel(
        "[bold red](!!) Administrator privileges required![/]\n\n"
        "Moving or deleting files in the Windows Installer cache needs admin rights.\n"
        "Please right-click your terminal and select\n"
        "[bold]'Run as administrator'[/], then try again.",
        border_style="red",
        title="[bold]Elevation Required[/]",
    ))
    raise PreconditionError("Administrator privileges required for a live run")


def ensure_restore_point(config: RunConfig, enabled: bool) -> None:
    if not config.destructive or not enabled:
        return
    with console.status("[bold blue]Creating System Restore point..."):
        create_restore_point("InstallerClean")
    append_log_line(config.log_path, "Restore point created")


def scan_cache(config: RunConfig) -> Tuple[List[CacheFileRecord], list]:
    """Build the keep set and classify the cache, with a spinner."""
    with console.status("[bold blue]Reading installed products and patches..."):
        keep_set = build_keep_set(default_sources())
    console.print(f"[dim]{len(keep_set):,} cached packages still referenced "
                  f"({keep_set.product_count:,} products, {keep_set.patch_count:,} patches)[/]")

    with Progress(
        SpinnerColumn("dots"),
        TextColumn("[bold blue]Scanning: {task.description}"),
        TextColumn("[cyan]{task.completed:.0f} files[/]"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(config.cache_dir, total=None)

        def on_record(record: CacheFileRecord) -> None:
            progress.update(task, advance=1, description=record.name)

        records, classifier = scan(config, keep_set, progress_cb=on_record)
    return records, classifier.failures


def dispose_records(config: RunConfig, records: List[CacheFileRecord],
                    scan_failures: list, started: float) -> RunReport:
    """Dispose of orphans. Ctrl+C stops before the next file, never mid-file."""
    cancel = threading.Event()
    orphans = sum(1 for r in records if r.classification is Classification.ORPHANED)

    def on_interrupt(signum, frame):
        cancel.set()
        console.print("\n[yellow]Interrupt received; finishing the current file...[/]")

    previous = signal.signal(signal.SIGINT, on_interrupt)
    try:
        with Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeRemainingColumn(),
            console=console,
        ) as progress:
            label = "Checking..." if not config.destructive else (
                "Quarantining..." if config.disposal_mode is DisposalMode.QUARANTINE
                else "Deleting...")
            task = progress.add_task(label, total=orphans)
            report = dispose(
                config, records, scan_failures,
                cancel=cancel,
                progress_cb=lambda _record: progress.advance(task),
                started=started,
            )
    finally:
        signal.signal(signal.SIGINT, previous)

    if cancel.is_set():
        pending = sum(1 for r in records if r.outcome is Outcome.PENDING
                      and r.classification is Classification.ORPHANED)
        console.print(f"[yellow]Stopped early; {pending:,} orphaned files left untouched.[/]")
    return report


def execute(config: RunConfig, restore_point: bool, interactive: bool) -> int:
    """Run one pass with the given configuration."""
    from ui import confirm_run, show_run_config, show_run_report

    started = time.perf_counter()
    show_run_config(config)

    require_elevation(config)

    records, scan_failures = scan_cache(config)

    if interactive:
        orphans = [r for r in records if r.classification is Classification.ORPHANED]
        if not confirm_run(config, len(orphans), sum(r.size for r in orphans)):
            return EXIT_OK

    ensure_restore_point(config, restore_point)
    report = dispose_records(config, records, scan_failures, started)

    show_run_report(report, config.log_path)
    append_log_line(config.log_path, report.summary_line)
    if report.disposal_failures:
        console.print(
            f"[yellow]Note: {report.disposal_failures} files could not be "
            f"{'moved' if config.disposal_mode is DisposalMode.QUARANTINE else 'deleted'} "
            f"(likely locked by the OS or another process).[/]"
        )
    return EXIT_OK


def run_interactive(args: argparse.Namespace, app: AppConfig) -> int:
    """Prompt, run, and optionally start over with a freshly built config."""
    from ui import ask_start_over, prompt_run_options

    defaults = merge_vendor_filters(app.vendor_filters, parse_vendor_list(args.exclude_vendors))
    while True:
        choice = prompt_run_options(defaults, default_quarantine=app.quarantine_dir)
        if choice is None:
            console.print("[yellow]Cancelled.[/]")
            return EXIT_OK
        try:
            config = build_run_config(
                cache_dir=args.cache_dir,
                vendor_filters=choice.vendor_filters,
                dry_run=choice.dry_run,
                disposal_mode=choice.disposal_mode,
                quarantine_dir=choice.quarantine_dir,
                workers=args.workers or app.workers,
                log_path=app.log_path,
            )
        except ConfigError as exc:
            console.print(f"[red]{exc}[/]")
            continue

        rc = execute(config, restore_point=not args.no_restore_point, interactive=True)
        if rc != EXIT_OK or not ask_start_over():
            return rc


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    console.print(f"[bold cyan]{BANNER}[/]")

    app = load_config()
    if args.log_dir:
        app.log_dir = args.log_dir

    try:
        mode = selected_mode(args)
        if mode is None:
            return run_interactive(args, app)
        config = config_from_args(args, mode, app)
        return execute(config, restore_point=not args.no_restore_point, interactive=False)
    except InstallerCleanError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        console.print("[dim]No files were changed.[/]")
        return EXIT_FATAL
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. No changes made.[/]")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
