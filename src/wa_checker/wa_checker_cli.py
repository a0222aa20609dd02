#!/usr/bin/env python3
"""
WA Checker CLI - Command Line Interface
Bulk WhatsApp presence checks with rich terminal feedback, resumable sessions and exports.
"""

import argparse
import os
import sys
import signal
import logging
import time
from typing import Dict, List, Optional

from wa_checker.config import (
    APP_NAME, APP_VERSION, APP_DESCRIPTION, COUNTRY_PATTERNS, ERROR_MESSAGES, MAX_CONCURRENT_REQUESTS,
    OUTPUT_FORMATS, RETRY_BACKOFF_POLICIES, STATUS_MESSAGES, SUCCESS_MESSAGES,
)
from wa_checker.core.adapters import categorize, status_label
from wa_checker.core.errors import CheckerError, ConfigurationError, InvalidTransitionError
from wa_checker.core.models import API_ERROR, CheckSettings, CompletionEvent, ProgressEvent, Session
from wa_checker.generator import generate_random_numbers
from wa_checker.operations.bulk_engine import BulkCheckEngine
from wa_checker.operations.file_loader import parse_file, parse_text_input
from wa_checker.operations.number_processing import NumberProcessor
from wa_checker.operations.results_handler import ResultsHandler, default_export_name
from wa_checker.operations.session_store import SessionStore, SettingsStore
from wa_checker.utils import (
    calculate_estimated_time, confirm_action, format_duration, format_phone_number, format_timestamp,
    mask_api_key, truncate_string,
)
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.panel import Panel
from rich import box
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn, TimeRemainingColumn


console = Console()

STATUS_STYLES = {
    'pending': 'dim',
    'running': 'cyan',
    'completed': 'green',
    'cancelled': 'yellow',
    'error': 'red',
}


class ConsoleUI:
    """Rich-based console UI for the CLI."""

    @staticmethod
    def print_banner():
        console.print(Panel.fit(f"[bold cyan]{APP_NAME}[/] CLI v{APP_VERSION}\n[dim]{APP_DESCRIPTION}[/]",
                                border_style="cyan"))

    @staticmethod
    def print_sessions(sessions: List[Session]):
        table = Table(title="Sessions", box=box.SIMPLE_HEAD, expand=False)
        table.add_column("★")
        table.add_column("ID", style="bold")
        table.add_column("File")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        table.add_column("Active", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Started")
        for s in sessions:
            style = STATUS_STYLES.get(s.status, '')
            table.add_row(
                "★" if s.is_starred else "",
                s.id,
                truncate_string(s.file_name, 30),
                f"[{style}]{s.status}[/]" if style else s.status,
                f"{s.completed_numbers}/{s.total_numbers}",
                str(s.successful_checks),
                str(s.failed_checks),
                format_timestamp(s.start_time),
            )
        console.print(table)

    @staticmethod
    def print_session(session: Session, limit: int = 50):
        duration = ""
        if session.end_time:
            duration = f" | Duration: [bold]{format_duration(int(session.end_time - session.start_time))}[/]"
        lines = [
            f"File: [bold]{session.file_name}[/] | Status: [bold]{session.status}[/]{duration}",
            f"Checked: [bold]{session.completed_numbers}/{session.total_numbers}[/] | "
            f"Active: [bold green]{session.successful_checks}[/] | "
            f"Not on WhatsApp: {session.not_present_checks} | "
            f"API errors: [red]{session.api_error_checks}[/] (rate limited: {session.rate_limited_checks})",
            f"Started: {format_timestamp(session.start_time)} | Ended: {format_timestamp(session.end_time)}",
        ]
        if session.error_message:
            lines.append(f"[yellow]{session.error_message}[/]")
        console.print(Panel.fit("\n".join(lines), title=session.id, border_style="cyan"))

        if not session.results:
            return
        table = Table(box=box.SIMPLE_HEAD)
        table.add_column("#", justify="right")
        table.add_column("Phone")
        table.add_column("Status")
        table.add_column("Name")
        table.add_column("Details", overflow="fold")
        for i, r in enumerate(session.results[:limit], 1):
            data = r.data or {}
            outcome = categorize(r)
            table.add_row(
                str(i),
                format_phone_number(r.number),
                f"{STATUS_MESSAGES.get(outcome, '')} {status_label(r)}",
                data.get('name') or "",
                truncate_string(r.error or data.get('about') or "", 60),
            )
        console.print(table)
        if len(session.results) > limit:
            console.print(f"[dim]... {len(session.results) - limit} more results (use export for the full list)[/]")

    @staticmethod
    def print_summary(session: Session):
        if session.status == 'completed':
            console.print(SUCCESS_MESSAGES['check_complete'].format(
                active=session.successful_checks, total=session.total_numbers))
        else:
            console.print(SUCCESS_MESSAGES['check_cancelled'].format(
                completed=session.completed_numbers, total=session.total_numbers, session_id=session.id))
            if session.error_message:
                console.print(f"[yellow]{session.error_message}[/]")
        ConsoleUI.print_session(session, limit=20)


class CLIRunner:
    """Runs an engine event stream with a live progress bar; Ctrl+C cancels cooperatively."""

    def __init__(self, engine: BulkCheckEngine):
        self.engine = engine
        self._interrupts = 0

    def _handle_sigint(self, session_id: str):
        def handler(signum, frame):
            self._interrupts += 1
            if self._interrupts > 1:
                raise KeyboardInterrupt
            console.print(f"\n{ERROR_MESSAGES['interrupted']}")
            self.engine.cancel(session_id)
        return handler

    def run(self, session: Session, events) -> Session:
        self._interrupts = 0
        previous_handler = signal.signal(signal.SIGINT, self._handle_sigint(session.id))
        prev_disabled = logging.root.manager.disable
        # Keep INFO logs from breaking the live progress area
        logging.disable(logging.INFO)
        final = session

        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                TimeRemainingColumn(),
                transient=True,
                refresh_per_second=10,
                console=console,
                disable=not console.is_terminal,
            ) as progress:
                task = progress.add_task("Checking numbers", total=session.total_numbers,
                                         completed=session.completed_numbers)
                for event in events:
                    if isinstance(event, CompletionEvent):
                        final = event.session
                        continue
                    progress.update(task, completed=event.completed, description=self._describe(event))
                    if event.current_result is not None and categorize(event.current_result) == API_ERROR:
                        progress.console.print(
                            f"  [red]Error[/] checking {event.current_result.number}: {event.current_result.error}"
                        )
        finally:
            logging.disable(prev_disabled)
            signal.signal(signal.SIGINT, previous_handler)

        return final

    @staticmethod
    def _describe(event: ProgressEvent) -> str:
        text = f"Checking numbers • Active: {event.successful} • Failed: {event.failed}"
        if event.rate_limited:
            text += f" • Rate limited: {event.rate_limited}"
        if event.rate_limit is not None:
            text += f" • Quota: {event.rate_limit.remaining}/{event.rate_limit.limit}"
        return text


def setup_logging(verbose: bool = False):
    """Setup logging configuration.
    Default to WARNING to avoid flooding the live progress. Use --verbose for DEBUG.
    Route logs through Rich so live progress isn't broken.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
    # Quiet noisy libraries unless verbose
    for name in ("urllib3", "requests"):
        logging.getLogger(name).setLevel(logging.WARNING if not verbose else logging.INFO)


# ------------------
# Commands
# ------------------
def _settings_from_args(base: CheckSettings, args) -> CheckSettings:
    overrides: Dict = {}
    mapping = {
        'api_key': 'api_key',
        'concurrency': 'concurrent_requests',
        'max_retries': 'max_retries',
        'retry_delay': 'retry_delay',
        'backoff': 'retry_backoff',
        'timeout': 'timeout',
        'rate_limit_threshold': 'rate_limit_threshold',
        'default_format': 'default_export_format',
    }
    for arg_name, field_name in mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            overrides[field_name] = value
    for flag in ('throw_on_limit', 'stop_on_error', 'save_results', 'auto_export'):
        value = getattr(args, flag, None)
        if value is not None:
            overrides[flag] = value
    return base.copy(**overrides) if overrides else base


def _load_numbers(args, processor: NumberProcessor):
    records = []
    names = []
    for path in args.files or []:
        result = parse_file(path)
        records.extend(result.numbers)
        names.append(result.file_name)
    if args.number:
        result = parse_text_input("\n".join(args.number))
        records.extend(result.numbers)
        names.append(result.file_name)
    unique, duplicates = processor.deduplicate(records)
    valid = [r for r in unique if r.is_valid]
    invalid = [r for r in unique if not r.is_valid]
    return valid, invalid, duplicates, ", ".join(names) or "Current Session"


def _auto_export(session: Session, settings: CheckSettings):
    fmt = settings.default_export_format
    path = ResultsHandler().export_session(session, default_export_name(session, fmt), fmt)
    console.print(SUCCESS_MESSAGES['exported'].format(path=path))


def _finish_run(session: Session, settings: CheckSettings, args) -> int:
    ConsoleUI.print_summary(session)
    output = getattr(args, 'output', None)
    if output:
        path = ResultsHandler().export_session(session, output, getattr(args, 'format', None))
        console.print(SUCCESS_MESSAGES['exported'].format(path=path))
    elif settings.auto_export and session.status == 'completed':
        _auto_export(session, settings)
    return 0 if session.status == 'completed' else 3


def cmd_check(args, settings_store: SettingsStore, store: SessionStore) -> int:
    settings = _settings_from_args(settings_store.get_settings(), args)
    if not settings.api_key:
        console.print(ERROR_MESSAGES['missing_api_key'])
        return 2

    if not args.files and not args.number:
        console.print("[red]Provide input files and/or --number values[/]")
        return 2

    processor = NumberProcessor()
    valid, invalid, duplicates, file_name = _load_numbers(args, processor)
    console.print(SUCCESS_MESSAGES['numbers_loaded'].format(
        valid=len(valid), invalid=len(invalid), duplicates=duplicates))
    for record in invalid[:10]:
        console.print(f"  [dim]{STATUS_MESSAGES['warning']} {record.original}: {record.validation_error}[/]")
    if not valid:
        console.print(ERROR_MESSAGES['no_valid_numbers'])
        return 1

    estimate = calculate_estimated_time(len(valid), settings.retry_delay, settings.concurrent_requests)
    console.print(f"📱 {len(valid)} numbers, {settings.concurrent_requests} concurrent request(s), "
                  f"API key {mask_api_key(settings.api_key)}, estimated {estimate}")
    if args.confirm and not confirm_action("Start checking?", default=True):
        console.print("Operation cancelled")
        return 0

    store_or_none = store if settings.save_results else None
    engine = BulkCheckEngine(store=store_or_none)
    session = Session.create(valid, settings, file_name=file_name)
    if store_or_none is not None:
        store_or_none.create(session)

    events = engine.start(valid, settings, session=session)
    session = CLIRunner(engine).run(session, events)
    return _finish_run(session, settings, args)


def cmd_resume(args, settings_store: SettingsStore, store: SessionStore) -> int:
    session = store.get(args.session_id)
    if session is None:
        console.print(ERROR_MESSAGES['session_not_found'].format(session_id=args.session_id))
        return 1
    if not session.is_resumable:
        console.print(ERROR_MESSAGES['not_resumable'].format(session_id=session.id, status=session.status))
        return 1

    settings = _settings_from_args(settings_store.get_settings(), args)
    engine = BulkCheckEngine(store=store)
    remaining = len(session.remaining_records())
    console.print(f"⏯️  Resuming {session.id}: {remaining} of {session.total_numbers} numbers left")

    events = engine.resume(session, settings)
    session = CLIRunner(engine).run(session, events)
    return _finish_run(session, settings, args)


def cmd_sessions(args, settings_store: SettingsStore, store: SessionStore) -> int:
    sessions = store.list()
    if args.starred:
        sessions = [s for s in sessions if s.is_starred]
    if not sessions:
        console.print("No sessions found.")
        return 0
    ConsoleUI.print_sessions(sessions)
    stats = store.stats()
    console.print(
        f"[dim]{stats['total_sessions']} sessions, {stats['total_numbers_checked']} numbers checked, "
        f"{stats['total_successful']} active, {stats['total_failed']} failed. "
        f"Last check: {format_timestamp(stats['last_check_time'])}[/]"
    )
    return 0


def cmd_show(args, settings_store: SettingsStore, store: SessionStore) -> int:
    session = store.get(args.session_id)
    if session is None:
        console.print(ERROR_MESSAGES['session_not_found'].format(session_id=args.session_id))
        return 1
    ConsoleUI.print_session(session, limit=args.limit)
    return 0


def cmd_star(args, settings_store: SettingsStore, store: SessionStore) -> int:
    session = store.set_starred(args.session_id, not args.off)
    if session is None:
        console.print(ERROR_MESSAGES['session_not_found'].format(session_id=args.session_id))
        return 1
    console.print(f"{'★ Starred' if session.is_starred else 'Unstarred'} {session.id}")
    return 0


def cmd_delete(args, settings_store: SettingsStore, store: SessionStore) -> int:
    if not store.delete(args.session_id):
        console.print(ERROR_MESSAGES['session_not_found'].format(session_id=args.session_id))
        return 1
    console.print(f"Deleted {args.session_id}")
    return 0


def cmd_clear(args, settings_store: SettingsStore, store: SessionStore) -> int:
    if not args.yes and not confirm_action("Delete ALL stored sessions?", default=False):
        console.print("Operation cancelled")
        return 0
    removed = store.clear()
    console.print(f"Deleted {removed} sessions")
    return 0


def cmd_export(args, settings_store: SettingsStore, store: SessionStore) -> int:
    session = store.get(args.session_id)
    if session is None:
        console.print(ERROR_MESSAGES['session_not_found'].format(session_id=args.session_id))
        return 1
    fmt = args.format or (None if args.output else settings_store.get_settings().default_export_format)
    output = args.output or default_export_name(session, fmt)
    path = ResultsHandler().export_session(
        session, output, fmt,
        include_errors=not args.no_errors,
        include_details=not args.summary,
        active_only=args.active_only,
        overwrite=args.overwrite,
    )
    console.print(SUCCESS_MESSAGES['exported'].format(path=path))
    return 0


def cmd_settings(args, settings_store: SettingsStore, store: SessionStore) -> int:
    current = settings_store.get_settings()
    updated = _settings_from_args(current, args)
    if updated != current:
        changes = {k: v for k, v in updated.to_dict().items() if current.to_dict()[k] != v}
        updated = settings_store.update_settings(**changes)
        console.print(SUCCESS_MESSAGES['settings_saved'])

    table = Table(title="Settings", box=box.SIMPLE_HEAD)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in updated.to_dict().items():
        table.add_row(key, mask_api_key(value) if key == 'api_key' else str(value))
    console.print(table)
    console.print(f"[dim]Data directory: {store.data_dir}[/]")
    return 0


def cmd_generate(args, settings_store: SettingsStore, store: SessionStore) -> int:
    records = generate_random_numbers(args.country, args.quantity)
    console.print(SUCCESS_MESSAGES['numbers_generated'].format(
        count=len(records), country=COUNTRY_PATTERNS[args.country.upper()]['name']))
    if args.output:
        os.makedirs(os.path.dirname(args.output) or '.', exist_ok=True)
        with open(args.output, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(record.canonical + "\n")
        console.print(f"Saved to {args.output}")
    else:
        for record in records:
            console.print(record.canonical)
    return 0


COMMANDS = {
    'check': cmd_check,
    'resume': cmd_resume,
    'sessions': cmd_sessions,
    'show': cmd_show,
    'star': cmd_star,
    'delete': cmd_delete,
    'clear': cmd_clear,
    'export': cmd_export,
    'settings': cmd_settings,
    'generate': cmd_generate,
}


def _add_run_options(parser: argparse.ArgumentParser):
    parser.add_argument("--concurrency", "-c", type=int, help=f"Concurrent requests (1-{MAX_CONCURRENT_REQUESTS})")
    parser.add_argument("--max-retries", type=int, help="Retries per number on API errors")
    parser.add_argument("--retry-delay", type=float, help="Base delay between retries in seconds")
    parser.add_argument("--backoff", choices=RETRY_BACKOFF_POLICIES, help="Retry delay policy")
    parser.add_argument("--timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--rate-limit-threshold", type=int, help="Pause when remaining quota drops to this value")
    parser.add_argument("--throw-on-limit", action="store_true", default=None,
                        help="Stop the batch instead of waiting when the rate limit is reached")
    parser.add_argument("--stop-on-error", action="store_true", default=None,
                        help="Stop the batch after the first API error")
    parser.add_argument("--output", "-o", help="Export results when the run ends (format inferred by extension)")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, help="Export format for --output")


def create_argument_parser():
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="wa-checker",
        description=f"{APP_NAME} CLI - {APP_DESCRIPTION}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store the API key once
  %(prog)s settings --api-key YOUR_RAPIDAPI_KEY

  # Check numbers from a file
  %(prog)s check numbers.xlsx -o results.csv

  # Check a few numbers directly
  %(prog)s check -n "+1 202-555-0102" -n 447911123456

  # Resume a cancelled session
  %(prog)s resume session_1700000000000_ab12cd34

  # List sessions and export one
  %(prog)s sessions
  %(prog)s export session_1700000000000_ab12cd34 --format xlsx
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--no-banner", action="store_true", help="Don't show application banner")
    parser.add_argument("--data-dir", help="Directory for settings and sessions (default: $WA_CHECKER_HOME or ~/.wa_checker)")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} CLI v{APP_VERSION}")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("check", help="Check numbers from files and/or the command line")
    p.add_argument("files", nargs="*", help="Input files (.csv, .xlsx, .txt)")
    p.add_argument("--number", "-n", action="append", help="Phone number to check (repeatable)")
    p.add_argument("--api-key", help="API key for this run (not saved)")
    p.add_argument("--confirm", action="store_true", help="Ask before starting")
    _add_run_options(p)

    p = sub.add_parser("resume", help="Resume a pending or cancelled session")
    p.add_argument("session_id")
    p.add_argument("--api-key", help="API key for this run (not saved)")
    _add_run_options(p)

    p = sub.add_parser("sessions", help="List stored sessions")
    p.add_argument("--starred", action="store_true", help="Only starred sessions")

    p = sub.add_parser("show", help="Show one session")
    p.add_argument("session_id")
    p.add_argument("--limit", type=int, default=50, help="Maximum results to print")

    p = sub.add_parser("star", help="Star or unstar a session")
    p.add_argument("session_id")
    p.add_argument("--off", action="store_true", help="Remove the star")

    p = sub.add_parser("delete", help="Delete a session")
    p.add_argument("session_id")

    p = sub.add_parser("clear", help="Delete all sessions")
    p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    p = sub.add_parser("export", help="Export a session's results")
    p.add_argument("session_id")
    p.add_argument("output", nargs="?", help="Output file (default: whatsapp-check-<id>-<date>.<format>)")
    p.add_argument("--format", choices=OUTPUT_FORMATS, help="Export format (default: from extension or settings)")
    p.add_argument("--no-errors", action="store_true", help="Leave out results with errors")
    p.add_argument("--summary", action="store_true", help="Only number / WhatsApp / error columns")
    p.add_argument("--active-only", action="store_true", help="Only numbers active on WhatsApp")
    p.add_argument("--overwrite", action="store_true", help="Overwrite an existing output file")

    p = sub.add_parser("settings", help="Show or change saved settings")
    p.add_argument("--api-key", help="RapidAPI key")
    p.add_argument("--concurrency", type=int, help=f"Concurrent requests (1-{MAX_CONCURRENT_REQUESTS})")
    p.add_argument("--max-retries", type=int)
    p.add_argument("--retry-delay", type=float)
    p.add_argument("--backoff", choices=RETRY_BACKOFF_POLICIES)
    p.add_argument("--timeout", type=float)
    p.add_argument("--rate-limit-threshold", type=int)
    p.add_argument("--throw-on-limit", dest="throw_on_limit", action="store_true", default=None)
    p.add_argument("--wait-on-limit", dest="throw_on_limit", action="store_false")
    p.add_argument("--stop-on-error", dest="stop_on_error", action="store_true", default=None)
    p.add_argument("--continue-on-error", dest="stop_on_error", action="store_false")
    p.add_argument("--save-results", dest="save_results", action="store_true", default=None)
    p.add_argument("--no-save-results", dest="save_results", action="store_false")
    p.add_argument("--auto-export", dest="auto_export", action="store_true", default=None)
    p.add_argument("--no-auto-export", dest="auto_export", action="store_false")
    p.add_argument("--default-format", choices=OUTPUT_FORMATS)

    p = sub.add_parser("generate", help="Generate random valid numbers for testing")
    p.add_argument("country", choices=sorted(COUNTRY_PATTERNS), type=str.upper)
    p.add_argument("quantity", type=int)
    p.add_argument("--output", "-o", help="Write numbers to a text file")

    return parser


def main(argv: Optional[List[str]] = None):
    """Main function."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if not args.no_banner and args.command in ('check', 'resume'):
        ConsoleUI.print_banner()

    settings_store = SettingsStore(args.data_dir)
    store = SessionStore(args.data_dir)
    start_time = time.time()

    try:
        code = COMMANDS[args.command](args, settings_store, store)
        if args.command in ('check', 'resume'):
            console.print(f"[dim]Elapsed: {format_duration(int(time.time() - start_time))}[/]")
        return code
    except (ConfigurationError, InvalidTransitionError) as e:
        console.print(f"[red]❌ {e}[/]")
        return 2
    except (CheckerError, ValueError) as e:
        console.print(f"[red]❌ {e}[/]")
        return 1
    except KeyboardInterrupt:
        console.print(f"\n{ERROR_MESSAGES['interrupted']}")
        return 130
    except Exception as e:
        console.print(f"❌ Unexpected error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
