"""
Main CLI application using Typer.

Dates and times typed on the command line are wall-clock values in the
configured timezone; they are converted to instants here and nowhere else.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Annotated, List, Optional, Tuple

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.memory_store import InMemoryBookingStore
from ..adapters.sql_store import SqlBookingStore
from ..config import AppConfig, load_config
from ..domain.exceptions import (
    BookingError,
    ConfigError,
    ConflictError,
    NotFound,
    ValidationError,
)
from ..domain.models import WEEKDAY_NAMES, Booking, Interval
from ..domain.slot_calculator import SlotCalculator
from ..services.availability import AvailabilityService
from ..services.booking_store import BookingStoreProtocol
from ..services.reservation import ReservationService

app = typer.Typer(
    name="coachslots",
    help="Find open training slots and manage bookings for a single coach",
    add_completion=False
)

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_CONFLICT = 2

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")]
SeedOption = Annotated[
    Optional[Path],
    typer.Option("--seed", help="Use an in-memory store seeded from a JSON file instead of the database."),
]


def _configure_logging(config: AppConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load(config_file: Optional[Path], verbose: bool) -> AppConfig:
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ConfigError, ValueError) as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_ERROR)

    _configure_logging(config, verbose)
    return config


def _build_store(config: AppConfig, seed: Optional[Path] = None) -> BookingStoreProtocol:
    if seed is not None:
        logger.debug("Using in-memory store seeded from %s", seed)
        try:
            return InMemoryBookingStore.from_json(seed)
        except FileNotFoundError as e:
            raise ValidationError(str(e)) from e

    store = SqlBookingStore.from_url(config.database_url)
    store.create_schema()
    return store


def _reservation_service(config: AppConfig, store: BookingStoreProtocol) -> ReservationService:
    return ReservationService(
        store,
        retry_attempts=config.retry.attempts,
        backoff_seconds=config.retry.backoff_seconds,
    )


def _parse_local_date(value: str, tz: str) -> DateTime:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz)
    except ValueError as e:
        raise ValidationError(f"Could not parse date '{value}' (expected YYYY-MM-DD): {e}") from e


def _parse_local_interval(date: str, start_time: str, duration_minutes: int, tz: str) -> Interval:
    """Turn a local date, local start time and duration into an absolute interval."""
    if duration_minutes <= 0 or duration_minutes % 5:
        raise ValidationError(
            f"Duration must be a positive multiple of 5 minutes, got {duration_minutes}"
        )

    try:
        start = pendulum.from_format(f"{date} {start_time}", "YYYY-MM-DD HH:mm", tz=tz)
    except ValueError as e:
        raise ValidationError(
            f"Could not parse '{date} {start_time}' (expected YYYY-MM-DD HH:MM): {e}"
        ) from e

    return Interval(start=start, end=start.add(minutes=duration_minutes))


def _determine_time_range(
    *,
    tz: str,
    lookahead_days: int,
    this_week: bool,
    next_week: bool,
    start_option: Optional[str],
    end_option: Optional[str]
) -> Tuple[DateTime, DateTime]:
    """
    Resolve the desired time window based on shortcut flags or explicit dates.
    The end date is inclusive.
    """
    if this_week and next_week:
        raise ValidationError("--this-week and --next-week cannot be combined.")

    now = pendulum.now(tz)

    if this_week:
        return now, now.start_of("week").add(weeks=1)

    if next_week:
        next_monday = now.start_of("week").add(weeks=1)
        return next_monday, next_monday.add(weeks=1)

    start_date = _parse_local_date(start_option, tz) if start_option else now.start_of("day")

    if end_option:
        end_date = _parse_local_date(end_option, tz).add(days=1)
    else:
        end_date = start_date.add(days=lookahead_days)

    return start_date, end_date


def _format_local(value: DateTime, tz: str, fmt: str = "ddd MM/DD/YYYY HH:mm") -> str:
    return value.in_timezone(tz).format(fmt)


def _print_booking(booking: Booking, tz: str, title: str) -> None:
    start, end = booking.interval.in_timezone(tz)
    console.print(Panel.fit(
        f"[bold]ID:[/bold] {booking.id}\n"
        f"[bold]When:[/bold] {start.format('dddd, MM/DD/YYYY HH:mm')} - {end.format('HH:mm')} ({tz})\n"
        f"[bold]Athlete:[/bold] {booking.subject}\n"
        f"[bold]Note:[/bold] {booking.note or '-'}",
        title=title
    ))


def _print_conflict(error: ConflictError, tz: str) -> None:
    err_console.print(f"[bold red]✗ Conflict:[/bold red] {error}")
    for interval in error.conflicts:
        start, end = interval.in_timezone(tz)
        err_console.print(f"  booked: {start.format('ddd MM/DD HH:mm')} - {end.format('HH:mm')}")
    err_console.print("Run [bold]coachslots slots[/bold] to pick another open slot.")


def _fail(error: BookingError, tz: str) -> None:
    if isinstance(error, ConflictError):
        _print_conflict(error, tz)
        raise typer.Exit(EXIT_CONFLICT)

    label = "Not found" if isinstance(error, NotFound) else "Error"
    err_console.print(f"[bold red]✗ {label}:[/bold red] {error}")
    raise typer.Exit(EXIT_ERROR)


@app.command()
def slots(
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date, inclusive (YYYY-MM-DD)")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Slot length in minutes")] = None,
    this_week: Annotated[bool, typer.Option("--this-week", help="From now until the end of this week.")] = False,
    next_week: Annotated[bool, typer.Option("--next-week", help="Next week, Monday to Sunday.")] = False,
    show_all: Annotated[bool, typer.Option("--all", help="Also list booked slots.")] = False,
    seed: SeedOption = None,
    verbose: VerboseOption = False,
):
    """
    Show open slots of the weekly schedule.

    Examples:

        coachslots slots --next-week

        coachslots slots --start 2030-01-07 --end 2030-01-11 --duration 60 --all
    """
    config = _load(config_file, verbose)
    tz = config.timezone

    try:
        range_start, range_end = _determine_time_range(
            tz=tz,
            lookahead_days=config.defaults.lookahead_days,
            this_week=this_week,
            next_week=next_week,
            start_option=start,
            end_option=end,
        )
        minutes = duration if duration is not None else config.defaults.slot_duration_minutes
        if minutes <= 0 or minutes % 5:
            raise ValidationError(f"Duration must be a positive multiple of 5 minutes, got {minutes}")

        service = AvailabilityService(
            _build_store(config, seed),
            SlotCalculator(config.build_template()),
            retry_attempts=config.retry.attempts,
            backoff_seconds=config.retry.backoff_seconds,
        )
        found = service.find_slots(
            Interval(start=range_start, end=range_end),
            timedelta(minutes=minutes),
        )
    except BookingError as e:
        _fail(e, tz)

    shown = found if show_all else [slot for slot in found if slot.is_open]
    if not shown:
        console.print(
            "[yellow]⚠ No open slots found.[/yellow]\n"
            "Try a longer range or a shorter duration."
        )
        return

    table = Table(
        title=f"Slots ({minutes} min, {tz})",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Day", style="bold")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("State")

    for slot in shown:
        slot_start, slot_end = slot.interval.in_timezone(tz)
        state_style = "green" if slot.is_open else "red"
        table.add_row(
            slot_start.format("ddd MM/DD/YYYY"),
            slot_start.format("HH:mm"),
            slot_end.format("HH:mm"),
            f"[{state_style}]{slot.state.value}[/{state_style}]",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def book(
    date: Annotated[str, typer.Argument(help="Local date (YYYY-MM-DD)")],
    start_time: Annotated[str, typer.Argument(help="Local start time (HH:MM)")],
    subject: Annotated[str, typer.Option("--subject", "-s", help="Athlete reference")],
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Length in minutes")] = None,
    note: Annotated[Optional[str], typer.Option("--note", "-n", help="Optional note for the coach")] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Book a slot, e.g. `coachslots book 2030-01-07 17:30 --subject "Sam Lee"`.
    """
    config = _load(config_file, verbose)
    tz = config.timezone

    try:
        minutes = duration if duration is not None else config.defaults.slot_duration_minutes
        candidate = _parse_local_interval(date, start_time, minutes, tz)
        service = _reservation_service(config, _build_store(config))
        booking = service.reserve(candidate, subject, note)
    except BookingError as e:
        _fail(e, tz)

    _print_booking(booking, tz, title="✓ Booked")


@app.command()
def reschedule(
    booking_id: Annotated[str, typer.Argument(help="Booking ID")],
    date: Annotated[str, typer.Argument(help="New local date (YYYY-MM-DD)")],
    start_time: Annotated[str, typer.Argument(help="New local start time (HH:MM)")],
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="New length in minutes")] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Move a booking to a new time. Its current time never counts as a conflict.
    """
    config = _load(config_file, verbose)
    tz = config.timezone

    try:
        store = _build_store(config)
        if duration is None:
            duration = store.get(booking_id).interval.duration_minutes()
        new_interval = _parse_local_interval(date, start_time, duration, tz)
        booking = _reservation_service(config, store).reschedule(booking_id, new_interval)
    except BookingError as e:
        _fail(e, tz)

    _print_booking(booking, tz, title="✓ Rescheduled")


@app.command()
def cancel(
    booking_id: Annotated[str, typer.Argument(help="Booking ID")],
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Cancel a booking.
    """
    config = _load(config_file, verbose)

    try:
        _reservation_service(config, _build_store(config)).cancel(booking_id)
    except BookingError as e:
        _fail(e, config.timezone)

    console.print(f"\n[green]✓ Booking {booking_id} cancelled.[/green]\n")


@app.command()
def bookings(
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date, inclusive (YYYY-MM-DD)")] = None,
    seed: SeedOption = None,
    verbose: VerboseOption = False,
):
    """
    List bookings, ordered by start time.
    """
    config = _load(config_file, verbose)
    tz = config.timezone

    try:
        range_start = _parse_local_date(start, tz) if start else None
        range_end = _parse_local_date(end, tz).add(days=1) if end else None
        service = _reservation_service(config, _build_store(config, seed))
        found = service.list_bookings(range_start, range_end)
    except BookingError as e:
        _fail(e, tz)

    if not found:
        console.print("[yellow]No bookings found.[/yellow]")
        return

    table = Table(
        title=f"Bookings ({tz})",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("ID", style="dim")
    table.add_column("Start", style="bold")
    table.add_column("End")
    table.add_column("Athlete", style="bold yellow")
    table.add_column("Note")

    for booking in found:
        table.add_row(
            booking.id,
            _format_local(booking.interval.start, tz),
            _format_local(booking.interval.end, tz, "HH:mm"),
            booking.subject,
            booking.note or "",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def check(
    date: Annotated[str, typer.Argument(help="Local date (YYYY-MM-DD)")],
    start_time: Annotated[str, typer.Argument(help="Local start time (HH:MM)")],
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Length in minutes")] = None,
    config_file: ConfigOption = None,
    seed: SeedOption = None,
    verbose: VerboseOption = False,
):
    """
    Advisory conflict check. A free result does not hold the slot.
    """
    config = _load(config_file, verbose)
    tz = config.timezone

    try:
        minutes = duration if duration is not None else config.defaults.slot_duration_minutes
        candidate = _parse_local_interval(date, start_time, minutes, tz)
        conflicts = _reservation_service(config, _build_store(config, seed)).check_conflict(candidate)
    except BookingError as e:
        _fail(e, tz)

    if conflicts:
        _print_conflict(
            ConflictError(f"{len(conflicts)} booking(s) overlap", conflicts=conflicts),
            tz,
        )
        raise typer.Exit(EXIT_CONFLICT)

    console.print("[green]✓ No conflicting bookings.[/green]")


@app.command()
def template(
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the configured weekly schedule.
    """
    config = _load(config_file, verbose)
    weekly = config.build_template()

    if weekly.is_empty():
        console.print("[yellow]No open hours configured.[/yellow]")
        return

    table = Table(
        title=f"Weekly schedule ({weekly.timezone})",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Weekday", style="bold yellow")
    table.add_column("Open windows")

    for weekday, name in enumerate(WEEKDAY_NAMES):
        windows: List[str] = [w.format() for w in weekly.windows_for(weekday)]
        if windows:
            table.add_row(name.capitalize(), ", ".join(windows))

    console.print()
    console.print(table)
    console.print()


@app.command()
def init_db(
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Create the bookings table if it does not exist.
    """
    config = _load(config_file, verbose)

    try:
        store = SqlBookingStore.from_url(config.database_url)
        store.create_schema()
    except BookingError as e:
        _fail(e, config.timezone)

    console.print(f"\n[green]✓ Database ready[/green] ({store.dialect}, {store.lock_strategy})\n")


@app.command()
def health(
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Check that the booking store answers.
    """
    config = _load(config_file, verbose)

    try:
        SqlBookingStore.from_url(config.database_url).ping()
    except BookingError as e:
        _fail(e, config.timezone)

    console.print("[green]✓ Store reachable[/green]")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]coachslots[/bold cyan] version [bold]{__version__}[/bold]\n")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
