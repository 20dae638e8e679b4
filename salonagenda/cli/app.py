"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.credentials import CredentialStore
from ..adapters.mock_booking_client import MockBookingClient
from ..adapters.rest_client import RestBookingClient
from ..config import AppConfig, get_default_config_path
from ..domain.conflicts import find_conflicts
from ..domain.exceptions import InvalidInterval, SchedulingError
from ..domain.models import WEEKDAY_NAMES, format_time_of_day, parse_instant
from ..domain.slot_grid import generate_slots
from ..services.agenda import AgendaService, AgendaView, StaticBusinessHoursSource, ViewMode
from ..services.edit_controller import EditOutcome, EditStatus, ResizeEdge

app = typer.Typer(
    name="salonagenda",
    help="Inspect and edit a salon appointment agenda",
    add_completion=False,
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
MockOption = Annotated[
    bool,
    typer.Option("--mock", help="Use bundled mock bookings instead of the hosted backend."),
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
):
    """Salon agenda scheduling tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    try:
        return AppConfig.load_from_yaml(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _build_service(config: AppConfig, mock: bool) -> AgendaService:
    """Wire the data sources selected by the config and the --mock flag."""
    if mock:
        client = MockBookingClient(timezone=config.timezone)
    else:
        store = CredentialStore(config.backend.url, config.tenant_id)
        try:
            api_key = store.require_api_key()
        except SchedulingError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)
        client = RestBookingClient(
            base_url=config.backend.url,
            api_key=api_key,
            tenant_id=config.tenant_id,
            timezone=config.timezone,
            bookings_table=config.backend.bookings_table,
            tenants_table=config.backend.tenants_table,
            timeout=config.backend.timeout_seconds,
        )

    override = config.get_business_hours()
    hours_source = StaticBusinessHoursSource(override) if override is not None else client

    return AgendaService(
        client,
        hours_source,
        config.tenant_id,
        timezone=config.timezone,
        granularity_minutes=config.scheduling.granularity_minutes,
        controller_options=config.scheduling.controller_options(),
        grid_options=config.scheduling.grid_options(),
        max_columns=config.scheduling.max_visible_columns,
    )


def _parse_day(value: str, tz: str):
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] Invalid date {value!r}: {e}")
        raise typer.Exit(1)


def _parse_moment(value: str, tz: str) -> DateTime:
    try:
        return parse_instant(value, tz)
    except InvalidInterval as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _print_outcome(outcome: EditOutcome, service: AgendaService, verb: str, tz: str) -> None:
    if outcome.status is EditStatus.COMMITTED and outcome.command is not None:
        appointment = service.snapshot.get(outcome.command.appointment_id)
        local = appointment.scheduled_at.in_timezone(tz)
        console.print(
            f"[green]✓ {verb} {appointment.id}:[/green] "
            f"{local.format('YYYY-MM-DD HH:mm')} ({appointment.duration_minutes} min)"
        )
    elif outcome.status is EditStatus.UNCHANGED:
        console.print("[dim]Nothing changed.[/dim]")
    elif outcome.status is EditStatus.REJECTED:
        console.print(f"[yellow]⚠ {outcome.message}[/yellow]")
        console.print(f"  Overlaps: {', '.join(outcome.conflicting_ids)}")
        raise typer.Exit(2)
    else:
        console.print(f"[bold red]✗ {outcome.message}[/bold red]")
        raise typer.Exit(1)


def _run(coro):
    """Run a service coroutine and turn scheduling errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def hours(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show the weekly business hours.
    """
    config = _load_config(config_file)
    service = _build_service(config, mock)
    _run(service.load(AgendaView(ViewMode.DAY, pendulum.today(config.timezone).date())))

    business_hours = service.business_hours
    if business_hours is None:
        console.print("[yellow]No business hours configured; the default grid is used.[/yellow]")
        return

    table = Table(title="Business hours", show_header=True, header_style="bold cyan")
    table.add_column("Day", style="bold")
    table.add_column("Open")
    table.add_column("Close")
    table.add_column("Breaks", style="dim")

    for weekday, day in enumerate(business_hours.days):
        name = WEEKDAY_NAMES[weekday].capitalize()
        if day.closed:
            table.add_row(name, "[red]closed[/red]", "", "")
            continue
        breaks = ", ".join(
            f"{format_time_of_day(b.start)}-{format_time_of_day(b.end)}" for b in day.breaks
        )
        table.add_row(name, format_time_of_day(day.open), format_time_of_day(day.close), breaks)

    console.print()
    console.print(table)
    console.print()


@app.command()
def slots(
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    granularity: Annotated[Optional[int], typer.Option("--granularity", "-g", help="Row size in minutes")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show the agenda grid of a day with closed, outside-hours and break markers.
    """
    config = _load_config(config_file)
    the_day = _parse_day(day, config.timezone)
    service = _build_service(config, mock)
    _run(service.load(AgendaView(ViewMode.DAY, the_day)))

    try:
        grid = generate_slots(
            the_day,
            granularity or config.scheduling.granularity_minutes,
            service.business_hours,
            **config.scheduling.grid_options(),
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Slots {the_day.isoformat()}", show_header=True, header_style="bold cyan")
    table.add_column("Time", style="bold")
    table.add_column("Status")

    for slot in grid:
        if slot.disabled:
            status = f"[dim]{slot.reason}[/dim]"
        elif slot.on_break:
            status = "[yellow]break[/yellow]"
        else:
            status = "[green]open[/green]"
        table.add_row(slot.label, status)

    console.print()
    console.print(table)
    console.print()


@app.command()
def agenda(
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show the positioned appointments of a day.
    """
    config = _load_config(config_file)
    the_day = _parse_day(day, config.timezone)
    service = _build_service(config, mock)
    _run(service.load(AgendaView(ViewMode.DAY, the_day)))

    day_agenda = service.day_agenda(the_day)
    if not day_agenda.is_open:
        console.print(f"[yellow]The salon is closed on {the_day.isoformat()}.[/yellow]")

    if not day_agenda.positioned:
        console.print("[dim]No appointments.[/dim]")
    else:
        table = Table(title=f"Agenda {the_day.isoformat()}", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="bold yellow")
        table.add_column("Time")
        table.add_column("Min", justify="right")
        table.add_column("Staff", style="dim")
        table.add_column("Column", justify="center")
        table.add_column("Left %", justify="right")
        table.add_column("Width %", justify="right")

        for positioned in day_agenda.positioned:
            source = positioned.source
            start = positioned.scheduled_at.in_timezone(config.timezone)
            end = positioned.end.in_timezone(config.timezone)
            column = f"{positioned.column_index + 1}/{positioned.total_columns}"
            if positioned.folded:
                column += "+"
            table.add_row(
                positioned.id,
                f"{start.format('HH:mm')}-{end.format('HH:mm')}",
                str(positioned.duration_minutes),
                getattr(source, "staff_id", None) or "-",
                column,
                f"{positioned.left_percent:.1f}",
                f"{positioned.width_percent:.1f}",
            )

        console.print()
        console.print(table)

    for group in day_agenda.groups:
        if group.hidden_count:
            console.print(
                f"[yellow]{group.start.in_timezone(config.timezone).format('HH:mm')}: "
                f"+{group.hidden_count} more[/yellow]"
            )

    for entry in day_agenda.excluded:
        console.print(f"[red]Skipped record:[/red] {entry.reason}")
    console.print()


@app.command()
def check(
    start: Annotated[str, typer.Argument(help="Start (YYYY-MM-DDTHH:mm)")],
    duration: Annotated[int, typer.Argument(help="Duration in minutes")],
    exclude: Annotated[Optional[str], typer.Option("--exclude", help="Appointment id to ignore")] = None,
    staff: Annotated[Optional[str], typer.Option("--staff", help="Only check this staff member")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Check whether a time range is free.
    """
    config = _load_config(config_file)
    moment = _parse_moment(start, config.timezone)
    service = _build_service(config, mock)
    _run(service.load(AgendaView(ViewMode.DAY, moment.date())))

    try:
        conflicts = find_conflicts(
            moment, duration, service.appointments(), exclude_id=exclude, staff_id=staff
        )
    except InvalidInterval as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not conflicts:
        console.print(f"[green]✓ Free:[/green] {moment.format('YYYY-MM-DD HH:mm')} ({duration} min)")
        return

    console.print("[yellow]⚠ This time slot is unavailable.[/yellow]")
    for appointment in conflicts:
        local = appointment.scheduled_at.in_timezone(config.timezone)
        console.print(f"  {appointment.id}  {local.format('HH:mm')} ({appointment.duration_minutes} min)")
    raise typer.Exit(2)


async def _gesture(
    service: AgendaService,
    view: AgendaView,
    appointment_id: str,
    pointer: DateTime,
    edge: Optional[ResizeEdge] = None,
) -> EditOutcome:
    await service.load(view)
    controller = service.controller
    if edge is None:
        controller.begin_move(appointment_id)
    else:
        controller.begin_resize(appointment_id, edge)
    return await controller.drop(pointer)


@app.command()
def move(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    start: Annotated[str, typer.Argument(help="New start (YYYY-MM-DDTHH:mm)")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Move an appointment to a new start time (same month).
    """
    config = _load_config(config_file)
    pointer = _parse_moment(start, config.timezone)
    service = _build_service(config, mock)
    view = AgendaView(ViewMode.MONTH, pointer.date())

    outcome = _run(_gesture(service, view, appointment_id, pointer))
    _print_outcome(outcome, service, "Moved", config.timezone)


@app.command()
def resize(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    pointer: Annotated[str, typer.Argument(help="Pointer position (YYYY-MM-DDTHH:mm)")],
    edge: Annotated[ResizeEdge, typer.Option("--edge", "-e", help="Edge being dragged")] = ResizeEdge.BOTTOM,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Resize an appointment by dragging its top or bottom edge.
    """
    config = _load_config(config_file)
    moment = _parse_moment(pointer, config.timezone)
    service = _build_service(config, mock)
    view = AgendaView(ViewMode.MONTH, moment.date())

    outcome = _run(_gesture(service, view, appointment_id, moment, edge))
    _print_outcome(outcome, service, "Resized", config.timezone)


@app.command()
def bookable(
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    duration: Annotated[int, typer.Argument(help="Service duration in minutes")],
    staff: Annotated[Optional[str], typer.Option("--staff", help="Staff member to book")] = None,
    buffer: Annotated[int, typer.Option("--buffer", help="Minutes kept free after the service")] = 0,
    buffer_before: Annotated[int, typer.Option("--buffer-before", help="Minutes kept free before the service")] = 0,
    min_advance: Annotated[int, typer.Option("--min-advance", help="Minimum notice in minutes")] = 0,
    max_advance_days: Annotated[
        Optional[int], typer.Option("--max-advance-days", help="Furthest day ahead that can be booked")
    ] = None,
    include_past: Annotated[bool, typer.Option("--include-past", help="Also list start times already passed")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List start times where a service still fits.
    """
    config = _load_config(config_file)
    the_day = _parse_day(day, config.timezone)
    service = _build_service(config, mock)
    _run(service.load(AgendaView(ViewMode.DAY, the_day)))

    if service.business_hours is None:
        console.print("[yellow]No business hours configured; nothing can be booked.[/yellow]")
        return

    try:
        starts = service.bookable_starts(
            the_day,
            duration,
            staff_id=staff,
            buffer_minutes=buffer,
            buffer_before_minutes=buffer_before,
            now=None if include_past else pendulum.now(config.timezone),
            min_advance_minutes=min_advance,
            max_advance_days=max_advance_days,
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not starts:
        console.print(f"[yellow]No free start times on {the_day.isoformat()}.[/yellow]")
        return

    console.print(f"[bold green]✓ {len(starts)} start time(s) on {the_day.isoformat()}:[/bold green]")
    console.print("  " + "  ".join(s.in_timezone(config.timezone).format("HH:mm") for s in starts))


@app.command("set-key")
def set_key(
    config_file: ConfigOption = None,
    api_key: Annotated[
        Optional[str], typer.Option("--api-key", help="API key; prompted when omitted")
    ] = None,
):
    """
    Store the backend API key.
    """
    config = _load_config(config_file)
    store = CredentialStore(config.backend.url, config.tenant_id)
    key = api_key or typer.prompt("API key", hide_input=True)

    try:
        store.set_api_key(key)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if store.insecure_storage_warning:
        console.print(f"[yellow]⚠ {store.insecure_storage_warning}[/yellow]")
    console.print(f"[green]✓ API key stored ({store.backend}).[/green]")


@app.command("clear-key")
def clear_key(
    config_file: ConfigOption = None,
):
    """
    Remove the stored backend API key.
    """
    config = _load_config(config_file)
    CredentialStore(config.backend.url, config.tenant_id).clear()
    console.print("[green]✓ API key removed.[/green]")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]salonagenda[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
