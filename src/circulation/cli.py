"""Command-line interface for the circulation engine.

Built with Typer for commands and Rich for output.
"""

import logging
from datetime import date
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import Config
from .db.schemas import BorrowRecord, ReservationRecord
from .errors import CirculationError
from .service import CirculationEngine
from .utils import utcnow

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Lending library circulation: borrow, return, renew and reserve items.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
items_app = typer.Typer(help="Manage catalog items.")
app.add_typer(items_app, name="items")

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def get_engine() -> CirculationEngine:
    """Build an engine from the environment configuration."""
    config = Config.from_env()
    problems = config.validate()
    if problems:
        for problem in problems:
            print_error(problem)
        raise typer.Exit(1)
    return CirculationEngine.from_config(config)


def fail(error: CirculationError) -> None:
    """Report a circulation error and exit."""
    print_error(str(error))
    raise typer.Exit(1)


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        print_error(f"Invalid date: {value} (expected YYYY-MM-DD)")
        raise typer.Exit(1)


def format_borrow_table(borrows: list[BorrowRecord], title: str = "Borrows") -> Table:
    """Create a rich table for displaying borrows."""
    now = utcnow()
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Due", justify="center")
    table.add_column("Status", style="yellow")
    table.add_column("Fine", justify="right")
    table.add_column("Renewals", justify="center")

    for borrow in borrows:
        status = borrow.status.value
        if borrow.is_overdue(now):
            status = "[bold red]overdue[/bold red]"
        table.add_row(
            borrow.id[:8],
            borrow.item_title,
            borrow.item_author,
            borrow.due_date.date().isoformat(),
            status,
            f"${borrow.fine_amount_cents / 100:.2f}" if borrow.fine_amount_cents else "-",
            str(borrow.renewal_count),
        )

    return table


def format_reservation_table(
    reservations: list[ReservationRecord], title: str = "Reservations"
) -> Table:
    """Create a rich table for displaying reservations."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Patron", style="cyan")
    table.add_column("Reserved", justify="center")
    table.add_column("Expires", justify="center")
    table.add_column("Status", style="yellow")

    for position, reservation in enumerate(reservations, start=1):
        status = "ready for pickup" if reservation.is_ready else reservation.status.value
        table.add_row(
            str(position),
            reservation.id[:8],
            reservation.patron_id,
            reservation.reserved_at.date().isoformat(),
            reservation.expires_at.strftime("%Y-%m-%d %H:%M"),
            status,
        )

    return table


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


# ============================================================================
# Catalog Commands
# ============================================================================


@items_app.command("add")
def items_add(
    title: str = typer.Option(..., "--title", "-t", help="Item title"),
    author: str = typer.Option(..., "--author", "-a", help="Item author"),
    item_id: Optional[str] = typer.Option(None, "--id", help="Explicit item ID"),
) -> None:
    """Add an item to the catalog."""
    engine = get_engine()
    try:
        item = engine.add_item(title, author, item_id=item_id)
    except CirculationError as e:
        fail(e)
    print_success(f"Added: {item.title} by {item.author}")
    print_info(f"ID: {item.id}")


@items_app.command("edit")
def items_edit(
    item_id: str = typer.Argument(..., help="Item ID"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="New author"),
) -> None:
    """Edit an item's title or author."""
    if title is None and author is None:
        print_error("Nothing to change; pass --title and/or --author")
        raise typer.Exit(1)

    engine = get_engine()
    try:
        item = engine.update_item(item_id, title=title, author=author)
    except CirculationError as e:
        fail(e)
    print_success(f"Updated: {item.title} by {item.author}")


@items_app.command("list")
def items_list(
    available: bool = typer.Option(False, "--available", help="Only items on the shelf"),
) -> None:
    """List catalog items."""
    engine = get_engine()
    items = engine.catalog.list_items(available_only=available)
    if not items:
        print_info("No items found.")
        return

    table = Table(title="Catalog", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Status", style="yellow")

    for item in items:
        status = "available" if item.available else f"out ({item.held_by})"
        table.add_row(item.id, item.title, item.author, status)

    console.print(table)


# ============================================================================
# Circulation Commands
# ============================================================================


@app.command()
def borrow(
    patron_id: str = typer.Argument(..., help="Patron ID"),
    item_id: str = typer.Argument(..., help="Item ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan length in days"),
) -> None:
    """Check an item out to a patron."""
    engine = get_engine()
    try:
        record = engine.borrow_book(patron_id, item_id, days)
    except CirculationError as e:
        fail(e)
    print_success(f"Borrowed: {record.item_title}")
    console.print(f"[dim]Borrow ID: {record.id}[/dim]")
    console.print(f"[dim]Due: {record.due_date.date().isoformat()}[/dim]")


@app.command("return")
def return_item(
    borrow_id: str = typer.Argument(..., help="Borrow ID"),
) -> None:
    """Return a borrowed item."""
    engine = get_engine()
    try:
        record = engine.return_book(borrow_id)
    except CirculationError as e:
        fail(e)
    print_success(f"Returned: {record.item_title}")
    if record.fine_amount_cents:
        console.print(f"[yellow]Outstanding fine: ${record.fine_amount_cents / 100:.2f}[/yellow]")


@app.command()
def renew(
    borrow_id: str = typer.Argument(..., help="Borrow ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Days to add"),
) -> None:
    """Extend a borrow's due date."""
    engine = get_engine()
    try:
        record = engine.renew_borrow(borrow_id, days)
    except CirculationError as e:
        fail(e)
    print_success(f"Renewed: {record.item_title}")
    console.print(f"[dim]New due date: {record.due_date.date().isoformat()}[/dim]")


@app.command()
def reserve(
    patron_id: str = typer.Argument(..., help="Patron ID"),
    item_id: str = typer.Argument(..., help="Item ID"),
) -> None:
    """Join the waiting list for an item."""
    engine = get_engine()
    try:
        record = engine.reserve_book(patron_id, item_id)
    except CirculationError as e:
        fail(e)
    position = engine.reservation_queue_position(item_id, patron_id)
    print_success(f"Reserved: {record.item_title}")
    console.print(f"[dim]Reservation ID: {record.id}[/dim]")
    if position:
        console.print(f"Queue position: [bold]{position}[/bold]")


@app.command()
def cancel(
    reservation_id: str = typer.Argument(..., help="Reservation ID"),
) -> None:
    """Cancel a reservation."""
    engine = get_engine()
    try:
        record = engine.cancel_reservation(reservation_id)
    except CirculationError as e:
        fail(e)
    print_success(f"Reservation cancelled: {record.item_title}")


# ============================================================================
# Views
# ============================================================================


@app.command()
def loans(
    patron_id: str = typer.Argument(..., help="Patron ID"),
) -> None:
    """Show a patron's active borrows, overdue first."""
    engine = get_engine()
    borrows = engine.active_borrows_for_patron(patron_id)
    if not borrows:
        print_info("No active borrows.")
        return
    console.print(format_borrow_table(borrows, title=f"Active borrows for {patron_id}"))


@app.command()
def history(
    patron_id: str = typer.Argument(..., help="Patron ID"),
    limit: int = typer.Option(100, "--limit", "-l", help="Max records"),
) -> None:
    """Show a patron's borrow history."""
    engine = get_engine()
    borrows = engine.projections.borrow_history_for_patron(patron_id, limit=limit)
    if not borrows:
        print_info("No borrow history.")
        return
    console.print(format_borrow_table(borrows, title=f"History for {patron_id}"))


@app.command()
def queue(
    item_id: str = typer.Argument(..., help="Item ID"),
) -> None:
    """Show the reservation queue for an item."""
    engine = get_engine()
    reservations = engine.projections.reservation_queue(item_id)
    if not reservations:
        print_info("Nobody is waiting for this item.")
        return
    console.print(format_reservation_table(reservations, title="Reservation queue"))


# ============================================================================
# Sweeps
# ============================================================================


@app.command()
def overdue(
    as_of: Optional[str] = typer.Option(None, "--as-of", help="Reference date (YYYY-MM-DD)"),
    progress: bool = typer.Option(False, "--progress", help="Show progress bar"),
) -> None:
    """Recompute fines for overdue borrows."""
    engine = get_engine()
    result = engine.process_overdue(parse_date(as_of), show_progress=progress)
    console.print(
        f"Processed: [bold]{result.processed}[/bold]  "
        f"Skipped: {result.skipped}  Failed: {result.failed}"
    )
    for borrow_id, error in result.errors:
        print_error(f"{borrow_id}: {error}")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def expire(
    as_of: Optional[str] = typer.Option(None, "--as-of", help="Reference date (YYYY-MM-DD)"),
    progress: bool = typer.Option(False, "--progress", help="Show progress bar"),
) -> None:
    """Expire reservations whose window elapsed and promote the next in line."""
    engine = get_engine()
    result = engine.expire_reservations(parse_date(as_of), show_progress=progress)
    console.print(
        f"Expired: [bold]{result.processed}[/bold]  "
        f"Skipped: {result.skipped}  Failed: {result.failed}"
    )
    for record_id, error in result.errors:
        print_error(f"{record_id}: {error}")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def reconcile(
    progress: bool = typer.Option(False, "--progress", help="Show progress bar"),
) -> None:
    """Bring cached titles and authors in line with the catalog."""
    engine = get_engine()
    report = engine.reconcile_snapshots(show_progress=progress)
    console.print(
        f"Items: {report.items}  Borrows updated: {report.borrows_updated}  "
        f"Reservations updated: {report.reservations_updated}"
    )
    if not report.converged:
        print_error("Some snapshots could not be refreshed; run reconcile again")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circulation version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    app()
