"""
Tracey Command Line Interface

Operator commands for the matching and notification core: database setup,
serving the API, running matches by hand, and working the retry queue.
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="tracey",
    help="Lost & found matching and notification core CLI",
    add_completion=False,
)
console = Console()


@app.command()
def version():
    """Show application version."""
    from tracey import __app_name__, __version__

    console.print(f"[bold blue]{__app_name__}[/bold blue] version [green]{__version__}[/green]")


@app.command()
def info():
    """Show configuration."""
    from tracey.utils.config import get_settings
    from tracey.utils.constants import MATCH_THRESHOLD, MAX_RETRIES

    settings = get_settings()

    table = Table(title="Tracey Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Environment", settings.environment)
    table.add_row("Debug Mode", str(settings.debug))
    table.add_row("Database Host", settings.database.host)
    table.add_row("Database Name", settings.database.name)
    table.add_row("Replica Set", settings.database.replica_set or "[dim]none[/dim]")
    table.add_row("Match Threshold", f"{MATCH_THRESHOLD:.2f}")
    table.add_row("Max Retries", str(MAX_RETRIES))
    table.add_row("Email Configured", str(bool(settings.email.api_key and settings.email.sender)))
    table.add_row("Firebase Project", settings.firebase.project_id or "[dim]default[/dim]")
    table.add_row("Cron Secret Set", str(bool(settings.queue.cron_secret)))
    table.add_row("Log Level", settings.logging.level)

    console.print(table)


@app.command()
def init_db():
    """Create the collections' indexes."""
    from tracey.data.database import get_database_manager

    console.print("[yellow]Initializing database...[/yellow]")

    db_manager = get_database_manager()

    console.print("  Checking database connection...")
    if not db_manager.check_sync_connection():
        console.print("[red]Error: Could not connect to MongoDB.[/red]")
        console.print("[dim]Make sure MongoDB is running and connection settings are correct.[/dim]")
        raise typer.Exit(1)
    console.print("  [green]✓[/green] Connected to MongoDB")

    console.print("  Creating indexes...")
    asyncio.run(db_manager.ensure_indexes())
    console.print("  [green]✓[/green] Indexes created")

    console.print("\n[green]Database initialized successfully![/green]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP API."""
    import uvicorn

    from tracey.utils.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "tracey.api:create_app",
        factory=True,
        host=host or settings.api.host,
        port=port or settings.api.port,
        reload=reload,
    )


@app.command()
def auto_match(
    item_id: str = typer.Argument(..., help="Item to match"),
    lost: bool = typer.Option(False, "--lost", help="The item is a lost report"),
    notify: bool = typer.Option(True, "--notify/--no-notify", help="Send notifications"),
):
    """Run matching for one item."""
    from tracey.core.exceptions import StructuralError
    from tracey.core.matching import get_matching_engine

    engine = get_matching_engine()

    async def _run():
        if lost:
            return await engine.auto_match_lost(item_id, notify=notify)
        return await engine.auto_match(item_id, notify=notify)

    try:
        run = asyncio.run(_run())
    except StructuralError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if run.embedding_pending:
        console.print("[yellow]Item has no embedding yet; nothing to match.[/yellow]")
        return

    table = Table(title=f"Matches for {item_id}")
    table.add_column("Match", style="cyan")
    table.add_column("Lost Item")
    table.add_column("Found Item")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Status")
    table.add_column("Email")
    table.add_column("Push")

    for r in run.results:
        table.add_row(
            r.match_id or "-",
            r.lost_item_id or "-",
            r.found_item_id,
            f"{r.score * 100:.0f}%",
            r.status,
            "✓" if r.email_sent else "",
            "✓" if r.push_sent else "",
        )

    console.print(table)
    console.print(
        f"[bold]{run.match_count}[/bold] match(es), "
        f"[bold]{run.notifications_sent}[/bold] new"
    )


@app.command()
def process_queue(
    loop: bool = typer.Option(False, "--loop", help="Keep processing until interrupted"),
    interval: Optional[int] = typer.Option(
        None, "--interval", "-i", help="Seconds between sweeps in loop mode"
    ),
):
    """Process due notification retries."""
    from tracey.services.notification_queue import get_queue_processor
    from tracey.services.scheduler import build_scheduler
    from tracey.utils.config import get_settings

    processor = get_queue_processor()
    interval = interval or get_settings().queue.poll_interval_seconds

    def _print(summary) -> None:
        console.print(
            f"processed={summary.processed} succeeded=[green]{summary.succeeded}[/green] "
            f"rescheduled=[yellow]{summary.rescheduled}[/yellow] failed=[red]{summary.failed}[/red] "
            f"errors={summary.errors}"
        )

    async def _run():
        if not loop:
            _print(await processor.process_queue())
            return

        scheduler = build_scheduler(
            processor, interval_seconds=interval, include_cleanup=False, on_sweep=_print
        )
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@app.command()
def cleanup(
    queue_days: Optional[int] = typer.Option(None, "--queue-days", help="Finished queue item age"),
    token_days: Optional[int] = typer.Option(None, "--token-days", help="Unused push token age"),
):
    """Delete finished queue items and stale push tokens."""
    from tracey.services.notification_queue import get_queue_processor
    from tracey.services.token_manager import get_token_manager
    from tracey.utils.config import get_settings
    from tracey.utils.constants import TOKEN_CLEANUP_DAYS

    queue_days = queue_days or get_settings().queue.cleanup_days
    token_days = token_days or TOKEN_CLEANUP_DAYS

    async def _run():
        removed_items = await get_queue_processor().cleanup(queue_days)
        removed_tokens = await get_token_manager().cleanup_expired_tokens(token_days)
        return removed_items, removed_tokens

    removed_items, removed_tokens = asyncio.run(_run())
    console.print(f"[green]✓[/green] Removed {removed_items} queue item(s) older than {queue_days} days")
    console.print(f"[green]✓[/green] Removed {removed_tokens} push token(s) unused for {token_days} days")


@app.command()
def test_push(
    user_id: str = typer.Argument(..., help="User to notify"),
    title: str = typer.Option("Test Notification from Tracey", "--title"),
    body: str = typer.Option("This is a test notification.", "--body"),
):
    """Send a test push notification to every device of a user."""
    from tracey.services.token_manager import PushNotification, get_token_manager

    result = asyncio.run(
        get_token_manager().send_to_user(
            user_id, PushNotification(title=title, body=body, data={"type": "test"})
        )
    )
    style = "green" if result.delivered else "red"
    console.print(f"[{style}]Sent to {result.success} device(s), {result.failed} failed[/{style}]")


@app.command()
def test_email(
    to: str = typer.Argument(..., help="Recipient address"),
    category: str = typer.Option("Wallet", "--category"),
):
    """Send a sample match email."""
    from tracey.core.exceptions import EmailDeliveryError
    from tracey.services.email_service import get_email_service

    try:
        message_id = asyncio.run(
            get_email_service().send_match_email(to, 0.87, "test-match", category)
        )
    except EmailDeliveryError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Email accepted (id: {message_id or 'n/a'})")


def main():
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
