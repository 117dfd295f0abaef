"""CLI entry point using Typer."""

import asyncio
import json
import logging
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="convreport",
    help="Conversion reporting - filter, validate and report ad-network conversions.",
)
console = Console()


def configure_logging(level: str = "info", json_logs: bool = False) -> None:
    """Configure structured logging (console for development, JSON for production)."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


@asynccontextmanager
async def open_reporter() -> AsyncIterator:
    """Build the reporter and its collaborators; close them all on exit."""
    from convreport.capi.client import ConversionsApiClient
    from convreport.config import settings
    from convreport.db import Database
    from convreport.ingest.objects import S3ObjectStore
    from convreport.jobs.report import ConversionReporter
    from convreport.store.conversions import ConversionStore
    from convreport.store.lookups import SqlLookups

    db = Database(settings.database_url)
    try:
        async with ConversionsApiClient(
            settings.capi_base_url,
            settings.capi_api_version,
            timeout_seconds=settings.capi_timeout_seconds,
        ) as api_client:
            yield ConversionReporter(
                object_store=S3ObjectStore(region_name=settings.aws_region),
                lookups=SqlLookups(db),
                repository=ConversionStore(db),
                sink=api_client,
                default_bucket=settings.report_bucket,
                traffic_source=settings.pixel_traffic_source,
                max_events=settings.capi_max_events_per_request,
                subscription_filtering=settings.subscription_filtering_enabled,
            )
    finally:
        db.dispose()


def _print_stats(stats: dict) -> None:
    table = Table(title="Report Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in stats.items():
        if key == "invalid_reasons":
            for reason, count in value.items():
                table.add_row(f"invalid: {reason}", str(count))
            continue
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.callback()
def main() -> None:
    from convreport.config import settings

    configure_logging(settings.log_level, settings.json_logs)


@app.command()
def run(
    once: bool = typer.Option(False, "--once", help="Poll the queue a single time and exit"),
    idle_sleep: float = typer.Option(0.0, help="Seconds to sleep after an empty receive"),
    error_sleep: float = typer.Option(5.0, help="Seconds to sleep after a failed receive"),
) -> None:
    """Consume the reporting queue, one message at a time."""
    from convreport.config import settings
    from convreport.ingest.queue import SqsQueue
    from convreport.jobs.poller import QueuePoller

    if not settings.polling_enabled:
        console.print("[yellow]Polling disabled (POLLING_ENABLED=false), exiting[/yellow]")
        return
    if not settings.queue_url:
        console.print("[bold red]Error:[/bold red] QUEUE_URL is not set")
        raise typer.Exit(1)

    async def _run() -> None:
        async with open_reporter() as reporter:
            queue = SqsQueue(
                settings.queue_url,
                region_name=settings.aws_region,
                max_messages=settings.queue_max_messages,
                wait_time_seconds=settings.queue_wait_time_seconds,
            )
            poller = QueuePoller(
                queue,
                reporter.process_message,
                idle_sleep_seconds=idle_sleep,
                error_sleep_seconds=error_sleep,
            )
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, poller.stop)
            await poller.run(max_polls=1 if once else None)

    console.print("[bold blue]Polling for conversion reports...[/bold blue]")
    asyncio.run(_run())


@app.command()
def process(message_path: Path = typer.Argument(..., help="File holding one queue message body (JSON)")) -> None:
    """Run one saved queue message through the pipeline."""
    if not message_path.exists():
        console.print(f"[bold red]Error:[/bold red] Message file not found: {message_path}")
        raise typer.Exit(1)

    async def _process() -> dict:
        async with open_reporter() as reporter:
            stats = await reporter.process_message(message_path.read_text())
            return stats.as_dict()

    try:
        stats = asyncio.run(_process())
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    _print_stats(stats)
    console.print("[bold green]Done![/bold green]")


@app.command("init-db")
def init_db() -> None:
    """Create database tables."""
    from convreport.config import settings
    from convreport.db import Database

    db = Database(settings.database_url)
    try:
        db.create_all()
    finally:
        db.dispose()
    console.print("[bold green]Tables created[/bold green]")


@app.command()
def cleanup(keys_path: Path = typer.Argument(..., help="JSON array of {session_id, keyword_clicked} objects")) -> None:
    """Delete stored conversions by key (out-of-band only)."""
    from convreport.config import settings
    from convreport.db import Database
    from convreport.store.conversions import ConversionStore

    try:
        items = json.loads(keys_path.read_text())
        keys = [(str(item["session_id"]), str(item["keyword_clicked"])) for item in items]
    except (OSError, ValueError, KeyError, TypeError) as e:
        console.print(f"[bold red]Error:[/bold red] Could not read keys: {e}")
        raise typer.Exit(1)

    db = Database(settings.database_url)
    try:
        deleted = ConversionStore(db).delete_by_keys(keys)
    finally:
        db.dispose()
    console.print(f"[bold green]Deleted {deleted} of {len(keys)} conversions[/bold green]")


if __name__ == "__main__":
    app()
