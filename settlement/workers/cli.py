"""CLI for the settlement core.

Provides commands for schema setup, notification replay and health checks.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from settlement.config import get_settings
from settlement.database.connection import close_db, init_db
from settlement.integrations.webhook_handler import WebhookHandler
from settlement.monitoring.health import HealthCheck, HealthCheckError
from settlement.monitoring.logging import setup_logging
from settlement.workers.replay import load_notifications, replay_notifications

# Initialize Typer app
app = typer.Typer(
    name="settlement",
    help="Settlement core - reconcile payment gateway notifications with orders",
    add_completion=False,
)

console = Console()


@app.command("init-db")
def init_db_command() -> None:
    """Create the settlement tables if they don't exist."""
    setup_logging()

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(_run())
    console.print("[green]Database initialized[/green]")


@app.command()
def replay(
    file: Path = typer.Argument(..., help="JSON, JSON array or JSON lines file of notifications"),
    output_json: bool = typer.Option(
        False,
        "--json",
        help="Print results as JSON",
    ),
) -> None:
    """Replay stored gateway notifications through the settlement pipeline."""
    setup_logging()

    if not file.exists():
        console.print(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(code=1)

    try:
        payloads = load_notifications(file)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    async def _run() -> list:
        try:
            return await replay_notifications(WebhookHandler(), payloads)
        finally:
            await close_db()

    results = asyncio.run(_run())

    if output_json:
        typer.echo(json.dumps(results, indent=2, default=str))
    else:
        table = Table(title="Replay results")
        table.add_column("#", justify="right")
        table.add_column("Outcome")
        table.add_column("Order")
        table.add_column("Status / message")
        for r in results:
            table.add_row(
                str(r["index"]),
                r["outcome"],
                str(r.get("order_id") or "-"),
                r.get("status") or r.get("message") or "",
            )
        console.print(table)

    if any(r["outcome"] == "error" for r in results):
        raise typer.Exit(code=1)


@app.command()
def health() -> None:
    """Check database connectivity."""
    setup_logging()

    async def _run() -> Optional[dict]:
        try:
            return await HealthCheck().check_database()
        finally:
            await close_db()

    try:
        status = asyncio.run(_run())
    except HealthCheckError as e:
        console.print(f"[red]Unhealthy:[/red] {e}")
        raise typer.Exit(code=1)

    settings = get_settings()
    console.print(f"[green]{status['message']}[/green] ({settings.app_env})")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
