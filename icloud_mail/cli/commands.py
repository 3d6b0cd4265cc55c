"""CLI command implementations."""

from __future__ import annotations

import asyncio
import logging

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from icloud_mail.config import MailSettings
from icloud_mail.mail.connection import ConnectionManager
from icloud_mail.server.app import run_server

logger = logging.getLogger(__name__)
console = Console(width=120)

_SETTING_LABELS = {
    "email": "Email",
    "appPassword": "App password",
    "imapHost": "IMAP host",
    "imapPort": "IMAP port",
    "smtpHost": "SMTP host",
    "smtpPort": "SMTP port",
}


@click.command()
@click.pass_obj
def serve(settings: MailSettings) -> None:
    """Run the MCP server on stdio."""
    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted — goodbye")


@click.command("check-config")
@click.pass_obj
def check_config(settings: MailSettings) -> None:
    """Show the configuration the server would use, with credentials masked."""
    masked = settings.masked()

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    for key, label in _SETTING_LABELS.items():
        table.add_row(label, str(masked[key]))

    console.print(table)
    if masked["configured"]:
        console.print("[green]Credentials are set.[/green]")
    else:
        console.print(
            "[yellow]ICLOUD_EMAIL and ICLOUD_APP_PASSWORD are not both set. "
            "Tools will report 'not configured' until configure_icloud is called.[/yellow]"
        )


@click.command("test-connection")
@click.pass_obj
def test_connection(settings: MailSettings) -> None:
    """Log in over IMAP and SMTP, then report the result."""
    if not settings.is_configured:
        console.print("[red]ICLOUD_EMAIL and ICLOUD_APP_PASSWORD must be set.[/red]")
        raise SystemExit(1)

    result = asyncio.run(ConnectionManager(settings).test_connection())
    style = "green" if result.ok else "red"
    console.print(Panel(result.message, title=f"[bold]{result.status}[/bold]", border_style=style))
    if not result.ok:
        raise SystemExit(1)
