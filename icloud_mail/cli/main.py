"""CLI entry point for the iCloud Mail MCP server."""

import logging
import os
import sys

import click
from dotenv import load_dotenv

from icloud_mail.config import MailSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(level_name: str | None = None) -> None:
    """Log to stderr; stdout belongs to the MCP stdio protocol."""
    level_name = (level_name or os.environ.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


@click.group(invoke_without_command=True)
@click.option("--log-level", default=None, help="Overrides LOG_LEVEL (default INFO).")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """iCloud Mail MCP server — serve, check-config and test-connection commands."""
    load_dotenv()
    configure_logging(log_level)
    ctx.obj = MailSettings.from_env()
    if ctx.invoked_subcommand is None:
        ctx.invoke(serve)


# Import and register commands after cli is defined to avoid circular imports.
from icloud_mail.cli.commands import check_config, serve, test_connection  # noqa: E402

cli.add_command(serve)
cli.add_command(check_config)
cli.add_command(test_connection)
