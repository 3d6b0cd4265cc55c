"""MCP server wiring: tool handlers, session lifecycle and the stdio transport."""

from __future__ import annotations

import logging
from typing import Any

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from icloud_mail.config import MailSettings
from icloud_mail.mail.connection import ConnectionManager
from icloud_mail.server.dispatch import ToolDispatcher
from icloud_mail.server.tools import TOOLS

logger = logging.getLogger(__name__)

SERVER_NAME = "icloud-mail-mcp"


def build_server(dispatcher: ToolDispatcher) -> Server:
    """Create the MCP server with tools/list and tools/call bound to ``dispatcher``."""
    server: Server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return list(TOOLS)

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await dispatcher.call(name, arguments)

    return server


async def run_server(settings: MailSettings, manager: ConnectionManager | None = None) -> None:
    """Serve MCP over stdio until the client disconnects.

    A configured account is connected up front; a failure there is logged and
    the server still starts, so ``configure_icloud`` and ``check_config``
    remain usable.
    """
    manager = manager or ConnectionManager(settings)

    if settings.is_configured:
        try:
            await manager.connect()
        except Exception as exc:  # noqa: BLE001
            logger.error("Initial connection failed: %s", exc)
    else:
        logger.warning(
            "ICLOUD_EMAIL / ICLOUD_APP_PASSWORD not set; waiting for configure_icloud"
        )

    server = build_server(ToolDispatcher(manager))
    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("%s running on stdio", SERVER_NAME)
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await manager.disconnect()
