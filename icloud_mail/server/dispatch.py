"""tools/call dispatch: argument handling, result encoding and MCP error mapping."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
    TextContent,
)

from icloud_mail.mail.client import ICloudMailClient
from icloud_mail.mail.connection import NOT_CONFIGURED_MESSAGE, ConnectionManager
from icloud_mail.mail.errors import InvalidArgumentError, NotConfiguredError
from icloud_mail.mail.types import DEFAULT_LIMIT, DEFAULT_MAILBOX, OperationResult, SearchFilter

logger = logging.getLogger(__name__)

# Tools that work before any session exists
_SESSIONLESS_TOOLS = frozenset({"check_config", "configure_icloud"})

_BOOL_STRINGS = {"true": True, "false": False}

_Handler = Callable[[dict[str, Any]], Awaitable[list[TextContent]]]


def _error(code: int, message: str) -> McpError:
    return McpError(ErrorData(code=code, message=message))


def _text(value: str) -> list[TextContent]:
    return [TextContent(type="text", text=value)]


def _json(value: Any) -> list[TextContent]:
    return _text(json.dumps(value, indent=2, ensure_ascii=False))


def _result(result: OperationResult) -> list[TextContent]:
    return _json(result.to_dict())


def _required(args: dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or value == "" or value == []:
        raise _error(INVALID_PARAMS, f"Missing required argument: {key}")
    return value


def _id_list(args: dict[str, Any], key: str = "messageIds") -> list[str]:
    value = _required(args, key)
    if isinstance(value, (str, int)):
        value = [value]
    if not isinstance(value, list):
        raise _error(INVALID_PARAMS, f"Argument {key} must be an array")
    return [str(v) for v in value]


def _limit(args: dict[str, Any]) -> int:
    """Caller limit; missing, non-numeric or non-positive values mean the default."""
    raw = args.get("limit")
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return limit if limit > 0 else DEFAULT_LIMIT


def _mailbox(args: dict[str, Any], key: str = "mailbox") -> str:
    return args.get(key) or DEFAULT_MAILBOX


def _boolean(args: dict[str, Any], key: str) -> bool:
    """Boolean argument; accepts JSON booleans and the strings "true"/"false"."""
    value = args.get(key)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
        return _BOOL_STRINGS[value.strip().lower()]
    raise _error(INVALID_PARAMS, f"Argument {key} must be a boolean")


class ToolDispatcher:
    """Routes a tools/call request to the mail client.

    Raises ``McpError`` for protocol-level failures: INVALID_REQUEST when no
    session exists, METHOD_NOT_FOUND for unknown tools, INVALID_PARAMS for
    missing or malformed arguments and INTERNAL_ERROR for anything else that
    escapes a handler.
    """

    def __init__(self, manager: ConnectionManager, client: ICloudMailClient | None = None) -> None:
        self._manager = manager
        self._client = client or ICloudMailClient(manager)
        self._handlers: dict[str, _Handler] = {
            "configure_icloud": self._configure_icloud,
            "get_messages": self._get_messages,
            "send_email": self._send_email,
            "mark_as_read": self._mark_as_read,
            "get_mailboxes": self._get_mailboxes,
            "test_connection": self._test_connection,
            "create_mailbox": self._create_mailbox,
            "delete_mailbox": self._delete_mailbox,
            "move_messages": self._move_messages,
            "search_messages": self._search_messages,
            "delete_messages": self._delete_messages,
            "set_flags": self._set_flags,
            "download_attachment": self._download_attachment,
            "auto_organize": self._auto_organize,
            "check_config": self._check_config,
        }

    async def call(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        handler = self._handlers.get(name)
        if handler is None:
            raise _error(METHOD_NOT_FOUND, f"Unknown tool: {name}")

        if name not in _SESSIONLESS_TOOLS and self._manager.active_session is None:
            raise _error(INVALID_REQUEST, NOT_CONFIGURED_MESSAGE)

        logger.debug("Calling tool %s", name)
        try:
            return await handler(arguments or {})
        except McpError:
            raise
        except NotConfiguredError as exc:
            raise _error(INVALID_REQUEST, str(exc)) from exc
        except InvalidArgumentError as exc:
            raise _error(INVALID_PARAMS, str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            logger.error("Tool %s failed: %s", name, exc)
            raise _error(INTERNAL_ERROR, f"Error executing tool {name}: {exc}") from exc

    # ── Session-free tools ─────────────────────────────────────────────────────

    async def _configure_icloud(self, args: dict[str, Any]) -> list[TextContent]:
        email = str(_required(args, "email")).strip()
        app_password = str(_required(args, "appPassword")).strip()
        settings = dataclasses.replace(self._manager.settings, email=email, app_password=app_password)
        await self._manager.configure(settings)
        return _text(f"Successfully configured iCloud Mail for {email}")

    async def _check_config(self, args: dict[str, Any]) -> list[TextContent]:
        return _json({
            **self._manager.settings.masked(),
            "connected": self._manager.active_session is not None,
        })

    # ── Reading ────────────────────────────────────────────────────────────────

    async def _get_messages(self, args: dict[str, Any]) -> list[TextContent]:
        messages = await self._client.get_messages(
            _mailbox(args), _limit(args), _boolean(args, "unreadOnly")
        )
        return _json([m.to_dict() for m in messages])

    async def _search_messages(self, args: dict[str, Any]) -> list[TextContent]:
        search = SearchFilter(
            mailbox=_mailbox(args),
            limit=_limit(args),
            query=args.get("query") or None,
            date_from=args.get("dateFrom") or None,
            date_to=args.get("dateTo") or None,
            from_email=args.get("fromEmail") or None,
            unread_only=_boolean(args, "unreadOnly"),
        )
        messages = await self._client.search_messages(search)
        return _json([m.to_dict() for m in messages])

    async def _get_mailboxes(self, args: dict[str, Any]) -> list[TextContent]:
        mailboxes = await self._client.get_mailboxes()
        return _json([m.to_dict() for m in mailboxes])

    async def _download_attachment(self, args: dict[str, Any]) -> list[TextContent]:
        try:
            index = int(args.get("attachmentIndex", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise _error(INVALID_PARAMS, "Argument attachmentIndex must be a number") from exc
        result = await self._client.download_attachment(
            str(_required(args, "messageId")), index, _mailbox(args)
        )
        return _result(result)

    async def _test_connection(self, args: dict[str, Any]) -> list[TextContent]:
        result = await self._manager.test_connection()
        return _json({"status": result.status, "message": result.message})

    # ── Sending ────────────────────────────────────────────────────────────────

    async def _send_email(self, args: dict[str, Any]) -> list[TextContent]:
        to = _required(args, "to")
        subject = _required(args, "subject")
        message_id = await self._client.send_email(to, str(subject), args.get("text"), args.get("html"))
        return _text(f"Email sent successfully. Message ID: {message_id}")

    # ── Mutations ──────────────────────────────────────────────────────────────

    async def _mark_as_read(self, args: dict[str, Any]) -> list[TextContent]:
        return _result(await self._client.mark_as_read(_id_list(args), _mailbox(args)))

    async def _create_mailbox(self, args: dict[str, Any]) -> list[TextContent]:
        return _result(await self._client.create_mailbox(str(_required(args, "name"))))

    async def _delete_mailbox(self, args: dict[str, Any]) -> list[TextContent]:
        # Empty names are reported by the operation itself, not as INVALID_PARAMS
        name = args.get("name")
        if name is None:
            raise _error(INVALID_PARAMS, "Missing required argument: name")
        return _result(await self._client.delete_mailbox(str(name)))

    async def _move_messages(self, args: dict[str, Any]) -> list[TextContent]:
        result = await self._client.move_messages(
            _id_list(args),
            str(_required(args, "sourceMailbox")),
            str(_required(args, "destinationMailbox")),
        )
        return _result(result)

    async def _delete_messages(self, args: dict[str, Any]) -> list[TextContent]:
        return _result(await self._client.delete_messages(_id_list(args), _mailbox(args)))

    async def _set_flags(self, args: dict[str, Any]) -> list[TextContent]:
        flags = _required(args, "flags")
        if isinstance(flags, str):
            flags = [flags]
        result = await self._client.set_flags(
            _id_list(args), [str(f) for f in flags], _mailbox(args), args.get("action") or "add"
        )
        return _result(result)

    async def _auto_organize(self, args: dict[str, Any]) -> list[TextContent]:
        rules = _required(args, "rules")
        if not isinstance(rules, list):
            raise _error(INVALID_PARAMS, "Argument rules must be an array")
        result = await self._client.auto_organize(
            rules, _mailbox(args, "sourceMailbox"), _boolean(args, "dryRun")
        )
        return _result(result)
