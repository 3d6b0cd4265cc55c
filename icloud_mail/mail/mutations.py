"""Mailbox and message mutations, each a single IMAP transaction under the session lock.

Every public method returns an ``OperationResult`` instead of raising, so a
bad request from an agent never takes the server down.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from icloud_mail.mail.connection import MailSession, response_text
from icloud_mail.mail.errors import InvalidArgumentError, MailError
from icloud_mail.mail.fetch import resolve_message_ids
from icloud_mail.mail.search import imap_flag, imap_quote
from icloud_mail.mail.types import DEFAULT_MAILBOX, MailboxInfo, OperationResult

logger = logging.getLogger(__name__)

SEEN_FLAG = "\\Seen"
DELETED_FLAG = "\\Deleted"

#: Mailboxes delete_mailbox refuses to touch.
PROTECTED_MAILBOXES = frozenset({"INBOX", "Sent", "Trash", "Drafts", "Junk"})

_FLAG_ACTIONS = {"add": "+FLAGS", "remove": "-FLAGS"}

# (\HasNoChildren \Sent) "/" "Sent Messages"   |   (\HasChildren) "." INBOX
_LIST_LINE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"[^"]*"|NIL)\s+(?P<name>.+)$')


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def parse_list_line(line: Any) -> MailboxInfo | None:
    """Parse one LIST response line; None for status lines and junk."""
    text = bytes(line).decode("utf-8", errors="replace") if isinstance(line, (bytes, bytearray)) else str(line)
    match = _LIST_LINE.match(text.strip())
    if not match:
        return None
    delim = match.group("delim")
    return MailboxInfo(
        name=_unquote(match.group("name")),
        delimiter="" if delim == "NIL" else _unquote(delim),
        flags=match.group("flags").split(),
    )


def _uid_set(uids: list[int]) -> str:
    return ",".join(str(uid) for uid in uids)


def _flag_list(flags: list[str]) -> str:
    """Parenthesised flag list; raises InvalidArgumentError for a malformed flag."""
    return "(" + " ".join(imap_flag(flag) for flag in flags) + ")"


class MailboxOperations:
    """State-changing operations against one session.

    Target messages are resolved from the caller's ids (UIDs or Message-ID
    values); ids that match nothing are reported under
    ``notFound`` rather than failing the call.

    Usage::

        ops = MailboxOperations(session)
        result = await ops.move_messages(["<a@b>"], "INBOX", "Receipts")
    """

    def __init__(self, session: MailSession) -> None:
        self._session = session

    # ── Mailboxes ──────────────────────────────────────────────────────────────

    async def list_mailboxes(self) -> list[MailboxInfo]:
        """Every mailbox in the account.  Raises MailError if LIST fails."""
        async with self._session.lock:
            response = await self._session.imap.list('""', "*")
        if response.result != "OK":
            raise MailError(f"Failed to list mailboxes: {response_text(response)}")
        mailboxes = [box for box in map(parse_list_line, response.lines or []) if box]
        logger.debug("Found %d mailboxes", len(mailboxes))
        return mailboxes

    async def create_mailbox(self, name: str) -> OperationResult:
        try:
            async with self._session.lock:
                response = await self._session.imap.create(imap_quote(name))
        except Exception as exc:  # noqa: BLE001
            logger.error("Error creating mailbox %r: %s", name, exc)
            return OperationResult.error(str(exc))
        if response.result != "OK":
            return OperationResult.error(response_text(response) or f"CREATE returned {response.result}")
        logger.info("Created mailbox %r", name)
        return OperationResult.success(f"Mailbox '{name}' created successfully")

    async def delete_mailbox(self, name: str) -> OperationResult:
        if not name or not name.strip():
            return OperationResult.error("Mailbox name cannot be empty")

        trimmed = name.strip()
        if trimmed in PROTECTED_MAILBOXES:
            return OperationResult.error(f"Cannot delete system mailbox '{trimmed}'")

        try:
            async with self._session.lock:
                response = await self._session.imap.delete(imap_quote(trimmed))
        except Exception as exc:  # noqa: BLE001
            logger.error("Error deleting mailbox %r: %s", trimmed, exc)
            return OperationResult.error(self._explain_delete_error(trimmed, str(exc)))
        if response.result != "OK":
            detail = response_text(response) or f"DELETE returned {response.result}"
            return OperationResult.error(self._explain_delete_error(trimmed, detail))
        logger.info("Deleted mailbox %r", trimmed)
        return OperationResult.success(f"Mailbox '{trimmed}' deleted successfully")

    @staticmethod
    def _explain_delete_error(name: str, detail: str) -> str:
        lowered = detail.lower()
        if "does not exist" in lowered or "nonexistent" in lowered:
            return f"Mailbox '{name}' does not exist"
        if "not empty" in lowered:
            return (
                f"Cannot delete mailbox '{name}' because it contains messages. "
                "Please move or delete all messages first."
            )
        if "permission" in lowered:
            return f"Permission denied: Cannot delete mailbox '{name}'"
        return detail

    # ── Messages ───────────────────────────────────────────────────────────────

    async def move_messages(
        self, message_ids: list[str], source_mailbox: str, destination_mailbox: str
    ) -> OperationResult:
        session = self._session
        try:
            async with session.lock:
                error, uids, not_found = await self._select_targets(
                    source_mailbox, message_ids, label="source mailbox"
                )
                if error is not None:
                    return error

                destination = imap_quote(destination_mailbox)
                uid_set = _uid_set(uids)
                if session.imap.has_capability("MOVE"):
                    response = await session.imap.uid("move", uid_set, destination)
                else:
                    response = await self._copy_then_expunge(uid_set, destination)
        except Exception as exc:  # noqa: BLE001
            logger.error("Move %s → %s failed: %s", source_mailbox, destination_mailbox, exc)
            return OperationResult.error(f"Failed to move messages: {exc}")

        if response.result != "OK":
            return OperationResult.error(f"Failed to move messages: {response_text(response)}")
        logger.info("Moved %d message(s) %s → %s", len(uids), source_mailbox, destination_mailbox)
        return OperationResult.success(
            f"Successfully moved {len(uids)} messages from "
            f"'{source_mailbox}' to '{destination_mailbox}'",
            movedCount=len(uids),
            **({"notFound": not_found} if not_found else {}),
        )

    async def _copy_then_expunge(self, uid_set: str, destination: str) -> Any:
        """MOVE for servers without RFC 6851: COPY, flag \\Deleted, EXPUNGE."""
        imap = self._session.imap
        response = await imap.uid("copy", uid_set, destination)
        if response.result != "OK":
            return response
        response = await imap.uid("store", uid_set, "+FLAGS", _flag_list([DELETED_FLAG]))
        if response.result != "OK":
            return response
        return await self._expunge(uid_set)

    async def _expunge(self, uid_set: str) -> Any:
        """Expunge only ``uid_set`` when the server has UIDPLUS, else the whole mailbox."""
        imap = self._session.imap
        if imap.has_capability("UIDPLUS"):
            return await imap.uid("expunge", uid_set)
        return await imap.expunge()

    async def delete_messages(
        self, message_ids: list[str], mailbox: str = DEFAULT_MAILBOX
    ) -> OperationResult:
        """Flag targets \\Deleted, then EXPUNGE.  Each phase fails with its own message."""
        session = self._session
        try:
            async with session.lock:
                error, uids, not_found = await self._select_targets(mailbox, message_ids)
                if error is not None:
                    return error

                uid_set = _uid_set(uids)
                marked = await session.imap.uid(
                    "store", uid_set, "+FLAGS", _flag_list([DELETED_FLAG])
                )
                if marked.result != "OK":
                    return OperationResult.error(
                        f"Failed to mark messages for deletion: {response_text(marked)}"
                    )
                try:
                    expunged = await self._expunge(uid_set)
                except Exception as exc:  # noqa: BLE001
                    return OperationResult.error(f"Failed to expunge deleted messages: {exc}")
                if expunged.result != "OK":
                    return OperationResult.error(
                        f"Failed to expunge deleted messages: {response_text(expunged)}"
                    )
        except Exception as exc:  # noqa: BLE001
            logger.error("Delete in %s failed: %s", mailbox, exc)
            return OperationResult.error(f"Failed to mark messages for deletion: {exc}")

        logger.info("Deleted %d message(s) from %s", len(uids), mailbox)
        return OperationResult.success(
            f"Successfully deleted {len(uids)} messages from '{mailbox}'",
            deletedCount=len(uids),
            **({"notFound": not_found} if not_found else {}),
        )

    async def set_flags(
        self,
        message_ids: list[str],
        flags: list[str],
        mailbox: str = DEFAULT_MAILBOX,
        action: str = "add",
    ) -> OperationResult:
        operation = _FLAG_ACTIONS.get(action)
        if operation is None:
            return OperationResult.error(f"Invalid action '{action}'. Use 'add' or 'remove'")
        if not flags:
            return OperationResult.error("No flags specified")
        try:
            flag_list = _flag_list(flags)
        except InvalidArgumentError as exc:
            return OperationResult.error(str(exc))

        session = self._session
        try:
            async with session.lock:
                error, uids, not_found = await self._select_targets(mailbox, message_ids)
                if error is not None:
                    return error
                response = await session.imap.uid("store", _uid_set(uids), operation, flag_list)
        except Exception as exc:  # noqa: BLE001
            logger.error("Flag %s in %s failed: %s", action, mailbox, exc)
            return OperationResult.error(f"Failed to {action} flags: {exc}")

        if response.result != "OK":
            return OperationResult.error(f"Failed to {action} flags: {response_text(response)}")
        verb, preposition = ("added", "to") if action == "add" else ("removed", "from")
        return OperationResult.success(
            f"Successfully {verb} flags [{', '.join(flags)}] {preposition} "
            f"{len(uids)} messages in '{mailbox}'",
            updatedCount=len(uids),
            **({"notFound": not_found} if not_found else {}),
        )

    async def mark_as_read(
        self, message_ids: list[str], mailbox: str = DEFAULT_MAILBOX
    ) -> OperationResult:
        result = await self.set_flags(message_ids, [SEEN_FLAG], mailbox, "add")
        if not result.ok:
            return result
        count = result.payload.get("updatedCount", 0)
        return OperationResult.success(f"Marked {count} messages as read", **result.payload)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _select_targets(
        self, mailbox: str, message_ids: list[str], *, label: str = "mailbox"
    ) -> tuple[OperationResult | None, list[int], list[str]]:
        """SELECT ``mailbox`` and resolve ids.  Caller holds the session lock.

        Returns ``(error_or_None, uids, not_found_ids)``.
        """
        if not message_ids:
            return OperationResult.error("No message IDs provided"), [], []

        opened = await self._session.open_mailbox(mailbox)
        if opened.result != "OK":
            return (
                OperationResult.error(f"Failed to open {label} '{mailbox}': {response_text(opened)}"),
                [],
                [],
            )

        try:
            uids, not_found = await resolve_message_ids(self._session.imap, message_ids)
        except MailError as exc:
            return OperationResult.error(str(exc)), [], []

        if not uids:
            return (
                OperationResult.error(f"No matching messages found in '{mailbox}'", notFound=not_found),
                [],
                not_found,
            )
        return None, uids, not_found
