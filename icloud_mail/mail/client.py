"""iCloud Mail client — the typed async API the tool layer calls into."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any

from icloud_mail.mail.connection import ConnectionManager
from icloud_mail.mail.fetch import MessageFetcher
from icloud_mail.mail.mutations import MailboxOperations
from icloud_mail.mail.types import (
    DEFAULT_LIMIT,
    DEFAULT_MAILBOX,
    MailboxInfo,
    NormalizedMessage,
    OperationResult,
    SearchFilter,
)
from icloud_mail.organize.engine import AutoOrganizer

logger = logging.getLogger(__name__)

_MSGID_DOMAIN = "icloud.com"


def build_message(
    sender: str,
    to: list[str],
    subject: str,
    text: str | None = None,
    html: str | None = None,
) -> EmailMessage:
    """Compose an outgoing message; text and html become a multipart/alternative."""
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    domain = sender.rpartition("@")[2] or _MSGID_DOMAIN
    msg["Message-ID"] = make_msgid(domain=domain)

    if text is not None and html is not None:
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
    elif html is not None:
        msg.set_content(html, subtype="html")
    else:
        msg.set_content(text or "")
    return msg


class ICloudMailClient:
    """Every account operation, resolved against the manager's live session.

    The session is looked up per call, so a ``configure`` that replaces the
    session is picked up immediately.  Each call raises ``NotConfiguredError``
    while no session exists.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    def _fetcher(self) -> MessageFetcher:
        return MessageFetcher(self._manager.require_session())

    def _operations(self) -> MailboxOperations:
        return MailboxOperations(self._manager.require_session())

    # ── Reading ────────────────────────────────────────────────────────────────

    async def get_messages(
        self, mailbox: str = DEFAULT_MAILBOX, limit: int = DEFAULT_LIMIT, unread_only: bool = False
    ) -> list[NormalizedMessage]:
        return await self._fetcher().get_messages(mailbox, limit, unread_only)

    async def search_messages(self, search: SearchFilter) -> list[NormalizedMessage]:
        return await self._fetcher().fetch(search)

    async def get_mailboxes(self) -> list[MailboxInfo]:
        return await self._operations().list_mailboxes()

    async def download_attachment(
        self, message_id: str, attachment_index: int = 0, mailbox: str = DEFAULT_MAILBOX
    ) -> OperationResult:
        return await self._fetcher().download_attachment(message_id, attachment_index, mailbox)

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_email(
        self,
        to: str | list[str],
        subject: str,
        text: str | None = None,
        html: str | None = None,
    ) -> str:
        """Send a message and return its Message-ID."""
        session = self._manager.require_session()
        recipients = [to] if isinstance(to, str) else list(to)
        msg = build_message(self._manager.settings.email, recipients, subject, text, html)
        await session.sender.send(msg)
        return msg["Message-ID"]

    # ── Mutations ──────────────────────────────────────────────────────────────

    async def mark_as_read(self, message_ids: list[str], mailbox: str = DEFAULT_MAILBOX) -> OperationResult:
        return await self._operations().mark_as_read(message_ids, mailbox)

    async def create_mailbox(self, name: str) -> OperationResult:
        return await self._operations().create_mailbox(name)

    async def delete_mailbox(self, name: str) -> OperationResult:
        return await self._operations().delete_mailbox(name)

    async def move_messages(
        self, message_ids: list[str], source_mailbox: str, destination_mailbox: str
    ) -> OperationResult:
        return await self._operations().move_messages(message_ids, source_mailbox, destination_mailbox)

    async def delete_messages(self, message_ids: list[str], mailbox: str = DEFAULT_MAILBOX) -> OperationResult:
        return await self._operations().delete_messages(message_ids, mailbox)

    async def set_flags(
        self,
        message_ids: list[str],
        flags: list[str],
        mailbox: str = DEFAULT_MAILBOX,
        action: str = "add",
    ) -> OperationResult:
        return await self._operations().set_flags(message_ids, flags, mailbox, action)

    async def auto_organize(
        self, rules: list[Any], source_mailbox: str = DEFAULT_MAILBOX, dry_run: bool = False
    ) -> OperationResult:
        organizer = AutoOrganizer(self._fetcher(), self._operations())
        return await organizer.run(rules, source_mailbox, dry_run)
