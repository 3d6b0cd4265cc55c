"""Shared pytest fixtures."""

from collections import namedtuple
from collections.abc import Callable
from email.message import EmailMessage
from unittest.mock import AsyncMock, MagicMock

import pytest

from icloud_mail.config import MailSettings
from icloud_mail.mail.connection import MailSession

# Same shape as aioimaplib.Response
Response = namedtuple("Response", "result lines")


def ok(*lines: bytes | bytearray) -> Response:
    return Response("OK", [*lines, b"completed."])


@pytest.fixture
def raw_message() -> Callable[..., bytes]:
    """Factory for RFC 5322 bytes built with EmailMessage."""

    def _make(
        subject: str = "Hello",
        sender: str = "alice@example.com",
        to: str = "john@icloud.com",
        body: str = "Hi John",
        message_id: str | None = "<msg-1@example.com>",
        date: str | None = "Tue, 27 Feb 2024 09:00:00 +0000",
        attachments: list[tuple[str, str, bytes]] | None = None,
    ) -> bytes:
        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = to
        msg["Subject"] = subject
        if message_id:
            msg["Message-ID"] = message_id
        if date:
            msg["Date"] = date
        msg.set_content(body)
        for filename, mime, data in attachments or []:
            maintype, subtype = mime.split("/", 1)
            msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
        return msg.as_bytes()

    return _make


@pytest.fixture
def settings() -> MailSettings:
    return MailSettings(email="john@icloud.com", app_password="abcd-efgh-ijkl-mnop")


@pytest.fixture
def fake_imap() -> MagicMock:
    """An IMAP client whose commands all succeed with no data."""
    imap = MagicMock()
    for command in (
        "wait_hello_from_server", "login", "logout", "select", "uid_search", "uid",
        "expunge", "create", "delete", "list",
    ):
        setattr(imap, command, AsyncMock(return_value=ok()))
    imap.has_capability = MagicMock(return_value=True)
    return imap


@pytest.fixture
def sender() -> MagicMock:
    s = MagicMock()
    s.send = AsyncMock()
    s.verify = AsyncMock()
    return s


@pytest.fixture
def session(fake_imap: MagicMock, sender: MagicMock) -> MailSession:
    return MailSession(imap=fake_imap, sender=sender, username="john")
