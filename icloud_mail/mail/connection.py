"""Connection manager — owns the single IMAP session and the SMTP sender."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any

import aioimaplib
import aiosmtplib

from icloud_mail.config import MailSettings
from icloud_mail.mail.errors import (
    MailAuthenticationError,
    MailConnectionError,
    NotConfiguredError,
    is_credential_failure,
    with_hints,
)
from icloud_mail.mail.search import imap_quote
from icloud_mail.mail.types import OperationResult

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30
AUTH_TIMEOUT_SECONDS = 30
SMTP_VERIFY_TIMEOUT_SECONDS = 30
# Per-command ceiling inside aioimaplib; a FETCH of 100 full messages needs
# far more than the library's 10s default.
_IMAP_COMMAND_TIMEOUT_SECONDS = 300

NOT_CONFIGURED_MESSAGE = (
    "iCloud Mail not configured. Set ICLOUD_EMAIL and ICLOUD_APP_PASSWORD "
    "or use configure_icloud first."
)

ImapFactory = Callable[[str, int], Any]


def _default_imap_factory(host: str, port: int) -> aioimaplib.IMAP4_SSL:
    return aioimaplib.IMAP4_SSL(host=host, port=port, timeout=_IMAP_COMMAND_TIMEOUT_SECONDS)


def response_text(response: Any) -> str:
    """Flatten an aioimaplib Response's lines into one readable string."""
    parts: list[str] = []
    for line in getattr(response, "lines", None) or []:
        if isinstance(line, (bytes, bytearray)):
            parts.append(bytes(line).decode("utf-8", errors="replace"))
        else:
            parts.append(str(line))
    return " ".join(p.strip() for p in parts if p.strip())


# ── Sender ─────────────────────────────────────────────────────────────────────


class MailSender:
    """Outbound channel: SMTP submission with mandatory STARTTLS.

    A fresh SMTP connection is opened per send, which is what submission
    servers expect from clients that send rarely.  SMTP always authenticates
    with the full email address.
    """

    def __init__(self, settings: MailSettings) -> None:
        self._settings = settings

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self._settings.smtp_host,
            port=self._settings.smtp_port,
            start_tls=True,
            timeout=SMTP_VERIFY_TIMEOUT_SECONDS,
        )

    async def send(self, message: EmailMessage) -> None:
        smtp = self._client()
        async with smtp:
            await smtp.login(self._settings.email, self._settings.app_password)
            await smtp.send_message(message)
        logger.info("Sent message %s to %s", message["Message-ID"], message["To"])

    async def verify(self) -> None:
        """Connect, upgrade to TLS and log in, then quit.  Raises on any failure."""
        smtp = self._client()
        async with smtp:
            await smtp.login(self._settings.email, self._settings.app_password)


# ── Session ────────────────────────────────────────────────────────────────────


@dataclass
class MailSession:
    """One authenticated IMAP connection plus the matching sender.

    IMAP has single-command-at-a-time semantics per connection, and SELECT
    changes state every later command depends on, so every operation holds
    ``lock`` from its SELECT to its last command.
    """

    imap: Any
    sender: MailSender
    username: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def open_mailbox(self, mailbox: str) -> Any:
        """SELECT a mailbox and return the Response.

        Reads use SELECT too: aioimaplib only enters the SELECTED state on
        SELECT, and BODY.PEEK[] leaves \\Seen untouched either way.
        """
        return await self.imap.select(imap_quote(mailbox))


# ── Manager ────────────────────────────────────────────────────────────────────


class ConnectionManager:
    """Establishes, tests and tears down the account's mail session.

    Holds at most one live ``MailSession``.  Tools call ``require_session()``
    and fail with ``NotConfiguredError`` until ``connect()`` has succeeded.

    Usage::

        manager = ConnectionManager(MailSettings.from_env())
        session = await manager.connect()
        ...
        await manager.disconnect()
    """

    def __init__(
        self,
        settings: MailSettings,
        *,
        imap_factory: ImapFactory | None = None,
        sender_factory: Callable[[MailSettings], MailSender] = MailSender,
    ) -> None:
        self._settings = settings
        self._imap_factory = imap_factory or _default_imap_factory
        self._sender_factory = sender_factory
        self._session: MailSession | None = None

    @property
    def settings(self) -> MailSettings:
        return self._settings

    @property
    def active_session(self) -> MailSession | None:
        return self._session

    def require_session(self) -> MailSession:
        if self._session is None:
            raise NotConfiguredError(NOT_CONFIGURED_MESSAGE)
        return self._session

    async def connect(self) -> MailSession:
        """Open the session, reusing the current one if already connected."""
        if self._session is not None:
            return self._session
        self._session = await self._open_session()
        return self._session

    async def disconnect(self) -> None:
        """Log out and drop the session.  Completes once the server has said BYE."""
        session, self._session = self._session, None
        if session is None:
            return
        async with session.lock:
            await self._close(session)
        logger.info("IMAP session closed")

    async def configure(self, settings: MailSettings) -> MailSession:
        """Swap in new credentials and connect with them."""
        await self.disconnect()
        self._settings = settings
        return await self.connect()

    async def test_connection(self) -> OperationResult:
        """Check IMAP login and SMTP submission independently of the live session.

        Never raises; failures come back as an error result carrying
        troubleshooting hints for the failure category.
        """
        try:
            logger.info("Testing IMAP connection...")
            check = await self._open_session()
            logger.info("IMAP connection successful, disconnecting...")
            await self._close(check)

            logger.info("Testing SMTP connection...")
            try:
                await asyncio.wait_for(check.sender.verify(), SMTP_VERIFY_TIMEOUT_SECONDS)
            except asyncio.TimeoutError as exc:
                raise MailConnectionError(
                    f"SMTP verification timeout after {SMTP_VERIFY_TIMEOUT_SECONDS} seconds"
                ) from exc
            logger.info("SMTP connection successful")
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            logger.error("Connection test failed: %s", message)
            if "Troubleshooting:" not in message:
                message = with_hints(message)
            return OperationResult.error(message)

        return OperationResult.success(
            "Email connection test successful - both IMAP and SMTP are working"
        )

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _open_session(self) -> MailSession:
        """Log in with the short identity, then once more with the full address.

        The second attempt happens only when the first fails with a
        credential error; network errors surface immediately.
        """
        settings = self._settings
        identities = [settings.short_username, settings.email]

        for attempt, username in enumerate(identities, start=1):
            imap = self._imap_factory(settings.imap_host, settings.imap_port)
            try:
                await self._login(imap, username)
            except MailAuthenticationError as exc:
                await self._abandon(imap)
                if attempt < len(identities):
                    logger.warning(
                        "IMAP login as %r rejected (%s), retrying with full email address",
                        username,
                        exc,
                    )
                    continue
                logger.error("IMAP connection failed even with full email: %s", exc)
                raise MailAuthenticationError(
                    with_hints(
                        "IMAP authentication failed. Please check your app-specific password "
                        "and ensure two-factor authentication is enabled. "
                        f"Details: {exc}"
                    )
                ) from exc
            except MailConnectionError:
                await self._abandon(imap)
                raise

            logger.info("IMAP connection ready (%s)", username)
            return MailSession(
                imap=imap,
                sender=self._sender_factory(settings),
                username=username,
            )

        # Unreachable: the last identity either returns or raises
        raise MailConnectionError("IMAP connection failed: no identities to try")

    async def _login(self, imap: Any, username: str) -> None:
        try:
            await asyncio.wait_for(imap.wait_hello_from_server(), CONNECT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            raise MailConnectionError(
                with_hints(f"IMAP connection failed: timeout after {CONNECT_TIMEOUT_SECONDS} seconds")
            ) from exc
        except OSError as exc:
            raise MailConnectionError(with_hints(f"IMAP connection failed: {exc}")) from exc

        try:
            response = await asyncio.wait_for(
                imap.login(username, self._settings.app_password), AUTH_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError as exc:
            raise MailConnectionError(
                with_hints(f"IMAP connection failed: authentication timeout after {AUTH_TIMEOUT_SECONDS} seconds")
            ) from exc
        except Exception as exc:  # noqa: BLE001
            text = str(exc) or type(exc).__name__
            if is_credential_failure(text):
                raise MailAuthenticationError(text) from exc
            raise MailConnectionError(with_hints(f"IMAP connection failed: {text}")) from exc

        if response.result != "OK":
            text = response_text(response) or f"LOGIN returned {response.result}"
            if is_credential_failure(text):
                raise MailAuthenticationError(text)
            raise MailConnectionError(with_hints(f"IMAP connection failed: {text}"))

    async def _close(self, session: MailSession) -> None:
        try:
            await session.imap.logout()
        except Exception as exc:  # noqa: BLE001
            logger.warning("IMAP logout failed: %s", exc)

    @staticmethod
    async def _abandon(imap: Any) -> None:
        """Best-effort teardown of a connection that never authenticated."""
        try:
            await imap.logout()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Ignoring logout error on failed connection: %s", exc)
