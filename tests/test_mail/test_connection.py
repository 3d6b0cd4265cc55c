"""Tests for ConnectionManager — IMAP and SMTP clients are mocked."""

import asyncio
from collections import namedtuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from icloud_mail.config import MailSettings
from icloud_mail.mail import connection
from icloud_mail.mail.connection import ConnectionManager, MailSession, response_text
from icloud_mail.mail.errors import (
    InvalidArgumentError,
    MailAuthenticationError,
    MailConnectionError,
    NotConfiguredError,
)

Response = namedtuple("Response", "result lines")

_AUTH_FAILED = Response("NO", [b"[AUTHENTICATIONFAILED] Authentication failed."])
_LOGIN_OK = Response("OK", [b"LOGIN completed"])


# ── Helpers ────────────────────────────────────────────────────────────────────


def _imap(login: Response | Exception = _LOGIN_OK) -> MagicMock:
    imap = MagicMock()
    imap.wait_hello_from_server = AsyncMock()
    if isinstance(login, Exception):
        imap.login = AsyncMock(side_effect=login)
    else:
        imap.login = AsyncMock(return_value=login)
    imap.logout = AsyncMock(return_value=Response("OK", [b"LOGOUT completed"]))
    return imap


def _manager(settings: MailSettings, sender: MagicMock, *imaps: MagicMock) -> tuple[ConnectionManager, MagicMock]:
    factory = MagicMock(side_effect=list(imaps))
    manager = ConnectionManager(settings, imap_factory=factory, sender_factory=lambda _s: sender)
    return manager, factory


# ── response_text ──────────────────────────────────────────────────────────────


class TestResponseText:
    def test_joins_bytes_and_str_lines(self) -> None:
        assert response_text(Response("NO", [b"Mailbox ", "missing", b""])) == "Mailbox missing"

    def test_tolerates_missing_lines(self) -> None:
        assert response_text(object()) == ""


# ── MailSession ────────────────────────────────────────────────────────────────


class TestOpenMailbox:
    @pytest.mark.asyncio
    async def test_selects_quoted_mailbox(self, session: MailSession, fake_imap: MagicMock) -> None:
        response = await session.open_mailbox("Sent Messages")

        assert response.result == "OK"
        fake_imap.select.assert_awaited_once_with('"Sent Messages"')

    @pytest.mark.asyncio
    async def test_line_break_in_name_never_reaches_server(
        self, session: MailSession, fake_imap: MagicMock
    ) -> None:
        with pytest.raises(InvalidArgumentError):
            await session.open_mailbox('INBOX"\r\nA1 DELETE "Work')
        fake_imap.select.assert_not_awaited()


# ── connect / disconnect ───────────────────────────────────────────────────────


class TestConnect:
    @pytest.mark.asyncio
    async def test_logs_in_with_short_identity_first(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        imap = _imap()
        manager, factory = _manager(settings, sender, imap)

        session = await manager.connect()

        factory.assert_called_once_with("imap.mail.me.com", 993)
        imap.login.assert_awaited_once_with("john", settings.app_password)
        assert session.username == "john"
        assert manager.active_session is session

    @pytest.mark.asyncio
    async def test_credential_failure_retries_once_with_full_address(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        first, second = _imap(_AUTH_FAILED), _imap()
        manager, factory = _manager(settings, sender, first, second)

        session = await manager.connect()

        assert factory.call_count == 2
        first.logout.assert_awaited_once()
        second.login.assert_awaited_once_with("john@icloud.com", settings.app_password)
        assert session.username == "john@icloud.com"

    @pytest.mark.asyncio
    async def test_both_identities_rejected_raises_with_hints(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        manager, factory = _manager(settings, sender, _imap(_AUTH_FAILED), _imap(_AUTH_FAILED))

        with pytest.raises(MailAuthenticationError) as excinfo:
            await manager.connect()

        assert factory.call_count == 2
        message = str(excinfo.value)
        assert "IMAP authentication failed" in message
        assert "Troubleshooting:" in message
        assert "app-specific password" in message
        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_non_credential_failure_does_not_retry(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        manager, factory = _manager(
            settings, sender, _imap(ConnectionResetError("connection reset by peer")), _imap()
        )

        with pytest.raises(MailConnectionError) as excinfo:
            await manager.connect()

        assert not isinstance(excinfo.value, MailAuthenticationError)
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_credential_exception_also_retries(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        manager, factory = _manager(
            settings, sender, _imap(RuntimeError("Invalid credentials")), _imap()
        )

        session = await manager.connect()

        assert factory.call_count == 2
        assert session.username == "john@icloud.com"

    @pytest.mark.asyncio
    async def test_greeting_timeout_is_network_error(
        self, settings: MailSettings, sender: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(connection, "CONNECT_TIMEOUT_SECONDS", 0.01)
        imap = _imap()

        async def _never() -> None:
            await asyncio.sleep(1)

        imap.wait_hello_from_server = AsyncMock(side_effect=_never)
        manager, _ = _manager(settings, sender, imap)

        with pytest.raises(MailConnectionError) as excinfo:
            await manager.connect()

        assert "timeout" in str(excinfo.value)
        assert "Check your internet connection" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_reuses_open_session(self, settings: MailSettings, sender: MagicMock) -> None:
        manager, factory = _manager(settings, sender, _imap())

        first = await manager.connect()
        second = await manager.connect()

        assert first is second
        assert factory.call_count == 1

    def test_require_session_before_connect(self, settings: MailSettings) -> None:
        manager = ConnectionManager(settings)
        with pytest.raises(NotConfiguredError, match="not configured"):
            manager.require_session()

    @pytest.mark.asyncio
    async def test_disconnect_logs_out(self, settings: MailSettings, sender: MagicMock) -> None:
        imap = _imap()
        manager, _ = _manager(settings, sender, imap)
        await manager.connect()

        await manager.disconnect()

        imap.logout.assert_awaited_once()
        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_disconnect_swallows_logout_errors(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        imap = _imap()
        imap.logout = AsyncMock(side_effect=OSError("socket closed"))
        manager, _ = _manager(settings, sender, imap)
        await manager.connect()

        await manager.disconnect()

        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_configure_replaces_session(self, settings: MailSettings, sender: MagicMock) -> None:
        old, new = _imap(), _imap()
        manager, _ = _manager(settings, sender, old, new)
        await manager.connect()

        replacement = MailSettings(email="jane@icloud.com", app_password="zzzz-yyyy")
        session = await manager.configure(replacement)

        old.logout.assert_awaited_once()
        new.login.assert_awaited_once_with("jane", "zzzz-yyyy")
        assert manager.settings is replacement
        assert manager.active_session is session


# ── test_connection ────────────────────────────────────────────────────────────


class TestTestConnection:
    @pytest.mark.asyncio
    async def test_success_checks_both_channels(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        check = _imap()
        manager, _ = _manager(settings, sender, check)

        result = await manager.test_connection()

        assert result.ok
        assert "both IMAP and SMTP are working" in result.message
        check.logout.assert_awaited_once()
        sender.verify.assert_awaited_once()
        # The check session is independent of the live one
        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_auth_failure_is_result_not_exception(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        manager, _ = _manager(settings, sender, _imap(_AUTH_FAILED), _imap(_AUTH_FAILED))

        result = await manager.test_connection()

        assert not result.ok
        assert result.message.count("Troubleshooting:") == 1
        sender.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_smtp_timeout(
        self, settings: MailSettings, sender: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(connection, "SMTP_VERIFY_TIMEOUT_SECONDS", 0.01)

        async def _hang() -> None:
            await asyncio.sleep(1)

        sender.verify = AsyncMock(side_effect=_hang)
        manager, _ = _manager(settings, sender, _imap())

        result = await manager.test_connection()

        assert not result.ok
        assert "SMTP verification timeout" in result.message
        assert "Troubleshooting:" in result.message

    @pytest.mark.asyncio
    async def test_smtp_auth_error_gets_auth_hints(
        self, settings: MailSettings, sender: MagicMock
    ) -> None:
        sender.verify = AsyncMock(side_effect=RuntimeError("535 Authentication credentials invalid"))
        manager, _ = _manager(settings, sender, _imap())

        result = await manager.test_connection()

        assert not result.ok
        assert "app-specific password" in result.message
