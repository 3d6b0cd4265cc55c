"""Tests for failure classification and troubleshooting hints."""

import pytest

from icloud_mail.mail.errors import (
    MailAuthenticationError,
    MailConnectionError,
    MailError,
    MailFetchError,
    NotConfiguredError,
    is_credential_failure,
    is_network_failure,
    with_hints,
)


class TestHierarchy:
    def test_subclasses(self) -> None:
        assert issubclass(MailAuthenticationError, MailConnectionError)
        assert issubclass(MailConnectionError, MailError)
        assert issubclass(MailFetchError, MailError)
        assert issubclass(NotConfiguredError, MailError)


class TestClassification:
    @pytest.mark.parametrize(
        "text",
        ["[AUTHENTICATIONFAILED] Authentication failed.", "Invalid credentials (Failure)"],
    )
    def test_credential(self, text: str) -> None:
        assert is_credential_failure(text)
        assert not is_network_failure(text)

    @pytest.mark.parametrize(
        "text",
        [
            "getaddrinfo ENOTFOUND imap.mail.me.com",
            "[Errno 111] Connection refused",
            "[Errno -2] Name or service not known",
            "timed out",
        ],
    )
    def test_network(self, text: str) -> None:
        assert is_network_failure(text)
        assert not is_credential_failure(text)


class TestWithHints:
    def test_auth_hints(self) -> None:
        message = with_hints("Authentication failed")
        assert message.startswith("Authentication failed\n\nTroubleshooting:\n")
        assert "two-factor authentication" in message

    def test_network_hints(self) -> None:
        message = with_hints("connect ECONNREFUSED")
        assert "Check your internet connection" in message

    def test_unclassified_message_unchanged(self) -> None:
        assert with_hints("Mailbox is locked") == "Mailbox is locked"
