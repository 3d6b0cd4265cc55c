"""Exceptions raised by the mail layer."""

_AUTH_HINTS = (
    "\n\nTroubleshooting:\n"
    "1. Ensure you're using an app-specific password, not your regular Apple ID password\n"
    "2. Verify that two-factor authentication is enabled on your Apple ID\n"
    "3. Generate a new app-specific password if the current one isn't working\n"
    "4. Check that your Apple ID hasn't been locked"
)

_NETWORK_HINTS = (
    "\n\nTroubleshooting:\n"
    "1. Check your internet connection\n"
    "2. Verify firewall settings allow connections to iCloud mail servers\n"
    "3. Try connecting from a different network"
)

# Substrings (lowercase) that identify each failure category
_CREDENTIAL_SIGNATURES = ("authenticat", "invalid credentials")
_NETWORK_SIGNATURES = (
    "timeout",
    "timed out",
    "enotfound",
    "econnrefused",
    "name or service not known",
    "nodename nor servname",
    "connection refused",
    "temporary failure in name resolution",
)


class MailError(Exception):
    """Base class for every error raised by the mail layer."""


class MailConnectionError(MailError):
    """Raised when an IMAP or SMTP session cannot be established."""


class MailAuthenticationError(MailConnectionError):
    """Raised when the server rejects the account credentials."""


class MailFetchError(MailError):
    """Raised when a SEARCH or FETCH fails for a whole batch."""


class NotConfiguredError(MailError):
    """Raised when a tool needs a session but none was ever established."""


class InvalidArgumentError(MailError, ValueError):
    """Raised when a caller value cannot be sent to the server as given."""


def is_credential_failure(text: str) -> bool:
    lowered = text.lower()
    return any(sig in lowered for sig in _CREDENTIAL_SIGNATURES)


def is_network_failure(text: str) -> bool:
    lowered = text.lower()
    return any(sig in lowered for sig in _NETWORK_SIGNATURES)


def with_hints(message: str) -> str:
    """Append troubleshooting steps matching the failure category, if any."""
    if is_credential_failure(message):
        return message + _AUTH_HINTS
    if is_network_failure(message):
        return message + _NETWORK_HINTS
    return message
