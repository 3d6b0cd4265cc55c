"""Account settings for the iCloud Mail MCP server, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_IMAP_HOST = "imap.mail.me.com"
DEFAULT_IMAP_PORT = 993
DEFAULT_SMTP_HOST = "smtp.mail.me.com"
DEFAULT_SMTP_PORT = 587

ENV_EMAIL = "ICLOUD_EMAIL"
ENV_APP_PASSWORD = "ICLOUD_APP_PASSWORD"
ENV_IMAP_HOST = "ICLOUD_IMAP_HOST"
ENV_IMAP_PORT = "ICLOUD_IMAP_PORT"
ENV_SMTP_HOST = "ICLOUD_SMTP_HOST"
ENV_SMTP_PORT = "ICLOUD_SMTP_PORT"


def mask_credential(value: str | None) -> str:
    """Hide all but the first four characters of a credential."""
    if not value:
        return "Not set"
    if len(value) <= 4:
        return "***"
    return value[:4] + "***"


def _port_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default


@dataclass(frozen=True)
class MailSettings:
    """Credentials and server endpoints for one mail account.

    The app password is an Apple app-specific password, never the Apple ID
    password itself.  IMAP uses implicit TLS; SMTP submission upgrades with
    STARTTLS and refuses to continue without it.
    """

    email: str = ""
    app_password: str = ""
    imap_host: str = DEFAULT_IMAP_HOST
    imap_port: int = DEFAULT_IMAP_PORT
    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = DEFAULT_SMTP_PORT

    @classmethod
    def from_env(cls) -> MailSettings:
        """Build MailSettings from environment variables.  Never raises."""
        return cls(
            email=os.environ.get(ENV_EMAIL, "").strip(),
            app_password=os.environ.get(ENV_APP_PASSWORD, "").strip(),
            imap_host=os.environ.get(ENV_IMAP_HOST, "").strip() or DEFAULT_IMAP_HOST,
            imap_port=_port_from_env(ENV_IMAP_PORT, DEFAULT_IMAP_PORT),
            smtp_host=os.environ.get(ENV_SMTP_HOST, "").strip() or DEFAULT_SMTP_HOST,
            smtp_port=_port_from_env(ENV_SMTP_PORT, DEFAULT_SMTP_PORT),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.email and self.app_password)

    @property
    def short_username(self) -> str:
        """Local part of the address ("john@icloud.com" -> "john")."""
        at = self.email.find("@")
        return self.email[:at] if at > 0 else self.email

    def masked(self) -> dict[str, object]:
        """Settings safe to show to a user or an agent."""
        return {
            "email": mask_credential(self.email),
            "appPassword": mask_credential(self.app_password),
            "imapHost": self.imap_host,
            "imapPort": self.imap_port,
            "smtpHost": self.smtp_host,
            "smtpPort": self.smtp_port,
            "configured": self.is_configured,
        }
