"""Data types shared across the mail modules."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_MAILBOX = "INBOX"
DEFAULT_LIMIT = 10

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class AttachmentMeta:
    """One attachment of a parsed message.

    ``size`` is the decoded payload length, so it always equals
    ``len(base64.b64decode(to_dict(include_data=True)["data"]))``.
    """

    filename: str
    content_type: str
    size: int
    data: bytes = field(repr=False)

    def to_dict(self, *, include_data: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "filename": self.filename,
            "contentType": self.content_type,
            "size": self.size,
        }
        if include_data:
            out["data"] = base64.b64encode(self.data).decode("ascii")
        return out


@dataclass(frozen=True)
class NormalizedMessage:
    """A fully parsed message, as placed in a fetch batch.

    ``id`` is the Message-ID header when the message has one, otherwise its
    IMAP UID in the mailbox.  A UID survives expunges of other messages but
    is only meaningful in the mailbox it came from, and only until the server
    changes that mailbox's UIDVALIDITY.
    """

    id: str
    sender: str
    to: list[str]
    subject: str
    body: str
    date: datetime
    uid: int
    flags: list[str] = field(default_factory=list)
    attachments: list[AttachmentMeta] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "from": self.sender,
            "to": list(self.to),
            "subject": self.subject,
            "body": self.body,
            "date": self.date.isoformat(),
            "flags": list(self.flags),
        }
        if self.attachments:
            out["attachments"] = [a.to_dict() for a in self.attachments]
        return out


@dataclass(frozen=True)
class SearchFilter:
    """Declarative message filter; translated to IMAP terms, never run directly."""

    mailbox: str = DEFAULT_MAILBOX
    limit: int = DEFAULT_LIMIT
    query: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    from_email: str | None = None
    unread_only: bool = False


@dataclass(frozen=True)
class MailboxInfo:
    """A single entry from an IMAP LIST response."""

    name: str
    delimiter: str
    flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "delimiter": self.delimiter, "flags": list(self.flags)}


@dataclass(frozen=True)
class OperationResult:
    """Uniform success/error envelope returned by every mutation."""

    status: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str, **payload: Any) -> OperationResult:
        return cls(STATUS_SUCCESS, message, payload)

    @classmethod
    def error(cls, message: str, **payload: Any) -> OperationResult:
        return cls(STATUS_ERROR, message, payload)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message, **self.payload}
