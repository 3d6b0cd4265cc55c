"""Message fetch & parse pipeline.

UID SEARCH selects messages, one UID FETCH pulls ``(UID FLAGS BODY.PEEK[])``
for the newest ``limit`` of them, and each raw message is parsed in a worker
thread.  aioimaplib hands back the whole FETCH response as a list of lines::

    b'12 FETCH (UID 4810 FLAGS (\\Seen) BODY[] {2048}'
    bytearray(b'Message-ID: <...>\\r\\nFrom: ...')      # literal = raw message
    b')'
    b'13 FETCH (BODY[] {977}'
    bytearray(b'...')
    b' UID 4811 FLAGS ())'                             # attributes may trail
    b'FETCH completed.'

Each response is keyed by its sequence number while it is being read, so
UID and FLAGS land on the right message whichever side of the literal they
arrive on.  Everything after that works in UIDs, which stay valid when other
messages are expunged.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Any

from icloud_mail.mail.connection import MailSession, response_text
from icloud_mail.mail.errors import MailError, MailFetchError
from icloud_mail.mail.search import build_search_terms, imap_quote
from icloud_mail.mail.types import (
    DEFAULT_MAILBOX,
    AttachmentMeta,
    NormalizedMessage,
    OperationResult,
    SearchFilter,
)

logger = logging.getLogger(__name__)

FETCH_PARTS = "(UID FLAGS BODY.PEEK[])"
UNKNOWN_FILENAME = "unknown"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Upper bound on messages parsed at once in worker threads
_PARSE_CONCURRENCY = 8

_FETCH_START = re.compile(rb"^\s*(\d+)\s+FETCH\s+\(", re.IGNORECASE)
_UID = re.compile(rb"\bUID\s+(\d+)", re.IGNORECASE)
_FLAGS = re.compile(rb"FLAGS\s+\(([^)]*)\)", re.IGNORECASE)


@dataclass
class FetchedItem:
    """Raw pieces of one message from a FETCH response."""

    seqno: int
    uid: int | None = None
    flags: list[str] = field(default_factory=list)
    raw: bytes | None = None


# ── Protocol helpers (call with session.lock held and a mailbox selected) ─────


async def search_uids(imap: Any, terms: list[str]) -> list[int]:
    """Run UID SEARCH and return matching UIDs in ascending order."""
    logger.debug("IMAP → UID SEARCH %s", " ".join(terms))
    response = await imap.uid_search(*terms)
    if response.result != "OK":
        raise MailFetchError(f"Failed to search messages: {response_text(response)}")

    uids: set[int] = set()
    # The last line is the tagged completion text; data lines precede it
    for line in (response.lines or [])[:-1]:
        text = bytes(line).decode("ascii", errors="ignore") if isinstance(line, (bytes, bytearray)) else str(line)
        uids.update(int(tok) for tok in text.split() if tok.isdigit())
    return sorted(uids)


async def resolve_message_ids(imap: Any, message_ids: list[str]) -> tuple[list[int], list[str]]:
    """Map caller ids to UIDs in the selected mailbox.

    Decimal ids are UIDs and are checked for existence with a single
    ``UID SEARCH UID``.  Anything else is treated as a Message-ID header
    value.  Returns ``(uids, not_found_ids)``.

    Raises:
        MailFetchError: if a SEARCH fails.
        InvalidArgumentError: if a Message-ID cannot be quoted.
    """
    found: set[int] = set()
    not_found: list[str] = []
    numeric: dict[int, str] = {}

    for raw_id in message_ids:
        message_id = str(raw_id).strip()
        if not message_id:
            continue
        if message_id.isdigit():
            numeric.setdefault(int(message_id), message_id)
            continue
        matches = await search_uids(imap, [f"HEADER Message-ID {imap_quote(message_id)}"])
        if matches:
            found.update(matches)
        else:
            not_found.append(message_id)

    if numeric:
        present = set(await search_uids(imap, [f"UID {','.join(str(uid) for uid in sorted(numeric))}"]))
        for uid, message_id in numeric.items():
            if uid in present:
                found.add(uid)
            else:
                not_found.append(message_id)

    return sorted(found), not_found


async def fetch_items(imap: Any, uids: list[int]) -> list[FetchedItem]:
    """UID FETCH flags and full bodies for ``uids``; raises MailFetchError on failure."""
    uid_set = ",".join(str(uid) for uid in uids)
    logger.debug("IMAP → UID FETCH %s %s", uid_set, FETCH_PARTS)
    response = await imap.uid("fetch", uid_set, FETCH_PARTS)
    if response.result != "OK":
        raise MailFetchError(f"Failed to fetch messages: {response_text(response)}")
    return split_fetch_response(response.lines or [])


def split_fetch_response(lines: list[Any]) -> list[FetchedItem]:
    """Group FETCH response lines into per-message items, ordered by UID.

    Responses that never carried a UID are dropped.
    """
    items: dict[int, FetchedItem] = {}
    current: FetchedItem | None = None

    for line in lines:
        if isinstance(line, bytearray):
            if current is not None and current.raw is None:
                current.raw = bytes(line)
            continue
        if not isinstance(line, bytes):
            continue

        start = _FETCH_START.match(line)
        if start:
            seqno = int(start.group(1))
            current = items.setdefault(seqno, FetchedItem(seqno))
        if current is None:
            continue
        uid = _UID.search(line)
        if uid:
            current.uid = int(uid.group(1))
        flags = _FLAGS.search(line)
        if flags:
            current.flags = [f.decode("utf-8", errors="replace") for f in flags.group(1).split()]

    with_uid = [item for item in items.values() if item.uid is not None]
    if len(with_uid) < len(items):
        logger.warning("Dropped %d FETCH response(s) without a UID", len(items) - len(with_uid))
    return sorted(with_uid, key=lambda item: item.uid)


# ── Parsing ────────────────────────────────────────────────────────────────────


def _decode_text(part: EmailMessage) -> str:
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        # Unknown or lying charset declaration
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")
    return content if isinstance(content, str) else ""


def _body_part(msg: EmailMessage) -> EmailMessage | None:
    """Plain text part when present, otherwise HTML."""
    for preference in ("plain", "html"):
        part = msg.get_body(preferencelist=(preference,))
        if part is not None:
            return part
    return None


def _attachment_parts(part: EmailMessage, body: EmailMessage | None) -> Iterator[EmailMessage]:
    """Every leaf of the MIME tree that is not the body and is not inline text.

    Descends through any nesting of multipart containers, so images inside
    multipart/related count.  A message/rfc822 part is one attachment and is
    not descended into.
    """
    if part is body:
        return
    if part.get_content_maintype() == "multipart":
        for sub in part.iter_parts():
            yield from _attachment_parts(sub, body)
        return
    if (
        part.is_attachment()
        or part.get_filename()
        or part.get_content_maintype() != "text"
    ):
        yield part


def _addresses(headers: list[Any]) -> list[str]:
    out: list[str] = []
    for header in headers:
        addresses = getattr(header, "addresses", None)
        if addresses:
            out.extend(str(addr) for addr in addresses)
        elif str(header).strip():
            out.append(str(header).strip())
    return out


def _header_date(header: Any) -> datetime:
    parsed = getattr(header, "datetime", None) if header is not None else None
    return parsed if isinstance(parsed, datetime) else datetime.now(timezone.utc)


def _attachment(part: EmailMessage) -> AttachmentMeta:
    data = part.get_payload(decode=True)
    if data is None:
        # message/rfc822 and other container attachments
        inner = part.get_payload()
        data = b"".join(p.as_bytes() for p in inner) if isinstance(inner, list) else b""
    content_type = part.get_content_type() if part.get("Content-Type") else DEFAULT_CONTENT_TYPE
    return AttachmentMeta(
        filename=part.get_filename() or UNKNOWN_FILENAME,
        content_type=content_type or DEFAULT_CONTENT_TYPE,
        size=len(data),
        data=data,
    )


def parse_message(raw: bytes, uid: int, flags: list[str] | None = None) -> NormalizedMessage:
    """Parse one RFC 5322 message into a NormalizedMessage.

    Raises on malformed input; the batch pipeline catches and drops it.
    """
    msg = BytesParser(policy=policy.default).parsebytes(raw)
    if not isinstance(msg, EmailMessage):
        raise ValueError(f"message {uid} did not parse as an EmailMessage")

    body = _body_part(msg)
    attachments = [_attachment(part) for part in _attachment_parts(msg, body)]
    message_id = str(msg.get("Message-ID", "") or "").strip()

    return NormalizedMessage(
        id=message_id or str(uid),
        sender=str(msg.get("From", "") or ""),
        to=_addresses(msg.get_all("To", [])),
        subject=str(msg.get("Subject", "") or ""),
        body=_decode_text(body) if body is not None else "",
        date=_header_date(msg.get("Date")),
        uid=uid,
        flags=list(flags or []),
        attachments=attachments or None,
    )


async def parse_batch(items: list[FetchedItem]) -> list[NormalizedMessage]:
    """Parse fetched items concurrently; failures are logged and dropped."""
    semaphore = asyncio.Semaphore(_PARSE_CONCURRENCY)

    async def _parse_one(item: FetchedItem) -> NormalizedMessage | None:
        if item.raw is None:
            logger.warning("FETCH returned no body for UID %s; skipping", item.uid)
            return None
        async with semaphore:
            try:
                return await asyncio.to_thread(parse_message, item.raw, item.uid, item.flags)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error parsing message UID %s: %s", item.uid, exc, exc_info=True)
                return None

    parsed = await asyncio.gather(*(_parse_one(item) for item in items))
    return [message for message in parsed if message is not None]


# ── Pipeline ───────────────────────────────────────────────────────────────────


class MessageFetcher:
    """Runs searches and fetches against one session.

    Usage::

        fetcher = MessageFetcher(session)
        messages = await fetcher.fetch(SearchFilter(mailbox="INBOX", limit=20))
    """

    def __init__(self, session: MailSession) -> None:
        self._session = session

    async def get_messages(
        self, mailbox: str = DEFAULT_MAILBOX, limit: int = 10, unread_only: bool = False
    ) -> list[NormalizedMessage]:
        """Newest ``limit`` messages of a mailbox (``ALL`` or ``UNSEEN``)."""
        return await self.fetch(SearchFilter(mailbox=mailbox, limit=limit, unread_only=unread_only))

    async def fetch(self, search: SearchFilter) -> list[NormalizedMessage]:
        """Return the last ``search.limit`` messages matching ``search``.

        "Last" means highest UIDs, i.e. most recently added to the mailbox,
        which is not necessarily newest by Date header.

        Raises:
            MailFetchError: if the mailbox cannot be opened or SEARCH/FETCH fails.
            InvalidArgumentError: if a filter value cannot be sent to the server.
        """
        terms = build_search_terms(search)
        session = self._session

        async with session.lock:
            opened = await session.open_mailbox(search.mailbox)
            if opened.result != "OK":
                raise MailFetchError(
                    f"Failed to open mailbox '{search.mailbox}': {response_text(opened)}"
                )
            uids = await search_uids(session.imap, terms)
            if not uids:
                logger.debug("No messages in %s match %s", search.mailbox, terms)
                return []
            selected = uids[-search.limit:] if search.limit > 0 else []
            if not selected:
                return []
            items = await fetch_items(session.imap, selected)

        messages = await parse_batch(items)
        logger.info(
            "Fetched %d/%d message(s) from %s", len(messages), len(selected), search.mailbox
        )
        return messages

    async def download_attachment(
        self, message_id: str, attachment_index: int = 0, mailbox: str = DEFAULT_MAILBOX
    ) -> OperationResult:
        """Return one attachment of a message, base64-encoded.  Never raises."""
        session = self._session
        target = message_id.strip()
        try:
            async with session.lock:
                opened = await session.open_mailbox(mailbox)
                if opened.result != "OK":
                    return OperationResult.error(
                        f"Failed to open mailbox '{mailbox}': {response_text(opened)}"
                    )
                uids, _ = await resolve_message_ids(session.imap, [target])
                items = await fetch_items(session.imap, uids) if uids else []
        except MailError as exc:
            logger.error("Attachment download failed for %s: %s", target, exc)
            return OperationResult.error(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("Attachment download failed for %s: %s", target, exc)
            return OperationResult.error(f"Failed to fetch messages: {exc}")

        for item in items:
            if item.raw is None:
                continue
            try:
                parsed = await asyncio.to_thread(parse_message, item.raw, item.uid, item.flags)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error parsing message UID %s: %s", item.uid, exc)
                continue
            if target not in (parsed.id, str(parsed.uid)):
                continue
            return _select_attachment(parsed, attachment_index)

        return OperationResult.error(f"Message with ID '{target}' not found")


def _select_attachment(message: NormalizedMessage, index: int) -> OperationResult:
    attachments = message.attachments or []
    if not attachments:
        return OperationResult.error("No attachments found in the message")
    if index < 0 or index >= len(attachments):
        return OperationResult.error(
            f"Attachment index {index} out of range. "
            f"Message has {len(attachments)} attachments"
        )
    attachment = attachments[index]
    return OperationResult.success(
        f"Successfully downloaded attachment '{attachment.filename}'",
        attachment=attachment.to_dict(include_data=True),
    )
