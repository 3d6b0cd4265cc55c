"""Translate a SearchFilter into IMAP SEARCH terms."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

from icloud_mail.mail.errors import InvalidArgumentError
from icloud_mail.mail.types import SearchFilter

logger = logging.getLogger(__name__)

MATCH_ALL = "ALL"
UNSEEN = "UNSEEN"

_LINE_BREAKING = re.compile(r"[\r\n\x00]")
# flag = "\" atom / atom; atom excludes SP, CTL, ( ) { % * " \ ]
_FLAG = re.compile(r'^\\?(?:(?![(){%*"\\\]])[\x21-\x7e])+$')

# RFC 3501 date-text months; strftime("%b") would follow the process locale.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def imap_quote(value: str) -> str:
    """Return value as an RFC 3501 quoted string.

    Raises:
        InvalidArgumentError: if ``value`` contains CR, LF or NUL.  Those end
            the command line on the wire and cannot appear in a quoted string.
    """
    if _LINE_BREAKING.search(value):
        raise InvalidArgumentError(f"Value {value!r} contains a line break or NUL character")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def imap_flag(flag: str) -> str:
    """Return ``flag`` unchanged if it is a valid system flag or keyword.

    Raises:
        InvalidArgumentError: for anything that is not ``\\Atom`` or ``Atom``.
    """
    if not _FLAG.fullmatch(flag):
        raise InvalidArgumentError(f"Invalid flag {flag!r}")
    return flag


def imap_date(day: date) -> str:
    """Format a date the way SINCE/BEFORE expect it (``01-Feb-2024``)."""
    return f"{day.day:02d}-{_MONTHS[day.month - 1]}-{day.year:04d}"


def parse_filter_date(value: str | None) -> date | None:
    """Parse an ISO-8601 date or date-time; None for anything unparseable."""
    if not value or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        logger.debug("Ignoring unparseable filter date %r", value)
        return None


def build_search_terms(search: SearchFilter) -> list[str]:
    """Return the ordered IMAP search terms for ``search``.

    Each present field contributes one term, in a fixed order: unread, since,
    before, sender, free text.  The server ANDs them together.  A filter that
    contributes nothing becomes the single term ``ALL``.
    """
    terms: list[str] = []

    if search.unread_only:
        terms.append(UNSEEN)

    since = parse_filter_date(search.date_from)
    if since is not None:
        terms.append(f"SINCE {imap_date(since)}")

    before = parse_filter_date(search.date_to)
    if before is not None:
        terms.append(f"BEFORE {imap_date(before)}")

    if search.from_email:
        terms.append(f"FROM {imap_quote(search.from_email)}")

    if search.query:
        quoted = imap_quote(search.query)
        terms.append(f"OR SUBJECT {quoted} BODY {quoted}")

    if not terms:
        terms.append(MATCH_ALL)

    return terms
