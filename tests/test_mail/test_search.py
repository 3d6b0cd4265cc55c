"""Tests for SearchFilter → IMAP SEARCH term translation."""

from datetime import date

import pytest

from icloud_mail.mail.errors import InvalidArgumentError
from icloud_mail.mail.search import (
    MATCH_ALL,
    build_search_terms,
    imap_date,
    imap_flag,
    imap_quote,
    parse_filter_date,
)
from icloud_mail.mail.types import SearchFilter


class TestImapQuote:
    def test_plain(self) -> None:
        assert imap_quote("INBOX") == '"INBOX"'

    def test_escapes_quotes_and_backslashes(self) -> None:
        assert imap_quote('say "hi" \\ bye') == '"say \\"hi\\" \\\\ bye"'

    @pytest.mark.parametrize("value", ["Work\r\nA1 LOGOUT", "line\nbreak", "nul\x00byte", "cr\r"])
    def test_line_breaks_and_nul_rejected(self, value: str) -> None:
        with pytest.raises(InvalidArgumentError):
            imap_quote(value)


class TestImapFlag:
    @pytest.mark.parametrize("flag", ["\\Seen", "\\Flagged", "\\Deleted", "$Label1", "NonJunk"])
    def test_valid_flags_pass_through(self, flag: str) -> None:
        assert imap_flag(flag) == flag

    @pytest.mark.parametrize(
        "flag",
        ["", "\\", "\\Seen \\Deleted", "\\Seen)", "(\\Seen", "a{5}", "x%", "\\*", "a]", "\\Seen\r\n", "Ünicode"],
    )
    def test_invalid_flags_rejected(self, flag: str) -> None:
        with pytest.raises(InvalidArgumentError):
            imap_flag(flag)


class TestDates:
    def test_imap_date_uses_english_months(self) -> None:
        assert imap_date(date(2024, 2, 1)) == "01-Feb-2024"
        assert imap_date(date(2023, 12, 31)) == "31-Dec-2023"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2024-02-01", date(2024, 2, 1)),
            ("2024-02-01T10:30:00", date(2024, 2, 1)),
            ("2024-02-01T10:30:00Z", date(2024, 2, 1)),
            ("2024-02-01T10:30:00+02:00", date(2024, 2, 1)),
        ],
    )
    def test_parses_iso_forms(self, value: str, expected: date) -> None:
        assert parse_filter_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "2024-13-45", "01/02/2024"])
    def test_invalid_is_none(self, value: str | None) -> None:
        assert parse_filter_date(value) is None


class TestBuildSearchTerms:
    def test_empty_filter_is_catch_all(self) -> None:
        assert build_search_terms(SearchFilter()) == [MATCH_ALL]

    def test_mailbox_and_limit_do_not_contribute(self) -> None:
        assert build_search_terms(SearchFilter(mailbox="Archive", limit=50)) == [MATCH_ALL]

    def test_unread_only(self) -> None:
        assert build_search_terms(SearchFilter(unread_only=True)) == ["UNSEEN"]

    def test_date_range(self) -> None:
        terms = build_search_terms(SearchFilter(date_from="2024-01-15", date_to="2024-02-01T00:00:00Z"))
        assert terms == ["SINCE 15-Jan-2024", "BEFORE 01-Feb-2024"]

    def test_invalid_dates_ignored_silently(self) -> None:
        assert build_search_terms(SearchFilter(date_from="not a date", date_to="soon")) == [MATCH_ALL]

    def test_sender_and_query(self) -> None:
        terms = build_search_terms(SearchFilter(from_email="bob@example.com", query="invoice"))
        assert terms == ['FROM "bob@example.com"', 'OR SUBJECT "invoice" BODY "invoice"']

    def test_all_fields_in_fixed_order(self) -> None:
        terms = build_search_terms(
            SearchFilter(
                query="report",
                date_from="2024-01-01",
                date_to="2024-02-01",
                from_email="boss@corp.com",
                unread_only=True,
            )
        )
        assert terms == [
            "UNSEEN",
            "SINCE 01-Jan-2024",
            "BEFORE 01-Feb-2024",
            'FROM "boss@corp.com"',
            'OR SUBJECT "report" BODY "report"',
        ]

    def test_query_is_quoted(self) -> None:
        terms = build_search_terms(SearchFilter(query='the "big" one'))
        assert terms == ['OR SUBJECT "the \\"big\\" one" BODY "the \\"big\\" one"']
