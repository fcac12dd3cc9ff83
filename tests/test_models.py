"""Tests for the canonical data model."""

from datetime import date

import pytest
from pydantic import ValidationError

from opac.models import Account, Copy, LentItem, Library, SearchRequestResult, SearchResult


class TestSearchRequestResult:
    def test_duplicate_ids_are_rejected(self):
        """Result ids shall be unique within one page."""
        with pytest.raises(ValidationError):
            SearchRequestResult(results=[SearchResult(id="1"), SearchResult(id="1")], total_count=2)

    def test_total_count_is_independent_of_page_size(self):
        result = SearchRequestResult(results=[SearchResult(id="1")], total_count=1234, page=3)
        assert result.total_count == 1234
        assert len(result.results) == 1

    def test_display_html_escapes_content(self):
        result = SearchResult(id="1", title="Tom & Jerry", author="<script>", summary=None)
        assert result.display_html == "<b>Tom &amp; Jerry</b><br>&lt;script&gt;<br>"


class TestCopy:
    def test_reservable_only_with_token(self):
        assert not Copy(branch="Main").is_reservable
        assert Copy(branch="Main", reservation_token="123").is_reservable


class TestLentItem:
    def test_is_renewable_follows_token(self):
        item = LentItem(title="A", due_date=date(2026, 3, 1), renewal_token="42")
        assert item.is_renewable
        assert item.model_dump()["is_renewable"] is True

    def test_refused_item_keeps_reason(self):
        item = LentItem(title="A", not_renewable_reason="Too many renewals")
        assert not item.is_renewable
        assert item.not_renewable_reason == "Too many renewals"


class TestAccount:
    def test_password_hidden_from_repr(self):
        account = Account(id="1", library="lib", username="reader", password="hunter2")
        assert "hunter2" not in repr(account)


class TestLibrary:
    def test_base_url_strips_trailing_slash(self):
        library = Library(ident="x", api="koha", data={"baseurl": "https://example.org/"})
        assert library.base_url == "https://example.org"

    def test_missing_base_url(self):
        library = Library(ident="x", api="koha")
        with pytest.raises(ValueError, match="baseurl"):
            library.base_url
