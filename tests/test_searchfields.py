"""Tests for the search query model."""

import pytest

from opac.exceptions import ValidationError
from opac.searchfields import (
    FieldKind,
    SearchQuery,
    check_unique_keys,
    checkbox_field,
    dropdown_field,
    populated,
    text_field,
)


@pytest.fixture
def title():
    return text_field("title", "Title")


class TestSearchQuery:
    def test_blank_text_is_blank(self, title):
        assert SearchQuery(field=title, value="   ").is_blank
        assert not SearchQuery(field=title, value="Dune").is_blank

    def test_unchecked_checkbox_is_blank(self):
        available = checkbox_field("available", "Only available")
        assert SearchQuery(field=available, value="").is_blank
        assert SearchQuery(field=available, value="false").is_blank
        assert not SearchQuery(field=available, value="true").is_blank

    def test_key_and_kind_come_from_field(self, title):
        query = SearchQuery(field=title, value="Dune")
        assert query.key == "title"
        assert query.kind is FieldKind.TEXT


class TestDropdownField:
    def test_options_keep_order(self):
        field = dropdown_field("branch", "Branch", [("", ""), ("1", "Main"), ("2", "East")])
        assert [o.key for o in field.dropdown_values] == ["", "1", "2"]
        assert field.kind is FieldKind.DROPDOWN


class TestQueryChecks:
    def test_duplicate_keys_rejected(self, title):
        queries = [SearchQuery(field=title, value="a"), SearchQuery(field=title, value="b")]
        with pytest.raises(ValidationError):
            check_unique_keys(queries)

    def test_populated_drops_blank_queries(self, title):
        author = text_field("author", "Author")
        queries = [SearchQuery(field=title, value=""), SearchQuery(field=author, value="Herbert")]
        assert [q.key for q in populated(queries)] == ["author"]
