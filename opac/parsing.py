"""Thin helpers over BeautifulSoup and json for reading backend responses."""

import json
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from opac.exceptions import BackendProtocolError


def html(body: str) -> BeautifulSoup:
    return BeautifulSoup(body, "lxml")


def json_body(body: str) -> Any:
    """Decode a JSON response, treating malformed payloads as a protocol error."""
    try:
        return json.loads(body)
    except ValueError as e:
        raise BackendProtocolError(f"expected JSON response: {e}") from e


def text(elem: Tag | None) -> str:
    """Whitespace-normalized text of an element and its descendants."""
    if elem is None:
        return ""
    return " ".join(elem.get_text(" ").split())


def own_text(elem: Tag | None) -> str:
    """Text of an element's direct text children only."""
    if elem is None:
        return ""
    parts = [str(child) for child in elem.children if isinstance(child, NavigableString)]
    return " ".join(" ".join(parts).split())


def attr(elem: Tag | None, name: str) -> str | None:
    if elem is None:
        return None
    value = elem.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value


def next_element(elem: Tag) -> Tag | None:
    """Next sibling that is an element, skipping text nodes."""
    for sibling in elem.next_siblings:
        if isinstance(sibling, Tag):
            return sibling
    return None


def prev_element(elem: Tag) -> Tag | None:
    for sibling in elem.previous_siblings:
        if isinstance(sibling, Tag):
            return sibling
    return None
