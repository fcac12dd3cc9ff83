"""Backend-independent rules for turning scraped text into canonical fields."""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Mapping
from urllib.parse import parse_qs, urlsplit

from bs4 import Tag

from opac.models import Availability, Copy, MediaType
from opac.parsing import html, text

logger = logging.getLogger(__name__)

DATE_FORMATS = (
    "%d.%m.%Y",  # 15.02.2026
    "%Y-%m-%d",  # 2026-02-15
    "%m/%d/%Y",  # 02/15/2026
)


def _is_zero_date(date_str: str) -> bool:
    digits = re.sub(r"\D", "", date_str)
    return bool(digits) and set(digits) == {"0"}


def parse_date(date_str: str | None, formats: Iterable[str] = DATE_FORMATS) -> date | None:
    """Parse a date in one of the backend's documented formats.

    Absent, unparsable and all-zero sentinel values ("00.00.0000") give None.
    """
    if not date_str:
        return None

    date_str = date_str.strip()
    if not date_str or _is_zero_date(date_str):
        return None

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    return None


def parse_iso_datetime(value: str | None) -> date | None:
    """Parse "2018-11-02T23:59:00" or "2018-11-02 23:59:00" down to a date."""
    if not value:
        return None
    value = value.strip().replace(" ", "T", 1)
    if value.startswith("0000-00-00"):
        return None
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def classify_icon(src: str | None) -> Availability | None:
    """Map an availability icon to a traffic light; no icon means not reported."""
    if src is None:
        return None
    src = src.split("?")[0].lower()
    if src.endswith("yes.png"):
        return Availability.GREEN
    if src.endswith("no.png"):
        return Availability.RED
    return Availability.UNKNOWN


def classify_markers(available: bool, unavailable: bool) -> Availability | None:
    """Combine "some copy available" / "some copy unavailable" markers."""
    if available and unavailable:
        return Availability.YELLOW
    if available:
        return Availability.GREEN
    if unavailable:
        return Availability.RED
    return None


def media_type_from_icon(
    src: str | None, mapping: Mapping[str, MediaType]
) -> MediaType | None:
    """Look up a media type by icon file name, e.g. ".../book.png" -> "book"."""
    if not src:
        return None
    name = src.split("?")[0].rsplit("/", 1)[-1]
    if name.endswith(".png"):
        name = name[: -len(".png")]
    return mapping.get(name)


def query_params_first(url: str) -> dict[str, str]:
    """First value of every query parameter in a (possibly relative) URL."""
    params = parse_qs(urlsplit(url).query, keep_blank_values=True)
    return {k: v[0] for k, v in params.items()}


def last_number(value: str) -> int | None:
    """Last integer in a text like "Results 1 - 20 of 1,234"."""
    matches = re.findall(r"\d+(?:[.,\u00a0]\d{3})*", value)
    if not matches:
        return None
    return int(re.sub(r"\D", "", matches[-1]))


class HeaderMap:
    """Maps localized table headers to canonical field names.

    Headers that are not listed map to None and are ignored by callers.
    """

    def __init__(self, fields: Mapping[str, Iterable[str]]):
        self._labels = {}
        for name, labels in fields.items():
            for label in labels:
                self._labels[label] = name

    def canonical(self, label: str) -> str | None:
        return self._labels.get(label.strip())


@dataclass(frozen=True)
class Cell:
    """One logical field inside a (possibly compound) table cell."""

    label: str
    field: str | None
    content: str
    element: Tag
    # Canonical field of the last non-empty label seen before this one
    context: str | None


def split_header(header: str) -> list[str]:
    """Split "Fälligkeitsdatum / Exemplarnr." into its logical field names."""
    return [h.strip() for h in header.split(" / ")]


def split_cell(cell: Tag) -> list[str]:
    """Split a cell's content on line breaks, matching `split_header`."""
    parts = re.split(r"<br\s*/?>", cell.decode_contents(), flags=re.IGNORECASE)
    return [text(html(part)) for part in parts]


def fold_cells(
    pairs: Iterable[tuple[str, Tag]], headers: HeaderMap, context: str | None = None
) -> tuple[list[Cell], str | None]:
    """Zip compound headers with their split cell content.

    Sub-labels are paired with sub-contents by position. Every non-empty
    label becomes the context of the cells after it, so a visually merged
    cell with an empty label can be attributed to the last seen category.
    The final context is returned so callers can carry it into the next row.
    """
    cells = []
    for header, element in pairs:
        for label, content in zip(split_header(header), split_cell(element)):
            field = headers.canonical(label)
            cells.append(Cell(label=label, field=field, content=content, element=element, context=context))
            if label:
                context = field
    return cells, context


def table_cells(
    row: Tag, columns: list[str], headers: HeaderMap, context: str | None = None
) -> tuple[list[Cell], str | None]:
    """Fold one table row against the header texts of its table."""
    return fold_cells(zip(columns, row.find_all("td", recursive=False)), headers, context)


def group_rows(rows: Iterable[Tag], pattern: str, attribute: str = "id") -> dict[str, list[Tag]]:
    """Group table rows that render one record, keyed by their shared id.

    Rows whose attribute does not match `pattern` are skipped. Group order
    follows first appearance.
    """
    groups: dict[str, list[Tag]] = {}
    regex = re.compile(pattern)
    for row in rows:
        match = regex.search(row.get(attribute) or "")
        if match is None:
            logger.debug("skipping row without record id: %s", row.get(attribute))
            continue
        groups.setdefault(match.group(1), []).append(row)
    return groups


def get_best_copy(copies: list[Copy], branch: str | None = None) -> Copy:
    """Pick the default copy to reserve.

    Earliest return date wins, a copy without return date counting as the
    earliest; among equal dates a copy at `branch` is preferred.
    """
    if not copies:
        raise ValueError("no copies to choose from")
    return min(
        copies,
        key=lambda c: (c.return_date or date.min, 0 if branch is not None and c.branch == branch else 1),
    )
