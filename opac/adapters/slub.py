"""Adapter for the SLUB Dresden catalog, which answers with JSON."""

import html
import logging
from typing import Any

from opac import parsing
from opac.adapters.base import BackendAdapter
from opac.exceptions import AuthError, BackendProtocolError, NotFoundError, OpacError
from opac.i18n import Msg
from opac.models import (
    Account,
    AccountData,
    Copy,
    DetailedItem,
    LentItem,
    MediaType,
    ReservedItem,
    SearchRequestResult,
    SearchResult,
)
from opac.multistep import ActionType, MultiStepResult
from opac.normalize import parse_date, parse_iso_datetime
from opac.parsing import json_body, text
from opac.searchfields import SearchField, SearchQuery, populated, text_field

logger = logging.getLogger(__name__)

# TYPO3 page type of the JSON export
DATA_PAGE_TYPE = "1369315142"
DATE_FORMATS = ("%d.%m.%Y",)

MEDIA_TYPES = {
    "Article, E-Article": MediaType.EDOC,
    "Book, E-Book": MediaType.BOOK,
    "Video": MediaType.EVIDEO,
    "Thesis": MediaType.BOOK,
    "Manuscript": MediaType.BOOK,
    "Musical Score": MediaType.SCORE_MUSIC,
    "Website": MediaType.URL,
    "Journal, E-Journal": MediaType.NEWSPAPER,
    "Map": MediaType.MAP,
    "Audio": MediaType.EAUDIO,
    "Image": MediaType.ART,
    "Visual Media": MediaType.ART,
}

FIELD_CAPTIONS = {
    "format": "Medientyp",
    "title": "Titel",
    "contributor": "Beteiligte",
    "publisher": "Erschienen",
    "ispartof": "Erschienen in",
    "identifier": "ISBN",
    "language": "Sprache",
    "subject": "Schlagwörter",
    "description": "Beschreibung",
}


def _first(value: Any) -> str | None:
    if isinstance(value, list) and value:
        return str(value[0])
    return None


def _opt_int(value: Any) -> int:
    """Numeric flags arrive as ints or strings; anything unparsable counts as 0."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _detail_value(value: Any) -> str:
    """Flatten a record value; lists of strings or {"title": ...} objects are joined."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        parts = []
        for entry in value:
            if isinstance(entry, str):
                parts.append(entry)
            elif isinstance(entry, dict):
                parts.append(str(entry.get("title", "")))
        return "; ".join(parts)
    return ""


class SLUB(BackendAdapter):
    """SLUB Dresden: search and detail through the TYPO3 "find" plugin, account through its API."""

    api_name = "slub"

    def __init__(self, library, transport=None, strings=None, language=None):
        super().__init__(library, transport, strings, language)
        self.base_url = library.base_url

    def _post_json(self, url: str, data) -> dict:
        doc = json_body(self._post(url, data))
        if not isinstance(doc, dict):
            raise BackendProtocolError(f"expected a JSON object from {url}")
        return doc

    # -- search

    def _run_search(self, query: list[SearchQuery], page: int) -> SearchRequestResult:
        form = [
            ("type", DATA_PAGE_TYPE),
            ("tx_find_find[format]", "data"),
            ("tx_find_find[data-format]", "app"),
            ("tx_find_find[page]", str(page)),
        ]
        form += [(f"tx_find_find[q][{q.key}]", q.value) for q in populated(query)]
        data = self._post_json(self.base_url, form)

        results = []
        for doc in data.get("docs") or []:
            creation_date = doc.get("creationDate")
            results.append(
                SearchResult(
                    id=str(doc.get("id", "")),
                    title=doc.get("title") or "",
                    author=_first(doc.get("author")),
                    summary=f"({creation_date})" if creation_date else None,
                    media_type=MEDIA_TYPES.get(_first(doc.get("format")) or ""),
                )
            )
        # availability would need one request per item
        return SearchRequestResult(results=results, total_count=int(data.get("numFound") or 0), page=page)

    def list_search_fields(self) -> list[SearchField]:
        doc = self._get_html(self.base_url)
        return [text_field(li.get("name", ""), text(li)) for li in doc.select("ul#search-in-field-options li")]

    # -- detail

    def get_detail(self, id: str) -> DetailedItem:
        data = self._post_json(
            f"{self.base_url}/id/{id}/",
            [
                ("type", DATA_PAGE_TYPE),
                ("tx_find_find[format]", "data"),
                ("tx_find_find[data-format]", "app"),
            ],
        )
        record = data.get("record")
        if not record:
            raise NotFoundError(self.strings.get(Msg.NOT_FOUND), Msg.NOT_FOUND)

        item = DetailedItem(id=id)
        for key, raw in record.items():
            value = _detail_value(raw)
            if not value:
                continue
            value = html.unescape(value)
            if key == "title":
                item.title = value
            elif key == "format":
                item.media_type = MEDIA_TYPES.get(value)
            item.add_detail(FIELD_CAPTIONS.get(key, key), value)

        copies = data.get("copies") or []
        if isinstance(copies, dict):
            # several holdings groups, e.g. per volume
            copies = [c for group in copies.values() if isinstance(group, list) for c in group]
        item.copies = [self._parse_copy(c) for c in copies]
        item.is_reservable = any(c.is_reservable for c in item.copies)
        return item

    def _parse_copy(self, data: dict) -> Copy:
        copy = Copy(
            barcode=data.get("barcode"),
            branch=data.get("location"),
            department=data.get("sublocation"),
            shelfmark=data.get("shelfmark"),
            status=text(parsing.html(data.get("statusphrase") or "")) or None,
            return_date=parse_date(data.get("duedate"), DATE_FORMATS),
        )
        if data.get("vormerken") == "1":
            copy.reservation_token = copy.barcode
        return copy

    def share_url(self, id: str) -> str:
        return f"{self.base_url}/id/{id}"

    # -- account

    def _request_account(self, account: Account, action: str, params: dict[str, str] | None = None) -> dict:
        form = {
            "type": "1",
            "tx_slubaccount_account[controller]": "API",
            "tx_slubaccount_account[action]": action,
            "tx_slubaccount_account[username]": account.username,
            "tx_slubaccount_account[password]": account.password,
            **(params or {}),
        }
        data = self._post_json(f"{self.base_url}/mein-konto/", form)
        if data.get("status") != 1:
            message = self.strings.get(
                Msg.UNKNOWN_ERROR_ACCOUNT_WITH_DESCRIPTION, data.get("message") or "error requesting account data"
            )
            raise BackendProtocolError(message, Msg.UNKNOWN_ERROR_ACCOUNT_WITH_DESCRIPTION)
        return data

    def login(self, account: Account) -> dict:
        """Credentials go with every request; this only checks them."""
        try:
            data = self._request_account(account, "validate")
        except BackendProtocolError as e:
            raise AuthError(e.message, e.key) from e
        self.session.mark_authenticated(account.id)
        return data

    def fetch_account(self, account: Account) -> AccountData:
        self.ensure_login(account)
        data = self._request_account(account, "account")
        items = data.get("items") or {}

        account_data = AccountData(account_id=account.id)
        account_data.pending_fees = (data.get("fees") or {}).get("topay_list")
        account_data.valid_until = parse_iso_datetime(((data.get("memberInfo") or {}).get("expires") or "")[:10])
        account_data.lent = [self._parse_lent(i) for i in items.get("loan") or []]
        account_data.reserved = [self._parse_reserved(i) for i in items.get("reserve") or []]
        return account_data

    def _parse_lent(self, data: dict) -> LentItem:
        item = LentItem(
            title=data.get("about"),
            author=_first(data.get("X_author")),
            format=data.get("X_medientyp"),
            barcode=data.get("X_barcode"),
            due_date=parse_date(data.get("X_date_due")),
        )
        reservations = _opt_int(data.get("X_is_reserved"))
        if _opt_int(data.get("renewals")) == 2:
            item.status = f"2x {self.strings.get(Msg.PROLONGED_ABBR)}"
        elif reservations:
            item.status = self.strings.quantity(Msg.RESERVATIONS_NUMBER, reservations)

        if _opt_int(data.get("X_is_renewable")) == 1:
            item.renewal_token = item.barcode
        else:
            item.not_renewable_reason = self.strings.get(Msg.NOT_RENEWABLE)
        return item

    def _parse_reserved(self, data: dict) -> ReservedItem:
        return ReservedItem(
            title=data.get("about"),
            author=_first(data.get("X_author")),
            format=data.get("X_medientyp"),
            status=f"Pos. {_opt_int(data.get('X_queue_number'))}",
        )

    def _renew(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        try:
            self._request_account(account, "renew", {"tx_slubaccount_account[renewals][0]": token})
        except OpacError as e:
            return self._error(ActionType.RENEW, e.message)
        return MultiStepResult.ok(action=ActionType.RENEW)
