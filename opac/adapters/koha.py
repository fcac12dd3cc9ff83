"""Adapter for the Koha open-source ILS."""

import logging
import re
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from opac.adapters.base import BackendAdapter, SupportFlag
from opac.exceptions import AuthError, NotFoundError
from opac.i18n import Msg
from opac.models import (
    Account,
    AccountData,
    AccountItem,
    Copy,
    DetailedItem,
    LentItem,
    MediaType,
    ReservedItem,
    SearchRequestResult,
    SearchResult,
)
from opac.multistep import ActionType, MultiStepResult
from opac.normalize import (
    classify_markers,
    last_number,
    media_type_from_icon,
    parse_date,
    parse_iso_datetime,
    query_params_first,
)
from opac.parsing import attr, next_element, own_text, prev_element, text
from opac.searchfields import FieldKind, SearchField, SearchQuery, checkbox_field, dropdown_field, text_field

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
DATE_FORMATS = ("%d.%m.%Y",)

MEDIA_TYPES = {
    "book": MediaType.BOOK,
    "film": MediaType.MOVIE,
    "sound": MediaType.CD_MUSIC,
    "newspaper": MediaType.MAGAZINE,
}

# holdings table column class -> Copy attribute
COPY_COLUMNS = {
    "location": "branch",
    "collection": "location",
    "call_no": "shelfmark",
    "status": "status",
    "holds_count": "reservations",
}


class Koha(BackendAdapter):
    """Koha OPAC, scraped from its HTML pages under /cgi-bin/koha/."""

    api_name = "koha"
    support_flags = SupportFlag.ENDLESS_SCROLLING

    def __init__(self, library, transport=None, strings=None, language=None):
        super().__init__(library, transport, strings, language)
        self.base_url = library.base_url

    def _url(self, script: str, **params) -> str:
        url = f"{self.base_url}/cgi-bin/koha/{script}"
        return f"{url}?{urlencode(params)}" if params else url

    # -- search

    def _search_params(self, query: list[SearchQuery]) -> list[tuple[str, str]]:
        params = []
        for q in query:
            if q.is_blank:
                continue
            if q.kind is FieldKind.TEXT:
                params += [("idx", q.key), ("q", q.value)]
            elif q.kind is FieldKind.DROPDOWN:
                params.append((q.field.data.get("id", q.key), q.value))
            elif q.kind is FieldKind.CHECKBOX:
                params.append(("limit", q.key))
        return params

    def _run_search(self, query: list[SearchQuery], page: int) -> SearchRequestResult:
        params = self._search_params(query)
        if page > 1:
            params.append(("offset", str(PAGE_SIZE * (page - 1))))
        doc = self._get_html(f"{self._url('opac-search.pl')}?{urlencode(params)}")
        return self._parse_search(doc, page)

    def _parse_search(self, doc: BeautifulSoup, page: int) -> SearchRequestResult:
        count_elem = doc.select_one("#numresults")
        if count_elem is None:
            return SearchRequestResult(results=[], total_count=0, page=page)
        total = last_number(text(count_elem)) or 0

        results = []
        for row in doc.select(".searchresults table tr"):
            title_link = row.select_one("a.title")
            if title_link is None:
                continue
            match = re.search(r"biblionumber=([^&]+)", title_link.get("href", ""))
            if match is None:
                logger.warning("search result without biblionumber: %s", title_link.get("href"))
                continue

            author_elem = row.select_one(".author")
            summary = None
            summary_elem = row.select_one(".results_summary")
            if summary_elem is not None:
                # the last part is the availability line
                summary = " | ".join(text(summary_elem).split(" | ")[:-1]) or None

            cover = row.select_one(".coverimages img")
            results.append(
                SearchResult(
                    id=match.group(1),
                    title=own_text(title_link),
                    author=text(author_elem) if author_elem else None,
                    summary=summary,
                    media_type=media_type_from_icon(attr(row.select_one(".materialtype"), "src"), MEDIA_TYPES),
                    cover_url=attr(cover, "src"),
                    availability=classify_markers(
                        bool(row.select(".available")), bool(row.select(".unavailable"))
                    ),
                )
            )

        return SearchRequestResult(results=results, total_count=total, page=page)

    def list_search_fields(self) -> list[SearchField]:
        doc = self._get_html(self._url("opac-search.pl"))

        fields = [text_field("kw,wrdl", "Freitext", free_search=True)]

        for option in doc.select("#search-field_0 option"):
            fields.append(text_field(option.get("value", ""), text(option)))

        # limit fieldsets, one per tab; their inputs are all named "limit"
        fieldsets = doc.select("#advsearches fieldset")
        tabs = doc.select("#advsearches .ui-tabs-nav li")
        for fieldset, tab in zip(fieldsets, tabs):
            checkboxes = fieldset.select("input[type=checkbox]")
            if not checkboxes:
                continue
            title = text(tab)
            options = [("", "")]
            for checkbox in checkboxes:
                label = next_element(checkbox)
                options.append((checkbox.get("value", ""), text(label)))
            fields.append(dropdown_field(title, title, options, data={"id": checkboxes[0].get("name", "limit")}))

        for dropdown in doc.select("legend + label + select"):
            label = prev_element(dropdown)
            legend = prev_element(label) if label is not None else None
            title = text(legend).removesuffix(":")
            options = [(o.get("value", ""), text(o)) for o in dropdown.select("option")]
            fields.append(dropdown_field(title, title, options, data={"id": dropdown.get("name", "")}))

        available = doc.select_one("#available-items")
        if available is not None:
            fields.append(checkbox_field(available.get("value", ""), text(available.parent)))

        return fields

    # -- detail

    def get_detail(self, id: str) -> DetailedItem:
        doc = self._get_html(self._url("opac-detail.pl", biblionumber=id))

        title_elem = doc.select_one("h1.title")
        if title_elem is None:
            raise NotFoundError(self.strings.get(Msg.NOT_FOUND), Msg.NOT_FOUND)

        item = DetailedItem(id=id, title=own_text(title_elem))
        for row in doc.select("h5.author, span.results_summary"):
            label, _, value = text(row).partition(":")
            item.add_detail(label.strip(), value.strip())

        item.media_type = media_type_from_icon(attr(doc.select_one(".materialtype"), "src"), MEDIA_TYPES)
        item.cover_url = attr(doc.select_one("#bookcover img"), "src")

        for tooltip in doc.select(".holdingst .branch-info-tooltip"):
            tooltip.decompose()
        for row in doc.select(".holdingst > tbody > tr"):
            copy = Copy()
            for td in row.select("td"):
                value = text(td) or None
                classes = td.get("class", [])
                if "date_due" in classes:
                    copy.return_date = parse_date(value, DATE_FORMATS)
                    continue
                for cls, name in COPY_COLUMNS.items():
                    if cls in classes:
                        setattr(copy, name, value)
            item.copies.append(copy)

        item.is_reservable = bool(doc.select("a.reserve"))
        return item

    def share_url(self, id: str) -> str:
        return self._url("opac-detail.pl", biblionumber=id)

    # -- account

    def login(self, account: Account) -> BeautifulSoup:
        self.session.invalidate()
        doc = self._post_html(
            self._url("opac-user.pl"),
            [
                ("koha_login_context", "opac"),
                ("koha_login_context", "opac"),  # sic, Koha expects it twice
                ("userid", account.username),
                ("password", account.password),
            ],
        )
        if doc.select(".alert") and doc.select("#opac-auth"):
            raise AuthError(text(doc.select_one(".alert")))

        self.session.mark_authenticated(account.id)
        self._remember_borrower(doc)
        return doc

    def _remember_borrower(self, doc: BeautifulSoup) -> None:
        borrowernumber = attr(doc.select_one("input[name=borrowernumber]"), "value")
        if borrowernumber:
            self.session.extras["borrowernumber"] = borrowernumber

    def _user_page(self, account: Account) -> BeautifulSoup:
        doc = self.ensure_login(account)
        if doc is not None:
            return doc
        doc = self._get_html(self._url("opac-user.pl"))
        if doc.select("#opac-auth"):
            # server-side session expired
            return self.login(account)
        self._remember_borrower(doc)
        return doc

    def fetch_account(self, account: Account) -> AccountData:
        doc = self._user_page(account)
        data = AccountData(account_id=account.id)
        data.lent = self._parse_items(doc, LentItem, "#checkoutst")
        data.reserved = self._parse_items(doc, ReservedItem, "#holdst")

        fees = text(self._get_html(self._url("opac-account.pl")).select_one("td.sum"))
        data.pending_fees = fees or None

        if doc.select(".alert"):
            data.warning = text(doc.select_one(".alert"))
        return data

    def _parse_items(self, doc: BeautifulSoup, cls: type[AccountItem], selector: str) -> list:
        table = doc.select_one(selector)
        if table is None:
            return []

        items = []
        for row in table.select("tbody tr"):
            item = cls()
            for col in row.select("td"):
                classes = col.get("class", [])
                kind = classes[0] if classes else ""
                content = text(col)
                if kind == "itype":
                    item.format = content
                elif kind == "title":
                    item.title = content
                    link = attr(col.select_one("a[href]"), "href")
                    if link is not None:
                        item.item_id = query_params_first(link).get("biblionumber")
                elif kind == "date_due" and isinstance(item, LentItem):
                    item.due_date = parse_iso_datetime(attr(col.select_one("span[title]"), "title"))
                elif kind == "branch":
                    item.branch = content
                elif kind == "expirationdate" and isinstance(item, ReservedItem):
                    item.expiration_date = parse_iso_datetime(attr(col.select_one("span[title]"), "title"))
                elif kind == "status":
                    item.status = content
                elif kind == "modify" and isinstance(item, ReservedItem):
                    biblionumber = attr(col.select_one("input[name=biblionumber]"), "value")
                    reserve_id = attr(col.select_one("input[name=reserve_id]"), "value")
                    if biblionumber and reserve_id:
                        item.cancel_token = f"{biblionumber}:{reserve_id}"
                elif kind == "renew" and isinstance(item, LentItem):
                    renew_input = col.select_one("input[name=item]")
                    if renew_input is not None:
                        item.renewal_token = renew_input.get("value")
                    else:
                        item.not_renewable_reason = content or self.strings.get(Msg.NOT_RENEWABLE)
            items.append(item)
        return items

    # -- multi-step actions

    def reserve(self, item: DetailedItem, account: Account, selection: str | None = None) -> MultiStepResult:
        try:
            self.ensure_login(account)
        except AuthError as e:
            return self._error(ActionType.RESERVE, e.message)

        doc = self._get_html(self._url("opac-reserve.pl", biblionumber=item.id))
        if doc.select(".alert"):
            return self._error(ActionType.RESERVE, text(doc.select_one(".alert")))

        branches = [
            (o.get("value", ""), text(o))
            for o in doc.select("select[name=branch] option")
            if o.get("value")
        ]
        if selection is None and len(branches) > 1:
            return MultiStepResult.selection_needed(branches, ActionType.RESERVE)
        branch = selection if selection is not None else (branches[0][0] if branches else None)

        checkitem = doc.select_one(f'input[name="checkitem_{item.id}"]')
        form = [
            ("place_reserve", "1"),
            ("biblionumbers", f"{item.id}/"),
            ("selecteditems", f"{item.id}///"),
            ("reserve_mode", "multi"),
            ("single_bib", item.id),
            (f"expiration_date_{item.id}", ""),
            (f"reqtype_{item.id}", "any"),
            (f"checkitem_{item.id}", attr(checkitem, "value") or ""),
        ]
        if branch:
            form.append(("branch", branch))
        doc = self._post_html(self._url("opac-reserve.pl"), form)

        if doc.select(f'input[type=hidden][name=biblionumber][value="{item.id}"]'):
            return MultiStepResult.ok(action=ActionType.RESERVE)
        alert = doc.select_one(".alert")
        return self._error(ActionType.RESERVE, text(alert) if alert else None)

    def _renew(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        if not self.session.is_authenticated_as(account.id) or "borrowernumber" not in self.session.extras:
            self._user_page(account)
        borrowernumber = self.session.extras.get("borrowernumber", "")
        doc = self._get_html(
            self._url("opac-renew.pl", **{"from": "opac_user", "item": token, "borrowernumber": borrowernumber})
        )
        label = doc.select_one(".blabel")
        if label is not None and "label-success" in label.get("class", []):
            return MultiStepResult.ok(action=ActionType.RENEW)
        return self._error(ActionType.RENEW, text(label) if label else None)

    def _cancel(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        self.ensure_login(account)
        biblionumber, _, reserve_id = token.partition(":")
        doc = self._post_html(
            self._url("opac-modrequest.pl"),
            [("biblionumber", biblionumber), ("reserve_id", reserve_id), ("submit", "")],
        )
        if doc.select_one(f'input[name=reserve_id][value="{reserve_id}"]') is None:
            return MultiStepResult.ok(action=ActionType.CANCEL)
        return self._error(ActionType.CANCEL)
