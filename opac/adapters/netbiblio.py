"""Adapter for NetBiblio web OPACs (Alcoda), used mainly by Swiss libraries."""

import json
import logging
import re
from urllib.parse import urlencode, urljoin, urlsplit

from bs4 import BeautifulSoup, NavigableString, Tag

from opac.adapters.base import BackendAdapter, SupportFlag
from opac.exceptions import AuthError, CombinationNotSupportedError, NotFoundError
from opac.i18n import Msg
from opac.models import (
    Account,
    AccountData,
    AccountItem,
    Availability,
    Copy,
    DetailedItem,
    LentItem,
    ReservedItem,
    SearchRequestResult,
    SearchResult,
)
from opac.multistep import ActionType, MultiStepResult
from opac.normalize import (
    HeaderMap,
    classify_icon,
    get_best_copy,
    group_rows,
    last_number,
    parse_date,
    query_params_first,
    table_cells,
)
from opac.paging import crawl
from opac.parsing import attr, html, json_body, next_element, own_text, text
from opac.searchfields import FieldKind, SearchField, SearchQuery, dropdown_field, populated, text_field

logger = logging.getLogger(__name__)

PAGE_SIZE = 25
DATE_FORMATS = ("%d.%m.%Y",)
FALLBACK_LANGUAGES = ("en", "de")

COPY_HEADERS = HeaderMap(
    {
        "continuation": ["", "Stockwerk"],
        "branch": ["Bibliothek", "Library", "Bibliothèque"],
        "location": ["Aktueller Standort", "Standorte", "Standort", "Location"],
        "shelfmark": ["Signatur", "Call number", "Cote"],
        "status": ["Verfügbarkeit", "Disposability", "Disponsibilité"],
        "return_date": ["Fälligkeitsdatum", "Due date", "Date d'échéance"],
        "reservations": ["Anz. Res."],
        "reserve": ["Reservieren", "Reserve", "Réserver", "Bestellen", "Commander"],
        "barcode": ["Exemplarnr", "Exemplarnr.", "Item number", "No d'exemplaire"],
    }
)

ACCOUNT_HEADERS = HeaderMap(
    {
        "control": [""],
        "branch": ["Bibliothek", "Library", "Bibliothèque"],
        "author": ["Autor", "Author", "Auteur"],
        "title": ["Titel", "Title", "Titre"],
        "format": ["Medienart", "Media type", "Type de média"],
        "due_date": ["Fälligkeitsdatum", "Due date", "Date d'échéance"],
        "barcode": ["Exemplarnr.", "Exemplarnr", "Item number", "No d'exemplaire"],
        "renewals": ["Verlängerungen", "Renewals", "Prolongations"],
        "reservations": ["Anz. Res."],
    }
)

VALID_UNTIL_SELECTOR = ", ".join(
    f'.wo-list-label:-soup-contains("{label}") + .wo-list-content'
    for label in ("Abonnement (Ende)", "Subscription (end)", "Abonnement (Fin)")
)


def _int_or_none(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


class NetBiblio(BackendAdapter):
    """NetBiblio OPAC: HTML pages plus a JSON handler for e-media status."""

    api_name = "netbiblio"
    support_flags = (
        SupportFlag.ENDLESS_SCROLLING | SupportFlag.WARN_RESERVATION_FEES | SupportFlag.ACCOUNT_RENEW_ALL
    )

    def __init__(self, library, transport=None, strings=None, language=None):
        super().__init__(library, transport, strings, language)
        self.opac_url = library.base_url

    def _start(self) -> None:
        """Switch the server-side session to our language once per session."""
        if self.session.started:
            return
        self._get(f"{self.opac_url}/Site/ChangeLanguage?{urlencode({'language': self.session.language})}")
        self.session.started = True

    # -- search

    def list_search_fields(self) -> list[SearchField]:
        self._start()
        doc = self._get_html(f"{self.opac_url}/search/extended")

        fields = []
        dropdown = doc.select_one(".wo-searchfield-dropdown")
        if dropdown is not None:
            for option in dropdown.select("option"):
                fields.append(text_field(option.get("value", ""), text(option)))

        for panel in doc.select(".wo-filterfield"):
            title = text(panel.select_one(".panel-title"))
            kind = panel.get("data-filterfieldtype")
            if kind == "Checkbox":
                checkboxes = panel.select("input[type=checkbox]")
                if not checkboxes:
                    continue
                options = [("", "")] + [(c.get("value", ""), text(next_element(c))) for c in checkboxes]
                mode = panel.select_one('input[type=radio][name$="-mode"][checked]')
                data = {"modeKey": mode.get("name", ""), "modeValue": mode.get("value", "")} if mode else {}
                fields.append(dropdown_field(checkboxes[0].get("name", ""), title, options, data=data))
            elif kind == "Date":
                for i, box in enumerate(panel.select("input[type=text]")):
                    hint = box.previous_sibling
                    fields.append(
                        text_field(
                            box.get("name", ""),
                            title,
                            hint=hint.strip() if isinstance(hint, NavigableString) else None,
                            half_width=i == 1,
                        )
                    )
        return fields

    def _terms(self, query: list[SearchQuery]) -> list[SearchQuery]:
        """Populated free text terms; "Filter." text fields are sent separately."""
        return [q for q in populated(query) if q.kind is FieldKind.TEXT and not q.key.startswith("Filter.")]

    def _check_criteria(self, query: list[SearchQuery]) -> None:
        super()._check_criteria(query)
        if len(self._terms(query)) > 2:
            raise CombinationNotSupportedError(
                self.strings.get(Msg.COMBINATION_NOT_SUPPORTED), Msg.COMBINATION_NOT_SUPPORTED
            )

    def _search_form(self, query: list[SearchQuery]) -> list[tuple[str, str]]:
        form = []
        terms = self._terms(query)
        # the form always has two term slots joined by an operator
        slots = [(q.value, q.key) for q in terms] + [("", "W")] * (2 - len(terms))
        for i, (term, field) in enumerate(slots):
            if i == 1:
                form.append(("Request.SearchOperator", "AND"))
            form += [("Request.SearchTerm", term), ("Request.SearchField", field)]

        for q in query:
            if q.kind is FieldKind.TEXT and q.key.startswith("Filter."):
                if not q.is_blank:
                    form.append((q.key, q.value))
            elif q.kind is FieldKind.DROPDOWN and not q.is_blank:
                if "modeKey" in q.field.data:
                    form.append((q.field.data["modeKey"], q.field.data.get("modeValue", "")))
                form.append((q.key, q.value))

        form.append(("Request.PageSize", str(PAGE_SIZE)))
        return form

    def _run_search(self, query: list[SearchQuery], page: int) -> SearchRequestResult:
        self._start()
        doc = self._post_html(f"{self.opac_url}/search/extended/submit", self._search_form(query))
        result = self._parse_search(doc, 1)
        if page == 1:
            return result
        if self.session.pagination_cursor is None:
            # everything fit on the first page
            return SearchRequestResult(results=[], total_count=result.total_count, page=page)
        return self._fetch_shortview(page)

    def fetch_page(self, page: int) -> SearchRequestResult:
        query = self.session.require_query()
        if self.session.pagination_cursor is None:
            return self._run_search(query, page)
        return self._fetch_shortview(page)

    def _fetch_shortview(self, page: int) -> SearchRequestResult:
        params = {
            "searchType": "Extended",
            "searchResultId": self.session.pagination_cursor,
            "page": page,
            "pageSize": PAGE_SIZE,
        }
        doc = self._get_html(f"{self.opac_url}/search/shortview?{urlencode(params)}")
        return self._parse_search(doc, page)

    def _parse_search(self, doc: BeautifulSoup, page: int) -> SearchRequestResult:
        next_link = attr(doc.select_one(".next-page a"), "href")
        if next_link:
            cursor = query_params_first(next_link).get("searchResultId")
            if cursor:
                self.session.pagination_cursor = cursor

        count_elem = doc.select_one(".wo-grid-meta-resultcount")
        if count_elem is None:
            return SearchRequestResult(results=[], total_count=0, page=page)
        total = last_number(text(count_elem)) or 0

        # e-media status is loaded separately
        divibib = self._divibib_status(doc)

        results = []
        # one record spans several rows sharing the "wo-row_<id>" prefix
        for notice_id, rows in group_rows(doc.select(".wo-grid-table tbody tr"), r"wo-row_(\d+)").items():
            first = rows[0]
            cols = first.select('td[style="font-size: 14px;"]')
            title_col = cols[0] if cols else first
            summary = " / ".join(text(c) for c in cols[1:])
            results.append(
                SearchResult(
                    id=f"noticeId={notice_id}",
                    title=text(title_col.select_one("a")),
                    author=own_text(title_col) or None,
                    summary=summary or None,
                    cover_url=attr(first.select_one(".wo-cover"), "src"),
                    availability=divibib.get(notice_id) or self._status(first),
                )
            )

        return SearchRequestResult(results=results, total_count=total, page=page)

    def _status(self, elem: Tag) -> Availability | None:
        return classify_icon(attr(elem.select_one(".wo-disposability-icon"), "src"))

    def _divibib_status(self, doc: BeautifulSoup) -> dict[str, Availability]:
        elements = doc.select(
            ".wo-status-plc[data-entityid][data-divibibid], .wo-status-plc-icon[data-entityid][data-divibibid]"
        )
        if not elements:
            return {}

        ids = ",".join(f"{e['data-entityid']}#{e['data-divibibid']}/0" for e in elements)
        data = json_body(self._post(f"{self.opac_url}/handler/divibibstatus", {"format": "icon", "ids": ids}))
        if not isinstance(data, dict):
            logger.warning("unexpected divibib status answer: %r", data)
            return {}

        status = {}
        for entry in data.get("DivibibStatus") or []:
            availability = self._status(html(entry.get("result", "")))
            if availability is not None:
                status[str(entry.get("entityId", "")).replace("N", "")] = availability
        return status

    # -- detail

    def get_detail(self, id: str) -> DetailedItem:
        self._start()
        doc = self._get_html(f"{self.opac_url}/search/notice?{id}")
        return self._parse_detail(doc, id)

    def _parse_detail(self, doc: BeautifulSoup, id: str) -> DetailedItem:
        title_elem = doc.select_one('.wo-marc-title, .wo-list-content-no-label[style*="font-weight: bold"]')
        if title_elem is None:
            raise NotFoundError(self.strings.get(Msg.NOT_FOUND), Msg.NOT_FOUND)

        item = DetailedItem(id=id, title=text(title_elem))
        item.cover_url = attr(doc.select_one(".wo-cover"), "src")

        for label in doc.select("#lst-fullview_Details .wo-list-label"):
            item.add_detail(text(label), text(next_element(label)))

        description = text(doc.select_one('.wo-list-content-no-label[style="background-color:#F3F3F3;"]'))
        if description:
            item.add_detail(self.strings.get(Msg.DESCRIPTION), description)

        for link in doc.select(".wo-linklist-multimedialinks .wo-link a, .wo-btn-ebibliomedia, .wo-btn-divibib"):
            href = link.get("href", "")
            params = query_params_first(href)
            if "multimedialinks/link?url" in href:
                item.add_detail(text(link), params.get("url", ""))
            elif "ebibliomedialink?ref" in href:
                item.add_detail(text(link), params.get("ref", ""))
            elif "divibibrequestitem?divibibId" in href:
                item.add_detail("_onleihe_id", params.get("divibibId", ""))

        columns = [text(th) for th in doc.select(".wo-grid-table > thead > tr > th")]
        context = None
        for row in doc.select(".wo-grid-table > tbody > tr"):
            copy, context = self._parse_copy(row, columns, context)
            item.copies.append(copy)

        item.is_reservable = any(c.is_reservable for c in item.copies)
        return item

    def _parse_copy(self, row: Tag, columns: list[str], context: str | None) -> tuple[Copy, str | None]:
        copy = Copy()
        cells, context = table_cells(row, columns, COPY_HEADERS, context)
        for cell in cells:
            if not cell.content:
                continue
            if cell.field == "continuation":
                # additional location columns without their own header
                if cell.context == "location" and copy.location is not None:
                    copy.location += f" · {cell.content}"
            elif cell.field == "return_date":
                copy.return_date = parse_date(cell.content, DATE_FORMATS)
            elif cell.field == "reserve":
                button = cell.element.select_one("a")
                if button is not None:
                    copy.reservation_token = query_params_first(button.get("href", "")).get("selectedItems")
            elif cell.field is not None:
                setattr(copy, cell.field, cell.content)
        return copy, context

    def share_url(self, id: str) -> str:
        return f"{self.opac_url}/search/notice?{id}"

    # -- account

    def login(self, account: Account) -> BeautifulSoup:
        self._start()
        self.session.invalidate()
        doc = self._post_html(
            f"{self.opac_url}/account/login",
            {
                "ReturnUrl": f"{urlsplit(self.opac_url).path}/account",
                "Username": account.username,
                "Password": account.password,
                "SaveUsernameInCookie": "false",
                "StayLoggedIn": "false",
            },
        )
        alert = doc.select_one(".alert")
        if alert is not None and doc.select_one(".wo-com-account-overview") is None:
            raise AuthError(own_text(alert) or text(alert))
        self.session.mark_authenticated(account.id)
        return doc

    def _paginated(self, url: str) -> list[BeautifulSoup]:
        def next_url(doc: BeautifulSoup, current: str) -> str | None:
            for link in doc.select(".pagination .next-page a[href]"):
                if link["href"] != "#":
                    return urljoin(current, link["href"])
            return None

        return crawl(self._get_html, url, next_url)

    def fetch_account(self, account: Account) -> AccountData:
        self._start()
        login = self.ensure_login(account)

        overview = self._get_html(f"{self.opac_url}/account")
        reservations = self._paginated(f"{self.opac_url}/account/reservations")
        ready = self._paginated(f"{self.opac_url}/account/orders")
        lent = self._paginated(f"{self.opac_url}/account/circulations")

        data = AccountData(account_id=account.id)
        for doc in (overview, login):
            alert = doc.select_one(".alert") if doc is not None else None
            if alert is not None:
                data.warning = own_text(alert) or text(alert)
                break

        fees = text(overview.select_one("a[href$=fees]"))
        match = re.search(r"\(([^)]+)\)", fees)
        data.pending_fees = match.group(1) if match else None
        data.valid_until = parse_date(text(overview.select_one(VALID_UNTIL_SELECTOR)), DATE_FORMATS)

        data.reserved = [i for doc in reservations for i in self._parse_items(doc, ReservedItem)]
        data.reserved += [i for doc in ready for i in self._parse_items(doc, ReservedItem, ready=True)]
        data.lent = [i for doc in lent for i in self._parse_items(doc, LentItem)]
        return data

    def _parse_items(self, doc: BeautifulSoup, cls: type[AccountItem], ready: bool = False) -> list:
        table = doc.select_one(".wo-grid-table")
        if table is None:
            return []
        columns = [text(th) for th in table.select(":scope > thead > tr > th")]

        items = []
        for row in table.select(":scope > tbody > tr"):
            item = cls()
            renewals = reservations = None
            cells, _ = table_cells(row, columns, ACCOUNT_HEADERS)
            for cell in cells:
                if cell.field == "control":
                    checkbox = cell.element.select_one("input[type=checkbox]")
                    cover = cell.element.select_one(".wo-cover")
                    if checkbox is not None:
                        if isinstance(item, LentItem):
                            item.renewal_token = checkbox.get("value")
                        elif isinstance(item, ReservedItem):
                            item.cancel_token = checkbox.get("value")
                    elif cover is not None:
                        item.cover_url = cover.get("src")
                elif cell.field in ("title", "author"):
                    setattr(item, cell.field, cell.content)
                    link = cell.element.select_one("a[href]")
                    if link is not None:
                        item.item_id = f"noticeNr={query_params_first(link['href']).get('noticeNr')}"
                elif cell.field in ("branch", "format"):
                    setattr(item, cell.field, cell.content)
                elif cell.field == "due_date" and isinstance(item, LentItem):
                    item.due_date = parse_date(cell.content, DATE_FORMATS)
                elif cell.field == "barcode" and isinstance(item, LentItem):
                    item.barcode = cell.content
                elif cell.field == "renewals":
                    renewals = _int_or_none(cell.content)
                elif cell.field == "reservations":
                    reservations = _int_or_none(cell.content)

            if isinstance(item, LentItem) and item.renewal_token is None:
                item.not_renewable_reason = self.strings.get(Msg.NOT_RENEWABLE)
            if isinstance(item, ReservedItem):
                item.ready = ready

            status = []
            if ready:
                status.append(self.strings.get(Msg.RESERVATION_READY))
            if renewals:
                status.append(f"{renewals}x {self.strings.get(Msg.PROLONGED_ABBR)}")
            if reservations:
                status.append(self.strings.quantity(Msg.RESERVATIONS_NUMBER, reservations))
            item.status = ", ".join(status) or None
            items.append(item)
        return items

    # -- multi-step actions

    def reserve(self, item: DetailedItem, account: Account, selection: str | None = None) -> MultiStepResult:
        if selection is not None:
            return self._submit_reservation(selection)

        copies = [c for c in item.copies if c.is_reservable]
        if not copies:
            return self._error(ActionType.RESERVE, self.strings.get(Msg.NO_COPY_RESERVABLE))

        # open the form for any copy, just to learn which options it offers
        self._start()
        url = f"{self.opac_url}/account/makeitemreservation?{urlencode({'selectedItems[0]': copies[0].reservation_token})}"
        doc = self._get_html(url)
        if doc.select_one("#wo-frm-login") is not None:
            try:
                self.login(account)
            except AuthError as e:
                return self._error(ActionType.RESERVE, e.message)
            doc = self._get_html(url)

        options = self._reservation_options(doc, copies)
        if not options:
            return self._error(ActionType.RESERVE, text(doc.select_one(".alert")) or None)
        if len(options) == 1:
            return self._submit_reservation(options[0][0])
        return MultiStepResult.selection_needed(options, ActionType.RESERVE)

    def _reservation_options(self, doc: BeautifulSoup, copies: list[Copy]) -> list[tuple[str, str]]:
        kind_input = doc.select_one(".wo-reservationkind[checked]")
        kind = attr(kind_input, "value") or ""
        kind_text = text(doc.select_one("label:has(.wo-reservationkind[checked])"))
        address_id = attr(doc.select_one("input[name=AddessId]"), "value") or ""

        def key(**fields) -> str:
            # "AddessId" is the backend's spelling
            return json.dumps({"ReservationKind": kind, **fields}, sort_keys=True)

        options = []
        checkout_labels = doc.select("label:has(input[name=CheckoutKind])")
        if not checkout_labels:
            # pick a copy, e.g. in Bern
            for copy in copies:
                when = copy.return_date.isoformat() if copy.return_date else ""
                label = " ".join(filter(None, [copy.branch, copy.status, when]))
                options.append((key(ItemId=copy.reservation_token, AddessId=address_id), f"{label} ({kind_text})"))
            return options

        # pick up at a branch or have it mailed, e.g. in Basel
        for ck_label in checkout_labels:
            checkout_kind = attr(ck_label.select_one("input"), "value") or ""
            if checkout_kind == "PickUp":
                for opt in doc.select("select[name=BranchofficeId] option"):
                    branch = text(opt)
                    options.append(
                        (
                            key(
                                ItemId=get_best_copy(copies, branch).reservation_token,
                                CheckoutKind=checkout_kind,
                                BranchofficeId=opt.get("value", ""),
                                AddessId=address_id,
                            ),
                            f"{branch} / {text(ck_label)}",
                        )
                    )
            elif checkout_kind == "Mail":
                mail_options = []
                for a_label in doc.select("label:has(input[name=AddessId])"):
                    mail_options.append(
                        (
                            key(
                                ItemId=get_best_copy(copies).reservation_token,
                                CheckoutKind=checkout_kind,
                                AddessId=attr(a_label.select_one("input"), "value") or "",
                            ),
                            f"{text(ck_label)} / {text(a_label)}",
                        )
                    )
                # delivery options are listed first
                options = mail_options + options
            else:
                options.append(
                    (
                        key(
                            ItemId=get_best_copy(copies).reservation_token,
                            CheckoutKind=checkout_kind,
                            AddessId=address_id,
                        ),
                        text(ck_label),
                    )
                )
        return options

    def _submit_reservation(self, selection: str) -> MultiStepResult:
        try:
            form = json.loads(selection)
        except ValueError:
            return self._error(ActionType.RESERVE)
        doc = self._post_html(f"{self.opac_url}/account/makeitemreservation", {k: str(v) for k, v in form.items()})
        return self._result(doc, ActionType.RESERVE)

    def _result(self, doc: BeautifulSoup, action: ActionType) -> MultiStepResult:
        if len(doc.select(".alert-success")) == 1:
            return MultiStepResult.ok(action=action)
        return self._error(action, text(doc.select_one(".alert-danger")) or None)

    def _renew(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        self._start()
        self.ensure_login(account)
        doc = self._get_html(f"{self.opac_url}/account/renew?{urlencode({'selectedItems[0]': token})}")
        return self._result(doc, ActionType.RENEW)

    def renew_all(self, account: Account, selection: str | None = None) -> MultiStepResult:
        self._start()
        try:
            self.ensure_login(account)
        except AuthError as e:
            return self._error(ActionType.RENEW_ALL, e.message)

        lent = [i for doc in self._paginated(f"{self.opac_url}/account/circulations")
                for i in self._parse_items(doc, LentItem)]
        tokens = [item.renewal_token for item in lent if item.renewal_token]
        params = [(f"selectedItems[{i}]", token) for i, token in enumerate(tokens)]
        params.append(("returnUrl", f"{urlsplit(self.opac_url).path}/account/circulations"))
        doc = self._get_html(f"{self.opac_url}/account/renew?{urlencode(params)}")
        return self._result(doc, ActionType.RENEW_ALL)

    def _cancel(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        self._start()
        self.ensure_login(account)
        doc = self._get_html(f"{self.opac_url}/account/deletereservations?{urlencode({'selectedItems[0]': token})}")
        return self._result(doc, ActionType.CANCEL)

    # -- languages

    def _find_languages(self, doc: BeautifulSoup) -> list[str]:
        languages = []
        for link in doc.select(".dropdown-menu a[href*=ChangeLanguage]"):
            match = re.search(r"language=([^&]+)", link.get("href", ""))
            if match:
                languages.append(match.group(1))
        return languages

    def supported_languages(self) -> set[str]:
        """The language menu lists all languages except the current one."""
        languages = self._find_languages(self._get_html(self.opac_url))
        if not languages:
            return set()
        # switch once to find out what the current language was, then back
        doc = self._get_html(f"{self.opac_url}/Site/ChangeLanguage?language={languages[0]}")
        current = [lang for lang in self._find_languages(doc) if lang not in languages]
        if current:
            self._get(f"{self.opac_url}/Site/ChangeLanguage?language={current[0]}")
        return set(languages) | set(current)

    def set_language(self, language: str) -> None:
        """Use `language` if offered, else fall back to English, then German."""
        supported = self.supported_languages()
        if supported and language not in supported:
            language = next((lang for lang in FALLBACK_LANGUAGES if lang in supported), language)
        super().set_language(language)
