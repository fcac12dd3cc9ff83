"""Tests for the SLUB adapter against inline JSON payloads."""

import json
from datetime import date

import pytest

from opac.adapters.slub import SLUB
from opac.exceptions import AuthError, BackendProtocolError, NotFoundError
from opac.models import DetailedItem, LentItem, MediaType, ReservedItem
from opac.multistep import MultiStepStatus
from opac.searchfields import SearchQuery, text_field

BASE = "katalog.example.de"

SEARCH = json.dumps(
    {
        "numFound": 132,
        "docs": [
            {
                "id": "0-123",
                "title": "Dune",
                "author": ["Herbert, Frank"],
                "creationDate": "1965",
                "format": ["Book, E-Book"],
            },
            {"id": "0-456", "title": "Dune: The Atlas", "format": ["Map"]},
        ],
    }
)

DETAIL = json.dumps(
    {
        "record": {
            "title": "Dune &amp; more",
            "contributor": ["Herbert, Frank", "Schoenherr, John"],
            "format": "Book, E-Book",
            "subject": [{"title": "Science fiction"}],
            "pages": 412,
            "description": "",
        },
        "copies": {
            "0": [
                {
                    "barcode": "B1",
                    "location": "Zentralbibliothek",
                    "sublocation": "Freihand",
                    "shelfmark": "GN 123",
                    "statusphrase": "<span>Ausleihbar</span>",
                    "duedate": "",
                    "vormerken": "0",
                }
            ],
            "1": [
                {
                    "barcode": "B2",
                    "location": "Zweigbibliothek",
                    "sublocation": "Magazin",
                    "shelfmark": "GN 124",
                    "statusphrase": "Ausgeliehen",
                    "duedate": "15.03.2026",
                    "vormerken": "1",
                }
            ],
        },
    }
)

ACCOUNT = json.dumps(
    {
        "status": 1,
        "fees": {"topay_list": "2,00 EUR"},
        "memberInfo": {"expires": "2027-01-31 00:00:00"},
        "items": {
            "loan": [
                {
                    "about": "Dune",
                    "X_author": ["Herbert, Frank"],
                    "X_date_due": "2026-03-15",
                    "X_medientyp": "Buch",
                    "X_barcode": "B1",
                    "renewals": 0,
                    "X_is_reserved": 0,
                    "X_is_renewable": 1,
                },
                {"about": "Emma", "X_date_due": "2026-02-01", "X_barcode": "B9", "renewals": 2, "X_is_renewable": 0},
            ],
            "reserve": [{"about": "Ulysses", "X_author": ["Joyce, James"], "X_medientyp": "Buch", "X_queue_number": 2}],
        },
    }
)


@pytest.fixture
def slub(slub_library, transport):
    return SLUB(slub_library, transport)


def form_of(transport, index=-1) -> dict:
    return dict(transport.calls[index][2])


class TestSearch:
    def test_parses_docs(self, slub, transport):
        transport.add("POST", BASE, SEARCH)

        result = slub.search([SearchQuery(field=text_field("title", "Titel"), value="dune")])

        assert result.total_count == 132
        dune, atlas = result.results
        assert dune.id == "0-123"
        assert dune.author == "Herbert, Frank"
        assert dune.summary == "(1965)"
        assert dune.media_type is MediaType.BOOK
        assert atlas.media_type is MediaType.MAP
        assert atlas.author is None
        form = form_of(transport)
        assert form["tx_find_find[q][title]"] == "dune"
        assert form["tx_find_find[page]"] == "1"

    def test_fetch_page_sends_page_number(self, slub, transport):
        transport.add("POST", BASE, SEARCH)
        slub.search([SearchQuery(field=text_field("title", "Titel"), value="dune")])

        assert slub.fetch_page(4).page == 4
        assert form_of(transport)["tx_find_find[page]"] == "4"

    def test_malformed_payload(self, slub, transport):
        transport.add("POST", BASE, "<html>Maintenance</html>")
        with pytest.raises(BackendProtocolError):
            slub.search([SearchQuery(field=text_field("title", "Titel"), value="dune")])


def test_list_search_fields(slub, transport):
    transport.add("GET", BASE, '<ul id="search-in-field-options"><li name="title">Titel</li><li name="author">Person</li></ul>')

    fields = slub.list_search_fields()

    assert [(f.id, f.display_name) for f in fields] == [("title", "Titel"), ("author", "Person")]


class TestDetail:
    def test_record_and_grouped_copies(self, slub, transport):
        transport.add("POST", f"{BASE}/id/", DETAIL)

        item = slub.get_detail("0-123")

        assert item.title == "Dune & more"
        assert item.media_type is MediaType.BOOK
        details = {d.label: d.value for d in item.details}
        assert details["Beteiligte"] == "Herbert, Frank; Schoenherr, John"
        assert details["Schlagwörter"] == "Science fiction"
        assert details["pages"] == "412"
        assert "Beschreibung" not in details

        first, second = item.copies
        assert first.branch == "Zentralbibliothek"
        assert first.department == "Freihand"
        assert first.status == "Ausleihbar"
        assert first.return_date is None
        assert not first.is_reservable
        assert second.return_date == date(2026, 3, 15)
        assert second.reservation_token == "B2"
        assert item.is_reservable
        assert transport.urls() == ["https://katalog.example.de/id/0-123/"]

    def test_missing_record(self, slub, transport):
        transport.add("POST", f"{BASE}/id/", json.dumps({"record": None}))
        with pytest.raises(NotFoundError):
            slub.get_detail("0-999")

    def test_share_url(self, slub):
        assert slub.share_url("0-123") == "https://katalog.example.de/id/0-123"


class TestAccount:
    def test_fetch_account(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", ACCOUNT)

        data = slub.fetch_account(account)

        assert data.pending_fees == "2,00 EUR"
        assert data.valid_until == date(2027, 1, 31)
        dune, emma = data.lent
        assert dune.due_date == date(2026, 3, 15)
        assert dune.renewal_token == "B1"
        assert dune.status is None
        assert emma.status == "2x renewed"
        assert not emma.is_renewable
        (ulysses,) = data.reserved
        assert ulysses.author == "Joyce, James"
        assert ulysses.status == "Pos. 2"
        form = form_of(transport)
        assert form["tx_slubaccount_account[action]"] == "account"
        assert form["tx_slubaccount_account[username]"] == "reader"

    def test_login_rejected(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 0, "message": "Invalid credentials"}))
        with pytest.raises(AuthError, match="Invalid credentials"):
            slub.login(account)

    def test_login(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 1}))
        slub.login(account)
        assert slub.session.is_authenticated_as(account.id)
        assert form_of(transport)["tx_slubaccount_account[action]"] == "validate"

    def test_fetch_account_validates_credentials_first(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 0, "message": "Invalid credentials"}))
        with pytest.raises(AuthError, match="Invalid credentials"):
            slub.fetch_account(account)
        assert len(transport.calls) == 1
        assert form_of(transport)["tx_slubaccount_account[action]"] == "validate"

    def test_validates_once_per_session(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", ACCOUNT)

        slub.fetch_account(account)
        slub.fetch_account(account)

        actions = [dict(data)["tx_slubaccount_account[action]"] for _, _, data in transport.calls]
        assert actions == ["validate", "account", "account"]

    def test_account_error(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 1}), json.dumps({"status": 0}))
        with pytest.raises(BackendProtocolError, match="error requesting account data"):
            slub.fetch_account(account)

    def test_string_flags(self, slub, transport, account):
        loans = [
            {"about": "Dune", "X_barcode": "B1", "renewals": "0", "X_is_reserved": "0", "X_is_renewable": "1"},
            {"about": "Emma", "X_barcode": "B9", "renewals": "2", "X_is_renewable": "0"},
            {"about": "Ulysses", "X_barcode": "B5", "X_is_reserved": "ja"},
            {"about": "Persuasion", "X_barcode": "B7", "X_is_reserved": "3"},
        ]
        body = json.dumps({"status": 1, "items": {"loan": loans, "reserve": [{"about": "Kim", "X_queue_number": "x"}]}})
        transport.add("POST", f"{BASE}/mein-konto/", body)

        data = slub.fetch_account(account)

        dune, emma, ulysses, persuasion = data.lent
        assert dune.renewal_token == "B1"
        assert dune.not_renewable_reason is None
        assert dune.status is None
        assert emma.status == "2x renewed"
        assert not emma.is_renewable
        assert ulysses.status is None
        assert not ulysses.is_renewable
        assert persuasion.status == "3 reservations"
        assert data.reserved[0].status == "Pos. 0"


class TestActions:
    def test_renew(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 1}))

        result = slub.start_renewal(LentItem(title="Dune", renewal_token="B1"), account).invoke()

        assert result.status is MultiStepStatus.OK
        form = form_of(transport)
        assert form["tx_slubaccount_account[action]"] == "renew"
        assert form["tx_slubaccount_account[renewals][0]"] == "B1"

    def test_renew_refused_by_backend(self, slub, transport, account):
        transport.add("POST", f"{BASE}/mein-konto/", json.dumps({"status": 0, "message": "Already renewed twice"}))

        result = slub.start_renewal(LentItem(title="Dune", renewal_token="B1"), account).invoke()

        assert result.status is MultiStepStatus.ERROR
        assert "Already renewed twice" in result.message

    @pytest.mark.parametrize(
        "start",
        [
            lambda slub, account: slub.start_reservation(DetailedItem(id="0-123"), account),
            lambda slub, account: slub.start_renew_all(account),
            lambda slub, account: slub.start_cancellation(ReservedItem(title="Ulysses", cancel_token="x"), account),
        ],
    )
    def test_unsupported_actions(self, slub, transport, account, start):
        result = start(slub, account).invoke()
        assert result.status is MultiStepStatus.UNSUPPORTED
        assert transport.calls == []
