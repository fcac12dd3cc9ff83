"""Shared fixtures: a recording fake transport and sample libraries."""

import pytest

from opac.models import Account, Library
from opac.transport import DEFAULT_ENCODING, encode_form


class FakeTransport:
    """Serves canned bodies by URL substring and records every call.

    The longest matching pattern wins. Each pattern holds a queue of
    bodies; the last body is repeated once the queue is down to one.
    """

    def __init__(self):
        self.routes: dict[str, dict[str, list[str]]] = {"GET": {}, "POST": {}}
        self.calls: list[tuple[str, str, object]] = []
        self.closed = False

    def add(self, method: str, pattern: str, *bodies: str) -> None:
        self.routes[method].setdefault(pattern, []).extend(bodies)

    def _respond(self, method: str, url: str) -> str:
        matches = [p for p in self.routes[method] if p in url]
        if not matches:
            raise AssertionError(f"unexpected {method} {url}")
        queue = self.routes[method][max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def get(self, url: str, encoding: str = DEFAULT_ENCODING) -> str:
        self.calls.append(("GET", url, None))
        return self._respond("GET", url)

    def post(self, url: str, data, encoding: str = DEFAULT_ENCODING) -> str:
        self.calls.append(("POST", url, data))
        return self._respond("POST", url)

    def close(self) -> None:
        self.closed = True

    def urls(self, method: str | None = None) -> list[str]:
        return [url for m, url, _ in self.calls if method is None or m == method]

    def form(self, index: int = -1) -> str:
        """The urlencoded body of a recorded POST."""
        method, _, data = self.calls[index]
        assert method == "POST"
        return encode_form(data)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def koha_library() -> Library:
    return Library(ident="koha-test", api="koha", city="Testville", data={"baseurl": "https://koha.example.org/"})


@pytest.fixture
def netbiblio_library() -> Library:
    return Library(ident="nb-test", api="netbiblio", city="Bern", data={"baseurl": "https://nb.example.ch/nb"})


@pytest.fixture
def slub_library() -> Library:
    return Library(ident="slub", api="slub", city="Dresden", data={"baseurl": "https://katalog.example.de"})


@pytest.fixture
def account() -> Account:
    return Account(id="acc-1", library="test", username="reader", password="secret")
