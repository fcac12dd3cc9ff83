"""Network transports used by adapters to talk to a backend."""

import logging
from pathlib import Path
from typing import Mapping, Protocol, Sequence, Union
from urllib.parse import urlencode

import httpx
from playwright.sync_api import Browser, BrowserContext, Page, sync_playwright

from opac.exceptions import NotFoundError, TransportError
from opac.i18n import Msg

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
DEFAULT_ENCODING = "utf-8"

# Sequences keep repeated keys ("a=1&a=2"), which some backends require
FormData = Union[Mapping[str, str], Sequence[tuple[str, str]]]


def encode_form(data: FormData, encoding: str = DEFAULT_ENCODING) -> str:
    pairs = list(data.items()) if isinstance(data, Mapping) else list(data)
    return urlencode(pairs, encoding=encoding)


class Transport(Protocol):
    """What an adapter needs from the network: fetch and submit pages."""

    def get(self, url: str, encoding: str = DEFAULT_ENCODING) -> str: ...

    def post(self, url: str, data: FormData, encoding: str = DEFAULT_ENCODING) -> str: ...

    def close(self) -> None: ...


class HttpTransport:
    """Plain HTTP transport; cookies persist for the lifetime of the client."""

    def __init__(self, timeout: float = 30.0, headers: dict[str, str] | None = None, client: httpx.Client | None = None):
        self.timeout = timeout
        self.headers = headers or {}
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html, application/json, */*",
                    **self.headers,
                },
                follow_redirects=True,
                timeout=self.timeout,
            )
        return self._client

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            resp = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}", url=url) from e
        if resp.status_code == 404:
            raise NotFoundError(f"{url} not found", Msg.NOT_FOUND)
        if resp.is_error:
            raise TransportError(
                f"{method} {url} returned HTTP {resp.status_code}", url=url, status_code=resp.status_code
            )
        return resp

    def get(self, url: str, encoding: str = DEFAULT_ENCODING) -> str:
        resp = self._send("GET", url)
        return resp.content.decode(encoding, errors="replace")

    def post(self, url: str, data: FormData, encoding: str = DEFAULT_ENCODING) -> str:
        resp = self._send(
            "POST",
            url,
            content=encode_form(data, encoding),
            headers={"Content-Type": FORM_CONTENT_TYPE},
        )
        return resp.content.decode(encoding, errors="replace")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class BrowserTransport:
    """Transport driving a real browser, for catalogs behind JavaScript challenges.

    Browser state (cookies, local storage) is saved to `state_file` on close
    and loaded again on the next start, so a challenge solved once in a
    headed browser can be reused headless.
    """

    def __init__(self, state_file: Path | None = None, headless: bool = True, timeout: int = 60):
        self.state_file = state_file
        self.headless = headless
        self.timeout = timeout  # seconds
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    def _has_state(self) -> bool:
        return self.state_file is not None and self.state_file.exists()

    def _get_context(self) -> BrowserContext:
        """Get or create a browser context."""
        if self._context is None:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=["--disable-blink-features=AutomationControlled"],
            )
            self._context = self._browser.new_context(
                user_agent=USER_AGENT,
                storage_state=str(self.state_file) if self._has_state() else None,
            )
            # Hide webdriver property
            self._context.add_init_script(
                "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
            )
        return self._context

    def _get_page(self) -> Page:
        """Reuse one page for all navigation; challenge pages often block new tabs."""
        if self._page is None or self._page.is_closed():
            self._page = self._get_context().new_page()
        return self._page

    def get(self, url: str, encoding: str = DEFAULT_ENCODING) -> str:
        logger.debug("GET %s (browser)", url)
        page = self._get_page()
        resp = page.goto(url, wait_until="load", timeout=self.timeout * 1000)
        if resp is not None and resp.status == 404:
            raise NotFoundError(f"{url} not found", Msg.NOT_FOUND)
        if resp is not None and resp.status >= 400:
            raise TransportError(f"GET {url} returned HTTP {resp.status}", url=url, status_code=resp.status)
        return page.content()

    def post(self, url: str, data: FormData, encoding: str = DEFAULT_ENCODING) -> str:
        logger.debug("POST %s (browser)", url)
        resp = self._get_context().request.post(
            url,
            data=encode_form(data, encoding),
            headers={"Content-Type": FORM_CONTENT_TYPE},
            timeout=self.timeout * 1000,
        )
        if resp.status == 404:
            raise NotFoundError(f"{url} not found", Msg.NOT_FOUND)
        if not resp.ok:
            raise TransportError(f"POST {url} returned HTTP {resp.status}", url=url, status_code=resp.status)
        return resp.body().decode(encoding, errors="replace")

    def save_state(self) -> None:
        if self._context is not None and self.state_file is not None:
            self._context.storage_state(path=str(self.state_file))

    def close(self) -> None:
        """Save browser state and clean up resources."""
        self.save_state()
        if self._page is not None:
            self._page.close()
            self._page = None
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
