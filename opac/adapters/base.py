"""The contract every backend adapter implements."""

import logging
from abc import ABC, abstractmethod
from enum import IntFlag
from typing import Any, ClassVar, Iterable

from bs4 import BeautifulSoup

from opac import parsing
from opac.exceptions import AuthError, NoCriteriaError
from opac.i18n import Msg, StringProvider
from opac.models import Account, AccountData, DetailedItem, LentItem, Library, ReservedItem, SearchRequestResult
from opac.multistep import ActionType, MultiStepAction, MultiStepResult
from opac.searchfields import SearchField, SearchQuery, check_unique_keys, populated
from opac.session import DEFAULT_LANGUAGE, Session
from opac.transport import DEFAULT_ENCODING, FormData, HttpTransport, Transport

logger = logging.getLogger(__name__)


class SupportFlag(IntFlag):
    NONE = 0
    ENDLESS_SCROLLING = 1
    WARN_RESERVATION_FEES = 2
    ACCOUNT_RENEW_ALL = 4


class BackendAdapter(ABC):
    """One library backend behind the uniform contract.

    An instance owns one `Session` and must be used sequentially: paging,
    login and multi-step resumption all read and write session fields.
    Use separate instances for separate accounts or libraries.
    """

    api_name: ClassVar[str] = ""
    encoding: ClassVar[str] = DEFAULT_ENCODING
    support_flags: ClassVar[SupportFlag] = SupportFlag.NONE

    def __init__(
        self,
        library: Library,
        transport: Transport | None = None,
        strings: StringProvider | None = None,
        language: str | None = None,
    ):
        self.library = library
        self.transport = transport if transport is not None else HttpTransport()
        self.session = Session(language=language or DEFAULT_LANGUAGE)
        self._own_strings = strings is None
        self.strings = strings if strings is not None else StringProvider.for_language(self.session.language)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.transport.close()

    # -- transport helpers

    def _get(self, url: str) -> str:
        return self.transport.get(url, self.encoding)

    def _post(self, url: str, data: FormData) -> str:
        return self.transport.post(url, data, self.encoding)

    def _get_html(self, url: str) -> BeautifulSoup:
        return parsing.html(self._get(url))

    def _post_html(self, url: str, data: FormData) -> BeautifulSoup:
        return parsing.html(self._post(url, data))

    # -- search

    def search(self, query: Iterable[SearchQuery]) -> SearchRequestResult:
        """Run a new search and return its first page."""
        query = list(query)
        check_unique_keys(query)
        self._check_criteria(query)
        self.session.begin_search(query)
        logger.debug("%s: searching %s", self.library.ident, [(q.key, q.value) for q in populated(query)])
        return self._run_search(query, 1)

    def fetch_page(self, page: int) -> SearchRequestResult:
        """Fetch another page of the last search; page 1 repeats `search`."""
        return self._run_search(self.session.require_query(), page)

    def _check_criteria(self, query: list[SearchQuery]) -> None:
        if not populated(query):
            raise NoCriteriaError(self.strings.get(Msg.NO_CRITERIA_INPUT), Msg.NO_CRITERIA_INPUT)

    @abstractmethod
    def _run_search(self, query: list[SearchQuery], page: int) -> SearchRequestResult:
        """Request one page of results for `query`."""

    @abstractmethod
    def get_detail(self, id: str) -> DetailedItem:
        """Fetch the full record; raises NotFoundError if `id` no longer resolves."""

    @abstractmethod
    def list_search_fields(self) -> list[SearchField]:
        """Describe the fields this backend's search accepts."""

    # -- account

    @abstractmethod
    def login(self, account: Account) -> Any:
        """Authenticate, raising AuthError with the backend's message on failure."""

    def ensure_login(self, account: Account) -> Any:
        """Log in unless this session is already authenticated as `account`."""
        if self.session.is_authenticated_as(account.id):
            return None
        return self.login(account)

    @abstractmethod
    def fetch_account(self, account: Account) -> AccountData:
        """Lent items, reservations and fees, logging in as needed."""

    # -- multi-step actions

    def reserve(self, item: DetailedItem, account: Account, selection: str | None = None) -> MultiStepResult:
        return self._unsupported(ActionType.RESERVE)

    def renew(self, item: LentItem, account: Account, selection: str | None = None) -> MultiStepResult:
        """Renew a lent item; refused locally when it was listed as not renewable."""
        if item.renewal_token is None:
            return MultiStepResult.error(
                item.not_renewable_reason or self.strings.get(Msg.NOT_RENEWABLE), ActionType.RENEW
            )
        try:
            return self._renew(item.renewal_token, account, selection)
        except AuthError as e:
            return MultiStepResult.error(e.message, ActionType.RENEW)

    def _renew(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        return self._unsupported(ActionType.RENEW)

    def renew_all(self, account: Account, selection: str | None = None) -> MultiStepResult:
        return self._unsupported(ActionType.RENEW_ALL)

    def cancel(self, item: ReservedItem, account: Account, selection: str | None = None) -> MultiStepResult:
        if item.cancel_token is None:
            return MultiStepResult.error(self.strings.get(Msg.NOT_CANCELABLE), ActionType.CANCEL)
        try:
            return self._cancel(item.cancel_token, account, selection)
        except AuthError as e:
            return MultiStepResult.error(e.message, ActionType.CANCEL)

    def _cancel(self, token: str, account: Account, selection: str | None) -> MultiStepResult:
        return self._unsupported(ActionType.CANCEL)

    def _unsupported(self, action: ActionType) -> MultiStepResult:
        return MultiStepResult.unsupported(self.strings.get(Msg.UNSUPPORTED), action)

    def _error(self, action: ActionType, message: str | None = None) -> MultiStepResult:
        return MultiStepResult.error(message or self.strings.get(Msg.ERROR), action)

    def _action(self, action: ActionType, step) -> MultiStepAction:
        return MultiStepAction(action, step, generic_error=self.strings.get(Msg.ERROR))

    def start_reservation(self, item: DetailedItem, account: Account) -> MultiStepAction:
        return self._action(ActionType.RESERVE, lambda sel: self.reserve(item, account, sel))

    def start_renewal(self, item: LentItem, account: Account) -> MultiStepAction:
        return self._action(ActionType.RENEW, lambda sel: self.renew(item, account, sel))

    def start_renew_all(self, account: Account) -> MultiStepAction:
        return self._action(ActionType.RENEW_ALL, lambda sel: self.renew_all(account, sel))

    def start_cancellation(self, item: ReservedItem, account: Account) -> MultiStepAction:
        return self._action(ActionType.CANCEL, lambda sel: self.cancel(item, account, sel))

    # -- misc

    def share_url(self, id: str) -> str | None:
        return None

    def supported_languages(self) -> set[str] | None:
        """Languages the backend can switch to, or None if it has no switch."""
        return None

    def set_language(self, language: str) -> None:
        self.session.language = language
        self.session.started = False
        if self._own_strings:
            self.strings = StringProvider.for_language(language)
