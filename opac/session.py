"""Per-adapter session state."""

from dataclasses import dataclass, field

from opac.exceptions import InternalStateError
from opac.i18n import Msg
from opac.searchfields import SearchQuery

DEFAULT_LANGUAGE = "en"


@dataclass
class Session:
    """Mutable state owned by exactly one adapter instance.

    A search stores its query (and, for backends that page by server-side
    result id, a cursor) so later page fetches can replay it. Authentication
    lives only as long as the instance; nothing here is persisted.
    """

    language: str = DEFAULT_LANGUAGE
    active_query: list[SearchQuery] | None = None
    pagination_cursor: str | None = None
    authenticated: bool = False
    account_id: str | None = None
    started: bool = False
    extras: dict[str, str] = field(default_factory=dict)

    def begin_search(self, query: list[SearchQuery]) -> None:
        self.active_query = list(query)
        self.pagination_cursor = None

    def require_query(self) -> list[SearchQuery]:
        if self.active_query is None:
            raise InternalStateError("fetch_page called before search", Msg.INTERNAL_ERROR)
        return self.active_query

    def mark_authenticated(self, account_id: str) -> None:
        self.authenticated = True
        self.account_id = account_id

    def is_authenticated_as(self, account_id: str) -> bool:
        return self.authenticated and self.account_id == account_id

    def invalidate(self) -> None:
        """Forget the login, forcing the next account operation to log in again."""
        self.authenticated = False
        self.account_id = None
        self.extras.clear()
