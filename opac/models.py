"""Pydantic models for canonical library catalog data."""

from datetime import date as Date
from enum import Enum
from html import escape
from typing import Any

from pydantic import BaseModel, Field, computed_field, model_validator


class MediaType(str, Enum):
    """Bounded set of media types a backend may report."""

    NONE = "none"
    BOOK = "book"
    CD = "cd"
    CD_SOFTWARE = "cd_software"
    CD_MUSIC = "cd_music"
    DVD = "dvd"
    MOVIE = "movie"
    AUDIOBOOK = "audiobook"
    PACKAGE = "package"
    GAME_CONSOLE = "game_console"
    EBOOK = "ebook"
    SCORE_MUSIC = "score_music"
    PACKAGE_BOOKS = "package_books"
    UNKNOWN = "unknown"
    NEWSPAPER = "newspaper"
    BOARDGAME = "boardgame"
    SCHOOL_VERSION = "school_version"
    MAP = "map"
    BLURAY = "bluray"
    AUDIO_CASSETTE = "audio_cassette"
    ART = "art"
    MAGAZINE = "magazine"
    GAME_CONSOLE_WII = "game_console_wii"
    GAME_CONSOLE_NINTENDO = "game_console_nintendo"
    GAME_CONSOLE_PLAYSTATION = "game_console_playstation"
    GAME_CONSOLE_XBOX = "game_console_xbox"
    LP_RECORD = "lp_record"
    MP3 = "mp3"
    URL = "url"
    EDOC = "edoc"
    EVIDEO = "evideo"
    EAUDIO = "eaudio"


class Availability(str, Enum):
    """Traffic-light availability of a search result.

    YELLOW means some copies are available and some are not. A field of this
    type is None when the backend does not report availability at all.
    """

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    UNKNOWN = "unknown"


class SearchResult(BaseModel):
    """A search result from the catalog."""

    id: str
    title: str = ""
    author: str | None = None
    summary: str | None = None
    media_type: MediaType | None = None
    cover_url: str | None = None
    availability: Availability | None = None

    @property
    def display_html(self) -> str:
        """HTML-safe three-line rendering used by list views."""
        return "<b>{}</b><br>{}<br>{}".format(
            escape(self.title), escape(self.author or ""), escape(self.summary or "")
        )


class SearchRequestResult(BaseModel):
    """One page of search results.

    `total_count` is what the backend reports for the whole query, so a page
    near the end may hold fewer results.
    """

    results: list[SearchResult] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1

    @model_validator(mode="after")
    def _unique_ids(self):
        seen = set()
        for result in self.results:
            if result.id in seen:
                raise ValueError(f"duplicate result id {result.id!r}")
            seen.add(result.id)
        return self


class Detail(BaseModel):
    """One labelled line on an item's detail page."""

    label: str
    value: str


class Copy(BaseModel):
    """One physical or electronic holding of an item."""

    branch: str | None = None
    department: str | None = None
    location: str | None = None
    shelfmark: str | None = None
    status: str | None = None
    return_date: Date | None = None
    reservations: str | None = None
    barcode: str | None = None
    url: str | None = None
    # Only set when this very copy can be reserved
    reservation_token: str | None = None

    @property
    def is_reservable(self) -> bool:
        return self.reservation_token is not None


class DetailedItem(BaseModel):
    """Full record of a catalog item, including its copies."""

    id: str
    title: str = ""
    cover_url: str | None = None
    media_type: MediaType | None = None
    details: list[Detail] = Field(default_factory=list)
    copies: list[Copy] = Field(default_factory=list)
    is_reservable: bool = False

    def add_detail(self, label: str, value: str) -> None:
        self.details.append(Detail(label=label, value=value))


class AccountItem(BaseModel):
    """Common fields of lent and reserved items."""

    item_id: str | None = None
    title: str | None = None
    author: str | None = None
    format: str | None = None
    branch: str | None = None
    status: str | None = None
    cover_url: str | None = None


class LentItem(AccountItem):
    """A checked out item."""

    due_date: Date | None = None
    barcode: str | None = None
    renewal_token: str | None = None
    not_renewable_reason: str | None = None

    @computed_field
    @property
    def is_renewable(self) -> bool:
        return self.renewal_token is not None


class ReservedItem(AccountItem):
    """A reservation (hold) on an item."""

    expiration_date: Date | None = None
    cancel_token: str | None = None
    ready: bool = False


class AccountData(BaseModel):
    """Everything shown on a user's account page."""

    account_id: str
    lent: list[LentItem] = Field(default_factory=list)
    reserved: list[ReservedItem] = Field(default_factory=list)
    pending_fees: str | None = None
    valid_until: Date | None = None
    # Non-fatal backend banner, e.g. "your card expires soon"
    warning: str | None = None


class Account(BaseModel):
    """Credentials of one library card."""

    id: str
    library: str
    username: str
    password: str = Field(repr=False)


class Library(BaseModel):
    """Configuration of one library and the backend it runs."""

    ident: str
    api: str
    city: str | None = None
    title: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def base_url(self) -> str:
        try:
            return str(self.data["baseurl"]).rstrip("/")
        except KeyError:
            raise ValueError(f"library {self.ident!r} has no baseurl configured") from None
