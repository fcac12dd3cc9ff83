"""Backend-agnostic description of search input."""

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field

from opac.exceptions import ValidationError


class FieldKind(str, Enum):
    TEXT = "text"
    DROPDOWN = "dropdown"
    CHECKBOX = "checkbox"


class Meaning(str, Enum):
    """What a field means, used by callers to order and label fields."""

    FREE = "free"
    TITLE = "title"
    AUTHOR = "author"
    DIGITAL = "digital"
    AVAILABLE = "available"
    ISBN = "isbn"
    BARCODE = "barcode"
    YEAR = "year"
    BRANCH = "branch"
    HOME_BRANCH = "home_branch"
    CATEGORY = "category"
    PUBLISHER = "publisher"
    KEYWORD = "keyword"
    SYSTEM = "system"
    AUDIENCE = "audience"
    LOCATION = "location"
    ORDER = "order"


class DropdownOption(BaseModel):
    key: str
    value: str


class SearchField(BaseModel):
    """A field accepted by a backend's search form.

    `data` is private to the adapter that produced the field: it stores
    whatever the adapter needs to encode a query against this field later
    (e.g. the real form parameter name).
    """

    id: str
    display_name: str
    kind: FieldKind = FieldKind.TEXT
    advanced: bool = False
    visible: bool = True
    meaning: Meaning | None = None
    hint: str | None = None
    half_width: bool = False
    free_search: bool = False
    dropdown_values: list[DropdownOption] = Field(default_factory=list)
    data: dict[str, str] = Field(default_factory=dict)


def text_field(id: str, display_name: str, **kwargs) -> SearchField:
    return SearchField(id=id, display_name=display_name, kind=FieldKind.TEXT, **kwargs)


def dropdown_field(
    id: str, display_name: str, options: Iterable[tuple[str, str]], **kwargs
) -> SearchField:
    return SearchField(
        id=id,
        display_name=display_name,
        kind=FieldKind.DROPDOWN,
        dropdown_values=[DropdownOption(key=k, value=v) for k, v in options],
        **kwargs,
    )


def checkbox_field(id: str, display_name: str, **kwargs) -> SearchField:
    return SearchField(id=id, display_name=display_name, kind=FieldKind.CHECKBOX, **kwargs)


TRUE_VALUES = ("1", "true", "yes", "on")


class SearchQuery(BaseModel):
    """A value entered for one search field."""

    field: SearchField
    value: str = ""

    @property
    def key(self) -> str:
        return self.field.id

    @property
    def kind(self) -> FieldKind:
        return self.field.kind

    @property
    def checked(self) -> bool:
        return self.value.strip().lower() in TRUE_VALUES

    @property
    def is_blank(self) -> bool:
        if self.kind is FieldKind.CHECKBOX:
            return not self.checked
        return not self.value.strip()


def check_unique_keys(queries: Iterable[SearchQuery]) -> None:
    """Raise if two queries submitted together target the same field."""
    seen = set()
    for q in queries:
        if q.key in seen:
            raise ValidationError(f"search field {q.key!r} given more than once")
        seen.add(q.key)


def populated(queries: Iterable[SearchQuery]) -> list[SearchQuery]:
    """Drop blank queries; blank fields are ignored, not errors."""
    return [q for q in queries if not q.is_blank]
