"""User-facing message keys and their translations.

Adapters only ever pick a `Msg` key; the text is resolved by a
`StringProvider` supplied by the calling application.
"""

from enum import Enum


class Msg(str, Enum):
    INTERNAL_ERROR = "internal_error"
    ERROR = "error"
    NO_CRITERIA_INPUT = "no_criteria_input"
    COMBINATION_NOT_SUPPORTED = "combination_not_supported"
    UNKNOWN_ERROR_ACCOUNT_WITH_DESCRIPTION = "unknown_error_account_with_description"
    NO_COPY_RESERVABLE = "no_copy_reservable"
    RESERVATION_READY = "reservation_ready"
    PROLONGED_ABBR = "prolonged_abbr"
    RESERVATIONS_NUMBER = "reservations_number"
    DESCRIPTION = "description"
    UNSUPPORTED = "unsupported"
    NOT_FOUND = "not_found"
    INVALID_SELECTION = "invalid_selection"
    NOT_RENEWABLE = "not_renewable"
    NOT_CANCELABLE = "not_cancelable"


ENGLISH = {
    Msg.INTERNAL_ERROR: "An internal error occurred.",
    Msg.ERROR: "An error occurred.",
    Msg.NO_CRITERIA_INPUT: "Please enter at least one search criterion.",
    Msg.COMBINATION_NOT_SUPPORTED: "This library does not support combining these search fields.",
    Msg.UNKNOWN_ERROR_ACCOUNT_WITH_DESCRIPTION: "Unknown error while loading account data: {}",
    Msg.NO_COPY_RESERVABLE: "No copy of this item can be reserved.",
    Msg.RESERVATION_READY: "ready for pickup",
    Msg.PROLONGED_ABBR: "renewed",
    Msg.RESERVATIONS_NUMBER: ("{} reservation", "{} reservations"),
    Msg.DESCRIPTION: "Description",
    Msg.UNSUPPORTED: "This library does not support this action.",
    Msg.NOT_FOUND: "The item could not be found.",
    Msg.INVALID_SELECTION: "The selected option is not available.",
    Msg.NOT_RENEWABLE: "This item cannot be renewed.",
    Msg.NOT_CANCELABLE: "This reservation cannot be cancelled.",
}

GERMAN = {
    Msg.INTERNAL_ERROR: "Ein interner Fehler ist aufgetreten.",
    Msg.ERROR: "Ein Fehler ist aufgetreten.",
    Msg.NO_CRITERIA_INPUT: "Bitte geben Sie mindestens ein Suchkriterium ein.",
    Msg.COMBINATION_NOT_SUPPORTED: "Diese Bibliothek unterstützt diese Kombination von Suchfeldern nicht.",
    Msg.UNKNOWN_ERROR_ACCOUNT_WITH_DESCRIPTION: "Unbekannter Fehler beim Laden der Kontodaten: {}",
    Msg.NO_COPY_RESERVABLE: "Kein Exemplar dieses Mediums ist vormerkbar.",
    Msg.RESERVATION_READY: "abholbereit",
    Msg.PROLONGED_ABBR: "verl.",
    Msg.RESERVATIONS_NUMBER: ("{} Vormerkung", "{} Vormerkungen"),
    Msg.DESCRIPTION: "Beschreibung",
    Msg.UNSUPPORTED: "Diese Bibliothek unterstützt diese Aktion nicht.",
    Msg.NOT_FOUND: "Das Medium wurde nicht gefunden.",
    Msg.INVALID_SELECTION: "Die gewählte Option ist nicht verfügbar.",
    Msg.NOT_RENEWABLE: "Dieses Medium kann nicht verlängert werden.",
    Msg.NOT_CANCELABLE: "Diese Vormerkung kann nicht storniert werden.",
}

TABLES = {"en": ENGLISH, "de": GERMAN}


class StringProvider:
    """Resolves message keys against a translation table, falling back to English."""

    def __init__(self, table: dict | None = None):
        self.table = table if table is not None else ENGLISH

    @classmethod
    def for_language(cls, language: str | None) -> "StringProvider":
        return cls(TABLES.get((language or "en").split("-")[0].lower(), ENGLISH))

    def _lookup(self, key: Msg):
        return self.table.get(key, ENGLISH[key])

    def get(self, key: Msg, *args) -> str:
        text = self._lookup(key)
        if isinstance(text, tuple):
            text = text[-1]
        return text.format(*args) if args else text

    def quantity(self, key: Msg, count: int, *args) -> str:
        """Pick the singular or plural form for `count`."""
        forms = self._lookup(key)
        if not isinstance(forms, tuple):
            return forms.format(*(args or (count,)))
        text = forms[0] if count == 1 else forms[-1]
        return text.format(*(args or (count,)))
