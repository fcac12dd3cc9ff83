"""OPAC adapters - one contract for many library catalog backends."""

from opac.models import (
    Account,
    AccountData,
    Copy,
    DetailedItem,
    LentItem,
    Library,
    ReservedItem,
    SearchRequestResult,
    SearchResult,
)
from opac.multistep import MultiStepAction, MultiStepResult, MultiStepStatus
from opac.registry import create_adapter
from opac.searchfields import SearchField, SearchQuery

__all__ = [
    "Account",
    "AccountData",
    "Copy",
    "DetailedItem",
    "LentItem",
    "Library",
    "ReservedItem",
    "SearchRequestResult",
    "SearchResult",
    "MultiStepAction",
    "MultiStepResult",
    "MultiStepStatus",
    "SearchField",
    "SearchQuery",
    "create_adapter",
]
__version__ = "0.1.0"
