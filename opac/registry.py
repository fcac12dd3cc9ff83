"""Adapter registry: maps a library's "api" name to its adapter class."""

from opac.adapters.base import BackendAdapter
from opac.adapters.koha import Koha
from opac.adapters.netbiblio import NetBiblio
from opac.adapters.slub import SLUB
from opac.exceptions import UnsupportedError
from opac.i18n import StringProvider
from opac.models import Library
from opac.transport import Transport

# Built-in adapters
ADAPTERS: dict[str, type[BackendAdapter]] = {
    Koha.api_name: Koha,
    NetBiblio.api_name: NetBiblio,
    SLUB.api_name: SLUB,
}


def register_adapter(cls: type[BackendAdapter]) -> None:
    """Register a custom adapter at runtime, replacing one of the same name."""
    ADAPTERS[cls.api_name] = cls


def get_adapter_class(api: str) -> type[BackendAdapter]:
    try:
        return ADAPTERS[api.lower()]
    except KeyError:
        raise UnsupportedError(f"no adapter for api {api!r}") from None


def create_adapter(
    library: Library,
    transport: Transport | None = None,
    strings: StringProvider | None = None,
    language: str | None = None,
) -> BackendAdapter:
    """Instantiate the adapter for `library`; each call gets its own session."""
    return get_adapter_class(library.api)(library, transport, strings, language)
