"""Backend adapters."""

from opac.adapters.base import BackendAdapter, SupportFlag
from opac.adapters.koha import Koha
from opac.adapters.netbiblio import NetBiblio
from opac.adapters.slub import SLUB

__all__ = ["BackendAdapter", "SupportFlag", "Koha", "NetBiblio", "SLUB"]
