"""Tests for the adapter registry and configuration loading."""

import json

import pytest

from opac.adapters.base import BackendAdapter, SupportFlag
from opac.adapters.koha import Koha
from opac.adapters.netbiblio import NetBiblio
from opac.config import account_from_env, headless_from_env, language_from_env, load_library
from opac.exceptions import UnsupportedError
from opac.i18n import Msg, StringProvider
from opac.models import Library
from opac.registry import ADAPTERS, create_adapter, get_adapter_class, register_adapter


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep a developer's .env and OPAC_* variables out of these tests."""
    monkeypatch.chdir(tmp_path)
    for name in ("USERNAME", "PASSWORD", "LANGUAGE", "HEADLESS", "BROWSER_STATE"):
        # set first so teardown also removes values loaded from .env files
        monkeypatch.setenv(f"OPAC_{name}", "")
        monkeypatch.delenv(f"OPAC_{name}")


class TestRegistry:
    def test_builtin_adapters(self):
        assert get_adapter_class("koha") is Koha
        assert get_adapter_class("NetBiblio") is NetBiblio

    def test_unknown_api(self):
        with pytest.raises(UnsupportedError):
            get_adapter_class("bibliotheca")

    def test_instances_have_separate_sessions(self, koha_library, transport):
        first = create_adapter(koha_library, transport)
        second = create_adapter(koha_library, transport)
        first.session.mark_authenticated("a")
        assert not second.session.authenticated

    def test_language_selects_strings(self, koha_library, transport):
        adapter = create_adapter(koha_library, transport, language="de")
        assert adapter.session.language == "de"
        assert adapter.strings.get(Msg.ERROR) == "Ein Fehler ist aufgetreten."

    def test_set_language_switches_strings(self, koha_library, transport):
        adapter = create_adapter(koha_library, transport)
        adapter.set_language("de")
        assert adapter.strings.get(Msg.ERROR) == "Ein Fehler ist aufgetreten."
        assert adapter.start_renew_all(None).generic_error == "Ein Fehler ist aufgetreten."

    def test_set_language_keeps_injected_strings(self, koha_library, transport):
        strings = StringProvider.for_language("en")
        adapter = create_adapter(koha_library, transport, strings=strings)
        adapter.set_language("de")
        assert adapter.strings is strings

    def test_register_custom_adapter(self, monkeypatch, transport):
        monkeypatch.setattr("opac.registry.ADAPTERS", dict(ADAPTERS))

        class Custom(Koha):
            api_name = "custom"

        register_adapter(Custom)

        adapter = create_adapter(Library(ident="c", api="custom", data={"baseurl": "https://c"}), transport)
        assert isinstance(adapter, Custom)

    def test_support_flags(self):
        assert SupportFlag.ACCOUNT_RENEW_ALL in NetBiblio.support_flags
        assert SupportFlag.ACCOUNT_RENEW_ALL not in Koha.support_flags
        assert BackendAdapter.support_flags == SupportFlag.NONE

    def test_context_manager_closes_transport(self, koha_library, transport):
        with create_adapter(koha_library, transport):
            pass
        assert transport.closed


class TestConfig:
    def test_load_library(self, tmp_path):
        path = tmp_path / "Testville_Public.json"
        path.write_text(json.dumps({"api": "koha", "city": "Testville", "data": {"baseurl": "https://lib"}}))

        library = load_library(path)

        assert library.ident == "Testville_Public"
        assert library.base_url == "https://lib"

    def test_account_from_env(self, monkeypatch, koha_library):
        monkeypatch.setenv("OPAC_USERNAME", "reader")
        monkeypatch.setenv("OPAC_PASSWORD", "secret")

        account = account_from_env(koha_library)

        assert account.id == "koha-test:reader"
        assert account.password == "secret"

    def test_missing_credentials(self, koha_library):
        with pytest.raises(ValueError, match="OPAC_USERNAME"):
            account_from_env(koha_library)

    def test_dotenv_file(self, tmp_path, koha_library):
        (tmp_path / ".env").write_text("OPAC_USERNAME=fromfile\nOPAC_PASSWORD=pw\n")
        assert account_from_env(koha_library).username == "fromfile"

    def test_language_and_headless(self, monkeypatch):
        assert language_from_env() == "en"
        assert headless_from_env() is False
        monkeypatch.setenv("OPAC_LANGUAGE", "de")
        monkeypatch.setenv("OPAC_HEADLESS", "yes")
        assert language_from_env() == "de"
        assert headless_from_env() is True
