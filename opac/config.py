"""Library configuration files and credentials from the environment."""

import json
import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from opac.models import Account, Library
from opac.session import DEFAULT_LANGUAGE

ENV_PREFIX = "OPAC_"
BROWSER_STATE_FILE = Path.home() / ".opac_browser_state.json"


def load_library(path: Path | str) -> Library:
    """Load a library definition like {"api": "koha", "data": {"baseurl": ...}}.

    The identifier defaults to the file name without extension.
    """
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    data.setdefault("ident", path.stem)
    return Library.model_validate(data)


def _load_env() -> None:
    """Load a .env file from the working directory or its parents."""
    load_dotenv(find_dotenv(usecwd=True))


def _env(name: str) -> str | None:
    return os.getenv(ENV_PREFIX + name)


def account_from_env(library: Library, username: str | None = None, password: str | None = None) -> Account:
    """Build an account from arguments, falling back to OPAC_USERNAME / OPAC_PASSWORD."""
    _load_env()

    username = username or _env("USERNAME")
    password = password or _env("PASSWORD")

    if not username or not password:
        raise ValueError(f"{ENV_PREFIX}USERNAME and {ENV_PREFIX}PASSWORD must be set")

    return Account(id=f"{library.ident}:{username}", library=library.ident, username=username, password=password)


def language_from_env() -> str:
    _load_env()
    return _env("LANGUAGE") or DEFAULT_LANGUAGE


def headless_from_env() -> bool:
    _load_env()
    return (_env("HEADLESS") or "").lower() in ("1", "true", "yes")


def browser_state_from_env() -> Path:
    _load_env()
    value = _env("BROWSER_STATE")
    return Path(value) if value else BROWSER_STATE_FILE
