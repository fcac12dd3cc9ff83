"""Exception types raised by OPAC adapters."""

from opac.i18n import Msg


class OpacError(Exception):
    """Base class for all adapter errors.

    Carries a human-readable message and, where the adapter selected one,
    the string key it was resolved from.
    """

    def __init__(self, message: str, key: Msg | None = None):
        self.message = message
        self.key = key
        super().__init__(message)


class ValidationError(OpacError):
    """The caller's input is empty or insufficient."""


class NoCriteriaError(ValidationError):
    """A search was submitted without any populated field."""


class CombinationNotSupportedError(ValidationError):
    """The backend cannot combine the submitted search fields."""


class InvalidSelectionError(ValidationError):
    """A multi-step action was resumed with a key that was never offered."""


class AuthError(OpacError):
    """Credentials were rejected or the backend reported an account alert."""


class InternalStateError(OpacError):
    """An operation was invoked out of its required sequence."""


class NotFoundError(OpacError):
    """The requested id no longer resolves."""


class UnsupportedError(OpacError):
    """The backend does not offer this capability at all."""


class BackendProtocolError(OpacError):
    """The backend answered in a shape we cannot interpret."""


class TransportError(OpacError):
    """The network request itself failed."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)
