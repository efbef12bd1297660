"""Error types shared by the auth and sync layers."""


class IntentiveError(Exception):
    """Base class for application errors."""


class ConfigurationError(IntentiveError):
    """Required provider configuration is missing. Fatal at startup."""


class AlreadyInProgress(IntentiveError):
    """An interactive sign-in is already running."""


class TokenExchangeError(IntentiveError):
    """The authorization code could not be exchanged for provider tokens."""


class IdentitySignInError(IntentiveError):
    """The backend identity service rejected the provider identity token."""


class SignOutError(IntentiveError):
    """The backend identity service refused to invalidate the session."""


class FetchError(IntentiveError):
    """Events could not be read from the store."""


class PersistError(IntentiveError):
    """Events could not be written to the store."""


class NotFoundOrForbidden(IntentiveError):
    """No event with that id is owned by the caller.

    Raised the same way whether the row is missing or belongs to someone
    else, so callers cannot discover other users' events.
    """


class IdentityServiceError(IntentiveError):
    """HTTP failure talking to the backend identity service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SyncProxyError(IntentiveError):
    """HTTP failure talking to the backend sync proxy."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
