"""In-memory types for the sign-in flow and the authenticated session.

Nothing here is persisted: a session lives as long as the process (or
until sign-out), and authorization attempts are discarded once processed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal


class AuthState(str, Enum):
    """Where an AuthSessionManager is in the sign-in lifecycle."""
    IDLE = "idle"
    REQUEST_BUILT = "request_built"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    SIGNED_IN = "signed_in"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERRORED = "errored"


class SignInOutcome(str, Enum):
    """Result of an interactive sign-in prompt."""
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class AuthorizationRequest:
    """A PKCE authorization request, ready to open in the system browser.

    Attributes:
        url: Full authorization endpoint URL including all query params.
        state: Opaque value echoed back on the redirect.
        code_verifier: Secret bound 1:1 to this request; only its S256
            challenge leaves the process before the token exchange.
        code_challenge: base64url(SHA-256(code_verifier)) without padding.
        redirect_uri: Where the provider sends the user back.
        scopes: Requested OAuth scopes.
    """
    url: str
    state: str
    code_verifier: str
    code_challenge: str
    redirect_uri: str
    scopes: tuple[str, ...]


@dataclass(frozen=True)
class PromptResult:
    """What the interactive consent UI reported back."""
    type: Literal["success", "cancel", "dismiss", "error"]
    params: dict[str, str] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class ProviderTokens:
    """Tokens returned by the identity provider's token endpoint."""
    id_token: str
    access_token: str | None
    refresh_token: str | None
    expires_at: datetime


@dataclass(frozen=True)
class IdentityUser:
    """User record from the backend identity service."""
    id: str
    email: str | None = None


@dataclass(frozen=True)
class IdentitySession:
    """Session issued by the backend identity service."""
    user: IdentityUser | None
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None


@dataclass(frozen=True)
class AuthSession:
    """The one current authenticated identity binding.

    A new sign-in replaces the whole object; fields are never merged from
    a previous session.

    Attributes:
        user_id: Stable user id from the backend identity service.
        email: User email, if the identity service returned one.
        bearer_token: Short-lived credential for backend calls.
        bearer_expires_at: When ``bearer_token`` stops being accepted.
        provider_access_token: Identity provider access token.
        provider_refresh_token: Identity provider refresh token.
        provider_token_expiry: Absolute expiry of the provider access token.
    """
    user_id: str
    email: str | None
    bearer_token: str
    bearer_expires_at: datetime | None
    provider_access_token: str | None
    provider_refresh_token: str | None
    provider_token_expiry: datetime | None
