from intentive.models.auth import (
    AuthorizationRequest,
    AuthSession,
    AuthState,
    IdentitySession,
    IdentityUser,
    PromptResult,
    ProviderTokens,
    SignInOutcome,
)
from intentive.models.event import CalendarEvent, EventCreate, EventRead, EventUpdate

__all__ = [
    "AuthorizationRequest",
    "AuthSession",
    "AuthState",
    "CalendarEvent",
    "EventCreate",
    "EventRead",
    "EventUpdate",
    "IdentitySession",
    "IdentityUser",
    "PromptResult",
    "ProviderTokens",
    "SignInOutcome",
]
