"""Build OAuth2 Authorization Code + PKCE requests for Google sign-in."""
import logging
from urllib.parse import parse_qs, urlparse

from google_auth_oauthlib.flow import Flow

from intentive.core.config import Settings
from intentive.core.errors import ConfigurationError
from intentive.models import AuthorizationRequest

logger = logging.getLogger(__name__)

# Identity scopes for the backend sign-in, calendar scopes for sync
SCOPES = [
    "openid",
    "profile",
    "email",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


def build_authorization_request(settings: Settings) -> AuthorizationRequest:
    """
    Build a fresh PKCE authorization request.

    The app is a public client: there is no client secret, so a random code
    verifier is generated per request and only its S256 challenge is sent
    to the authorization endpoint. ``prompt=consent`` with
    ``access_type=offline`` makes Google issue a refresh token on every
    sign-in, not only the first.

    Raises:
        ConfigurationError: client id or redirect URI is not configured.
    """
    if not settings.google_client_id:
        raise ConfigurationError("GOOGLE_CLIENT_ID is required")
    if not settings.google_redirect_uri:
        raise ConfigurationError("GOOGLE_REDIRECT_URI is required")

    client_config = {
        "installed": {
            "client_id": settings.google_client_id,
            "auth_uri": settings.google_authorization_endpoint,
            "token_uri": settings.google_token_endpoint,
            "redirect_uris": [settings.google_redirect_uri],
        }
    }
    flow = Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        redirect_uri=settings.google_redirect_uri,
        autogenerate_code_verifier=True,
    )
    url, state = flow.authorization_url(access_type="offline", prompt="consent")

    query = parse_qs(urlparse(url).query)
    logger.debug(f"Built authorization request (state={state})")
    return AuthorizationRequest(
        url=url,
        state=state,
        code_verifier=flow.code_verifier,
        code_challenge=query["code_challenge"][0],
        redirect_uri=settings.google_redirect_uri,
        scopes=tuple(SCOPES),
    )
