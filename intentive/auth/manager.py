"""Google sign-in and backend session lifecycle.

Sign-in is OAuth2 Authorization Code with PKCE, exchanged directly
against Google's token endpoint (no backend involvement and no client
secret). The resulting Google ID token signs the user into the backend
identity service, and the Google access/refresh tokens are handed to the
backend sync proxy for calendar sync.

State machine::

    IDLE -> REQUEST_BUILT -> AWAITING_REDIRECT (busy)
    AWAITING_REDIRECT -> CANCELLED | ERRORED               (busy cleared)
    AWAITING_REDIRECT -> EXCHANGING (busy) -> SIGNED_IN | FAILED
    SIGNED_IN -> IDLE                                      (sign-out)

An authorization code is exchanged at most once per manager; delivering
the same code again is a silent no-op.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import httpx

from intentive.auth.identity import IdentityClient, ListenerHandle
from intentive.auth.pkce import build_authorization_request
from intentive.auth.replay import ProcessedCodes
from intentive.calendar.proxy import SyncProxyClient
from intentive.core.config import Settings
from intentive.core.errors import (
    AlreadyInProgress,
    IdentityServiceError,
    IdentitySignInError,
    SignOutError,
    SyncProxyError,
    TokenExchangeError,
)
from intentive.models import (
    AuthorizationRequest,
    AuthSession,
    AuthState,
    IdentitySession,
    PromptResult,
    ProviderTokens,
    SignInOutcome,
)

logger = logging.getLogger(__name__)

Prompt = Callable[[str], Awaitable[PromptResult]]
SessionListener = Callable[[AuthSession | None], None]


class AuthSessionManager:
    """Owns the sign-in flow and the single current AuthSession."""

    def __init__(
        self,
        settings: Settings,
        identity: IdentityClient,
        sync_proxy: SyncProxyClient,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.identity = identity
        self.sync_proxy = sync_proxy
        self._transport = transport
        self._processed = ProcessedCodes(settings.processed_codes_limit)
        self._request: AuthorizationRequest | None = None
        self._request_prompted = False
        self._session: AuthSession | None = None
        self._state = AuthState.IDLE
        self._busy = False
        self._listeners: list[SessionListener] = []
        self._identity_handle = identity.on_auth_state_change(self._on_identity_change)

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def is_ready(self) -> bool:
        """True once an authorization request exists and can be opened."""
        return self._request is not None

    @property
    def auth_in_progress(self) -> bool:
        return self._busy

    @property
    def authorization_request(self) -> AuthorizationRequest | None:
        return self._request

    def on_session_change(self, callback: SessionListener) -> ListenerHandle:
        """Register ``callback`` for sign-in (new session) and teardown (None)."""
        self._listeners.append(callback)
        return ListenerHandle(self._listeners, callback)

    def build_authorization_request(self) -> AuthorizationRequest:
        """Build a new PKCE request, replacing any previous one.

        Raises:
            ConfigurationError: provider client configuration is missing.
        """
        request = build_authorization_request(self.settings)
        self._request = request
        self._request_prompted = False
        if not self._busy and self._state is not AuthState.SIGNED_IN:
            self._state = AuthState.REQUEST_BUILT
        return request

    def begin_interactive_sign_in(self) -> AuthorizationRequest:
        """
        Reserve the busy flag and return the request to open.

        Callers that prompt from a background task reserve first, so a
        second caller is turned away before it can replace the request.

        Raises:
            AlreadyInProgress: another sign-in is still busy.
            ConfigurationError: a fresh request was needed and could not be built.
        """
        if self._busy:
            raise AlreadyInProgress("Sign-in already in progress")
        if self._request is None or self._request_prompted:
            self.build_authorization_request()
        request = self._request
        self._request_prompted = True
        self._busy = True
        self._state = AuthState.AWAITING_REDIRECT
        return request

    def abandon_sign_in(self, request: AuthorizationRequest) -> None:
        """Release a reserved attempt whose prompt never ran."""
        self._release_attempt(request, AuthState.CANCELLED)

    async def start_interactive_sign_in(self, prompt: Prompt) -> SignInOutcome:
        """
        Open the consent UI and wait for the user's decision.

        A ``SUCCESS`` outcome leaves the busy flag set: the redirect path
        (``handle_prompt_result`` / ``handle_redirect_callback``) completes
        the sign-in and clears it. Cancellation and errors clear it here.

        Raises:
            AlreadyInProgress: another sign-in is still busy.
            ConfigurationError: a fresh request was needed and could not be built.
        """
        request = self.begin_interactive_sign_in()
        return await self.prompt_sign_in(request, prompt)

    async def prompt_sign_in(self, request: AuthorizationRequest, prompt: Prompt) -> SignInOutcome:
        """Run ``prompt`` for a request reserved by ``begin_interactive_sign_in``."""
        try:
            result = await prompt(request.url)
        except asyncio.CancelledError:
            self._release_attempt(request, AuthState.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"Sign-in prompt failed: {e}")
            self._release_attempt(request, AuthState.ERRORED)
            raise

        if result.type == "success":
            return SignInOutcome.SUCCESS
        if result.type == "error":
            logger.warning(f"Sign-in prompt returned an error: {result.error}")
            self._release_attempt(request, AuthState.ERRORED)
            return SignInOutcome.ERROR
        logger.info("Sign-in cancelled by user")
        self._release_attempt(request, AuthState.CANCELLED)
        return SignInOutcome.CANCELLED

    async def handle_prompt_result(self, result: PromptResult) -> SignInOutcome:
        """
        Redirect listener: route a provider response into the exchange path.

        Raises:
            TokenExchangeError: the response does not belong to the pending
                request, or the exchange failed.
            IdentitySignInError: the backend rejected the identity token.
        """
        request = self._request
        if result.type == "success":
            code = result.params.get("code", "")
            if code in self._processed:
                logger.debug("Ignoring replayed authorization response")
                return SignInOutcome.SUCCESS
            if request is None or result.params.get("state") != request.state:
                logger.warning("Authorization response state does not match the pending request")
                if request is not None:
                    self._release_attempt(request, AuthState.ERRORED)
                raise TokenExchangeError("Sign-in response did not match the pending request")
            await self.handle_redirect_callback(code, request.code_verifier)
            return SignInOutcome.SUCCESS

        if request is not None:
            if result.type == "error":
                self._release_attempt(request, AuthState.ERRORED)
            else:
                self._release_attempt(request, AuthState.CANCELLED)
        return SignInOutcome.ERROR if result.type == "error" else SignInOutcome.CANCELLED

    async def handle_redirect_callback(self, code: str, code_verifier: str) -> None:
        """
        Exchange an authorization code and establish the session.

        Steps:
            1. Exchange code + verifier at Google's token endpoint.
            2. Sign in to the backend identity service with the ID token.
            3. Forward Google tokens to the sync proxy (failure is logged
               only; calendar sync degrades, sign-in still succeeds).

        A code that was already processed returns immediately without any
        network call or state change.

        Raises:
            TokenExchangeError: token endpoint failed or returned no ID token.
            IdentitySignInError: backend sign-in failed or returned no user.
        """
        if not self._processed.add_if_absent(code):
            logger.info("Authorization code already processed, ignoring replay")
            return

        self._busy = True
        self._state = AuthState.EXCHANGING
        try:
            tokens = await self._exchange_code(code, code_verifier)
            identity_session = await self._sign_in_identity(tokens.id_token)
            session = AuthSession(
                user_id=identity_session.user.id,
                email=identity_session.user.email,
                bearer_token=identity_session.access_token,
                bearer_expires_at=identity_session.expires_at,
                provider_access_token=tokens.access_token,
                provider_refresh_token=tokens.refresh_token,
                provider_token_expiry=tokens.expires_at,
            )
            self._set_session(session)
            await self._store_provider_tokens(session)
            self._state = AuthState.SIGNED_IN
            logger.info(f"Signed in with Google as user {session.user_id}")
        except Exception as e:
            self._state = AuthState.SIGNED_IN if self._session else AuthState.FAILED
            logger.error(f"Google sign-in error: {e}")
            raise
        finally:
            self._busy = False

    async def sign_out(self) -> None:
        """
        Invalidate the backend session.

        The local session is torn down whether or not the identity service
        accepts the sign-out.

        Raises:
            SignOutError: the identity service rejected the invalidation.
        """
        try:
            await self.identity.sign_out()
        except IdentityServiceError as e:
            logger.error(f"Sign-out failed: {e}")
            raise SignOutError(str(e)) from e
        finally:
            self._end_session()

    def close(self) -> None:
        self._identity_handle.close()

    async def _exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        data = {
            "client_id": self.settings.google_client_id,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": self.settings.google_redirect_uri,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.settings.google_token_endpoint, data=data)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token request failed: {e}") from e

        if not response.is_success:
            logger.error(f"Token exchange error: {response.text}")
            raise TokenExchangeError("Failed to exchange code for tokens")
        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError("Token endpoint returned invalid JSON") from e

        id_token = payload.get("id_token")
        if not id_token:
            raise TokenExchangeError("No ID token received from Google")
        expires_in = payload.get("expires_in") or self.settings.default_token_lifetime_seconds
        return ProviderTokens(
            id_token=id_token,
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            expires_at=datetime.now(UTC) + timedelta(seconds=int(expires_in)),
        )

    async def _sign_in_identity(self, id_token: str) -> IdentitySession:
        try:
            identity_session = await self.identity.sign_in_with_id_token("google", id_token)
        except IdentityServiceError as e:
            raise IdentitySignInError(str(e)) from e
        return identity_session

    async def _store_provider_tokens(self, session: AuthSession) -> None:
        try:
            await self.sync_proxy.store_tokens(
                session.bearer_token,
                session.user_id,
                session.provider_access_token,
                session.provider_refresh_token,
                session.provider_token_expiry,
            )
        except SyncProxyError as e:
            logger.error(f"Failed to store Google tokens for calendar sync: {e}")

    def _release_attempt(self, request: AuthorizationRequest, state: AuthState) -> None:
        # Only the attempt still waiting on its redirect may be released
        if self._request is request and self._state is AuthState.AWAITING_REDIRECT:
            self._busy = False
            self._state = state

    def _set_session(self, session: AuthSession) -> None:
        self._session = session
        self._notify(session)

    def _end_session(self) -> None:
        if self._session is None and self._state is not AuthState.SIGNED_IN:
            return
        user_id = self._session.user_id if self._session else None
        self._session = None
        self._state = AuthState.IDLE
        logger.info(f"Session ended for user {user_id}")
        self._notify(None)

    def _notify(self, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    def _on_identity_change(self, event: str, identity_session: IdentitySession | None) -> None:
        if event == "TOKEN_REFRESHED" and self._session and identity_session:
            if identity_session.user and identity_session.user.id != self._session.user_id:
                logger.warning("Ignoring token refresh for a different identity")
                return
            self._session = replace(
                self._session,
                bearer_token=identity_session.access_token,
                bearer_expires_at=identity_session.expires_at,
            )
        elif event == "SIGNED_OUT":
            self._end_session()
