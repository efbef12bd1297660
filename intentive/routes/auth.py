"""Authentication routes: Google sign-in, callback, sign-out and status."""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse

from intentive.auth.manager import AuthSessionManager
from intentive.auth.prompt import RedirectPrompt
from intentive.core.errors import (
    AlreadyInProgress,
    ConfigurationError,
    IdentitySignInError,
    SignOutError,
    TokenExchangeError,
)
from intentive.core.services import get_auth_manager, get_redirect_prompt
from intentive.models import SignInOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _log_sign_in_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.info("Interactive sign-in abandoned")
    elif task.exception() is not None:
        logger.error(f"Interactive sign-in failed: {task.exception()}")
    else:
        logger.info(f"Interactive sign-in prompt finished: {task.result().value}")


@router.get("/status")
async def auth_status(auth: AuthSessionManager = Depends(get_auth_manager)):
    """
    Report the current session and sign-in state.

    ``auth_in_progress`` is true while a consent prompt or code exchange
    is running; ``is_ready`` is true once an authorization request exists.
    """
    session = auth.session
    return {
        "authenticated": session is not None,
        "user_id": session.user_id if session else None,
        "email": session.email if session else None,
        "state": auth.state.value,
        "auth_in_progress": auth.auth_in_progress,
        "is_ready": auth.is_ready,
    }


@router.get("/login")
async def login(
    auth: AuthSessionManager = Depends(get_auth_manager),
    prompt: RedirectPrompt = Depends(get_redirect_prompt),
):
    """
    Start Google sign-in.

    Reserves the attempt before the prompt task starts, parks it until
    the provider redirects back to ``/auth/callback``, and sends the
    browser to Google's consent screen. Returns 409 if a sign-in is already busy.
    """
    try:
        request = auth.begin_interactive_sign_in()
    except AlreadyInProgress:
        raise HTTPException(status_code=409, detail="Sign-in already in progress")
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    def _finish(task: asyncio.Task) -> None:
        # A task cancelled before it ran never reached the prompt's own cleanup
        if task.cancelled():
            auth.abandon_sign_in(request)
        _log_sign_in_outcome(task)

    task = asyncio.create_task(auth.prompt_sign_in(request, prompt))
    task.add_done_callback(_finish)
    return RedirectResponse(request.url, status_code=303)


@router.get("/callback")
async def callback(
    request: Request,
    auth: AuthSessionManager = Depends(get_auth_manager),
    prompt: RedirectPrompt = Depends(get_redirect_prompt),
):
    """
    Receive the provider redirect and complete sign-in.

    Duplicate deliveries of the same authorization code (browser refresh,
    double redirect) are answered from the existing session without a
    second token exchange. Sign-in failures return 401 with the reason.
    """
    result = prompt.deliver(request.query_params)
    try:
        outcome = await auth.handle_prompt_result(result)
    except (TokenExchangeError, IdentitySignInError) as e:
        raise HTTPException(status_code=401, detail=str(e))

    if outcome is SignInOutcome.ERROR:
        raise HTTPException(status_code=401, detail=result.error or "Sign-in failed")
    if outcome is SignInOutcome.CANCELLED:
        return {"authenticated": False, "outcome": outcome.value}

    session = auth.session
    return {
        "authenticated": session is not None,
        "outcome": outcome.value,
        "user_id": session.user_id if session else None,
    }


@router.post("/logout")
async def logout(auth: AuthSessionManager = Depends(get_auth_manager)):
    """
    Sign out.

    The local session is cleared even when the identity service rejects
    the sign-out; that case is reported as 502.
    """
    try:
        await auth.sign_out()
    except SignOutError as e:
        raise HTTPException(status_code=502, detail=f"Sign-out not confirmed: {e}")
    return Response(status_code=204)
