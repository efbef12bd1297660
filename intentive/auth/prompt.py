"""Interactive consent prompt bridged over the browser redirect.

In the web deployment the "prompt" is a round trip through the user's
browser: ``/auth/login`` sends the browser to Google, and Google sends it
back to ``/auth/callback``. ``RedirectPrompt`` parks the sign-in attempt
on a future keyed by the request ``state`` until the callback delivers
the result.
"""
import asyncio
import logging
from collections.abc import Mapping
from urllib.parse import parse_qs, urlparse

from intentive.models import PromptResult

logger = logging.getLogger(__name__)


def result_from_params(params: Mapping[str, str]) -> PromptResult:
    """Interpret redirect query parameters as a prompt result."""
    params = dict(params)
    if params.get("code"):
        return PromptResult(type="success", params=params)
    error = params.get("error")
    if error == "access_denied":
        return PromptResult(type="cancel", params=params, error=error)
    return PromptResult(
        type="error",
        params=params,
        error=params.get("error_description") or error or "Missing authorization code",
    )


class RedirectPrompt:
    """Prompt callable whose result arrives through ``deliver``."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    async def __call__(self, url: str) -> PromptResult:
        state = parse_qs(urlparse(url).query).get("state", [""])[0]
        future = asyncio.get_running_loop().create_future()
        self._pending[state] = future
        try:
            return await asyncio.wait_for(future, self.timeout)
        except TimeoutError:
            logger.info("No redirect received before the sign-in timeout")
            return PromptResult(type="dismiss")
        finally:
            self._pending.pop(state, None)

    def deliver(self, params: Mapping[str, str]) -> PromptResult:
        """Resolve the waiting prompt (if any) and return the parsed result."""
        result = result_from_params(params)
        future = self._pending.get(params.get("state", ""))
        if future is not None and not future.done():
            future.get_loop().call_soon_threadsafe(_resolve, future, result)
        return result

    @property
    def waiting(self) -> int:
        return len(self._pending)


def _resolve(future: asyncio.Future, result: PromptResult) -> None:
    if not future.done():
        future.set_result(result)
