"""Pending Spotify authorizations, keyed by OAuth state token.

The credential manager registers a state before DMing the authorization
link; the callback server resolves or rejects it when Spotify redirects
back. All access happens on the bot's event loop, so each operation is a
plain dict mutation with no await in between: a state is created once and
consumed exactly once, whichever of callback or deadline comes first.
"""

import asyncio
import logging
from dataclasses import dataclass

from moshpit.core.exceptions import AuthFailure, AuthFailureReason

logger = logging.getLogger(__name__)


@dataclass
class PendingAuthorization:
    state: str
    future: asyncio.Future[str]
    deadline: float


class AuthorizationRegistry:
    """Process-wide table of authorizations awaiting their callback."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingAuthorization] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def __contains__(self, state: str) -> bool:
        return state in self._pending

    def register(self, state: str, timeout: float) -> PendingAuthorization:
        """Create the single pending entry for *state*."""
        if state in self._pending:
            raise ValueError(f"Authorization state already pending: {state[:8]}...")

        loop = asyncio.get_running_loop()
        pending = PendingAuthorization(
            state=state,
            future=loop.create_future(),
            deadline=loop.time() + timeout,
        )
        self._pending[state] = pending
        return pending

    def resolve(self, state: str, code: str) -> bool:
        """Hand an authorization code to the waiting flow. False if unknown."""
        pending = self._pending.pop(state, None)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(code)
        return True

    def reject(self, state: str, error: BaseException) -> bool:
        """Fail the waiting flow with *error*. False if unknown."""
        pending = self._pending.pop(state, None)
        if pending is None or pending.future.done():
            return False
        pending.future.set_exception(error)
        return True

    def expire(self, state: str) -> bool:
        """Drop *state* without a result (deadline passed). False if unknown."""
        pending = self._pending.pop(state, None)
        if pending is None:
            return False
        if not pending.future.done():
            pending.future.cancel()
        return True

    async def wait(self, pending: PendingAuthorization) -> str:
        """Wait for the code of a registered authorization until its deadline.

        Takes the handle returned by register() so a callback that lands
        before the wait starts is not lost. Raises AuthFailure(TIMED_OUT)
        once the deadline passes; the entry is expired before raising.
        """
        remaining = max(pending.deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            # shield: a timeout must go through expire(), not cancel the future
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout=remaining)
        except asyncio.TimeoutError:
            self.expire(pending.state)
            logger.info(f"Authorization {pending.state[:8]}... expired without a callback")
            raise AuthFailure(AuthFailureReason.TIMED_OUT) from None

    def clear(self) -> None:
        """Expire every pending authorization. Used on shutdown."""
        for state in list(self._pending):
            self.expire(state)
