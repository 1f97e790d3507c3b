"""Cancellable volume ramps bound to a playback token."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any

from aiosoundstage.models.types import FadeState

if TYPE_CHECKING:
    from .token import PlaybackToken


class FadeOperation:
    """
    A linear volume ramp on one token.

    The operation leaves RUNNING exactly once, either cancelled or finished, and
    resolves its completion future at that moment. Awaiting the operation waits for
    that future; it never raises because of cancellation.

    Do not construct directly, use PlaybackToken.fade().
    """

    _token_ref: weakref.ref[PlaybackToken]
    """Back-reference to the token; the token owns the operation, not the other way round."""
    _target_volume: float
    _state: FadeState
    _done: asyncio.Future[None]
    _timer: asyncio.TimerHandle | None
    """Timer firing natural completion, None when not scheduled."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        token: PlaybackToken,
        target_volume: float,
    ) -> None:
        """DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY."""
        self._token_ref = weakref.ref(token)
        self._target_volume = target_volume
        self._state = FadeState.RUNNING
        self._done = loop.create_future()
        self._timer = None

    def _schedule(self, loop: asyncio.AbstractEventLoop, duration_ms: float) -> None:
        self._timer = loop.call_later(duration_ms / 1000, self._complete)

    def _complete(self) -> None:
        self._timer = None
        self.finish()

    @property
    def target_volume(self) -> float:
        """Volume the fade ends at."""
        return self._target_volume

    @property
    def state(self) -> FadeState:
        """Completion state."""
        return self._state

    @property
    def running(self) -> bool:
        """Whether the ramp is still in progress."""
        return self._state == FadeState.RUNNING

    @property
    def cancelled(self) -> bool:
        """Whether the fade was cancelled."""
        return self._state == FadeState.CANCELLED

    @property
    def finished(self) -> bool:
        """Whether the fade reached (or was forced to) its target."""
        return self._state == FadeState.FINISHED

    def done(self) -> bool:
        """Whether the completion future has resolved."""
        return self._done.done()

    def cancel(self) -> None:
        """
        Stop the ramp where it is.

        The token's gain is frozen at the ramp value sampled now and its stored
        volume keeps the pre-fade value. No-op once the fade is no longer running.
        """
        if self._state != FadeState.RUNNING:
            return
        self._state = FadeState.CANCELLED
        self._cancel_timer()
        token = self._token_ref()
        if token is not None:
            token._handle_fade_cancelled(self)  # noqa: SLF001
        self._resolve()

    def finish(self) -> None:
        """Jump to the target volume now. No-op once the fade is no longer running."""
        if self._state != FadeState.RUNNING:
            return
        self._state = FadeState.FINISHED
        self._cancel_timer()
        token = self._token_ref()
        if token is not None:
            token._handle_fade_finished(self)  # noqa: SLF001
        self._resolve()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _resolve(self) -> None:
        if not self._done.done():
            self._done.set_result(None)

    def add_done_callback(self, callback: Callable[[FadeOperation], None]) -> None:
        """Call callback (on the event loop) once the fade is cancelled or finished."""
        self._done.add_done_callback(lambda _: callback(self))

    async def wait(self) -> FadeState:
        """Wait until the fade is cancelled or finished and return the final state."""
        await asyncio.shield(self._done)
        return self._state

    def __await__(self) -> Generator[Any, None, FadeState]:
        """Allow ``await fade``."""
        return self.wait().__await__()

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<FadeOperation target={self._target_volume:.3f} state={self._state.value}>"
