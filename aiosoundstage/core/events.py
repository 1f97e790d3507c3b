"""Per-token observer registry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from aiosoundstage.models.types import TokenEvent

if TYPE_CHECKING:
    from .token import PlaybackToken

TokenEventCallback = Callable[["PlaybackToken", TokenEvent], None]
"""Listener signature: called with the token and the event that occurred."""


@dataclass
class _Listener:
    callback: TokenEventCallback
    once: bool


class EventRegistry:
    """
    Listeners for the events of one playback token.

    Dispatch is synchronous and in registration order. It runs over a snapshot, so
    listeners may add or remove listeners (themselves included) while being called.
    """

    def __init__(self, owner: PlaybackToken, logger: logging.LoggerAdapter) -> None:  # type: ignore[type-arg]
        """Create an empty registry for owner."""
        self._owner = owner
        self._logger = logger
        self._listeners: dict[TokenEvent, list[_Listener]] = {}

    def add(self, event: TokenEvent, callback: TokenEventCallback, *, once: bool = False) -> Callable[[], None]:
        """Register callback for event. Returns a function to remove it."""
        listener = _Listener(callback, once)
        self._listeners.setdefault(event, []).append(listener)

        def _remove() -> None:
            self._discard(event, listener)

        return _remove

    def remove(self, event: TokenEvent, callback: TokenEventCallback) -> None:
        """Remove the first registration of callback for event, if any."""
        for listener in self._listeners.get(event, []):
            if listener.callback == callback:
                self._discard(event, listener)
                return

    def _discard(self, event: TokenEvent, listener: _Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners is None:
            return
        # Identity, two registrations of the same callback are distinct listeners
        for index, candidate in enumerate(listeners):
            if candidate is listener:
                del listeners[index]
                return

    def count(self, event: TokenEvent) -> int:
        """Number of listeners registered for event."""
        return len(self._listeners.get(event, []))

    def clear(self) -> None:
        """Remove every listener."""
        self._listeners.clear()

    def emit(self, event: TokenEvent) -> None:
        """Call every listener of event, dropping one-shot listeners before they run."""
        for listener in list(self._listeners.get(event, [])):
            if listener.once:
                self._discard(event, listener)
            try:
                listener.callback(self._owner, event)
            except Exception:
                self._logger.exception("Error in '%s' event listener", event.value)
