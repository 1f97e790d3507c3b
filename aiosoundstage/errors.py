"""Exceptions raised by aiosoundstage."""

from __future__ import annotations


class SoundError(Exception):
    """Base class for all aiosoundstage errors."""


class UseAfterTeardownError(SoundError, RuntimeError):
    """An operation was attempted on an object that has been torn down."""


class SessionDestroyedError(UseAfterTeardownError):
    """The session has been destroyed and cannot be used."""


class ChannelRemovedError(UseAfterTeardownError):
    """The channel has been removed and cannot be used."""


class TokenStoppedError(UseAfterTeardownError):
    """The playback token has stopped or ended and cannot be controlled."""


class AudioUnloadedError(UseAfterTeardownError):
    """The cached audio has been unloaded."""


class DuplicateNameError(SoundError, ValueError):
    """A sibling channel with the same name already exists."""


class LimitExceededError(SoundError):
    """The maximum number of channels has been reached."""


class LoadFailureError(SoundError):
    """Fetching or decoding audio failed."""

    def __init__(self, locator: str, reason: str) -> None:
        """Initialize with the locator that failed and a short reason."""
        super().__init__(f"Failed to load {locator!r}: {reason}")
        self.locator = locator


class NotReadyError(SoundError, RuntimeError):
    """The audio context has not been unlocked yet."""


class PlaybackRejectedError(SoundError):
    """The audio engine refused to start playback (e.g. autoplay policy)."""
