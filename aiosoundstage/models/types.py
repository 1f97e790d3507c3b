"""Models for enum types used by aiosoundstage."""

from enum import Enum


class LoadMode(Enum):
    """Strategy used to acquire playable audio from a locator."""

    STREAM = "stream"
    """
    Element-backed playback.

    Low memory and higher startup latency, coarser control. Never touches the cache.
    """
    FULL = "full"
    """
    Fetch and decode the whole file into memory.

    Low latency and full control. Goes through the decoded-audio cache.
    """
    AUTO = "auto"
    """Probe the file size and pick FULL below the threshold, STREAM otherwise."""


class LatencyHint(Enum):
    """Latency hint passed to the audio engine when the context is created."""

    BALANCED = "balanced"
    INTERACTIVE = "interactive"
    PLAYBACK = "playback"


class ContextState(Enum):
    """State of an engine audio context."""

    SUSPENDED = "suspended"
    """Created but not yet allowed to produce sound (waiting for a user gesture)."""
    RUNNING = "running"
    CLOSED = "closed"


class PlaybackState(Enum):
    """Enum for playback token states."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    """Terminal, reached through stop()."""
    ENDED = "ended"
    """Terminal, reached through natural completion."""

    @property
    def terminal(self) -> bool:
        """Whether no further transition is possible from this state."""
        return self in (PlaybackState.STOPPED, PlaybackState.ENDED)


class FadeState(Enum):
    """Completion state of a fade operation."""

    RUNNING = "running"
    CANCELLED = "cancelled"
    FINISHED = "finished"


class TokenEvent(Enum):
    """Events emitted by a playback token."""

    ENDED = "ended"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    SEEK = "seek"
