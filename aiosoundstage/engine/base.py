"""
Audio engine contract consumed by aiosoundstage.

The session, channels and tokens never talk to a sound card directly. They drive
the primitives declared here: a decoding-capable context with a monotonic clock,
gain stages that can be connected into a graph, element-backed sources that stream
from a locator and buffer-backed sources that play decoded data.

Sources signal natural completion through their ended callback only. Stopping or
pausing a source explicitly never invokes that callback.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from aiosoundstage.models.types import ContextState, LatencyHint

EndedCallback = Callable[[], None]


@dataclass(frozen=True)
class DecodedAudio:
    """Decoded PCM audio, interleaved signed 16 bit samples."""

    samples: bytes
    """Raw interleaved PCM data."""
    sample_rate: int
    """Sample rate in Hz."""
    channels: int
    """Number of interleaved channels."""
    sample_width: int = 2
    """Bytes per sample per channel."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")

    @property
    def frames(self) -> int:
        """Number of sample frames."""
        return len(self.samples) // (self.sample_width * self.channels)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.frames / self.sample_rate


class AudioNode(ABC):
    """A node of the audio graph that can be connected to another node."""

    @abstractmethod
    def connect(self, destination: AudioNode) -> None:
        """Route the output of this node into destination."""

    @abstractmethod
    def disconnect(self) -> None:
        """Detach this node from every destination."""


class GainStage(AudioNode):
    """A node scaling its input by a (possibly automated) gain value."""

    @property
    @abstractmethod
    def value(self) -> float:
        """Gain value at the current context time."""

    @value.setter
    @abstractmethod
    def value(self, value: float) -> None:
        """Set the gain immediately."""

    @abstractmethod
    def set_value_at_time(self, value: float, start_time: float) -> None:
        """Schedule a step to value at start_time."""

    @abstractmethod
    def linear_ramp_to_value_at_time(self, value: float, end_time: float) -> None:
        """Schedule a linear ramp from the previous event to value, ending at end_time."""

    @abstractmethod
    def cancel_scheduled_values(self, start_time: float) -> None:
        """Drop every scheduled event at or after start_time."""

    @abstractmethod
    def value_at_time(self, when: float) -> float:
        """Return the gain the automation produces at when."""


class PlayableSource(ABC):
    """Behaviour shared by both source variants."""

    playback_rate: float
    loop: bool

    @abstractmethod
    def connect(self, destination: AudioNode) -> None:
        """Route the source output into destination."""

    @abstractmethod
    def disconnect(self) -> None:
        """Detach the source from the graph."""

    @abstractmethod
    def set_ended_callback(self, callback: EndedCallback | None) -> None:
        """Install (or clear with None) the natural-completion callback."""


class ElementSource(PlayableSource):
    """Streaming source reading directly from a locator; can pause and resume in place."""

    locator: str

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Playback position in seconds."""

    @current_time.setter
    @abstractmethod
    def current_time(self, value: float) -> None:
        """Jump to a position in seconds."""

    @property
    @abstractmethod
    def duration(self) -> float | None:
        """Media duration in seconds, None while unknown."""

    @abstractmethod
    def play(self) -> Awaitable[None]:
        """
        Start or resume playback.

        The returned awaitable raises PlaybackRejectedError when the platform refuses.
        """

    @abstractmethod
    def pause(self) -> None:
        """Pause in place."""

    @abstractmethod
    def release(self) -> None:
        """Stop and free the underlying media resources."""


class BufferSource(PlayableSource):
    """One-shot source playing decoded data; it cannot be restarted once stopped."""

    buffer: DecodedAudio
    loop_start: float
    loop_end: float

    @abstractmethod
    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        """Start playback at context time when, from offset seconds into the buffer."""

    @abstractmethod
    def stop(self) -> None:
        """Stop playback. Idempotent."""


class AudioContext(ABC):
    """A decoding-capable execution context with its own clock."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Monotonic context time in seconds."""

    @property
    @abstractmethod
    def state(self) -> ContextState:
        """Current context state."""

    @property
    @abstractmethod
    def destination(self) -> AudioNode:
        """Final node of the graph (the speakers)."""

    @abstractmethod
    async def resume(self) -> None:
        """Move a suspended context to running."""

    @abstractmethod
    async def close(self) -> None:
        """Close the context and release all resources."""

    @abstractmethod
    def create_gain(self) -> GainStage:
        """Create a gain stage with gain 1."""

    @abstractmethod
    def create_buffer_source(self, buffer: DecodedAudio) -> BufferSource:
        """Create a buffer-backed source for decoded data."""

    @abstractmethod
    def create_element_source(self, locator: str) -> ElementSource:
        """Create an element-backed source streaming from locator."""

    @abstractmethod
    async def decode_audio_data(self, data: bytes) -> DecodedAudio:
        """Decode an encoded audio file."""


class AudioBackend(ABC):
    """Factory for audio contexts."""

    @abstractmethod
    def create_context(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        latency_hint: LatencyHint,
        sample_rate: int,
    ) -> AudioContext:
        """Create a new audio context bound to loop."""
