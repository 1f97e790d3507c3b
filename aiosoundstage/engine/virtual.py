"""
Virtual audio engine running on the asyncio event loop.

Nothing is sent to a sound device. The engine keeps the audio graph, gain
automation and source positions exactly as a real engine would, driven by the
event loop clock, so the core can run headless (servers, CI, tests). Natural ends
are fired on timers, autoplay rejection and suspended contexts can be simulated.
Decoding goes through PyAV unless a different decoder is supplied.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import weakref
from collections.abc import Callable, Mapping

from aiosoundstage.errors import PlaybackRejectedError
from aiosoundstage.models.types import ContextState, LatencyHint

from .base import (
    AudioBackend,
    AudioContext,
    AudioNode,
    BufferSource,
    DecodedAudio,
    ElementSource,
    EndedCallback,
    GainStage,
)
from .decode import decode_with_av

logger = logging.getLogger(__name__)

Decoder = Callable[[bytes, int], DecodedAudio]
"""Synchronous decoder, called off the event loop with (data, sample_rate)."""

DEFAULT_STREAM_DURATION = 60.0


class VirtualDestination(AudioNode):
    """End of the graph. Everything reaching it is audible at unity gain."""

    def connect(self, destination: AudioNode) -> None:
        """Refuse: the destination has no output."""
        raise ValueError("The destination node cannot be connected")

    def disconnect(self) -> None:
        """Nothing to detach."""

    def effective_gain(self) -> float:
        """Unity."""
        return 1.0


class VirtualGain(GainStage):
    """Gain stage with Web Audio style automation events."""

    def __init__(self, context: VirtualAudioContext) -> None:
        """Create a gain stage with value 1."""
        self._context = context
        self._base = 1.0
        # (time, order, kind, value) sorted by time then insertion order
        self._events: list[tuple[float, int, str, float]] = []
        self._order = 0
        self._output: AudioNode | None = None
        self.connect_count = 0
        self.disconnect_count = 0

    @property
    def value(self) -> float:
        """Gain value at the current context time."""
        return self.value_at_time(self._context.current_time)

    @value.setter
    def value(self, value: float) -> None:
        self._events.clear()
        self._base = value

    @property
    def output(self) -> AudioNode | None:
        """Node this stage is connected to, None when detached."""
        return self._output

    def _insert(self, kind: str, when: float, value: float) -> None:
        self._order += 1
        bisect.insort(self._events, (when, self._order, kind, value))

    def set_value_at_time(self, value: float, start_time: float) -> None:
        """Schedule a step to value at start_time."""
        self._insert("set", start_time, value)

    def linear_ramp_to_value_at_time(self, value: float, end_time: float) -> None:
        """Schedule a linear ramp ending at end_time."""
        self._insert("ramp", end_time, value)

    def cancel_scheduled_values(self, start_time: float) -> None:
        """Drop every event at or after start_time."""
        self._events = [event for event in self._events if event[0] < start_time]

    def value_at_time(self, when: float) -> float:
        """Evaluate the automation timeline at when."""
        value = self._base
        prev_time: float | None = None
        for event_time, _, kind, event_value in self._events:
            if event_time <= when:
                value = event_value
                prev_time = event_time
                continue
            if kind == "ramp":
                start_time = prev_time if prev_time is not None else when
                span = event_time - start_time
                if span <= 0:
                    return value
                fraction = max(0.0, when - start_time) / span
                return value + (event_value - value) * fraction
            break
        return value

    def connect(self, destination: AudioNode) -> None:
        """Route output into destination."""
        self._output = destination
        self.connect_count += 1

    def disconnect(self) -> None:
        """Detach from the graph."""
        self._output = None
        self.disconnect_count += 1

    def effective_gain(self) -> float:
        """
        Gain from this stage's input to the speakers.

        Computed by following outputs towards the destination, the way the signal flows.
        A stage that is not connected anywhere is silent.
        """
        output = self._output
        if output is None:
            return 0.0
        if isinstance(output, (VirtualGain, VirtualDestination)):
            return self.value * output.effective_gain()
        return 0.0


class _VirtualSourceMixin:
    """Graph and ended-callback bookkeeping shared by both virtual sources."""

    _context: VirtualAudioContext
    _output: AudioNode | None
    _ended_cb: EndedCallback | None
    _timer: asyncio.TimerHandle | None

    def connect(self, destination: AudioNode) -> None:
        self._output = destination

    def disconnect(self) -> None:
        self._output = None

    def set_ended_callback(self, callback: EndedCallback | None) -> None:
        self._ended_cb = callback

    @property
    def output(self) -> AudioNode | None:
        """Node this source is connected to."""
        return self._output

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire_ended(self) -> None:
        callback = self._ended_cb
        if callback is not None:
            callback()


class VirtualBufferSource(_VirtualSourceMixin, BufferSource):
    """Buffer-backed source that ends on a timer."""

    def __init__(self, context: VirtualAudioContext, buffer: DecodedAudio) -> None:
        """Create an unstarted source for buffer."""
        self._context = context
        self.buffer = buffer
        self.loop_start = 0.0
        self.loop_end = 0.0
        self._loop = False
        self._rate = 1.0
        self._output = None
        self._ended_cb = None
        self._timer = None
        self._started = False
        self._stopped = False
        self._anchor_time = 0.0
        self._anchor_position = 0.0

    @property
    def playing(self) -> bool:
        """Whether the source has started and not stopped or ended."""
        return self._started and not self._stopped

    @property
    def playback_rate(self) -> float:  # type: ignore[override]
        """Playback rate."""
        return self._rate

    @playback_rate.setter
    def playback_rate(self, rate: float) -> None:
        if self.playing:
            self._reanchor()
        self._rate = rate
        self._schedule_end()

    @property
    def loop(self) -> bool:  # type: ignore[override]
        """Whether the source loops."""
        return self._loop

    @loop.setter
    def loop(self, loop: bool) -> None:
        if self.playing:
            self._reanchor()
        self._loop = loop
        self._schedule_end()

    @property
    def position(self) -> float:
        """Current offset into the buffer in seconds."""
        if not self.playing:
            return self._anchor_position
        elapsed = max(0.0, self._context.current_time - self._anchor_time)
        position = self._anchor_position + elapsed * self._rate
        if self._loop:
            start, end = self._loop_window()
            if position >= end > start:
                position = start + (position - start) % (end - start)
            return position
        return min(position, self.buffer.duration)

    def _loop_window(self) -> tuple[float, float]:
        end = self.loop_end if self.loop_end > 0 else self.buffer.duration
        return self.loop_start, end

    def _reanchor(self) -> None:
        self._anchor_position = self.position
        self._anchor_time = max(self._context.current_time, self._anchor_time)

    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        """Start playback at context time when from offset."""
        if self._started:
            raise RuntimeError("A buffer source can only be started once")
        self._started = True
        self._anchor_time = max(when, self._context.current_time)
        self._anchor_position = max(0.0, offset)
        self._schedule_end()

    def stop(self) -> None:
        """Stop playback without firing the ended callback."""
        if self._started and not self._stopped:
            self._anchor_position = self.position
        self._stopped = True
        self._cancel_timer()

    def _schedule_end(self) -> None:
        self._cancel_timer()
        if not self.playing or self._loop:
            return
        start_delay = max(0.0, self._anchor_time - self._context.current_time)
        remaining = max(0.0, self.buffer.duration - self.position) / self._rate
        self._timer = self._context.loop.call_later(start_delay + remaining, self._natural_end)

    def _natural_end(self) -> None:
        self._timer = None
        self._anchor_position = self.buffer.duration
        self._stopped = True
        self._fire_ended()


class VirtualElementSource(_VirtualSourceMixin, ElementSource):
    """Element-backed source with a known media duration."""

    def __init__(self, context: VirtualAudioContext, locator: str, duration: float) -> None:
        """Create a paused element for locator."""
        self._context = context
        self.locator = locator
        self._duration = duration
        self._loop = False
        self._rate = 1.0
        self._output = None
        self._ended_cb = None
        self._timer = None
        self._paused = True
        self._released = False
        self._anchor_time = 0.0
        self._anchor_position = 0.0
        self.play_calls = 0

    @property
    def paused(self) -> bool:
        """Whether the element is paused."""
        return self._paused

    @property
    def released(self) -> bool:
        """Whether release() has been called."""
        return self._released

    @property
    def playback_rate(self) -> float:  # type: ignore[override]
        """Playback rate."""
        return self._rate

    @playback_rate.setter
    def playback_rate(self, rate: float) -> None:
        self._reanchor()
        self._rate = rate
        self._schedule_end()

    @property
    def loop(self) -> bool:  # type: ignore[override]
        """Whether the element loops."""
        return self._loop

    @loop.setter
    def loop(self, loop: bool) -> None:
        self._reanchor()
        self._loop = loop
        self._schedule_end()

    @property
    def current_time(self) -> float:
        """Playback position in seconds."""
        if self._paused:
            return self._anchor_position
        elapsed = max(0.0, self._context.current_time - self._anchor_time)
        position = self._anchor_position + elapsed * self._rate
        if self._loop and self._duration > 0:
            position %= self._duration
        return min(position, self._duration)

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._anchor_position = max(0.0, min(value, self._duration))
        self._anchor_time = self._context.current_time
        self._schedule_end()

    @property
    def duration(self) -> float | None:
        """Media duration in seconds."""
        return self._duration

    def _reanchor(self) -> None:
        self._anchor_position = self.current_time
        self._anchor_time = self._context.current_time

    async def play(self) -> None:
        """Start or resume playback."""
        self.play_calls += 1
        if not self._context.autoplay_allowed:
            raise PlaybackRejectedError(f"Autoplay refused for {self.locator!r}")
        if self._released or not self._paused:
            return
        if self._anchor_position >= self._duration:
            self._anchor_position = 0.0
        self._paused = False
        self._anchor_time = self._context.current_time
        self._schedule_end()

    def pause(self) -> None:
        """Pause in place."""
        if self._paused:
            return
        self._reanchor()
        self._paused = True
        self._cancel_timer()

    def release(self) -> None:
        """Stop and free the element."""
        self.pause()
        self._released = True
        self._ended_cb = None

    def _schedule_end(self) -> None:
        self._cancel_timer()
        if self._paused or self._loop:
            return
        remaining = max(0.0, self._duration - self.current_time) / self._rate
        self._timer = self._context.loop.call_later(remaining, self._natural_end)

    def _natural_end(self) -> None:
        self._timer = None
        self._anchor_position = self._duration
        self._paused = True
        self._fire_ended()


class VirtualAudioContext(AudioContext):
    """Audio context of the virtual engine."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        backend: VirtualBackend,
        *,
        latency_hint: LatencyHint,
        sample_rate: int,
    ) -> None:
        """Create a context whose clock starts at zero."""
        self.loop = loop
        self._backend = backend
        self.latency_hint = latency_hint
        self.sample_rate = sample_rate
        self.autoplay_allowed = backend.autoplay_allowed
        self._origin = loop.time()
        self._state = ContextState.SUSPENDED if backend.start_suspended else ContextState.RUNNING
        self._destination = VirtualDestination()
        # Weakly held so that finished nodes are freed; keyed by creation order
        self._gains: weakref.WeakValueDictionary[int, VirtualGain] = weakref.WeakValueDictionary()
        self._buffer_sources: weakref.WeakValueDictionary[int, VirtualBufferSource] = (
            weakref.WeakValueDictionary()
        )
        self._element_sources: weakref.WeakValueDictionary[int, VirtualElementSource] = (
            weakref.WeakValueDictionary()
        )
        self.gain_count = 0
        self.buffer_source_count = 0
        self.element_source_count = 0
        self.decode_count = 0

    @property
    def current_time(self) -> float:
        """Seconds since the context was created."""
        return self.loop.time() - self._origin

    @property
    def state(self) -> ContextState:
        """Current context state."""
        return self._state

    @property
    def destination(self) -> VirtualDestination:
        """Final node of the graph."""
        return self._destination

    @property
    def gains(self) -> list[VirtualGain]:
        """Gain stages still referenced, in creation order."""
        return list(self._gains.values())

    @property
    def buffer_sources(self) -> list[VirtualBufferSource]:
        """Buffer sources still referenced, in creation order."""
        return list(self._buffer_sources.values())

    @property
    def element_sources(self) -> list[VirtualElementSource]:
        """Element sources still referenced, in creation order."""
        return list(self._element_sources.values())

    async def resume(self) -> None:
        """Move to running."""
        if self._state == ContextState.CLOSED:
            raise RuntimeError("Cannot resume a closed context")
        self._state = ContextState.RUNNING

    async def close(self) -> None:
        """Close the context and silence every source."""
        if self._state == ContextState.CLOSED:
            return
        self._state = ContextState.CLOSED
        for buffer_source in self.buffer_sources:
            buffer_source.stop()
        for element_source in self.element_sources:
            element_source.release()
        logger.debug("Virtual audio context closed")

    def create_gain(self) -> VirtualGain:
        """Create a gain stage."""
        gain = VirtualGain(self)
        self._gains[self.gain_count] = gain
        self.gain_count += 1
        return gain

    def create_buffer_source(self, buffer: DecodedAudio) -> VirtualBufferSource:
        """Create a buffer-backed source."""
        source = VirtualBufferSource(self, buffer)
        self._buffer_sources[self.buffer_source_count] = source
        self.buffer_source_count += 1
        return source

    def create_element_source(self, locator: str) -> VirtualElementSource:
        """Create an element-backed source for locator."""
        source = VirtualElementSource(self, locator, self._backend.stream_duration(locator))
        self._element_sources[self.element_source_count] = source
        self.element_source_count += 1
        return source

    async def decode_audio_data(self, data: bytes) -> DecodedAudio:
        """Decode off the event loop."""
        self.decode_count += 1
        return await asyncio.to_thread(self._backend.decoder, data, self.sample_rate)


class VirtualBackend(AudioBackend):
    """Backend creating virtual audio contexts."""

    def __init__(
        self,
        *,
        decoder: Decoder | None = None,
        stream_durations: Mapping[str, float] | None = None,
        default_stream_duration: float = DEFAULT_STREAM_DURATION,
        start_suspended: bool = False,
        autoplay_allowed: bool = True,
    ) -> None:
        """
        Initialize the backend.

        Args:
            decoder: Decoder used by decode_audio_data, PyAV when None.
            stream_durations: Media duration in seconds per locator for element sources.
            default_stream_duration: Duration for locators missing from stream_durations.
            start_suspended: Create contexts suspended, as a browser does before a user gesture.
            autoplay_allowed: Initial autoplay policy of created contexts.
        """
        self.decoder: Decoder = decoder or decode_with_av
        self._stream_durations = dict(stream_durations or {})
        self._default_stream_duration = default_stream_duration
        self.start_suspended = start_suspended
        self.autoplay_allowed = autoplay_allowed
        self.contexts: list[VirtualAudioContext] = []

    def stream_duration(self, locator: str) -> float:
        """Media duration for an element source streaming locator."""
        return self._stream_durations.get(locator, self._default_stream_duration)

    def create_context(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        latency_hint: LatencyHint,
        sample_rate: int,
    ) -> VirtualAudioContext:
        """Create a virtual context on loop."""
        context = VirtualAudioContext(
            loop, self, latency_hint=latency_hint, sample_rate=sample_rate
        )
        self.contexts.append(context)
        logger.debug(
            "Virtual audio context created (latency_hint=%s, sample_rate=%d)",
            latency_hint.value,
            sample_rate,
        )
        return context
