"""Playback token: one controllable playing instance."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from aiosoundstage.engine.base import AudioContext, GainStage, PlayableSource
from aiosoundstage.errors import TokenStoppedError
from aiosoundstage.models.options import PlayOptions, StopOptions
from aiosoundstage.models.types import PlaybackState, TokenEvent
from aiosoundstage.util import clamp

from .controller import create_source_controller
from .events import EventRegistry, TokenEventCallback
from .fade import FadeOperation

if TYPE_CHECKING:
    from .cache import CacheLease, CachedAudio

MIN_RATE = 0.001
"""Lowest playback rate accepted; rates are clamped up to it."""


class PlaybackToken:
    """
    One playing (or paused, or finished) audio instance.

    A token starts playing as soon as it is created. It stays controllable until it
    is stopped or reaches its natural end; both are terminal. Every token owns its
    own gain stage, connected to the output of the channel that plays it.

    Do not construct directly, use Channel.play() or Session.play().
    """

    _state: PlaybackState
    _volume: float
    """Logical volume; during a fade this keeps the pre-fade value."""
    _muted: bool
    _rate: float
    _fade: FadeOperation | None
    """Running fade, None when no fade is in progress."""
    _stop_fade: FadeOperation | None
    """Fade-out whose completion stops this token, None when no deferred stop is pending."""
    _end_timer: asyncio.TimerHandle | None
    """Timer for the end of the playback window, None when not scheduled."""
    _lease: CacheLease | None
    """Reference on the cached audio being played, released once at termination."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        context: AudioContext,
        source: PlayableSource,
        output: GainStage,
        options: PlayOptions,
        *,
        lease: CacheLease | None = None,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY."""
        self._loop = loop
        self._context = context
        self._logger = logger
        self._state = PlaybackState.PLAYING
        self._volume = clamp(options.volume)
        self._muted = False
        self._rate = max(MIN_RATE, options.rate)
        self._start_time = options.start_time
        self._end_time = options.end_time
        self._looping = options.loop
        self._fade = None
        self._stop_fade = None
        self._end_timer = None
        self._lease = lease
        self._final_position = 0.0
        self._events = EventRegistry(self, logger)

        self._gain = context.create_gain()
        self._gain.value = self._volume
        self._gain.connect(output)

        self._controller = create_source_controller(loop, context, source, self._gain, logger)
        self._controller.bind(
            on_ended=self._handle_source_ended,
            on_rejected=self._handle_playback_rejected,
        )
        self._controller.set_rate(self._rate)
        self._controller.configure_loop(options.loop, options.start_time, options.end_time)
        self._controller.start(options.start_time)
        self._schedule_end_timer()
        self._logger.debug(
            "Token started (%s, offset=%.3f, volume=%.3f, rate=%.3f)",
            type(self._controller).__name__,
            options.start_time,
            self._volume,
            self._rate,
        )

    # Read-only state

    @property
    def state(self) -> PlaybackState:
        """Current playback state."""
        return self._state

    @property
    def is_playing(self) -> bool:
        """Whether the token is playing."""
        return self._state == PlaybackState.PLAYING

    @property
    def is_paused(self) -> bool:
        """Whether the token is paused."""
        return self._state == PlaybackState.PAUSED

    @property
    def is_stopped(self) -> bool:
        """Whether the token is stopped or ended."""
        return self._state.terminal

    @property
    def volume(self) -> float:
        """Logical volume of this token, range 0-1."""
        return self._volume

    @property
    def muted(self) -> bool:
        """Mute state of this token."""
        return self._muted

    @property
    def rate(self) -> float:
        """Playback rate."""
        return self._rate

    @property
    def current_time(self) -> float:
        """Playback position in seconds."""
        if self._state.terminal:
            return self._final_position
        return self._controller.position

    @property
    def duration(self) -> float:
        """Media duration in seconds, 0 while unknown."""
        return self._controller.duration

    @property
    def fade_operation(self) -> FadeOperation | None:
        """Fade currently in progress, if any."""
        return self._fade

    @property
    def cached_audio(self) -> CachedAudio | None:
        """Cache entry this token plays from, None for streamed audio."""
        return self._lease.audio if self._lease is not None else None

    @property
    def gain(self) -> GainStage:
        """Gain stage owned by this token."""
        return self._gain

    def _ensure_active(self) -> None:
        if self._state.terminal:
            raise TokenStoppedError(f"Token has {self._state.value} and cannot be controlled")

    # Volume

    def _audible_volume(self) -> float:
        if self._fade is not None and not self._muted:
            return self._gain.value_at_time(self._context.current_time)
        return self._volume

    def _write_gain(self, value: float) -> None:
        self._gain.cancel_scheduled_values(self._context.current_time)
        self._gain.value = value

    def set_volume(self, volume: float) -> None:
        """
        Set the volume of this token.

        Cancels a running fade without jumping to its target. While a fade-out
        stop is pending, the fade-out is abandoned and the token stops now.
        """
        self._ensure_active()
        if self._stop_fade is not None:
            self._logger.debug("Volume change during fade-out, stopping immediately")
            self._terminate(PlaybackState.STOPPED)
            return
        if self._fade is not None:
            self._fade.cancel()
        self._volume = clamp(volume)
        if not self._muted:
            self._write_gain(self._volume)

    def mute(self, muted: bool = True) -> None:  # noqa: FBT001, FBT002
        """
        Mute or unmute this token.

        A running fade is completed to its target first, so it is never left
        half-applied.
        """
        self._ensure_active()
        self._muted = muted
        if self._fade is not None and self._fade.running:
            self._fade.finish()
        self._write_gain(0.0 if muted else self._volume)

    def unmute(self) -> None:
        """Unmute this token."""
        self.mute(False)

    def fade(self, from_volume: float, to_volume: float, duration_ms: float) -> FadeOperation:
        """
        Ramp the volume linearly from from_volume to to_volume over duration_ms.

        Any fade already running on this token is cancelled first. The stored volume
        becomes to_volume only when the fade completes.
        """
        self._ensure_active()
        if self._fade is not None:
            self._fade.cancel()

        from_volume = clamp(from_volume)
        to_volume = clamp(to_volume)
        duration_ms = max(0.0, duration_ms)

        operation = FadeOperation(self._loop, self, to_volume)
        self._fade = operation
        if duration_ms == 0:
            operation.finish()
            return operation

        if not self._muted:
            now = self._context.current_time
            self._write_gain(from_volume)
            self._gain.set_value_at_time(from_volume, now)
            self._gain.linear_ramp_to_value_at_time(to_volume, now + duration_ms / 1000)
        operation._schedule(self._loop, duration_ms)  # noqa: SLF001
        return operation

    def _handle_fade_finished(self, operation: FadeOperation) -> None:
        if self._fade is operation:
            self._fade = None
        if self._state.terminal:
            return
        self._volume = operation.target_volume
        if not self._muted:
            self._write_gain(self._volume)

    def _handle_fade_cancelled(self, operation: FadeOperation) -> None:
        if self._fade is operation:
            self._fade = None
        if self._state.terminal or self._muted:
            return
        # Freeze the audible level where the ramp is right now
        self._write_gain(self._gain.value_at_time(self._context.current_time))

    # Playback

    def pause(self) -> None:
        """Pause playback. No-op unless playing."""
        if self._state != PlaybackState.PLAYING:
            return
        self._cancel_end_timer()
        self._controller.pause()
        self._state = PlaybackState.PAUSED
        self._events.emit(TokenEvent.PAUSE)

    def resume(self) -> None:
        """Resume playback. No-op unless paused."""
        if self._state != PlaybackState.PAUSED:
            return
        self._state = PlaybackState.PLAYING
        self._controller.resume()
        self._schedule_end_timer()
        self._events.emit(TokenEvent.RESUME)

    def seek(self, time: float) -> None:
        """Move the playback position to time seconds."""
        self._ensure_active()
        position = max(0.0, time)
        if self._controller.seek(position, playing=self._state == PlaybackState.PLAYING):
            self._schedule_end_timer()
            self._events.emit(TokenEvent.SEEK)

    def set_rate(self, rate: float) -> None:
        """Set the playback rate."""
        self._ensure_active()
        self._rate = max(MIN_RATE, rate)
        self._controller.set_rate(self._rate)
        self._schedule_end_timer()

    def stop(self, options: StopOptions | None = None, *, fade_duration: float | None = None) -> None:
        """
        Stop playback.

        Args:
            options: Stop options.
            fade_duration: Fade-out in milliseconds, overrides options.fade_duration.
                When positive this returns immediately; the token keeps playing,
                fading to silence, and stops once the fade completes.
        """
        if self._state.terminal:
            return
        if fade_duration is None:
            fade_duration = options.fade_duration if options is not None else 0.0
        if fade_duration > 0:
            operation = self.fade(self._audible_volume(), 0.0, fade_duration)
            self._stop_fade = operation
            operation.add_done_callback(self._finish_deferred_stop)
            return
        self._terminate(PlaybackState.STOPPED)

    def _finish_deferred_stop(self, operation: FadeOperation) -> None:
        # A later stop() with its own fade-out replaces this one
        if operation is not self._stop_fade or self._state.terminal:
            return
        self._terminate(PlaybackState.STOPPED)

    def _handle_source_ended(self) -> None:
        if self._state.terminal:
            return
        self._terminate(PlaybackState.ENDED)

    def _handle_playback_rejected(self, err: Exception) -> None:
        if self._state != PlaybackState.PLAYING:
            return
        self._logger.warning("Playback was rejected, token paused: %s", err)
        self._cancel_end_timer()
        self._controller.pause()
        self._state = PlaybackState.PAUSED
        self._events.emit(TokenEvent.PAUSE)

    def _schedule_end_timer(self) -> None:
        self._cancel_end_timer()
        if self._end_time is None or self._state != PlaybackState.PLAYING:
            return
        if self._looping and self._controller.native_loop_window:
            return
        remaining = max(0.0, self._end_time - self._controller.position) / self._rate
        self._end_timer = self._loop.call_later(remaining, self._handle_end_time)

    def _cancel_end_timer(self) -> None:
        if self._end_timer is not None:
            self._end_timer.cancel()
            self._end_timer = None

    def _handle_end_time(self) -> None:
        self._end_timer = None
        if self._state != PlaybackState.PLAYING:
            return
        if self._looping:
            self._controller.seek(self._start_time, playing=True)
            self._schedule_end_timer()
            return
        # Reaching end_time is a natural end, listeners get "ended" rather than "stop"
        self._terminate(PlaybackState.ENDED)

    def _terminate(self, state: PlaybackState) -> None:
        if self._state.terminal:
            return
        self._final_position = self._controller.position
        self._state = state
        self._cancel_end_timer()
        self._stop_fade = None
        fade, self._fade = self._fade, None
        if fade is not None:
            fade.cancel()
        self._controller.stop()
        self._controller.release()
        self._gain.disconnect()
        if self._lease is not None:
            self._lease.release()
        self._logger.debug("Token %s at %.3fs", state.value, self._final_position)
        self._events.emit(TokenEvent.STOP if state == PlaybackState.STOPPED else TokenEvent.ENDED)
        self._events.clear()

    # Events

    def on(self, event: TokenEvent | str, callback: TokenEventCallback) -> Callable[[], None]:
        """
        Register a listener for event.

        The callback receives the token and the event. Returns a function to remove
        the listener.
        """
        return self._events.add(TokenEvent(event), callback)

    def once(self, event: TokenEvent | str, callback: TokenEventCallback) -> Callable[[], None]:
        """Register a listener that is removed after its first call."""
        return self._events.add(TokenEvent(event), callback, once=True)

    def off(self, event: TokenEvent | str, callback: TokenEventCallback) -> None:
        """Remove a listener registered with on() or once()."""
        self._events.remove(TokenEvent(event), callback)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<PlaybackToken state={self._state.value} volume={self._volume:.3f}>"
