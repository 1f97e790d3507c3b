"""Lifecycle management of the engine source behind a playback token."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar

from aiosoundstage.engine.base import (
    AudioContext,
    BufferSource,
    ElementSource,
    GainStage,
    PlayableSource,
)

SEEK_EPSILON = 0.01
"""Seeks on buffer sources closer than this (seconds) to the current position are ignored."""

EndedHandler = Callable[[], None]
RejectedHandler = Callable[[Exception], None]


class SourceController(ABC):
    """
    Owns one playable source: connection, start, pause/stop, ended relay, release.

    The two concrete variants differ in what pausing and seeking cost: an element
    can pause and jump in place, a buffer source is one-shot and has to be replaced.
    """

    native_loop_window: ClassVar[bool]
    """Whether the source itself can loop over a [start, end) window."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        context: AudioContext,
        output: GainStage,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """Initialize the controller routing into output."""
        self._loop = loop
        self._context = context
        self._output = output
        self._logger = logger
        self._on_ended: EndedHandler | None = None
        self._on_rejected: RejectedHandler | None = None
        self._released = False

    def bind(self, *, on_ended: EndedHandler, on_rejected: RejectedHandler) -> None:
        """Install the handlers for natural completion and refused playback."""
        self._on_ended = on_ended
        self._on_rejected = on_rejected

    @property
    def released(self) -> bool:
        """Whether release() has been called."""
        return self._released

    def _handle_ended(self) -> None:
        if self._released or self._on_ended is None:
            return
        self._on_ended()

    @property
    @abstractmethod
    def source(self) -> PlayableSource:
        """The engine source currently in use."""

    @property
    @abstractmethod
    def position(self) -> float:
        """Playback position in seconds."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Media duration in seconds, 0 while unknown."""

    @abstractmethod
    def configure_loop(self, loop: bool, start: float, end: float | None) -> None:  # noqa: FBT001
        """Configure looping before playback starts."""

    @abstractmethod
    def start(self, offset: float) -> None:
        """Start playback from offset seconds."""

    @abstractmethod
    def pause(self) -> float:
        """Pause playback and return the position it can be resumed from."""

    @abstractmethod
    def resume(self) -> None:
        """Resume playback from the position captured by pause() or seek()."""

    @abstractmethod
    def seek(self, position: float, *, playing: bool) -> bool:
        """Move to position. Returns False when the seek was skipped."""

    @abstractmethod
    def set_rate(self, rate: float) -> None:
        """Change the playback rate of the active source."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the active source without reporting a natural end."""

    @abstractmethod
    def release(self) -> None:
        """Disconnect and drop the source. Idempotent."""


class ElementSourceController(SourceController):
    """Controller for element-backed (streaming) sources."""

    native_loop_window = False

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        context: AudioContext,
        source: ElementSource,
        output: GainStage,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """Connect source into output."""
        super().__init__(loop, context, output, logger)
        self._source = source
        self._play_task: asyncio.Task[None] | None = None
        # Bumped whenever a pending play() result stops being relevant
        self._generation = 0
        source.connect(output)
        source.set_ended_callback(self._handle_ended)

    @property
    def source(self) -> ElementSource:
        """The element."""
        return self._source

    @property
    def position(self) -> float:
        """Position reported by the element."""
        return self._source.current_time

    @property
    def duration(self) -> float:
        """Duration reported by the element."""
        return self._source.duration or 0.0

    def configure_loop(self, loop: bool, start: float, end: float | None) -> None:  # noqa: FBT001, ARG002
        """Loop the whole media natively; windows are driven by the token."""
        self._source.loop = loop and end is None

    def start(self, offset: float) -> None:
        """Jump to offset and play."""
        self._source.current_time = offset
        self._play()

    def _play(self) -> None:
        self._generation += 1
        generation = self._generation
        self._play_task = self._loop.create_task(self._run_play(generation))

    async def _run_play(self, generation: int) -> None:
        try:
            await self._source.play()
        except Exception as err:  # noqa: BLE001
            if generation != self._generation or self._released:
                self._logger.debug("Ignoring stale playback failure: %s", err)
                return
            if self._on_rejected is not None:
                self._on_rejected(err)

    def pause(self) -> float:
        """Pause in place."""
        self._generation += 1
        self._source.pause()
        return self._source.current_time

    def resume(self) -> None:
        """Play again from where the element is."""
        self._play()

    def seek(self, position: float, *, playing: bool) -> bool:  # noqa: ARG002
        """Jump directly, the element keeps its play/pause state."""
        self._source.current_time = position
        return True

    def set_rate(self, rate: float) -> None:
        """Apply the rate to the element."""
        self._source.playback_rate = rate

    def stop(self) -> None:
        """Pause the element."""
        self._generation += 1
        self._source.pause()

    def release(self) -> None:
        """Free the element and its media resources."""
        if self._released:
            return
        self._released = True
        self._generation += 1
        if self._play_task is not None and not self._play_task.done():
            self._play_task.cancel()
        self._play_task = None
        self._source.set_ended_callback(None)
        self._source.release()
        self._source.disconnect()


class BufferSourceController(SourceController):
    """Controller for buffer-backed (decoded) sources."""

    native_loop_window = True

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        context: AudioContext,
        source: BufferSource,
        output: GainStage,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """Connect source into output."""
        super().__init__(loop, context, output, logger)
        self._source = source
        self._rate = source.playback_rate
        self._running = False
        self._anchor_time = 0.0
        self._anchor_position = 0.0
        self._attach(source)

    @property
    def source(self) -> BufferSource:
        """The buffer source currently in use."""
        return self._source

    @property
    def duration(self) -> float:
        """Duration of the decoded data."""
        return self._source.buffer.duration

    @property
    def position(self) -> float:
        """Position tracked against the context clock."""
        if not self._running:
            return self._anchor_position
        elapsed = max(0.0, self._context.current_time - self._anchor_time)
        position = self._anchor_position + elapsed * self._rate
        if self._source.loop:
            start = self._source.loop_start
            end = self._source.loop_end if self._source.loop_end > 0 else self.duration
            if position >= end > start:
                position = start + (position - start) % (end - start)
            return position
        return min(position, self.duration)

    def _attach(self, source: BufferSource) -> None:
        source.connect(self._output)
        source.set_ended_callback(self._handle_natural_end)

    def _detach(self, source: BufferSource) -> None:
        source.set_ended_callback(None)
        source.stop()
        source.disconnect()

    def _replace_source(self) -> None:
        old = self._source
        new = self._context.create_buffer_source(old.buffer)
        new.playback_rate = self._rate
        new.loop = old.loop
        new.loop_start = old.loop_start
        new.loop_end = old.loop_end
        self._detach(old)
        self._source = new
        self._attach(new)

    def _start_at(self, offset: float) -> None:
        self._source.start(0, offset)
        self._anchor_time = self._context.current_time
        self._anchor_position = offset
        self._running = True

    def _handle_natural_end(self) -> None:
        self._running = False
        self._anchor_position = self.duration
        self._handle_ended()

    def configure_loop(self, loop: bool, start: float, end: float | None) -> None:  # noqa: FBT001
        """Loop natively, over [start, end) when an end is given."""
        self._source.loop = loop
        if loop and end is not None:
            self._source.loop_start = start
            self._source.loop_end = end

    def start(self, offset: float) -> None:
        """Start the current source at offset."""
        self._start_at(offset)

    def pause(self) -> float:
        """Stop the source and remember the position; it cannot be resumed in place."""
        self.stop()
        return self._anchor_position

    def resume(self) -> None:
        """Start a fresh source from the remembered position."""
        self._replace_source()
        self._start_at(self._anchor_position)

    def seek(self, position: float, *, playing: bool) -> bool:
        """Replace the source when playing, only move the resume position when paused."""
        if abs(position - self.position) <= SEEK_EPSILON:
            return False
        if playing:
            self._replace_source()
            self._start_at(position)
        else:
            self._anchor_position = position
        return True

    def set_rate(self, rate: float) -> None:
        """Apply the rate, keeping the position bookkeeping continuous."""
        if self._running:
            self._anchor_position = self.position
            self._anchor_time = self._context.current_time
        self._rate = rate
        self._source.playback_rate = rate

    def stop(self) -> None:
        """Stop the current source."""
        if self._running:
            self._anchor_position = self.position
            self._running = False
        self._source.set_ended_callback(None)
        self._source.stop()

    def release(self) -> None:
        """Stop and disconnect the current source."""
        if self._released:
            return
        self._released = True
        self._running = False
        self._detach(self._source)


def create_source_controller(
    loop: asyncio.AbstractEventLoop,
    context: AudioContext,
    source: PlayableSource,
    output: GainStage,
    logger: logging.LoggerAdapter,  # type: ignore[type-arg]
) -> SourceController:
    """Pick the controller variant for source."""
    if isinstance(source, ElementSource):
        return ElementSourceController(loop, context, source, output, logger)
    if isinstance(source, BufferSource):
        return BufferSourceController(loop, context, source, output, logger)
    raise TypeError(f"Unsupported source type: {type(source).__name__}")
