"""Reference-counted cache of decoded audio."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from aiohttp import ClientError

from aiosoundstage.engine.base import AudioContext, DecodedAudio
from aiosoundstage.errors import AudioUnloadedError, LoadFailureError

from .loader import AudioLoader


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of the cache contents."""

    cached: int
    """Number of live entries."""
    loading: int
    """Number of loads in flight."""


class CacheLease:
    """
    One reference on a cached entry.

    Releasing is idempotent: a lease decrements the reference count exactly once.
    """

    def __init__(self, audio: CachedAudio) -> None:
        """DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY."""
        self._audio = audio
        self._released = False

    @property
    def audio(self) -> CachedAudio:
        """The entry this lease refers to."""
        return self._audio

    @property
    def released(self) -> bool:
        """Whether release() has been called."""
        return self._released

    def release(self) -> None:
        """Give the reference back."""
        if self._released:
            return
        self._released = True
        self._audio._release_ref()  # noqa: SLF001


class CachedAudio:
    """
    Decoded audio shared between the cache and the tokens playing it.

    The payload is read-only. Tokens that already obtained it keep playing after
    the entry is unloaded; only new users are refused.
    """

    def __init__(self, locator: str, audio: DecodedAudio) -> None:
        """DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY."""
        self._locator = locator
        self._audio = audio
        self._alive = True
        self._ref_count = 0

    @property
    def locator(self) -> str:
        """Locator the audio was loaded from."""
        return self._locator

    @property
    def ref_count(self) -> int:
        """Number of outstanding leases."""
        return self._ref_count

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self._audio.duration

    def is_alive(self) -> bool:
        """Whether the entry can still be used."""
        return self._alive

    def raw(self) -> DecodedAudio:
        """
        Return the decoded payload.

        Raises:
            AudioUnloadedError: If the entry has been unloaded.
        """
        if not self._alive:
            raise AudioUnloadedError(f"Audio {self._locator!r} has been unloaded")
        return self._audio

    def acquire(self) -> CacheLease:
        """
        Take a reference on this entry.

        Raises:
            AudioUnloadedError: If the entry has been unloaded.
        """
        if not self._alive:
            raise AudioUnloadedError(f"Audio {self._locator!r} has been unloaded")
        self._ref_count += 1
        return CacheLease(self)

    def _release_ref(self) -> None:
        self._ref_count = max(0, self._ref_count - 1)

    def unload(self) -> None:
        """Drop the entry if nothing references it; otherwise do nothing."""
        if self._ref_count == 0:
            self._alive = False

    def force_unload(self) -> None:
        """Drop the entry regardless of outstanding references."""
        self._alive = False
        self._ref_count = 0

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<CachedAudio {self._locator!r} alive={self._alive} refs={self._ref_count}>"


class AudioCache:
    """
    Decoded audio keyed by locator.

    Concurrent loads of the same locator share one fetch and one decode and all
    observe the same entry.
    """

    _entries: dict[str, CachedAudio]
    _loading: dict[str, asyncio.Task[CachedAudio]]
    """In-flight loads by locator."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        context: AudioContext,
        loader: AudioLoader,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """Create an empty cache decoding through context."""
        self._loop = loop
        self._context = context
        self._loader = loader
        self._logger = logger
        self._entries = {}
        self._loading = {}
        self._closed = False

    @property
    def stats(self) -> CacheStats:
        """Number of live entries and of loads in flight."""
        self._prune()
        return CacheStats(cached=len(self._entries), loading=len(self._loading))

    def _prune(self) -> None:
        for locator in [key for key, entry in self._entries.items() if not entry.is_alive()]:
            del self._entries[locator]

    def get(self, locator: str) -> CachedAudio | None:
        """Return the live entry for locator without loading it."""
        entry = self._entries.get(locator)
        if entry is None:
            return None
        if not entry.is_alive():
            # Unloaded entries still hold their payload, drop them here
            del self._entries[locator]
            return None
        return entry

    async def load(self, locator: str) -> CachedAudio:
        """
        Return the entry for locator, fetching and decoding it if needed.

        Raises:
            LoadFailureError: If fetching or decoding fails.
            AudioUnloadedError: If the cache was cleared.
        """
        if self._closed:
            raise AudioUnloadedError("The audio cache has been cleared")
        entry = self.get(locator)
        if entry is not None:
            return entry
        task = self._loading.get(locator)
        if task is None:
            self._logger.debug("Loading %s", locator)
            task = self._loop.create_task(self._load(locator))
            # Retrieve the exception even when every waiter went away
            task.add_done_callback(lambda t: t.exception() if not t.cancelled() else None)
            self._loading[locator] = task
        return await asyncio.shield(task)

    async def _load(self, locator: str) -> CachedAudio:
        try:
            try:
                data = await self._loader.fetch(locator)
            except (ClientError, TimeoutError, OSError, ValueError) as err:
                raise LoadFailureError(locator, f"fetch failed: {err}") from err
            try:
                decoded = await self._context.decode_audio_data(data)
            except Exception as err:  # noqa: BLE001
                raise LoadFailureError(locator, f"decode failed: {err}") from err
            if self._closed:
                raise AudioUnloadedError("The audio cache has been cleared")
            entry = CachedAudio(locator, decoded)
            self._entries[locator] = entry
            self._logger.debug("Loaded %s (%.3fs)", locator, decoded.duration)
            return entry
        except LoadFailureError as err:
            self._logger.debug("%s", err)
            raise
        finally:
            self._loading.pop(locator, None)

    def clear(self) -> None:
        """Force-unload every entry and refuse further loads."""
        self._closed = True
        for entry in self._entries.values():
            entry.force_unload()
        self._entries.clear()
        self._loading.clear()
