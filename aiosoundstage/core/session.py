"""Session: root of the channel tree and owner of the audio context."""

from __future__ import annotations

import asyncio
import logging
import uuid

from aiohttp.client import ClientSession

from aiosoundstage.engine.base import AudioBackend, AudioContext, GainStage, PlayableSource
from aiosoundstage.errors import (
    AudioUnloadedError,
    LimitExceededError,
    NotReadyError,
    SessionDestroyedError,
)
from aiosoundstage.models.options import ChannelOptions, PlayOptions, SessionOptions
from aiosoundstage.models.types import ContextState, LoadMode
from aiosoundstage.util import SessionLogger

from .cache import AudioCache, CachedAudio, CacheLease, CacheStats
from .channel import Channel
from .loader import AudioLoader
from .token import PlaybackToken

logger = logging.getLogger(__name__)

MASTER_CHANNEL_NAME = "__master__"


class Session:
    """
    Owns an audio context, the master channel, the decoded-audio cache and the loader.

    Until the context runs (see unlock()) only once_ready(), unlock(), destroy() and
    close() may be used; everything else raises NotReadyError. After destroy() every
    operation raises SessionDestroyedError.
    """

    _channels: set[Channel]
    """Every live channel below the master channel."""
    _ready: asyncio.Future[None]
    """Resolved once the audio context is running."""
    _close_task: asyncio.Task[None] | None
    """Shutdown of the context and loader, started by destroy()."""

    def __init__(
        self,
        backend: AudioBackend,
        options: SessionOptions | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        client_session: ClientSession | None = None,
    ) -> None:
        """
        Initialize a new session.

        Args:
            backend: Audio engine that creates the audio context.
            options: Session options.
            loop: The asyncio event loop to use, the running loop when None.
            client_session: Optional ClientSession used to fetch and probe audio over HTTP.
                If None, a new session will be created when first needed.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._options = options or SessionOptions()
        self._id = uuid.uuid4().hex[:8]
        self._logger = SessionLogger(logger, self._id, silent=self._options.silent)
        self._token_logger = self._logger.getChild("token")
        self._destroyed = False
        self._close_task = None
        self._channels = set()

        self._context: AudioContext = backend.create_context(
            self._loop,
            latency_hint=self._options.latency_hint,
            sample_rate=self._options.sample_rate,
        )
        self._loader = AudioLoader(
            self._loop, client_session=client_session, logger=self._logger.getChild("loader")
        )
        self._cache = AudioCache(
            self._loop, self._context, self._loader, self._logger.getChild("cache")
        )
        self._root = Channel(
            self,
            MASTER_CHANNEL_NAME,
            ChannelOptions(volume=self._options.volume),
            parent=None,
            logger=self._logger.getChild("channel"),
        )
        self._ready = self._loop.create_future()
        if self._context.state == ContextState.RUNNING:
            self._ready.set_result(None)
        self._logger.debug(
            "Session created (context %s, max_channels=%d)",
            self._context.state.value,
            self._options.max_channels,
        )

    @property
    def session_id(self) -> str:
        """Short identifier used in log messages."""
        return self._id

    @property
    def options(self) -> SessionOptions:
        """Options the session was created with."""
        return self._options

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Event loop the session runs on."""
        return self._loop

    @property
    def context(self) -> AudioContext:
        """Audio context owned by this session."""
        return self._context

    @property
    def loader(self) -> AudioLoader:
        """Loader used to fetch and probe audio."""
        return self._loader

    @property
    def master(self) -> Channel:
        """The master channel, root of the channel tree."""
        return self._root

    @property
    def ready(self) -> bool:
        """Whether the audio context is running."""
        return self._ready.done() and not self._ready.cancelled()

    @property
    def destroyed(self) -> bool:
        """Whether destroy() has been called."""
        return self._destroyed

    @property
    def channel_count(self) -> int:
        """Number of live channels, not counting the master channel."""
        return len(self._channels)

    # Guards

    def _ensure_not_destroyed(self) -> None:
        if self._destroyed:
            raise SessionDestroyedError("Session has been destroyed")

    def _ensure_usable(self) -> None:
        self._ensure_not_destroyed()
        if not self.ready:
            raise NotReadyError("Audio context is not running yet, call unlock() first")

    def _check_channel_capacity(self) -> None:
        # The master channel counts towards the ceiling
        if len(self._channels) + 1 >= self._options.max_channels:
            raise LimitExceededError(
                f"Maximum number of channels reached ({self._options.max_channels})"
            )

    def _register_channel(self, channel: Channel) -> None:
        self._channels.add(channel)

    def _unregister_channel(self, channel: Channel) -> None:
        self._channels.discard(channel)

    # Readiness

    async def once_ready(self) -> None:
        """
        Wait until the audio context is running.

        Raises:
            SessionDestroyedError: If the session is destroyed before that.
        """
        self._ensure_not_destroyed()
        try:
            await asyncio.shield(self._ready)
        except asyncio.CancelledError:
            if self._destroyed and self._ready.cancelled():
                raise SessionDestroyedError("Session was destroyed before it became ready") from None
            raise

    async def unlock(self) -> None:
        """
        Resume the audio context.

        Call this from the handler of a user gesture on hosts that only allow audio
        after one.
        """
        self._ensure_not_destroyed()
        if self._context.state != ContextState.RUNNING:
            await self._context.resume()
        if self._destroyed:
            return
        if not self._ready.done():
            self._ready.set_result(None)
            self._logger.debug("Audio context unlocked")

    # Master volume

    @property
    def volume(self) -> float:
        """Master volume."""
        return self._root.volume

    @property
    def muted(self) -> bool:
        """Master mute state."""
        return self._root.muted

    def set_volume(self, volume: float) -> None:
        """Set the master volume."""
        self._ensure_usable()
        self._root.set_volume(volume)

    def mute(self, muted: bool = True) -> None:  # noqa: FBT001, FBT002
        """Mute or unmute everything."""
        self._ensure_usable()
        self._root.mute(muted)

    def unmute(self) -> None:
        """Unmute everything."""
        self.mute(False)

    # Channels

    def create_channel(self, name: str, options: ChannelOptions | None = None) -> Channel:
        """
        Create a channel below the master channel.

        Raises:
            DuplicateNameError: If a top-level channel with this name exists.
            LimitExceededError: If max_channels is reached.
        """
        self._ensure_usable()
        return self._root.create_channel(name, options)

    def get_channel(self, name: str) -> Channel | None:
        """Return the top-level channel named name, if any."""
        self._ensure_usable()
        return self._root.get_channel(name)

    def get_channels(self) -> list[Channel]:
        """Return the top-level channels in creation order."""
        self._ensure_usable()
        return self._root.get_channels()

    # Audio

    async def load(self, locator: str) -> CachedAudio:
        """
        Fetch and decode locator into the cache, or return the cached entry.

        Raises:
            LoadFailureError: If fetching or decoding fails.
        """
        self._ensure_usable()
        return await self._load_cached(locator)

    async def _load_cached(self, locator: str) -> CachedAudio:
        try:
            audio = await self._cache.load(locator)
        except AudioUnloadedError as err:
            if self._destroyed:
                raise SessionDestroyedError("Session was destroyed while loading") from err
            raise
        self._ensure_not_destroyed()
        return audio

    async def play(self, source: str | CachedAudio, options: PlayOptions | None = None) -> PlaybackToken:
        """Play source on the master channel."""
        self._ensure_usable()
        return await self._root.play(source, options)

    def get_tokens(self) -> list[PlaybackToken]:
        """Return every token in the channel tree."""
        self._ensure_usable()
        return self._root.get_tokens()

    @property
    def cache_stats(self) -> CacheStats:
        """Entries in the decoded-audio cache and loads in flight."""
        self._ensure_usable()
        return self._cache.stats

    async def _create_token(
        self,
        source: str | CachedAudio,
        options: PlayOptions,
        output: GainStage,
    ) -> PlaybackToken:
        if isinstance(source, CachedAudio):
            lease = source.acquire()
            return self._build_token(
                self._context.create_buffer_source(source.raw()), output, options, lease
            )

        mode = await self._loader.resolve_load_mode(source, options.load)
        self._ensure_not_destroyed()
        if mode == LoadMode.STREAM:
            return self._build_token(
                self._context.create_element_source(source), output, options, None
            )

        audio = await self._load_cached(source)
        lease = audio.acquire()
        return self._build_token(
            self._context.create_buffer_source(audio.raw()), output, options, lease
        )

    def _build_token(
        self,
        source: PlayableSource,
        output: GainStage,
        options: PlayOptions,
        lease: CacheLease | None,
    ) -> PlaybackToken:
        try:
            return PlaybackToken(
                self._loop,
                self._context,
                source,
                output,
                options,
                lease=lease,
                logger=self._token_logger,
            )
        except Exception:
            if lease is not None:
                lease.release()
            raise

    # Teardown

    def destroy(self) -> None:
        """
        Tear the session down.

        Every channel is removed and every token stopped synchronously. Closing the
        audio context and the loader continues in the background, await close() to
        wait for it. Idempotent.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._cache.clear()
        self._root.remove()
        self._channels.clear()
        if not self._ready.done():
            self._ready.cancel()
        self._close_task = self._loop.create_task(self._shutdown())
        self._close_task.add_done_callback(lambda t: t.exception() if not t.cancelled() else None)
        self._logger.debug("Session destroyed")

    async def _shutdown(self) -> None:
        try:
            await self._loader.close()
            await self._context.close()
        except Exception as err:  # noqa: BLE001
            self._logger.warning("Error while closing audio resources: %s", err)

    async def close(self) -> None:
        """Destroy the session and wait until its resources are closed."""
        self.destroy()
        if self._close_task is not None:
            await self._close_task

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<Session {self._id} destroyed={self._destroyed}>"
