"""Named volume groups forming the channel tree."""

from __future__ import annotations

import logging
import weakref
from typing import TYPE_CHECKING

from aiosoundstage.engine.base import GainStage
from aiosoundstage.errors import ChannelRemovedError, DuplicateNameError
from aiosoundstage.models.options import ChannelOptions, PlayOptions
from aiosoundstage.models.types import TokenEvent
from aiosoundstage.util import clamp

from .cache import CachedAudio
from .token import PlaybackToken

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .session import Session


class Channel:
    """
    A named node of the channel tree.

    A channel scales everything below it by its volume (0 when muted), so the
    loudness of a token is the product of the volumes on its path to the root. A
    channel optionally limits how many tokens may play on it at once; playing past
    the limit stops the oldest token.

    Do not construct directly, use Session.create_channel() or Channel.create_channel().
    """

    _parent_ref: weakref.ref[Channel] | None
    """Parent channel, None for the root."""
    _children: dict[str, Channel]
    """Child channels by name, in creation order."""
    _tokens: dict[PlaybackToken, None]
    """Attached tokens in attachment order."""

    def __init__(
        self,
        session: Session,
        name: str,
        options: ChannelOptions,
        *,
        parent: Channel | None,
        logger: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY."""
        self._session = session
        self._name = name
        self._volume = clamp(options.volume)
        self._limit = options.limit
        self._muted = False
        self._removed = False
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._children = {}
        self._tokens = {}
        self._logger = logger
        self._gain = session.context.create_gain()
        self._gain.value = self._volume
        self._gain.connect(parent.gain if parent is not None else session.context.destination)

    @property
    def name(self) -> str:
        """Name, unique among siblings."""
        return self._name

    @property
    def parent(self) -> Channel | None:
        """Parent channel, None for the root or once the parent is gone."""
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def removed(self) -> bool:
        """Whether remove() has been called."""
        return self._removed

    @property
    def volume(self) -> float:
        """Stored volume of this channel, range 0-1."""
        return self._volume

    @property
    def muted(self) -> bool:
        """Mute state of this channel."""
        return self._muted

    @property
    def limit(self) -> int | None:
        """Maximum number of attached tokens, None for unlimited."""
        return self._limit

    @property
    def options(self) -> ChannelOptions:
        """Current settings of this channel."""
        return ChannelOptions(volume=self._volume, limit=self._limit)

    @property
    def gain(self) -> GainStage:
        """Gain stage owned by this channel."""
        return self._gain

    @property
    def effective_volume(self) -> float:
        """Product of the volumes (0 when muted) from this channel up to the root."""
        level = 1.0
        channel: Channel | None = self
        while channel is not None:
            level *= 0.0 if channel.muted else channel.volume
            channel = channel.parent
        return level

    def _ensure_not_removed(self) -> None:
        if self._removed:
            raise ChannelRemovedError(f"Channel {self._name!r} has been removed")

    # Tree

    def create_channel(self, name: str, options: ChannelOptions | None = None) -> Channel:
        """
        Create a child channel.

        Raises:
            DuplicateNameError: If a child with this name already exists.
            LimitExceededError: If the session's channel ceiling is reached.
        """
        self._ensure_not_removed()
        self._session._ensure_usable()  # noqa: SLF001
        if name in self._children:
            raise DuplicateNameError(f"Channel {self._name!r} already has a child named {name!r}")
        self._session._check_channel_capacity()  # noqa: SLF001
        child = Channel(
            self._session,
            name,
            options or ChannelOptions(),
            parent=self,
            logger=self._logger,
        )
        self._children[name] = child
        self._session._register_channel(child)  # noqa: SLF001
        self._logger.debug("Created channel %s under %s", name, self._name)
        return child

    def get_channel(self, name: str) -> Channel | None:
        """Return the child named name, if any."""
        self._ensure_not_removed()
        return self._children.get(name)

    def get_channels(self) -> list[Channel]:
        """Return the direct children in creation order."""
        self._ensure_not_removed()
        return list(self._children.values())

    def remove(self) -> None:
        """
        Remove this channel and everything below it.

        Every attached token is stopped at once (no fade), children are removed
        recursively. Idempotent.
        """
        if self._removed:
            return
        self._removed = True
        tokens = list(self._tokens)
        self._tokens.clear()
        for token in tokens:
            token.stop()
        children = list(self._children.values())
        self._children.clear()
        for child in children:
            child.remove()
        self._gain.disconnect()
        self._session._unregister_channel(self)  # noqa: SLF001
        if (parent := self.parent) is not None:
            parent._forget_child(self)  # noqa: SLF001
        self._logger.debug("Removed channel %s (%d tokens stopped)", self._name, len(tokens))

    def _forget_child(self, child: Channel) -> None:
        if self._children.get(child.name) is child:
            del self._children[child.name]

    # Volume

    def set_volume(self, volume: float) -> None:
        """Set the volume of this channel. Children keep their own volumes."""
        self._ensure_not_removed()
        self._volume = clamp(volume)
        if not self._muted:
            self._gain.value = self._volume

    def mute(self, muted: bool = True) -> None:  # noqa: FBT001, FBT002
        """Mute or unmute this channel. The stored volume is kept."""
        self._ensure_not_removed()
        self._muted = muted
        self._gain.value = 0.0 if muted else self._volume

    def unmute(self) -> None:
        """Unmute this channel."""
        self.mute(False)

    # Playback

    def _evict_oldest(self) -> None:
        token = next(iter(self._tokens))
        del self._tokens[token]
        self._logger.debug("Channel %s at its limit of %s, stopping oldest token", self._name, self._limit)
        token.stop()

    def _make_room(self) -> None:
        if self._limit is None:
            return
        while self._tokens and len(self._tokens) >= self._limit:
            self._evict_oldest()

    async def play(self, source: str | CachedAudio, options: PlayOptions | None = None) -> PlaybackToken:
        """
        Start playing source on this channel and return its token.

        Args:
            source: Locator of the audio, or an entry obtained from Session.load().
            options: Playback options.

        Raises:
            ChannelRemovedError: If the channel is removed, also while loading.
            LoadFailureError: If the audio had to be loaded and loading failed.
        """
        self._ensure_not_removed()
        self._session._ensure_usable()  # noqa: SLF001
        options = options or PlayOptions()
        self._make_room()

        token = await self._session._create_token(source, options, self._gain)  # noqa: SLF001
        if self._removed:
            token.stop()
            raise ChannelRemovedError(f"Channel {self._name!r} was removed while loading {source!r}")
        # Plays running concurrently may have filled the channel in the meantime
        self._make_room()
        self._attach(token)
        return token

    def _attach(self, token: PlaybackToken) -> None:
        self._tokens[token] = None

        def _detach(finished: PlaybackToken, _event: TokenEvent) -> None:
            self._tokens.pop(finished, None)

        token.once(TokenEvent.STOP, _detach)
        token.once(TokenEvent.ENDED, _detach)

    def get_tokens(self) -> list[PlaybackToken]:
        """Own tokens in attachment order, then those of each child in creation order."""
        tokens = list(self._tokens)
        for child in self._children.values():
            tokens.extend(child.get_tokens())
        return tokens

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<Channel {self._name!r} volume={self._volume:.3f} muted={self._muted}>"
