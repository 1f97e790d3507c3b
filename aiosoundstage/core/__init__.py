"""Public interface for the aiosoundstage core package."""

from .cache import AudioCache, CachedAudio, CacheLease, CacheStats
from .channel import Channel
from .controller import (
    BufferSourceController,
    ElementSourceController,
    SourceController,
    create_source_controller,
)
from .events import EventRegistry, TokenEventCallback
from .fade import FadeOperation
from .loader import AUTO_LOAD_THRESHOLD, AudioLoader
from .session import MASTER_CHANNEL_NAME, Session
from .token import MIN_RATE, PlaybackToken

__all__ = [
    "AUTO_LOAD_THRESHOLD",
    "MASTER_CHANNEL_NAME",
    "MIN_RATE",
    "AudioCache",
    "AudioLoader",
    "BufferSourceController",
    "CacheLease",
    "CacheStats",
    "CachedAudio",
    "Channel",
    "ElementSourceController",
    "EventRegistry",
    "FadeOperation",
    "PlaybackToken",
    "Session",
    "SourceController",
    "TokenEventCallback",
    "create_source_controller",
]
