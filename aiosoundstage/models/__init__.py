"""Option and enum models for aiosoundstage."""

from __future__ import annotations

from .options import ChannelOptions, PlayOptions, SessionOptions, StopOptions
from .types import ContextState, FadeState, LatencyHint, LoadMode, PlaybackState, TokenEvent

__all__ = [
    "ChannelOptions",
    "ContextState",
    "FadeState",
    "LatencyHint",
    "LoadMode",
    "PlayOptions",
    "PlaybackState",
    "SessionOptions",
    "StopOptions",
    "TokenEvent",
]
