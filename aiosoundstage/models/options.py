"""
Option objects for sessions, channels, playback and stopping.

Every options class is a mashumaro dataclass, so configuration can be built in
code or loaded from JSON/dicts. JSON keys use camelCase aliases (``latencyHint``,
``maxChannels``, ``startTime``...), snake_case field names are accepted as well.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import LatencyHint, LoadMode


def _check_volume(volume: float) -> None:
    if not 0 <= volume <= 1:
        raise ValueError(f"Volume must be in range 0-1, got {volume}")


class _OptionsConfig(BaseConfig):
    """Config for parsing options."""

    serialize_by_alias = True
    allow_deserialization_not_by_alias = True
    omit_none = True


@dataclass
class SessionOptions(DataClassORJSONMixin):
    """Options for a Session."""

    volume: float = 1.0
    """Master volume, range 0-1."""
    latency_hint: Annotated[LatencyHint, Alias("latencyHint")] = LatencyHint.INTERACTIVE
    """Latency hint for the audio context."""
    sample_rate: Annotated[int, Alias("sampleRate")] = 44100
    """Sample rate of the audio context in Hz."""
    max_channels: Annotated[int, Alias("maxChannels")] = 128
    """Maximum number of channels, including the master channel."""
    silent: bool = False
    """Suppress diagnostic logging for this session."""

    def __post_init__(self) -> None:
        """Validate field values."""
        _check_volume(self.volume)
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.max_channels < 1:
            raise ValueError(f"max_channels must be at least 1, got {self.max_channels}")

    class Config(_OptionsConfig):
        """Config for parsing options."""


@dataclass
class ChannelOptions(DataClassORJSONMixin):
    """Options for a Channel."""

    volume: float = 1.0
    """Channel volume, range 0-1."""
    limit: int | None = None
    """Maximum number of tokens playing at the same time, None for no limit."""

    def __post_init__(self) -> None:
        """Validate field values."""
        _check_volume(self.volume)
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be at least 1, got {self.limit}")

    class Config(_OptionsConfig):
        """Config for parsing options."""


@dataclass
class PlayOptions(DataClassORJSONMixin):
    """Options for playing a sound."""

    volume: float = 1.0
    """Initial token volume, range 0-1."""
    start_time: Annotated[float, Alias("startTime")] = 0.0
    """Offset in seconds playback starts from."""
    end_time: Annotated[float | None, Alias("endTime")] = None
    """
    Offset in seconds where playback ends.

    With loop enabled, playback jumps back to start_time when end_time is reached.
    """
    rate: float = 1.0
    """Playback rate."""
    load: LoadMode = LoadMode.AUTO
    """How the audio data is acquired when playing from a locator."""
    loop: bool = False
    """Loop the sound."""

    def __post_init__(self) -> None:
        """Validate field values."""
        _check_volume(self.volume)
        if self.start_time < 0:
            raise ValueError(f"start_time must not be negative, got {self.start_time}")
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError(
                f"end_time must be greater than start_time, got {self.end_time} <= {self.start_time}"
            )
        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")

    class Config(_OptionsConfig):
        """Config for parsing options."""


@dataclass
class StopOptions(DataClassORJSONMixin):
    """Options for stopping a token."""

    fade_duration: Annotated[float, Alias("fadeDuration")] = 0.0
    """Fade-out duration in milliseconds before the token stops."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.fade_duration < 0:
            raise ValueError(f"fade_duration must not be negative, got {self.fade_duration}")

    class Config(_OptionsConfig):
        """Config for parsing options."""
