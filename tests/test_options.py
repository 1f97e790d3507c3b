from __future__ import annotations

import orjson
import pytest

from aiosoundstage.models import (
    ChannelOptions,
    LatencyHint,
    LoadMode,
    PlayOptions,
    SessionOptions,
    StopOptions,
)


def test_defaults() -> None:
    session = SessionOptions()
    assert session.volume == 1.0
    assert session.latency_hint == LatencyHint.INTERACTIVE
    assert session.sample_rate == 44100
    assert session.max_channels == 128
    assert session.silent is False

    channel = ChannelOptions()
    assert channel.volume == 1.0
    assert channel.limit is None

    play = PlayOptions()
    assert play.volume == 1.0
    assert play.start_time == 0.0
    assert play.end_time is None
    assert play.rate == 1.0
    assert play.load == LoadMode.AUTO
    assert play.loop is False

    assert StopOptions().fade_duration == 0.0


def test_session_options_from_json_camel_case() -> None:
    data = orjson.dumps(
        {"volume": 0.5, "latencyHint": "playback", "sampleRate": 48000, "maxChannels": 8}
    )
    options = SessionOptions.from_json(data)
    assert options.volume == 0.5
    assert options.latency_hint == LatencyHint.PLAYBACK
    assert options.sample_rate == 48000
    assert options.max_channels == 8


def test_play_options_accept_snake_case() -> None:
    options = PlayOptions.from_dict({"start_time": 1.5, "end_time": 3.0, "load": "full", "loop": True})
    assert options.start_time == 1.5
    assert options.end_time == 3.0
    assert options.load == LoadMode.FULL
    assert options.loop is True


def test_serialization_uses_aliases_and_omits_none() -> None:
    data = PlayOptions(start_time=2.0).to_dict()
    assert data["startTime"] == 2.0
    assert data["load"] == "auto"
    assert "endTime" not in data
    assert "start_time" not in data

    assert orjson.loads(StopOptions(fade_duration=250).to_json()) == {"fadeDuration": 250}


@pytest.mark.parametrize(
    "factory",
    [
        lambda: SessionOptions(volume=1.5),
        lambda: SessionOptions(max_channels=0),
        lambda: SessionOptions(sample_rate=0),
        lambda: ChannelOptions(volume=-0.1),
        lambda: ChannelOptions(limit=0),
        lambda: PlayOptions(rate=0),
        lambda: PlayOptions(start_time=-1),
        lambda: PlayOptions(start_time=2, end_time=1),
        lambda: StopOptions(fade_duration=-5),
    ],
)
def test_invalid_values_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory()
