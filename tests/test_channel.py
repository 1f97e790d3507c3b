from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from aiosoundstage.core import Session
from aiosoundstage.engine import DecodedAudio, VirtualBackend
from aiosoundstage.errors import (
    ChannelRemovedError,
    DuplicateNameError,
    LimitExceededError,
)
from aiosoundstage.models import (
    ChannelOptions,
    LoadMode,
    PlaybackState,
    PlayOptions,
    SessionOptions,
    TokenEvent,
)


def _decode(data: bytes, sample_rate: int) -> DecodedAudio:
    # Test payloads are raw mono PCM at 1 kHz, 2000 bytes per second
    return DecodedAudio(samples=data, sample_rate=1000, channels=1)


def _audio_file(tmp_path: Path, name: str = "clip.raw", seconds: float = 1.0) -> str:
    path = tmp_path / name
    path.write_bytes(b"\0" * int(seconds * 2000))
    return str(path)


FULL = PlayOptions(load=LoadMode.FULL)


@pytest.mark.asyncio
async def test_loudness_is_product_along_the_path(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode), SessionOptions(volume=0.8))
    music = session.create_channel("music", ChannelOptions(volume=0.5))
    ambience = music.create_channel("ambience", ChannelOptions(volume=0.5))
    token = await ambience.play(_audio_file(tmp_path), PlayOptions(volume=0.5, load=LoadMode.FULL))

    assert token.gain.effective_gain() == pytest.approx(0.8 * 0.5 * 0.5 * 0.5)
    assert ambience.effective_volume == pytest.approx(0.8 * 0.5 * 0.5)

    music.set_volume(1.0)
    assert ambience.volume == 0.5
    assert token.gain.effective_gain() == pytest.approx(0.8 * 0.5 * 0.5)

    music.mute()
    assert music.volume == 1.0
    assert token.gain.effective_gain() == 0.0
    assert ambience.effective_volume == 0.0

    music.unmute()
    assert token.gain.effective_gain() == pytest.approx(0.8 * 0.5 * 0.5)

    session.mute()
    assert token.gain.effective_gain() == 0.0
    session.unmute()
    session.set_volume(2.0)
    assert session.volume == 1.0
    assert token.gain.effective_gain() == pytest.approx(0.5 * 0.5)
    await session.close()


@pytest.mark.asyncio
async def test_limit_evicts_oldest_token(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    sfx = session.create_channel("sfx", ChannelOptions(limit=2))
    path = _audio_file(tmp_path)

    first = await sfx.play(path, FULL)
    stops: list[TokenEvent] = []
    first.on("stop", lambda _token, event: stops.append(event))
    second = await sfx.play(path, FULL)
    third = await sfx.play(path, FULL)

    assert first.state == PlaybackState.STOPPED
    assert stops == [TokenEvent.STOP]
    assert second.is_playing
    assert third.is_playing
    assert sfx.get_tokens() == [second, third]
    await session.close()


@pytest.mark.asyncio
async def test_concurrent_plays_never_exceed_limit(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    sfx = session.create_channel("sfx", ChannelOptions(limit=1))
    path = _audio_file(tmp_path)

    tokens = await asyncio.gather(*(sfx.play(path, FULL) for _ in range(3)))
    attached = sfx.get_tokens()
    assert len(attached) == 1
    assert sum(1 for token in tokens if token.is_playing) == 1
    await session.close()


@pytest.mark.asyncio
async def test_names_unique_among_siblings() -> None:
    session = Session(VirtualBackend(decoder=_decode))
    music = session.create_channel("music")
    with pytest.raises(DuplicateNameError):
        session.create_channel("music")
    nested = music.create_channel("music")
    assert session.get_channel("music") is music
    assert music.get_channel("music") is nested
    assert nested.parent is music
    assert session.get_channel("missing") is None
    await session.close()


@pytest.mark.asyncio
async def test_channel_ceiling_counts_master() -> None:
    session = Session(VirtualBackend(decoder=_decode), SessionOptions(max_channels=3))
    first = session.create_channel("a")
    first.create_channel("b")
    with pytest.raises(LimitExceededError):
        session.create_channel("c")

    first.remove()
    assert session.channel_count == 0
    session.create_channel("c")
    await session.close()


@pytest.mark.asyncio
async def test_get_tokens_order(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    path = _audio_file(tmp_path)
    music = session.create_channel("music")
    sfx = session.create_channel("sfx")
    nested = music.create_channel("nested")

    on_sfx = await sfx.play(path, FULL)
    on_nested = await nested.play(path, FULL)
    on_music = await music.play(path, FULL)
    on_master = await session.play(path, FULL)

    assert music.get_tokens() == [on_music, on_nested]
    assert session.get_tokens() == [on_master, on_music, on_nested, on_sfx]
    assert session.get_channels() == [music, sfx]
    await session.close()


@pytest.mark.asyncio
async def test_remove_tears_down_subtree(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    path = _audio_file(tmp_path)
    parent = session.create_channel("parent")
    left = parent.create_channel("left")
    right = parent.create_channel("right")
    left_token = await left.play(path, FULL)
    right_token = await right.play(path, FULL)

    parent.remove()
    parent.remove()

    assert session.get_tokens() == []
    assert left_token.state == PlaybackState.STOPPED
    assert right_token.state == PlaybackState.STOPPED
    for stage in (left.gain, right.gain, left_token.gain, right_token.gain, parent.gain):
        assert stage.disconnect_count == 1
    assert parent.removed
    assert left.removed
    assert session.get_channels() == []
    assert session.channel_count == 0

    with pytest.raises(ChannelRemovedError):
        parent.set_volume(0.5)
    with pytest.raises(ChannelRemovedError):
        left.create_channel("child")
    with pytest.raises(ChannelRemovedError):
        await right.play(path, FULL)
    # Read-only attributes stay accessible
    assert parent.name == "parent"
    assert parent.volume == 1.0
    await session.close()


@pytest.mark.asyncio
async def test_remove_during_load_stops_new_token(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    path = _audio_file(tmp_path)
    sfx = session.create_channel("sfx")

    task = asyncio.create_task(sfx.play(path, FULL))
    await asyncio.sleep(0)
    sfx.remove()
    with pytest.raises(ChannelRemovedError):
        await task

    audio = await session.load(path)
    assert audio.ref_count == 0
    assert session.get_tokens() == []
    await session.close()


@pytest.mark.asyncio
async def test_token_leaves_channel_when_it_ends(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    sfx = session.create_channel("sfx")
    token = await sfx.play(_audio_file(tmp_path, seconds=0.05), FULL)
    assert sfx.get_tokens() == [token]

    await asyncio.sleep(0.15)
    assert token.state == PlaybackState.ENDED
    assert sfx.get_tokens() == []
    await session.close()


@pytest.mark.asyncio
async def test_options_snapshot() -> None:
    session = Session(VirtualBackend(decoder=_decode))
    sfx = session.create_channel("sfx", ChannelOptions(volume=0.3, limit=4))
    sfx.set_volume(0.6)
    assert sfx.options == ChannelOptions(volume=0.6, limit=4)
    assert sfx.limit == 4
    await session.close()
