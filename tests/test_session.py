from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest
from aiohttp import ClientSession

from aiosoundstage.core import Session
from aiosoundstage.engine import DecodedAudio, VirtualBackend
from aiosoundstage.errors import NotReadyError, SessionDestroyedError, UseAfterTeardownError
from aiosoundstage.models import (
    ContextState,
    LatencyHint,
    LoadMode,
    PlaybackState,
    PlayOptions,
    SessionOptions,
)


def _decode(data: bytes, sample_rate: int) -> DecodedAudio:
    # Test payloads are raw mono PCM at 1 kHz, 2000 bytes per second
    return DecodedAudio(samples=data, sample_rate=1000, channels=1)


def _audio_file(tmp_path: Path, seconds: float = 1.0) -> str:
    path = tmp_path / "clip.raw"
    path.write_bytes(b"\0" * int(seconds * 2000))
    return str(path)


@pytest.mark.asyncio
async def test_context_created_from_options() -> None:
    backend = VirtualBackend(decoder=_decode)
    session = Session(
        backend, SessionOptions(latency_hint=LatencyHint.PLAYBACK, sample_rate=22050, volume=0.4)
    )
    context = backend.contexts[0]
    assert session.context is context
    assert context.latency_hint == LatencyHint.PLAYBACK
    assert context.sample_rate == 22050
    assert session.volume == pytest.approx(0.4)
    assert session.master.gain.output is context.destination
    assert session.ready
    await session.close()


@pytest.mark.asyncio
async def test_unlock_makes_session_ready() -> None:
    session = Session(VirtualBackend(decoder=_decode, start_suspended=True))
    assert not session.ready
    with pytest.raises(NotReadyError):
        session.create_channel("music")
    with pytest.raises(NotReadyError):
        await session.play("song.mp3")

    waiter = asyncio.create_task(session.once_ready())
    await asyncio.sleep(0)
    assert not waiter.done()

    await session.unlock()
    await asyncio.wait_for(waiter, timeout=1)
    assert session.ready
    assert session.context.state == ContextState.RUNNING
    session.create_channel("music")
    await session.unlock()
    await session.close()


@pytest.mark.asyncio
async def test_destroy_before_ready_fails_waiters() -> None:
    session = Session(VirtualBackend(decoder=_decode, start_suspended=True))
    waiter = asyncio.create_task(session.once_ready())
    await asyncio.sleep(0)
    session.destroy()
    with pytest.raises(SessionDestroyedError):
        await waiter
    await session.close()


@pytest.mark.asyncio
async def test_destroy_tears_everything_down(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    music = session.create_channel("music")
    token = await music.play(_audio_file(tmp_path), PlayOptions(load=LoadMode.FULL))

    session.destroy()
    session.destroy()
    assert session.destroyed
    assert token.state == PlaybackState.STOPPED
    assert music.removed
    assert session.master.removed

    for operation in (
        lambda: session.create_channel("sfx"),
        lambda: session.get_channels(),
        lambda: session.set_volume(0.5),
        lambda: session.get_tokens(),
        lambda: session.cache_stats,
    ):
        with pytest.raises(SessionDestroyedError):
            operation()
    with pytest.raises(UseAfterTeardownError):
        await session.load("clip.raw")
    with pytest.raises(SessionDestroyedError):
        await session.once_ready()
    with pytest.raises(SessionDestroyedError):
        await session.unlock()

    await session.close()
    assert session.context.state == ContextState.CLOSED


@pytest.mark.asyncio
async def test_destroy_during_load(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    task = asyncio.create_task(session.play(_audio_file(tmp_path), PlayOptions(load=LoadMode.FULL)))
    await asyncio.sleep(0)
    session.destroy()
    with pytest.raises(SessionDestroyedError):
        await task
    await session.close()


@pytest.mark.asyncio
async def test_play_cached_audio_on_master(tmp_path: Path) -> None:
    session = Session(VirtualBackend(decoder=_decode))
    audio = await session.load(_audio_file(tmp_path))
    token = await session.play(audio)
    assert token.cached_audio is audio
    assert audio.ref_count == 1
    assert session.get_tokens() == [token]
    assert token.gain.output is session.master.gain
    await session.close()
    assert audio.ref_count == 0


@pytest.mark.asyncio
async def test_silent_session_logs_nothing(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="aiosoundstage")
    loud = Session(VirtualBackend(decoder=_decode))
    quiet = Session(VirtualBackend(decoder=_decode), SessionOptions(silent=True))
    for session in (loud, quiet):
        channel = session.create_channel("music")
        token = await channel.play(_audio_file(tmp_path), PlayOptions(load=LoadMode.FULL))
        token.stop()
        await session.close()

    assert any(f"[{loud.session_id}]" in record.getMessage() for record in caplog.records)
    assert not any(f"[{quiet.session_id}]" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_injected_client_session_survives_close() -> None:
    async with ClientSession() as client_session:
        session = Session(VirtualBackend(decoder=_decode), client_session=client_session)
        await session.close()
        assert not client_session.closed
