from __future__ import annotations

import asyncio
import io
import wave

import pytest

from aiosoundstage.engine import DecodedAudio, VirtualBackend, decode_with_av
from aiosoundstage.errors import PlaybackRejectedError
from aiosoundstage.models import ContextState, LatencyHint


def _context(backend: VirtualBackend | None = None):
    backend = backend or VirtualBackend()
    return backend.create_context(
        asyncio.get_running_loop(), latency_hint=LatencyHint.INTERACTIVE, sample_rate=8000
    )


def _silence(seconds: float) -> DecodedAudio:
    return DecodedAudio(samples=b"\0" * int(seconds * 2000), sample_rate=1000, channels=1)


@pytest.mark.asyncio
async def test_gain_automation_interpolates_linear_ramps() -> None:
    context = _context()
    gain = context.create_gain()
    now = context.current_time
    gain.set_value_at_time(0.0, now)
    gain.linear_ramp_to_value_at_time(1.0, now + 1.0)

    assert gain.value_at_time(now) == pytest.approx(0.0)
    assert gain.value_at_time(now + 0.25) == pytest.approx(0.25)
    assert gain.value_at_time(now + 2.0) == pytest.approx(1.0)

    gain.cancel_scheduled_values(now)
    assert gain.value_at_time(now + 0.5) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_effective_gain_follows_the_graph() -> None:
    context = _context()
    outer = context.create_gain()
    inner = context.create_gain()
    outer.value = 0.5
    inner.value = 0.4
    outer.connect(context.destination)
    inner.connect(outer)
    assert inner.effective_gain() == pytest.approx(0.2)

    outer.disconnect()
    assert inner.effective_gain() == 0.0
    assert outer.disconnect_count == 1


@pytest.mark.asyncio
async def test_buffer_source_ends_naturally_but_not_when_stopped() -> None:
    context = _context()
    ended: list[str] = []

    natural = context.create_buffer_source(_silence(0.05))
    natural.set_ended_callback(lambda: ended.append("natural"))
    natural.start()

    stopped = context.create_buffer_source(_silence(0.05))
    stopped.set_ended_callback(lambda: ended.append("stopped"))
    stopped.start()
    stopped.stop()

    await asyncio.sleep(0.15)
    assert ended == ["natural"]
    assert not natural.playing
    assert natural.position == pytest.approx(0.05)

    with pytest.raises(RuntimeError):
        natural.start()


@pytest.mark.asyncio
async def test_buffer_source_loop_window_wraps_position() -> None:
    context = _context()
    source = context.create_buffer_source(_silence(1.0))
    source.loop = True
    source.loop_start = 0.0
    source.loop_end = 0.05
    source.start()
    await asyncio.sleep(0.12)
    assert source.playing
    assert 0.0 <= source.position < 0.05


@pytest.mark.asyncio
async def test_element_source_rejects_autoplay() -> None:
    context = _context(VirtualBackend(autoplay_allowed=False))
    element = context.create_element_source("song.mp3")
    with pytest.raises(PlaybackRejectedError):
        await element.play()
    assert element.paused

    context.autoplay_allowed = True
    await element.play()
    assert not element.paused
    assert element.play_calls == 2


@pytest.mark.asyncio
async def test_suspended_context_resumes_and_closes() -> None:
    context = _context(VirtualBackend(start_suspended=True))
    assert context.state == ContextState.SUSPENDED
    await context.resume()
    assert context.state == ContextState.RUNNING

    element = context.create_element_source("song.mp3")
    await element.play()
    await context.close()
    assert context.state == ContextState.CLOSED
    assert element.released
    with pytest.raises(RuntimeError):
        await context.resume()


def _wav_bytes(seconds: float, rate: int = 8000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b"\0\0" * int(seconds * rate))
    return buffer.getvalue()


def test_decode_with_av_reads_wav() -> None:
    audio = decode_with_av(_wav_bytes(0.5), 8000)
    assert audio.channels == 1
    assert audio.sample_rate == 8000
    assert audio.duration == pytest.approx(0.5, abs=0.05)


@pytest.mark.asyncio
async def test_context_decodes_off_the_loop() -> None:
    context = _context(VirtualBackend(decoder=lambda data, rate: _silence(len(data) / 2000)))
    audio = await context.decode_audio_data(b"\0" * 1000)
    assert audio.duration == pytest.approx(0.5)
    assert context.decode_count == 1
