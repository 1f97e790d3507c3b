"""Decode encoded audio files to PCM with PyAV."""

from __future__ import annotations

import types
from io import BytesIO

from .base import DecodedAudio


def _get_av() -> types.ModuleType:
    """Lazy import of av module to avoid slow startup."""
    import av as _av  # noqa: PLC0415

    return _av


def decode_with_av(data: bytes, sample_rate: int) -> DecodedAudio:
    """
    Decode an in-memory audio file to interleaved s16 PCM at sample_rate.

    Mono sources stay mono, everything else is downmixed to stereo.

    Raises:
        ValueError: If the data contains no audio stream.
        av.FFmpegError: If the data cannot be demuxed or decoded.
    """
    av = _get_av()
    with av.open(BytesIO(data)) as container:
        if not container.streams.audio:
            raise ValueError("No audio stream found")
        stream = container.streams.audio[0]
        channels = 1 if len(stream.codec_context.layout.channels) == 1 else 2
        resampler = av.AudioResampler(
            format="s16",
            layout="mono" if channels == 1 else "stereo",
            rate=sample_rate,
        )
        frame_stride = 2 * channels
        chunks: list[bytes] = []
        for frame in container.decode(stream):
            for out_frame in resampler.resample(frame):
                chunks.append(bytes(out_frame.planes[0])[: frame_stride * out_frame.samples])
        # Flush whatever the resampler still buffers
        for out_frame in resampler.resample(None):
            chunks.append(bytes(out_frame.planes[0])[: frame_stride * out_frame.samples])

    return DecodedAudio(samples=b"".join(chunks), sample_rate=sample_rate, channels=channels)
