"""Audio engine contract and the bundled virtual engine."""

from .base import (
    AudioBackend,
    AudioContext,
    AudioNode,
    BufferSource,
    DecodedAudio,
    ElementSource,
    EndedCallback,
    GainStage,
    PlayableSource,
)
from .decode import decode_with_av
from .virtual import (
    VirtualAudioContext,
    VirtualBackend,
    VirtualBufferSource,
    VirtualDestination,
    VirtualElementSource,
    VirtualGain,
)

__all__ = [
    "AudioBackend",
    "AudioContext",
    "AudioNode",
    "BufferSource",
    "DecodedAudio",
    "ElementSource",
    "EndedCallback",
    "GainStage",
    "PlayableSource",
    "VirtualAudioContext",
    "VirtualBackend",
    "VirtualBufferSource",
    "VirtualDestination",
    "VirtualElementSource",
    "VirtualGain",
    "decode_with_av",
]
