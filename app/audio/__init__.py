"""Audio utilities: chunk a recording, analyse channels, optional VAD gate."""
from .chunker import AudioChunk, AudioChunker, ChannelAnalysis, analyze_channels, decode_audio, encode_wav
from .vad import VADProcessor

__all__ = [
    "AudioChunk",
    "AudioChunker",
    "ChannelAnalysis",
    "VADProcessor",
    "analyze_channels",
    "decode_audio",
    "encode_wav",
]
