"""
AudioChunker: splits a finite recording into fixed-duration WAV chunks for STT.

- Chunk size: CHUNK_DURATION_SECONDS (default 2s); last chunk may be shorter.
- Sequence numbers are assigned when the chunk is created, never on arrival,
  since transcriptions may complete out of order.
- Stereo call recordings (agent left, customer right) get a channel strategy:
  only one channel active -> send that channel alone and hint its role;
  both active -> send stereo and let the provider separate channels.
- Silent chunks are flagged (RMS below threshold) so the caller can skip them.
"""
from __future__ import annotations

import io
import itertools
import logging
import wave
from dataclasses import dataclass
from typing import Iterator, Literal

import numpy as np

from app.config import get_settings
from app.diarization.models import SpeakerRole

logger = logging.getLogger(__name__)

ChannelStrategy = Literal["mono-left", "mono-right", "stereo"]

# Channel index -> role for dual-channel call recordings
CHANNEL_ROLES: dict[int, SpeakerRole] = {0: SpeakerRole.AGENT, 1: SpeakerRole.CUSTOMER}


@dataclass(frozen=True)
class AudioChunk:
    """One chunk of the recording. start_time, end_time, duration in seconds."""

    blob: bytes
    start_time: float
    end_time: float
    duration: float
    sequence_number: int
    channel_strategy: ChannelStrategy = "mono-left"
    channel_role: SpeakerRole | None = None
    is_silence: bool = False


@dataclass(frozen=True)
class ChannelAnalysis:
    """RMS per channel (float scale). right_rms is None for mono input."""

    left_rms: float
    right_rms: float | None
    is_silence: bool
    dominant_channel: int | None  # 0 / 1, or None when both (or neither) are active


def _rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))


def decode_wav(data: bytes) -> tuple[np.ndarray, int]:
    """Decode PCM WAV bytes to float32 samples shaped (frames, channels) in [-1, 1]."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wav:
            channels = wav.getnchannels()
            width = wav.getsampwidth()
            rate = wav.getframerate()
            raw = wav.readframes(wav.getnframes())
    except (wave.Error, EOFError) as e:
        raise ValueError(f"invalid WAV data: {e}") from e

    if width == 1:
        samples = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 2:
        samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif width == 4:
        samples = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise ValueError(f"unsupported sample width: {width} bytes")
    return samples.reshape(-1, channels), rate


def decode_audio(data: bytes, filename: str | None = None) -> tuple[np.ndarray, int]:
    """Decode WAV natively; other containers (mp3, m4a, ...) through pydub/ffmpeg."""
    if data[:4] == b"RIFF":
        return decode_wav(data)

    from pydub import AudioSegment

    fmt = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else None
    try:
        segment = AudioSegment.from_file(io.BytesIO(data), format=fmt)
    except Exception as e:
        raise ValueError(f"cannot decode audio: {e}") from e
    scale = float(1 << (8 * segment.sample_width - 1))
    samples = np.array(segment.get_array_of_samples(), dtype=np.float32) / scale
    return samples.reshape(-1, segment.channels), segment.frame_rate


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Mix (frames, channels) down to a 1-D mono signal."""
    if samples.ndim == 1:
        return samples
    return samples.mean(axis=1).astype(np.float32)


def resample(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resample along the frame axis. Enough for speech chunks."""
    if src_rate == dst_rate or samples.shape[0] == 0:
        return samples
    n_out = int(round(samples.shape[0] * dst_rate / src_rate))
    src_t = np.arange(samples.shape[0]) / src_rate
    dst_t = np.arange(n_out) / dst_rate
    if samples.ndim == 1:
        return np.interp(dst_t, src_t, samples).astype(np.float32)
    return np.stack(
        [np.interp(dst_t, src_t, samples[:, ch]) for ch in range(samples.shape[1])], axis=1
    ).astype(np.float32)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples (frames,) or (frames, channels) as 16-bit PCM WAV."""
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(samples.shape[1])
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buf.getvalue()


def analyze_channels(
    samples: np.ndarray, silence_threshold: float, dominance_ratio: float
) -> ChannelAnalysis:
    """Which channel is speaking: one dominant channel, both, or silence."""
    if samples.ndim == 1 or samples.shape[1] == 1:
        left = _rms(samples)
        return ChannelAnalysis(left, None, left < silence_threshold, None)

    left, right = _rms(samples[:, 0]), _rms(samples[:, 1])
    left_active, right_active = left >= silence_threshold, right >= silence_threshold
    if not left_active and not right_active:
        return ChannelAnalysis(left, right, True, None)
    if left_active and (not right_active or left >= right * dominance_ratio):
        return ChannelAnalysis(left, right, False, 0)
    if right_active and (not left_active or right >= left * dominance_ratio):
        return ChannelAnalysis(left, right, False, 1)
    return ChannelAnalysis(left, right, False, None)


class AudioChunker:
    """
    Splits one recording. Sequence numbers are monotonic per chunker instance,
    so use one chunker per session.
    """

    def __init__(
        self,
        chunk_duration: float | None = None,
        sample_rate: int | None = None,
        silence_threshold: float | None = None,
        dominance_ratio: float | None = None,
    ) -> None:
        settings = get_settings()
        self._chunk_duration = chunk_duration or settings.CHUNK_DURATION_SECONDS
        self._sample_rate = sample_rate or settings.SAMPLE_RATE
        self._silence_threshold = (
            silence_threshold if silence_threshold is not None else settings.SILENCE_RMS_THRESHOLD
        )
        self._dominance_ratio = dominance_ratio or settings.CHANNEL_DOMINANCE_RATIO
        self._sequence = itertools.count()

        if self._chunk_duration <= 0:
            raise ValueError("chunk_duration must be positive")

    def iter_chunks(self, data: bytes, filename: str | None = None) -> Iterator[AudioChunk]:
        """Decode the recording and yield chunks in playback order."""
        samples, rate = decode_audio(data, filename)
        samples = resample(samples, rate, self._sample_rate)
        if samples.shape[1] > 2:
            logger.warning("Recording has %d channels; only the first two are used", samples.shape[1])
            samples = samples[:, :2]

        total = samples.shape[0]
        chunk_frames = max(1, int(self._sample_rate * self._chunk_duration))
        for offset in range(0, total, chunk_frames):
            end = min(offset + chunk_frames, total)
            yield self._make_chunk(samples[offset:end], offset, end)

    def split(self, data: bytes, filename: str | None = None) -> list[AudioChunk]:
        return list(self.iter_chunks(data, filename))

    def _make_chunk(self, block: np.ndarray, offset: int, end: int) -> AudioChunk:
        analysis = analyze_channels(block, self._silence_threshold, self._dominance_ratio)
        strategy: ChannelStrategy
        role: SpeakerRole | None = None

        if block.shape[1] == 1:
            payload, strategy = block, "mono-left"
        elif analysis.dominant_channel is not None:
            channel = analysis.dominant_channel
            payload = block[:, channel]
            strategy = "mono-left" if channel == 0 else "mono-right"
            role = CHANNEL_ROLES[channel]
        else:
            payload, strategy = block, "stereo"

        return AudioChunk(
            blob=encode_wav(payload, self._sample_rate),
            start_time=offset / self._sample_rate,
            end_time=end / self._sample_rate,
            duration=(end - offset) / self._sample_rate,
            sequence_number=next(self._sequence),
            channel_strategy=strategy,
            channel_role=role,
            is_silence=analysis.is_silence,
        )
