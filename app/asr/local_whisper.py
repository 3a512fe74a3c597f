"""
LocalWhisperProvider: secondary STT using faster-whisper (WHISPER_BACKEND=local).

- Model loaded ONCE at startup (singleton, injected at construction).
- No diarization; word timestamps always requested.
- Audio: WAV chunk decoded to float32 mono [-1, 1] at 16 kHz.
- Runs in executor so event loop stays responsive.
"""
from __future__ import annotations

import asyncio
import math
from typing import Any

from app.asr.base import TranscriptionProvider, TranscriptionResult, WordTimestamp
from app.asr.errors import ProviderError, ProviderUnavailable
from app.audio.chunker import decode_wav, resample, to_mono
from app.config import get_settings

PROVIDER_NAME = "whisper"

# faster-whisper always expects 16 kHz input
WHISPER_SAMPLE_RATE = 16000

# Type for shared WhisperModel (loaded at startup)
WhisperModelT = Any


def load_whisper_model():
    """Load faster-whisper model once. Called at startup when WHISPER_BACKEND=local."""
    try:
        from faster_whisper import WhisperModel
    except ImportError as err:
        raise ImportError(
            "faster-whisper is required for WHISPER_BACKEND=local. "
            "Install with: pip install faster-whisper"
        ) from err
    settings = get_settings()
    return WhisperModel(
        settings.LOCAL_WHISPER_MODEL,
        device=settings.LOCAL_WHISPER_DEVICE,
        compute_type=settings.LOCAL_WHISPER_COMPUTE_TYPE,
    )


class LocalWhisperProvider(TranscriptionProvider):
    """
    Local Whisper via faster-whisper. Uses shared model (singleton).
    model=None means the backend is unavailable (ProviderUnavailable on transcribe).
    """

    name = PROVIDER_NAME
    supports_diarization = False

    def __init__(self, model: WhisperModelT | None = None, beam_size: int = 5) -> None:
        self._model = model
        self._beam_size = beam_size

    @property
    def is_configured(self) -> bool:
        return self._model is not None

    def _transcribe_sync(self, audio: bytes) -> TranscriptionResult:
        if self._model is None:
            raise ProviderUnavailable("Local Whisper model is not loaded", provider=self.name)

        try:
            samples, sample_rate = decode_wav(audio)
        except ValueError as e:
            raise ProviderError(f"Cannot decode chunk for local Whisper: {e}", provider=self.name) from e
        mono = resample(to_mono(samples), sample_rate, WHISPER_SAMPLE_RATE)

        try:
            segments, _ = self._model.transcribe(
                mono,
                beam_size=self._beam_size,
                vad_filter=True,
                vad_parameters=dict(min_silence_duration_ms=300, speech_pad_ms=100),
                word_timestamps=True,
            )
            segments = list(segments)
        except RuntimeError as e:
            raise ProviderError(f"Local Whisper decode failed: {e}", provider=self.name) from e

        parts: list[str] = []
        words: list[WordTimestamp] = []
        probs: list[float] = []
        for seg in segments:
            t = (seg.text or "").strip()
            if t:
                parts.append(t)
            if getattr(seg, "avg_logprob", None) is not None:
                probs.append(math.exp(seg.avg_logprob))
            for w in getattr(seg, "words", None) or []:
                words.append(
                    WordTimestamp(word=(w.word or "").strip(), start=w.start, end=w.end, confidence=w.probability)
                )

        text = " ".join(parts).strip()
        confidence = min(1.0, sum(probs) / len(probs)) if probs else (1.0 if text else 0.0)
        return TranscriptionResult(
            text=text,
            confidence=confidence,
            raw_speaker_id=None,
            words=tuple(words) or None,
            provider=self.name,
        )

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        """Run _transcribe_sync in executor so event loop is not blocked."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transcribe_sync, audio)

    async def health_check(self) -> bool:
        return self._model is not None
