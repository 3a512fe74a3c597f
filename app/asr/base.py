"""
TranscriptionProvider: abstract interface for speech-to-text back ends.

Implementations: DeepgramProvider (primary, multichannel diarization),
OpenAIWhisperProvider and LocalWhisperProvider (secondary, no diarization).
Blocking HTTP / decode work runs in executor to avoid blocking the event loop.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WordTimestamp:
    """Single word with start/end in seconds (chunk-relative)."""

    word: str
    start: float
    end: float
    confidence: float | None = None
    speaker_id: int | None = None


@dataclass(frozen=True)
class TranscriptionResult:
    """Result of one transcribe call. Produced once per chunk; never mutated."""

    text: str
    confidence: float | None = None  # 0.0–1.0; None when the provider does not report one
    raw_speaker_id: int | None = None  # diarization / channel id, if available
    words: tuple[WordTimestamp, ...] | None = None
    provider: str = ""
    is_placeholder: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.text or "").strip()


class TranscriptionProvider(ABC):
    """
    One speech-to-text back end. transcribe() is async; implementations run
    blocking work in executor.
    Raises ProviderUnavailable (no credential) or ProviderError (remote failure).
    """

    name: str = ""
    supports_diarization: bool = False

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when the credential (or model) needed to call this provider is present."""
        ...

    @abstractmethod
    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        """Transcribe one encoded audio chunk (WAV bytes)."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Cheap reachability probe with a short timeout. Never raises; failure means provider-down."""
        ...
