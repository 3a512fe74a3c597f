"""ASR: swappable speech-to-text providers with fallback."""
from .base import TranscriptionProvider, TranscriptionResult, WordTimestamp
from .errors import MalformedChunk, ProviderError, ProviderUnavailable, TranscriptionError
from .deepgram import DeepgramProvider
from .openai_whisper import OpenAIWhisperProvider
from .local_whisper import LocalWhisperProvider
from .service import TranscriptionService

__all__ = [
    "TranscriptionProvider",
    "TranscriptionResult",
    "WordTimestamp",
    "TranscriptionError",
    "ProviderUnavailable",
    "ProviderError",
    "MalformedChunk",
    "DeepgramProvider",
    "OpenAIWhisperProvider",
    "LocalWhisperProvider",
    "TranscriptionService",
]
