"""Transcription failure taxonomy. Empty speech is not an error (see ChunkOutcome.is_empty)."""
from __future__ import annotations


class TranscriptionError(Exception):
    """Base for provider failures. provider: name of the back end that failed."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(TranscriptionError):
    """Credential (or local model) missing. Non-retryable; triggers fallback."""


class ProviderError(TranscriptionError):
    """Remote call failed or returned a non-success status."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, provider)
        self.status_code = status_code


class MalformedChunk(ValueError):
    """Missing or invalid audio payload. Rejected at the boundary, never enters the pipeline."""
