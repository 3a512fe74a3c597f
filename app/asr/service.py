"""
TranscriptionService: provider selection and fallback.

The retry policy is an explicit attempt plan: an ordered list of providers,
tried once each. "auto" prefers the diarization-capable provider when it is
configured. After the plan is exhausted the last failure is raised, unless the
deployment is non-production, in which case a fixed placeholder is returned.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Literal

from app.asr.base import TranscriptionProvider, TranscriptionResult
from app.asr.deepgram import DeepgramProvider
from app.asr.errors import ProviderError, ProviderUnavailable, TranscriptionError
from app.asr.local_whisper import LocalWhisperProvider
from app.asr.openai_whisper import OpenAIWhisperProvider
from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

ProviderPreference = Literal["primary", "secondary", "auto"]

PLACEHOLDER_TEXT = "[transcription unavailable]"
PLACEHOLDER_CONFIDENCE = 0.5


def placeholder_result() -> TranscriptionResult:
    return TranscriptionResult(
        text=PLACEHOLDER_TEXT,
        confidence=PLACEHOLDER_CONFIDENCE,
        provider="placeholder",
        is_placeholder=True,
    )


class TranscriptionService:
    """
    primary: diarization-capable provider (Deepgram).
    secondary: fallback provider (Whisper, hosted or local).
    allow_placeholder: return placeholder_result() when every attempt failed.
    """

    def __init__(
        self,
        primary: TranscriptionProvider,
        secondary: TranscriptionProvider,
        allow_placeholder: bool = False,
        health_timeout: float = 3.0,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.allow_placeholder = allow_placeholder
        self._health_timeout = health_timeout

    def select(self, preference: ProviderPreference) -> TranscriptionProvider:
        if preference == "primary":
            return self.primary
        if preference == "secondary":
            return self.secondary
        if self.primary.supports_diarization and self.primary.is_configured:
            return self.primary
        return self.secondary

    def attempt_plan(self, preference: ProviderPreference = "auto") -> list[TranscriptionProvider]:
        """Selected provider first, then exactly one alternate."""
        selected = self.select(preference)
        alternate = self.secondary if selected is self.primary else self.primary
        return [selected, alternate]

    async def transcribe(self, audio: bytes, preference: ProviderPreference = "auto") -> TranscriptionResult:
        errors: list[TranscriptionError] = []
        for attempt, provider in enumerate(self.attempt_plan(preference)):
            if attempt:
                logger.info("Attempting fallback to %s", provider.name)
            try:
                return await provider.transcribe(audio)
            except TranscriptionError as e:
                level = logging.WARNING if isinstance(e, ProviderUnavailable) else logging.ERROR
                logger.log(level, "Transcription error with %s: %s", provider.name, e)
                errors.append(e)

        if self.allow_placeholder:
            logger.warning(
                "All providers failed (%s); returning placeholder transcription (non-production)",
                ", ".join(type(e).__name__ for e in errors),
            )
            return placeholder_result()

        remote_failures = [e for e in errors if isinstance(e, ProviderError)]
        raise (remote_failures or errors)[-1]

    async def _probe(self, provider: TranscriptionProvider) -> bool:
        try:
            return await asyncio.wait_for(provider.health_check(), timeout=self._health_timeout)
        except asyncio.TimeoutError:
            logger.info("Health check timed out for %s", provider.name)
        except Exception as e:
            logger.info("Health check failed for %s: %s", provider.name, e)
        return False

    async def health(self) -> dict[str, bool]:
        """Provider name -> reachable. Failures are non-fatal."""
        primary_ok, secondary_ok = await asyncio.gather(self._probe(self.primary), self._probe(self.secondary))
        return {self.primary.name: primary_ok, self.secondary.name: secondary_ok}


def build_transcription_service(settings: Settings | None = None, whisper_model=None) -> TranscriptionService:
    """Deepgram primary; Whisper secondary from WHISPER_BACKEND (local needs the preloaded model)."""
    settings = settings or get_settings()
    secondary: TranscriptionProvider
    if settings.WHISPER_BACKEND == "local":
        secondary = LocalWhisperProvider(model=whisper_model, beam_size=settings.LOCAL_WHISPER_BEAM_SIZE)
    else:
        secondary = OpenAIWhisperProvider.from_settings(settings)
    return TranscriptionService(
        primary=DeepgramProvider.from_settings(settings),
        secondary=secondary,
        allow_placeholder=not settings.is_production,
        health_timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS,
    )
