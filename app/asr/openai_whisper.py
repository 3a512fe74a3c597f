"""
OpenAIWhisperProvider: secondary STT via the hosted Whisper API.

Whisper has no speaker diarization: raw_speaker_id is always None and the
speaker attributor falls back to its heuristic.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

import httpx

from app.asr.base import TranscriptionProvider, TranscriptionResult, WordTimestamp
from app.asr.errors import ProviderError, ProviderUnavailable
from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

PROVIDER_NAME = "whisper"


def _segment_confidence(segments: list[dict[str, Any]]) -> float | None:
    """Mean of exp(avg_logprob) over segments; None when the response has none."""
    probs = [math.exp(s["avg_logprob"]) for s in segments if s.get("avg_logprob") is not None]
    if not probs:
        return None
    return max(0.0, min(1.0, sum(probs) / len(probs)))


def parse_verbose_json(data: dict[str, Any]) -> TranscriptionResult:
    words = tuple(
        WordTimestamp(word=w.get("word", ""), start=float(w.get("start", 0.0)), end=float(w.get("end", 0.0)))
        for w in data.get("words") or []
    )
    confidence = data.get("confidence")
    if confidence is None:
        confidence = _segment_confidence(data.get("segments") or [])
    return TranscriptionResult(
        text=(data.get("text") or "").strip(),
        confidence=confidence,
        raw_speaker_id=None,
        words=words or None,
        provider=PROVIDER_NAME,
    )


class OpenAIWhisperProvider(TranscriptionProvider):
    """Remote Whisper via OpenAI. transport: optional httpx transport for tests."""

    name = PROVIDER_NAME
    supports_diarization = False

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        health_timeout: float = 3.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._health_timeout = health_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OpenAIWhisperProvider":
        settings = settings or get_settings()
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_WHISPER_MODEL,
            base_url=settings.OPENAI_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            health_timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _transcribe_sync(self, audio: bytes) -> TranscriptionResult:
        """Blocking HTTP call; run in executor."""
        if not self._api_key:
            raise ProviderUnavailable("OPENAI_API_KEY is not set", provider=self.name)

        files = {"file": ("audio.wav", audio, "audio/wav")}
        data = {
            "model": self._model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": "word",
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(f"{self._base_url}/audio/transcriptions", headers=headers, data=data, files=files)
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI Whisper request failed: {e}", provider=self.name) from e

        if resp.status_code != 200:
            raise ProviderError(
                f"OpenAI Whisper API error: HTTP {resp.status_code}",
                provider=self.name,
                status_code=resp.status_code,
            )
        try:
            return parse_verbose_json(resp.json())
        except ValueError as e:
            raise ProviderError("OpenAI Whisper returned invalid JSON", provider=self.name) from e

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transcribe_sync, audio)

    def _health_check_sync(self) -> bool:
        if not self._api_key:
            return False
        try:
            with httpx.Client(timeout=self._health_timeout, transport=self._transport) as client:
                resp = client.get(f"{self._base_url}/models", headers={"Authorization": f"Bearer {self._api_key}"})
        except httpx.HTTPError as e:
            logger.info("OpenAI health check failed: %s", e)
            return False
        return resp.status_code == 200

    async def health_check(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._health_check_sync)
