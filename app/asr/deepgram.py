"""
DeepgramProvider: primary STT via Deepgram pre-recorded API (diarize + multichannel).

Stereo call recordings carry agent and customer on separate channels, so the
channel index is used as the speaker id instead of Deepgram's own speaker id.
Runs the HTTP call in executor to avoid blocking the event loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any

import httpx

from app.asr.base import TranscriptionProvider, TranscriptionResult, WordTimestamp
from app.asr.errors import ProviderError, ProviderUnavailable
from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

PROVIDER_NAME = "deepgram"

_LISTEN_PARAMS = {
    "smart_format": "true",
    "punctuate": "true",
    "diarize": "true",
    "multichannel": "true",
}


def parse_multichannel_response(payload: dict[str, Any]) -> TranscriptionResult:
    """
    Pool words from every channel, re-sort them by start time and pick the
    chunk's speaker as the channel with the most words (ties -> lowest id).
    """
    channels = (payload.get("results") or {}).get("channels") or []
    if not channels:
        logger.warning("No channels in Deepgram response")
        return TranscriptionResult(text="", confidence=0.0, provider=PROVIDER_NAME)

    words: list[WordTimestamp] = []
    for channel_index, channel in enumerate(channels):
        alternatives = (channel or {}).get("alternatives") or []
        if not alternatives:
            continue
        for w in alternatives[0].get("words") or []:
            words.append(
                WordTimestamp(
                    word=w.get("punctuated_word") or w.get("word") or "",
                    start=float(w.get("start", 0.0)),
                    end=float(w.get("end", 0.0)),
                    confidence=float(w.get("confidence") or 0.0),
                    speaker_id=channel_index,
                )
            )

    if not words:
        logger.debug("No words found in any of %d channels", len(channels))
        return TranscriptionResult(text="", confidence=0.0, provider=PROVIDER_NAME)

    counts = Counter(w.speaker_id for w in words)
    primary_speaker = min(counts, key=lambda speaker: (-counts[speaker], speaker))

    # sorted() is stable: same-start words keep channel order
    words.sort(key=lambda w: w.start)
    text = " ".join(w.word for w in words if w.word).strip()
    confidence = sum(w.confidence or 0.0 for w in words) / len(words)

    logger.debug(
        "Parsed multichannel response: channels=%d words=%d primary_speaker=%s counts=%s",
        len(channels),
        len(words),
        primary_speaker,
        dict(counts),
    )
    return TranscriptionResult(
        text=text,
        confidence=confidence,
        raw_speaker_id=primary_speaker,
        words=tuple(words),
        provider=PROVIDER_NAME,
    )


class DeepgramProvider(TranscriptionProvider):
    """
    Remote transcription via Deepgram. Supports diarization.
    transport: optional httpx transport (tests inject httpx.MockTransport).
    """

    name = PROVIDER_NAME
    supports_diarization = True

    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        base_url: str = "https://api.deepgram.com/v1",
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
    def from_settings(cls, settings: Settings | None = None) -> "DeepgramProvider":
        settings = settings or get_settings()
        return cls(
            api_key=settings.DEEPGRAM_API_KEY,
            model=settings.DEEPGRAM_MODEL,
            base_url=settings.DEEPGRAM_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            health_timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport)

    def _transcribe_sync(self, audio: bytes) -> TranscriptionResult:
        """Blocking HTTP call; run in executor."""
        if not self._api_key:
            raise ProviderUnavailable("DEEPGRAM_API_KEY is not set", provider=self.name)

        headers = {"Authorization": f"Token {self._api_key}", "Content-Type": "audio/wav"}
        params = {"model": self._model, **_LISTEN_PARAMS}
        try:
            with self._client(self._timeout) as client:
                resp = client.post(f"{self._base_url}/listen", params=params, headers=headers, content=audio)
        except httpx.HTTPError as e:
            raise ProviderError(f"Deepgram request failed: {e}", provider=self.name) from e

        if resp.status_code != 200:
            raise ProviderError(
                f"Deepgram transcription failed: HTTP {resp.status_code}",
                provider=self.name,
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("Deepgram returned invalid JSON", provider=self.name) from e
        return parse_multichannel_response(data)

    async def transcribe(self, audio: bytes) -> TranscriptionResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transcribe_sync, audio)

    def _health_check_sync(self) -> bool:
        if not self._api_key:
            return False
        try:
            with self._client(self._health_timeout) as client:
                resp = client.get(f"{self._base_url}/projects", headers={"Authorization": f"Token {self._api_key}"})
        except httpx.HTTPError as e:
            logger.info("Deepgram health check failed: %s", e)
            return False
        return resp.status_code == 200

    async def health_check(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._health_check_sync)
