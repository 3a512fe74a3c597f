import asyncio

import numpy as np
import pytest

from app.asr.base import TranscriptionProvider, TranscriptionResult
from app.asr.service import TranscriptionService
from app.audio.chunker import encode_wav


class FakeProvider(TranscriptionProvider):
    """
    Scripted provider. results maps audio bytes -> result; anything else gets
    default. error, when set, is raised on every call.
    """

    def __init__(
        self,
        name="fake",
        results=None,
        default=None,
        error=None,
        configured=True,
        supports_diarization=False,
        healthy=True,
        delays=None,
    ):
        self.name = name
        self.supports_diarization = supports_diarization
        self._configured = configured
        self._results = dict(results or {})
        self._default = default or TranscriptionResult(text="", confidence=0.0, provider=name)
        self._error = error
        self._delays = dict(delays or {})
        self.healthy = healthy
        self.calls = []

    @property
    def is_configured(self):
        return self._configured

    async def transcribe(self, audio):
        self.calls.append(audio)
        delay = self._delays.get(audio)
        if delay:
            await asyncio.sleep(delay)
        if self._error is not None:
            raise self._error
        return self._results.get(audio, self._default)

    async def health_check(self):
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy


def result(text, speaker=None, confidence=0.9, provider="fake"):
    return TranscriptionResult(text=text, confidence=confidence, raw_speaker_id=speaker, provider=provider)


def make_service(results=None, **kwargs):
    primary = FakeProvider(name="deepgram", results=results, supports_diarization=True)
    secondary = FakeProvider(name="whisper")
    return TranscriptionService(primary, secondary, **kwargs)


def tone(seconds, sample_rate=16000, amplitude=0.5, freq=440.0):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def stereo_wav(left, right, sample_rate=16000):
    return encode_wav(np.stack([left, right], axis=1), sample_rate)


@pytest.fixture
def wav_chunk():
    return encode_wav(tone(0.5), 16000)


CALL_RESULTS = {
    b"c0": result("Hi, thank you for calling Palace Resorts.", speaker=0),
    b"c1": result("Hello! I'm interested in booking.", speaker=1),
    b"c2": result("How many people?", speaker=0),
}
