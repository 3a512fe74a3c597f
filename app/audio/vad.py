"""
VADProcessor: Voice Activity Detection over WAV chunks.

Uses webrtcvad (aggressiveness 0–3). Only 16-bit mono PCM at 8/16/32/48 kHz
can be checked; anything else is reported as unknown (None) and passed through.
"""
from __future__ import annotations

import io
import wave

import webrtcvad

from app.config import get_settings

SUPPORTED_RATES = (8000, 16000, 32000, 48000)
FRAME_MS = 20


class VADProcessor:
    """Wraps webrtcvad. Frames are 20 ms of 16-bit mono PCM."""

    def __init__(self, aggressiveness: int | None = None) -> None:
        """
        aggressiveness: 0 (least aggressive) to 3 (most aggressive).
        Higher = more frames classified as silence.
        """
        if aggressiveness is None:
            aggressiveness = get_settings().VAD_AGGRESSIVENESS
        self._vad = webrtcvad.Vad(aggressiveness)

    def is_speech(self, frame: bytes, sample_rate: int) -> bool:
        """frame must be exactly 20 ms of PCM at sample_rate."""
        if len(frame) != sample_rate * FRAME_MS // 1000 * 2:
            return False
        return self._vad.is_speech(frame, sample_rate)

    def has_speech(self, wav_bytes: bytes) -> bool | None:
        """True if any frame is voiced; None when the chunk format cannot be checked."""
        try:
            with wave.open(io.BytesIO(wav_bytes), "rb") as wav:
                if wav.getnchannels() != 1 or wav.getsampwidth() != 2 or wav.getframerate() not in SUPPORTED_RATES:
                    return None
                rate = wav.getframerate()
                pcm = wav.readframes(wav.getnframes())
        except (wave.Error, EOFError):
            return None

        frame_bytes = rate * FRAME_MS // 1000 * 2
        for start in range(0, len(pcm) - frame_bytes + 1, frame_bytes):
            if self._vad.is_speech(pcm[start : start + frame_bytes], rate):
                return True
        return False
