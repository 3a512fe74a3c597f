"""Application configuration. Loads from env vars."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Deployment: anything other than "production" allows the placeholder transcription
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Audio: chunks are re-encoded as 16-bit PCM WAV at this rate
    SAMPLE_RATE: int = 16000
    CHUNK_DURATION_SECONDS: float = 2.0
    # RMS (float scale, [-1, 1]) below which a channel counts as silent
    SILENCE_RMS_THRESHOLD: float = 0.01
    # One channel must be this many times louder than the other to count as dominant
    CHANNEL_DOMINANCE_RATIO: float = 3.0
    # Drop chunks without voiced frames (webrtcvad) before calling any provider
    SKIP_SILENT_CHUNKS: bool = False
    VAD_AGGRESSIVENESS: int = 2

    # STT providers: primary = Deepgram (diarization), secondary = Whisper
    STT_PROVIDER: Literal["primary", "secondary", "auto"] = "auto"
    DEEPGRAM_API_KEY: str = ""
    DEEPGRAM_MODEL: str = "nova-2"
    DEEPGRAM_URL: str = "https://api.deepgram.com/v1"
    OPENAI_API_KEY: str = ""
    OPENAI_WHISPER_MODEL: str = "whisper-1"
    OPENAI_URL: str = "https://api.openai.com/v1"
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 3.0

    # Whisper backend: "openai" (hosted API) | "local" (faster-whisper, model loaded once at startup)
    WHISPER_BACKEND: Literal["openai", "local"] = "openai"
    LOCAL_WHISPER_MODEL: str = "base"  # base | small | medium | large-v3
    LOCAL_WHISPER_DEVICE: Literal["cpu", "cuda"] = "cpu"
    LOCAL_WHISPER_COMPUTE_TYPE: Literal["int8", "float16"] = "int8"
    LOCAL_WHISPER_BEAM_SIZE: int = 5

    # Live sessions kept in memory (0 = unlimited)
    MAX_SESSIONS: int = 100

    # Transcript assembly
    MERGE_WINDOW_SECONDS: float = 5.0

    # Playback simulation (whole-call uploads)
    MAX_CONCURRENT_CHUNKS: int = 4
    SIMULATE_REALTIME: bool = False

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also write logs to file (empty = console only)
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


def get_settings() -> Settings:
    return Settings()


@dataclass
class EnvValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_environment(settings: Settings | None = None) -> EnvValidationResult:
    """Check provider credentials at startup. Logs and returns errors/warnings; never raises."""
    settings = settings or get_settings()
    result = EnvValidationResult()
    has_openai = bool(settings.OPENAI_API_KEY) or settings.WHISPER_BACKEND == "local"

    if not settings.DEEPGRAM_API_KEY and not has_openai:
        result.errors.append(
            "Either DEEPGRAM_API_KEY or OPENAI_API_KEY (or WHISPER_BACKEND=local) is required for transcription"
        )
    if not settings.DEEPGRAM_API_KEY:
        result.warnings.append("DEEPGRAM_API_KEY not set - falling back to Whisper (no speaker diarization)")

    if result.errors:
        logger.error("Environment validation failed: %s", "; ".join(result.errors))
    for warning in result.warnings:
        logger.warning("Environment: %s", warning)
    if result.is_valid and not result.warnings:
        logger.info("Environment validation passed")
    return result
