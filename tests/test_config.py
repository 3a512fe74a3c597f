from app.asr.deepgram import DeepgramProvider
from app.asr.local_whisper import LocalWhisperProvider
from app.asr.openai_whisper import OpenAIWhisperProvider
from app.asr.service import build_transcription_service
from app.config import Settings, validate_environment


class TestValidateEnvironment:
    def test_no_credentials_is_an_error(self):
        checked = validate_environment(Settings(DEEPGRAM_API_KEY="", OPENAI_API_KEY=""))
        assert not checked.is_valid
        assert checked.errors

    def test_whisper_only_warns_about_diarization(self):
        checked = validate_environment(Settings(DEEPGRAM_API_KEY="", OPENAI_API_KEY="sk"))
        assert checked.is_valid
        assert any("diarization" in w for w in checked.warnings)

    def test_deepgram_configured(self):
        checked = validate_environment(Settings(DEEPGRAM_API_KEY="dg", OPENAI_API_KEY=""))
        assert checked.is_valid
        assert checked.warnings == []


class TestBuildTranscriptionService:
    def test_placeholder_only_outside_production(self):
        assert build_transcription_service(Settings(APP_ENV="development")).allow_placeholder
        assert not build_transcription_service(Settings(APP_ENV="production")).allow_placeholder

    def test_providers_from_settings(self):
        service = build_transcription_service(Settings(DEEPGRAM_API_KEY="dg", WHISPER_BACKEND="openai"))
        assert isinstance(service.primary, DeepgramProvider)
        assert isinstance(service.secondary, OpenAIWhisperProvider)
        assert service.primary.is_configured

    def test_local_backend_uses_preloaded_model(self):
        model = object()
        service = build_transcription_service(Settings(WHISPER_BACKEND="local"), whisper_model=model)
        assert isinstance(service.secondary, LocalWhisperProvider)
        assert service.secondary.is_configured
