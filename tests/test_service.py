import asyncio
import logging

import pytest

from app.asr.errors import ProviderError, ProviderUnavailable
from app.asr.service import PLACEHOLDER_TEXT, TranscriptionService

from tests.conftest import FakeProvider, result


def providers(primary_error=None, secondary_error=None, primary_configured=True):
    primary = FakeProvider(
        name="deepgram",
        default=result("from primary", speaker=0),
        error=primary_error,
        configured=primary_configured,
        supports_diarization=True,
    )
    secondary = FakeProvider(name="whisper", default=result("from secondary"), error=secondary_error)
    return primary, secondary


class TestProviderSelection:
    def test_auto_prefers_configured_diarization_provider(self):
        primary, secondary = providers()
        assert TranscriptionService(primary, secondary).select("auto") is primary

    def test_auto_without_primary_credential_uses_secondary(self):
        primary, secondary = providers(primary_configured=False)
        assert TranscriptionService(primary, secondary).select("auto") is secondary

    def test_explicit_preference(self):
        primary, secondary = providers()
        service = TranscriptionService(primary, secondary)
        assert service.attempt_plan("secondary") == [secondary, primary]
        assert service.attempt_plan("primary") == [primary, secondary]


class TestFallback:
    @pytest.mark.asyncio
    async def test_primary_success_does_not_touch_secondary(self):
        primary, secondary = providers()
        transcribed = await TranscriptionService(primary, secondary).transcribe(b"a")
        assert transcribed.text == "from primary"
        assert len(secondary.calls) == 0

    @pytest.mark.asyncio
    async def test_secondary_invoked_exactly_once(self):
        primary, secondary = providers(primary_error=ProviderError("HTTP 500", "deepgram", 500))
        transcribed = await TranscriptionService(primary, secondary).transcribe(b"a")
        assert transcribed.text == "from secondary"
        assert transcribed.raw_speaker_id is None
        assert (len(primary.calls), len(secondary.calls)) == (1, 1)

    @pytest.mark.asyncio
    async def test_both_fail_surfaces_provider_error(self):
        primary, secondary = providers(
            primary_error=ProviderError("HTTP 500", "deepgram", 500),
            secondary_error=ProviderError("HTTP 503", "whisper", 503),
        )
        service = TranscriptionService(primary, secondary, allow_placeholder=False)
        with pytest.raises(ProviderError) as exc:
            await service.transcribe(b"a")
        assert exc.value.provider == "whisper"
        assert (len(primary.calls), len(secondary.calls)) == (1, 1)

    @pytest.mark.asyncio
    async def test_remote_failure_reported_over_missing_credential(self):
        primary, secondary = providers(
            primary_error=ProviderError("HTTP 500", "deepgram", 500),
            secondary_error=ProviderUnavailable("OPENAI_API_KEY is not set", "whisper"),
        )
        with pytest.raises(ProviderError) as exc:
            await TranscriptionService(primary, secondary).transcribe(b"a")
        assert exc.value.provider == "deepgram"

    @pytest.mark.asyncio
    async def test_nothing_configured_raises_unavailable(self):
        primary, secondary = providers(
            primary_error=ProviderUnavailable("no key", "deepgram"),
            secondary_error=ProviderUnavailable("no key", "whisper"),
        )
        with pytest.raises(ProviderUnavailable):
            await TranscriptionService(primary, secondary).transcribe(b"a")

    @pytest.mark.asyncio
    async def test_placeholder_outside_production(self, caplog):
        primary, secondary = providers(
            primary_error=ProviderError("HTTP 500", "deepgram", 500),
            secondary_error=ProviderError("HTTP 500", "whisper", 500),
        )
        service = TranscriptionService(primary, secondary, allow_placeholder=True)
        with caplog.at_level(logging.WARNING):
            transcribed = await service.transcribe(b"a")
        assert transcribed.text == PLACEHOLDER_TEXT
        assert transcribed.confidence == 0.5
        assert transcribed.is_placeholder
        assert "placeholder" in caplog.text
        assert (len(primary.calls), len(secondary.calls)) == (1, 1)


class _SlowProvider(FakeProvider):
    async def health_check(self):
        await asyncio.sleep(1)
        return True


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_is_non_fatal(self):
        primary = _SlowProvider(name="deepgram")
        secondary = FakeProvider(name="whisper", healthy=RuntimeError("dns"))
        service = TranscriptionService(primary, secondary, health_timeout=0.05)
        assert await service.health() == {"deepgram": False, "whisper": False}

    @pytest.mark.asyncio
    async def test_health_reports_reachable(self):
        primary, secondary = providers()
        assert await TranscriptionService(primary, secondary).health() == {"deepgram": True, "whisper": True}
