import io
import wave

import numpy as np
import pytest

from app.audio.chunker import AudioChunker, analyze_channels, decode_audio, decode_wav, encode_wav
from app.audio.vad import VADProcessor
from app.diarization.models import SpeakerRole

from tests.conftest import stereo_wav, tone


def wav_info(blob):
    with wave.open(io.BytesIO(blob), "rb") as wav:
        return wav.getnchannels(), wav.getframerate(), wav.getnframes()


@pytest.fixture
def chunker():
    return AudioChunker(chunk_duration=1.0, sample_rate=16000, silence_threshold=0.01, dominance_ratio=3.0)


class TestAudioChunker:
    def test_fixed_duration_chunks_with_short_tail(self, chunker):
        chunks = chunker.split(encode_wav(tone(2.5), 16000))
        assert [c.sequence_number for c in chunks] == [0, 1, 2]
        assert [c.start_time for c in chunks] == [0.0, 1.0, 2.0]
        assert [c.duration for c in chunks] == [1.0, 1.0, 0.5]
        assert chunks[-1].end_time == 2.5
        assert all(c.channel_strategy == "mono-left" and c.channel_role is None for c in chunks)

    def test_sequence_continues_across_calls(self, chunker):
        chunker.split(encode_wav(tone(1.0), 16000))
        assert chunker.split(encode_wav(tone(1.0), 16000))[0].sequence_number == 1

    def test_resamples_to_target_rate(self, chunker):
        chunks = chunker.split(encode_wav(tone(1.0, sample_rate=8000), 8000))
        assert len(chunks) == 1
        assert wav_info(chunks[0].blob) == (1, 16000, 16000)

    def test_silent_chunk_is_flagged(self, chunker):
        samples = np.concatenate([tone(1.0), np.zeros(16000, dtype=np.float32)])
        chunks = chunker.split(encode_wav(samples, 16000))
        assert [c.is_silence for c in chunks] == [False, True]

    def test_dominant_left_channel_is_agent(self, chunker):
        chunks = chunker.split(stereo_wav(tone(1.0), np.zeros(16000, dtype=np.float32)))
        assert chunks[0].channel_strategy == "mono-left"
        assert chunks[0].channel_role == SpeakerRole.AGENT
        assert wav_info(chunks[0].blob)[0] == 1

    def test_dominant_right_channel_is_customer(self, chunker):
        chunks = chunker.split(stereo_wav(tone(1.0, amplitude=0.02), tone(1.0, amplitude=0.5)))
        assert chunks[0].channel_strategy == "mono-right"
        assert chunks[0].channel_role == SpeakerRole.CUSTOMER

    def test_both_channels_active_sends_stereo(self, chunker):
        chunks = chunker.split(stereo_wav(tone(1.0), tone(1.0, freq=220.0)))
        assert chunks[0].channel_strategy == "stereo"
        assert chunks[0].channel_role is None
        assert wav_info(chunks[0].blob)[0] == 2

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            AudioChunker(chunk_duration=-1.0)


class TestDecoding:
    def test_decode_wav_shape_and_scale(self):
        samples, rate = decode_wav(encode_wav(np.array([0.0, 0.5, -0.5], dtype=np.float32), 16000))
        assert rate == 16000
        assert samples.shape == (3, 1)
        assert samples[1, 0] == pytest.approx(0.5, abs=1e-3)

    def test_invalid_wav(self):
        with pytest.raises(ValueError):
            decode_wav(b"RIFF not really")

    def test_undecodable_audio(self):
        with pytest.raises(ValueError):
            decode_audio(b"\x00\x01garbage", filename="call.mp3")

    def test_analyze_silence(self):
        analysis = analyze_channels(np.zeros((100, 2), dtype=np.float32), 0.01, 3.0)
        assert analysis.is_silence
        assert analysis.dominant_channel is None


class TestVADProcessor:
    def test_silence_has_no_speech(self):
        assert VADProcessor(3).has_speech(encode_wav(np.zeros(16000, dtype=np.float32), 16000)) is False

    def test_unsupported_format_is_unknown(self):
        vad = VADProcessor(2)
        assert vad.has_speech(stereo_wav(tone(0.5), tone(0.5))) is None
        assert vad.has_speech(encode_wav(tone(0.5, sample_rate=22050), 22050)) is None
        assert vad.has_speech(b"not a wav") is None

    def test_wrong_frame_size(self):
        assert VADProcessor(2).is_speech(b"\x00" * 10, 16000) is False
