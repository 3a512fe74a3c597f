import asyncio

import pytest

from app.asr.errors import MalformedChunk, ProviderError
from app.diarization.models import AttributionMethod, SpeakerRole
from app.session import CallSession, ChunkRequest, SessionClosed
from app.session_store import SessionStore
from app.transcript.assembler import AppendAction

from tests.conftest import FakeProvider, make_service, result

AGENT, CUSTOMER = SpeakerRole.AGENT, SpeakerRole.CUSTOMER

CALL = [
    (b"c0", 0.0, result("Hi, thank you for calling Palace Resorts.", speaker=0)),
    (b"c1", 2.1, result("Hello! I'm interested in booking.", speaker=1)),
    (b"c2", 4.0, result("How many people?", speaker=0)),
]


def call_session(results=None, **kwargs):
    service = make_service(results={audio: r for audio, _, r in CALL} if results is None else results)
    return CallSession(session_id="s1", transcription=service, **kwargs)


class TestCallSession:
    @pytest.mark.asyncio
    async def test_three_chunk_call(self):
        session = call_session()
        speakers, turns = [], []
        for index, (audio, ts, _) in enumerate(CALL):
            outcome = await session.process_chunk(ChunkRequest(audio, ts, index))
            speakers.append(outcome.speaker)
            turns.append(outcome.state.turn_count)
            assert outcome.attribution.method == AttributionMethod.DIARIZATION

        assert speakers == [AGENT, CUSTOMER, AGENT]
        assert len(session.assembler) == 3
        assert turns == [1, 2, 3]
        assert session.state.stage_index == 1
        assert session.attributor.role_map.as_dict() == {0: "agent", 1: "customer"}

    @pytest.mark.asyncio
    async def test_out_of_order_completion(self):
        delays = {b"c0": 0.05, b"c1": 0.0, b"c2": 0.02}
        primary = FakeProvider(
            name="deepgram", results={a: r for a, _, r in CALL}, delays=delays, supports_diarization=True
        )
        service = make_service()
        service.primary = primary
        session = CallSession(session_id="s1", transcription=service)

        await asyncio.gather(*(session.process_chunk(ChunkRequest(a, ts, i)) for i, (a, ts, _) in enumerate(CALL)))
        entries = session.assembler.entries
        assert [e.timestamp for e in entries] == [0.0, 2.1, 4.0]
        # speaker 1 was seen first, so it owns the agent role
        assert [e.speaker for e in entries] == [CUSTOMER, AGENT, CUSTOMER]
        assert session.state.turn_count == 3

    @pytest.mark.asyncio
    async def test_heuristic_reads_results_in_completion_order(self):
        texts = {b"h0": result("Welcome to Palace Resorts, my name is Ana"), b"h1": result("Can I get a quote?")}
        requests = [ChunkRequest(b"h0", 0.0, 0), ChunkRequest(b"h1", 2.0, 1)]

        in_order = call_session(results=texts)
        for request_ in requests:
            await in_order.process_chunk(request_)
        assert [e.speaker for e in in_order.assembler.entries] == [AGENT, CUSTOMER]

        service = make_service()
        service.primary = FakeProvider(
            name="deepgram", results=texts, delays={b"h0": 0.03}, supports_diarization=True
        )
        racing = CallSession(session_id="s2", transcription=service)
        await asyncio.gather(*(racing.process_chunk(r) for r in requests))
        entries = racing.assembler.entries
        assert [e.timestamp for e in entries] == [0.0, 2.0]
        assert [e.speaker for e in entries] == [AGENT, AGENT]

    @pytest.mark.asyncio
    async def test_empty_chunk_changes_nothing(self):
        session = call_session(results={b"c0": result("   ")})
        outcome = await session.process_chunk(ChunkRequest(b"c0", 0.0, 0))
        assert outcome.is_empty
        assert outcome.to_dict()["speaker"] == "agent"
        assert outcome.to_dict()["confidence"] == 0.0
        assert len(session.assembler) == 0
        assert session.attributor.heuristic.consecutive_same_speaker_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_delivery_does_not_touch_heuristic(self):
        session = call_session(results={b"a": result("Welcome to Palace Resorts")})
        await session.process_chunk(ChunkRequest(b"a", 0.0, 0))
        count = session.attributor.heuristic.consecutive_same_speaker_count
        again = await session.process_chunk(ChunkRequest(b"a", 0.0, 0))
        assert again.action == AppendAction.DUPLICATE
        assert session.attributor.heuristic.consecutive_same_speaker_count == count
        assert len(session.assembler) == 1

    @pytest.mark.asyncio
    async def test_channel_role_takes_precedence(self):
        session = call_session()
        outcome = await session.process_chunk(ChunkRequest(b"c0", 0.0, 0, channel_role=CUSTOMER))
        assert outcome.speaker == CUSTOMER
        assert outcome.attribution.method == AttributionMethod.CHANNEL

    @pytest.mark.asyncio
    async def test_failed_transcription_is_reported_not_raised(self):
        service = make_service(allow_placeholder=False)
        service.primary = FakeProvider(name="deepgram", error=ProviderError("HTTP 500", "deepgram", 500))
        service.secondary = FakeProvider(name="whisper", error=ProviderError("HTTP 500", "whisper", 500))
        session = CallSession(session_id="s1", transcription=service)

        outcome = await session.process_chunk(ChunkRequest(b"x", 0.0, 0))
        assert outcome.failed
        assert outcome.error_type == "ProviderError"
        assert session.failed_chunks == {0}
        assert len(session.assembler) == 0
        assert session.snapshot()["failedChunks"] == [0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_",
        [ChunkRequest(b"", 0.0, 0), ChunkRequest(b"x", -1.0, 0), ChunkRequest(b"x", float("nan"), 0),
         ChunkRequest(b"x", 0.0, -1)],
    )
    async def test_malformed_chunk_rejected(self, request_):
        session = call_session()
        with pytest.raises(MalformedChunk):
            await session.process_chunk(request_)
        assert session.transcription.primary.calls == []

    @pytest.mark.asyncio
    async def test_closed_session_rejects_chunks(self):
        session = call_session()
        await session.close()
        with pytest.raises(SessionClosed):
            await session.process_chunk(ChunkRequest(b"c0", 0.0, 0))

    @pytest.mark.asyncio
    async def test_result_after_close_is_abandoned(self):
        primary = FakeProvider(
            name="deepgram", results={b"slow": result("late words")}, delays={b"slow": 0.05}, supports_diarization=True
        )
        service = make_service()
        service.primary = primary
        session = CallSession(session_id="s1", transcription=service)

        pending = asyncio.ensure_future(session.process_chunk(ChunkRequest(b"slow", 0.0, 0)))
        await asyncio.sleep(0.01)
        await session.close()
        outcome = await pending
        assert outcome.error_type == "SessionClosed"
        assert len(session.assembler) == 0
        assert session.state.turn_count == 0

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_state(self):
        first, second = call_session(), call_session()
        await first.process_chunk(ChunkRequest(b"c1", 2.1, 1))
        await second.process_chunk(ChunkRequest(b"c0", 0.0, 0))
        assert first.attributor.role_map.as_dict() == {1: "agent"}
        assert second.attributor.role_map.as_dict() == {0: "agent"}

    @pytest.mark.asyncio
    async def test_annotate_sentiment_updates_health(self):
        session = call_session()
        for index, (audio, ts, _) in enumerate(CALL[:2]):
            await session.process_chunk(ChunkRequest(audio, ts, index))
        before = session.state.health_score
        entry_id = session.assembler.entries[1].id
        assert (await session.annotate_sentiment(entry_id, "negative")).sentiment == "negative"
        assert session.state.health_score < before


class TestSessionStore:
    @pytest.fixture
    def store(self):
        return SessionStore(lambda sid: CallSession(session_id=sid, transcription=make_service()), max_sessions=2)

    @pytest.mark.asyncio
    async def test_create_get_remove(self, store):
        session = await store.create()
        assert len(session.session_id) == 12
        assert await store.get(session.session_id) is session
        assert await store.remove(session.session_id)
        assert session.closed
        assert await store.get(session.session_id) is None
        assert not await store.remove(session.session_id)

    @pytest.mark.asyncio
    async def test_max_sessions_enforced(self, store):
        await store.create("s1")
        await store.create("s2")
        with pytest.raises(RuntimeError, match="Max sessions"):
            await store.create("s3")

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        await store.create("s1")
        with pytest.raises(RuntimeError, match="already exists"):
            await store.create("s1")

    @pytest.mark.asyncio
    async def test_close_all(self, store):
        session = await store.create("s1")
        await store.close_all()
        assert session.closed
        assert len(store) == 0
