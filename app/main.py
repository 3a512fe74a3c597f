"""
FastAPI app: chunked call transcription with speaker attribution.

HTTP API:
- POST   /api/sessions                           -> { sessionId }
- POST   /api/sessions/{id}/chunks               multipart: audio, timestamp, chunkIndex
                                                 [, channelRole | channelStrategy, provider]
- GET    /api/sessions/{id}/transcript           -> entries + conversation state
- DELETE /api/sessions/{id}                      -> teardown (late chunk results are dropped)
- POST   /api/sessions/{id}/entries/{entry}/sentiment
- POST   /api/sessions/{id}/validate             -> validation of an extracted CustomerProfile
- POST   /api/calls                              multipart whole recording -> transcript
- GET    /health                                 -> provider reachability

Chunk response: { timestamp, text, speaker, confidence, chunkIndex, isEmpty, state, ... }.
Transcription failure after fallback -> 502 { error, details }; malformed chunk -> 400.
"""
from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from app.asr.errors import MalformedChunk
from app.asr.local_whisper import load_whisper_model
from app.asr.service import ProviderPreference, TranscriptionService, build_transcription_service
from app.audio.chunker import CHANNEL_ROLES, AudioChunker
from app.audio.vad import VADProcessor
from app.config import get_settings, validate_environment
from app.diarization.models import SpeakerRole
from app.logging_config import configure_logging
from app.playback import PlaybackSimulator
from app.schemas.transcript import HealthResponse, SentimentRequest, SessionCreated, TranscriptResponse
from app.schemas.validation import ValidateRequest, ValidationResult
from app.services.validation import validate_customer_profile
from app.session import CallSession, ChunkRequest, SessionClosed
from app.session_store import SessionStore

logger = logging.getLogger(__name__)

PROVIDER_PREFERENCES = ("primary", "secondary", "auto")
CHANNEL_STRATEGY_ROLES: dict[str, SpeakerRole | None] = {
    "mono-left": CHANNEL_ROLES[0],
    "mono-right": CHANNEL_ROLES[1],
    "stereo": None,
}


def _session_factory(transcription: TranscriptionService):
    settings = get_settings()
    vad = VADProcessor(settings.VAD_AGGRESSIVENESS) if settings.SKIP_SILENT_CHUNKS else None

    def factory(session_id: str) -> CallSession:
        return CallSession(
            session_id=session_id,
            transcription=transcription,
            preference=settings.STT_PROVIDER,
            merge_window=settings.MERGE_WINDOW_SECONDS,
            vad=vad,
        )

    return factory


def create_app(transcription: TranscriptionService | None = None) -> FastAPI:
    """transcription: inject a service (tests); default is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_logging(settings)
        validate_environment(settings)
        service = transcription
        if service is None:
            # Load Whisper model once at startup when using local backend (singleton)
            model = load_whisper_model() if settings.WHISPER_BACKEND == "local" else None
            service = build_transcription_service(settings, whisper_model=model)
        app.state.transcription = service
        app.state.sessions = SessionStore(_session_factory(service), max_sessions=settings.MAX_SESSIONS)
        yield
        await app.state.sessions.close_all()

    app = FastAPI(
        title="Call Transcription",
        description="Chunked speech-to-text with speaker attribution and conversation progress",
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


async def _get_session(request: Request, session_id: str) -> CallSession:
    session = await request.app.state.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


def _parse_float(name: str, value: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be a number")
    if not math.isfinite(number):
        raise HTTPException(status_code=400, detail=f"{name} must be finite")
    return number


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


def _channel_role(channel_role: str | None, channel_strategy: str | None) -> SpeakerRole | None:
    if channel_role:
        try:
            return SpeakerRole(channel_role.strip().lower())
        except ValueError:
            raise HTTPException(status_code=400, detail="channelRole must be agent or customer")
    if channel_strategy:
        if channel_strategy not in CHANNEL_STRATEGY_ROLES:
            raise HTTPException(status_code=400, detail="channelStrategy must be mono-left, mono-right or stereo")
        return CHANNEL_STRATEGY_ROLES[channel_strategy]
    return None


def _preference(provider: str | None) -> ProviderPreference | None:
    if not provider:
        return None
    if provider not in PROVIDER_PREFERENCES:
        raise HTTPException(status_code=400, detail="provider must be primary, secondary or auto")
    return provider  # type: ignore[return-value]


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        providers = await request.app.state.transcription.health()
        return HealthResponse(status="ok", providers=providers)

    @app.post("/api/sessions", response_model=SessionCreated, response_model_by_alias=True)
    async def create_session(request: Request) -> SessionCreated:
        try:
            session = await request.app.state.sessions.create()
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return SessionCreated(session_id=session.session_id)

    @app.post("/api/sessions/{session_id}/chunks")
    async def upload_chunk(
        request: Request,
        session_id: str,
        audio: UploadFile | None = File(None),
        timestamp: str = Form(...),
        chunkIndex: str = Form(...),
        channelRole: str | None = Form(None),
        channelStrategy: str | None = Form(None),
        provider: str | None = Form(None),
    ):
        """
        Transcribe one chunk. The response carries the attributed speaker and
        the updated conversation state; empty chunks come back with isEmpty=true.
        """
        session = await _get_session(request, session_id)
        chunk = ChunkRequest(
            audio=await audio.read() if audio is not None else b"",
            timestamp=_parse_float("timestamp", timestamp),
            chunk_index=_parse_int("chunkIndex", chunkIndex),
            channel_role=_channel_role(channelRole, channelStrategy),
            preference=_preference(provider),
        )
        try:
            outcome = await session.process_chunk(chunk)
        except MalformedChunk as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SessionClosed as e:
            raise HTTPException(status_code=409, detail=str(e))

        if outcome.error_type == "SessionClosed":
            return JSONResponse(status_code=409, content={"error": "Session closed", "details": outcome.error})
        if outcome.failed:
            return JSONResponse(
                status_code=502,
                content={"error": "Transcription failed", "details": outcome.error, "chunkIndex": chunk.chunk_index},
            )
        return outcome.to_dict()

    @app.get("/api/sessions/{session_id}/transcript", response_model=TranscriptResponse, response_model_by_alias=True)
    async def get_transcript(request: Request, session_id: str) -> TranscriptResponse:
        session = await _get_session(request, session_id)
        return TranscriptResponse.model_validate(session.snapshot())

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(request: Request, session_id: str) -> dict:
        if not await request.app.state.sessions.remove(session_id):
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return {"sessionId": session_id, "closed": True}

    @app.post("/api/sessions/{session_id}/entries/{entry_id}/sentiment")
    async def annotate_sentiment(request: Request, session_id: str, entry_id: str, body: SentimentRequest) -> dict:
        session = await _get_session(request, session_id)
        entry = await session.annotate_sentiment(entry_id, body.sentiment)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Entry {entry_id} not found")
        return {"entry": entry.to_dict(), "state": session.state.to_dict()}

    @app.post(
        "/api/sessions/{session_id}/validate",
        response_model=ValidationResult,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def validate_profile(request: Request, session_id: str, body: ValidateRequest) -> ValidationResult:
        session = await _get_session(request, session_id)
        return validate_customer_profile(body.profile, session.assembler.tail(body.recent_messages))

    @app.post("/api/calls", response_model=TranscriptResponse, response_model_by_alias=True)
    async def transcribe_call(
        request: Request,
        audio: UploadFile = File(...),
        provider: str | None = Form(None),
    ) -> TranscriptResponse:
        """Whole recording: chunked and played through a fresh session, which is released afterwards."""
        data = await audio.read()
        if not data:
            raise HTTPException(status_code=400, detail="No audio provided")
        try:
            session = await request.app.state.sessions.create()
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        session.preference = _preference(provider) or session.preference
        try:
            await PlaybackSimulator(session, chunker=AudioChunker(), simulate_realtime=False).run(
                data, filename=audio.filename
            )
        except ValueError as e:
            await request.app.state.sessions.remove(session.session_id)
            raise HTTPException(status_code=400, detail=str(e))
        await request.app.state.sessions.remove(session.session_id)
        return TranscriptResponse.model_validate(session.snapshot())


app = create_app()
