"""
CallSession: everything one uploaded call owns, from first chunk to teardown.

One session = one SpeakerRoleMap, one HeuristicSpeakerState, one transcript,
one ConversationState. Transcription calls run concurrently outside the lock;
attribution, assembly and the state update form one critical section under the
session's asyncio.Lock, so no update is lost and no merge is half-written.
After close(), results that are still in flight are abandoned untouched.

Results are applied in completion order, not chunk order. Transcript order
is unaffected (entries are inserted by timestamp), but the speaker map binds
ids in the order they are first applied, and the text heuristic reads its
state in that order too. With concurrent chunks (MAX_CONCURRENT_CHUNKS > 1)
and no channel or diarization hint, roles can therefore depend on provider
latency; set MAX_CONCURRENT_CHUNKS=1 when that matters.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any

from app.asr.base import TranscriptionResult, WordTimestamp
from app.asr.errors import MalformedChunk, TranscriptionError
from app.asr.service import ProviderPreference, TranscriptionService
from app.audio.vad import VADProcessor
from app.diarization.models import Attribution, SpeakerRole
from app.diarization.speaker_tracker import SpeakerAttributor
from app.transcript.assembler import DEFAULT_MERGE_WINDOW_SECONDS, AppendAction, TranscriptAssembler, TranscriptEntry
from app.transcript.progress import ConversationProgressTracker, ConversationState

logger = logging.getLogger(__name__)


class SessionClosed(RuntimeError):
    """Chunk submitted to a session that has already been torn down."""


@dataclass(frozen=True)
class ChunkRequest:
    """One uploaded chunk: raw audio, start time (seconds), zero-based position."""

    audio: bytes
    timestamp: float
    chunk_index: int
    channel_role: SpeakerRole | None = None
    preference: ProviderPreference | None = None

    def validate(self) -> None:
        if not self.audio:
            raise MalformedChunk("No audio provided")
        if not math.isfinite(self.timestamp) or self.timestamp < 0:
            raise MalformedChunk(f"Invalid timestamp: {self.timestamp}")
        if self.chunk_index < 0:
            raise MalformedChunk(f"Invalid chunk index: {self.chunk_index}")


@dataclass(frozen=True)
class ChunkOutcome:
    """What happened to one chunk. error is set when transcription failed or the session closed."""

    chunk_index: int
    timestamp: float
    state: ConversationState
    text: str = ""
    confidence: float | None = None
    attribution: Attribution | None = None
    action: AppendAction | None = None
    entry: TranscriptEntry | None = None
    words: tuple[WordTimestamp, ...] = ()
    provider: str = ""
    is_placeholder: bool = False
    error: str | None = None
    error_type: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.error is None and not self.text.strip()

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def speaker(self) -> SpeakerRole | None:
        return self.attribution.role if self.attribution else None

    def to_dict(self) -> dict[str, Any]:
        # Empty chunks keep the wire shape clients expect: agent, confidence 0
        payload: dict[str, Any] = {
            "timestamp": self.timestamp,
            "text": self.text,
            "speaker": (self.speaker or SpeakerRole.AGENT).value,
            "confidence": 0.0 if self.is_empty else self.confidence,
            "chunkIndex": self.chunk_index,
            "isEmpty": self.is_empty,
            "state": self.state.to_dict(),
        }
        if self.words:
            payload["words"] = [
                {"word": w.word, "start": w.start, "end": w.end, "confidence": w.confidence, "speaker": w.speaker_id}
                for w in self.words
            ]
        if self.attribution:
            payload["attribution"] = self.attribution.method.value
            payload["rawSpeaker"] = self.attribution.raw_speaker_id
        if self.action:
            payload["action"] = self.action.value
        if self.entry:
            payload["entryId"] = self.entry.id
        if self.provider:
            payload["provider"] = self.provider
        if self.is_placeholder:
            payload["isPlaceholder"] = True
        if self.error:
            payload["error"] = self.error
            payload["errorType"] = self.error_type
        return payload


@dataclass
class CallSession:
    session_id: str
    transcription: TranscriptionService
    preference: ProviderPreference = "auto"
    merge_window: float = DEFAULT_MERGE_WINDOW_SECONDS
    vad: VADProcessor | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.attributor = SpeakerAttributor()
        self.assembler = TranscriptAssembler(merge_window=self.merge_window)
        self.tracker = ConversationProgressTracker()
        self._lock = asyncio.Lock()
        self._closed = False
        self.failed_chunks: set[int] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> ConversationState:
        return self.tracker.state

    async def process_chunk(self, request: ChunkRequest) -> ChunkOutcome:
        """
        Transcribe, attribute and assemble one chunk. Raises MalformedChunk for a
        bad payload and SessionClosed after teardown; transcription failures are
        returned as a failed outcome and leave the session untouched.
        """
        request.validate()
        if self._closed:
            raise SessionClosed(f"Session {self.session_id} is closed")

        logger.info(
            "Session %s: processing chunk %d at %.2fs (%.2f KB)",
            self.session_id,
            request.chunk_index,
            request.timestamp,
            len(request.audio) / 1024,
        )

        if self.vad is not None and self.vad.has_speech(request.audio) is False:
            logger.debug("Session %s: chunk %d has no voiced frames, skipping STT", self.session_id, request.chunk_index)
            result = TranscriptionResult(text="", confidence=0.0, provider="vad")
        else:
            try:
                result = await self.transcription.transcribe(request.audio, request.preference or self.preference)
            except TranscriptionError as e:
                logger.error("Session %s: chunk %d failed: %s", self.session_id, request.chunk_index, e)
                self.failed_chunks.add(request.chunk_index)
                return ChunkOutcome(
                    chunk_index=request.chunk_index,
                    timestamp=request.timestamp,
                    state=self.state,
                    provider=e.provider or "",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        async with self._lock:
            if self._closed:
                logger.info("Session %s closed; abandoning chunk %d", self.session_id, request.chunk_index)
                return ChunkOutcome(
                    chunk_index=request.chunk_index,
                    timestamp=request.timestamp,
                    state=self.state,
                    error="Session closed before the chunk completed",
                    error_type="SessionClosed",
                )
            return self._apply(request, result)

    def _apply(self, request: ChunkRequest, result: TranscriptionResult) -> ChunkOutcome:
        base = dict(
            chunk_index=request.chunk_index,
            timestamp=request.timestamp,
            provider=result.provider,
            is_placeholder=result.is_placeholder,
        )
        text = (result.text or "").strip()
        if not text:
            logger.info("Session %s: skipping chunk %d - no speech detected", self.session_id, request.chunk_index)
            return ChunkOutcome(state=self.state, confidence=0.0, action=AppendAction.EMPTY, **base)
        if self.assembler.is_duplicate(request.timestamp, text):
            return ChunkOutcome(
                state=self.state, text=text, confidence=result.confidence, action=AppendAction.DUPLICATE, **base
            )

        attribution = self.attributor.attribute(
            text,
            request.chunk_index,
            raw_speaker_id=result.raw_speaker_id,
            channel_role=request.channel_role,
        )
        appended = self.assembler.append(result, attribution.role, request.timestamp, request.chunk_index)
        state = self.tracker.update(appended.snapshot)
        logger.debug(
            "Session %s: chunk %d -> %s via %s (%s); stage=%d health=%d",
            self.session_id,
            request.chunk_index,
            attribution.role.value,
            attribution.method.value,
            appended.action.value,
            state.stage_index,
            state.health_score,
        )
        return ChunkOutcome(
            state=state,
            text=text,
            confidence=result.confidence,
            attribution=attribution,
            action=appended.action,
            entry=appended.entry,
            words=result.words or (),
            **base,
        )

    async def annotate_sentiment(self, entry_id: str, sentiment: str | None) -> TranscriptEntry | None:
        async with self._lock:
            entry = self.assembler.annotate_sentiment(entry_id, sentiment)
            if entry is not None:
                self.tracker.update(self.assembler.entries)
            return entry

    async def close(self) -> None:
        """Teardown. Waits for any critical section in progress, then rejects further work."""
        async with self._lock:
            self._closed = True
        logger.info("Session %s closed with %d entries", self.session_id, len(self.assembler))

    def snapshot(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "closed": self._closed,
            "entries": [e.to_dict() for e in self.assembler.entries],
            "state": self.state.to_dict(),
            "speakerMap": {str(k): v for k, v in self.attributor.role_map.as_dict().items()},
            "failedChunks": sorted(self.failed_chunks),
        }
