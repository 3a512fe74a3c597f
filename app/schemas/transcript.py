"""Schemas for session and transcript responses. Wire format is camelCase."""
from __future__ import annotations

from pydantic import BaseModel, Field


class SessionCreated(BaseModel):
    session_id: str = Field(..., alias="sessionId", description="Generated on the backend; use for every chunk")

    class Config:
        populate_by_name = True


class ConversationStateOut(BaseModel):
    stage_index: int = Field(..., alias="stageIndex", ge=0, le=4)
    stage_id: str = Field(..., alias="stageId")
    stage_label: str = Field(..., alias="stageLabel")
    health_score: int = Field(..., alias="healthScore", ge=0, le=100)
    turn_count: int = Field(..., alias="turnCount", ge=0)

    class Config:
        populate_by_name = True


class TranscriptEntryOut(BaseModel):
    id: str
    timestamp: float = Field(..., description="Start of the first chunk in the entry (seconds)")
    text: str
    speaker: str = Field(..., description="agent | customer")
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    chunk_index: int = Field(..., alias="chunkIndex")
    is_final: bool = Field(True, alias="isFinal")
    sentiment: str | None = None

    class Config:
        populate_by_name = True


class TranscriptResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    closed: bool = False
    entries: list[TranscriptEntryOut]
    state: ConversationStateOut
    speaker_map: dict[str, str] = Field(default_factory=dict, alias="speakerMap")
    failed_chunks: list[int] = Field(
        default_factory=list, alias="failedChunks", description="Chunk indexes whose transcription failed"
    )

    class Config:
        populate_by_name = True


class SentimentRequest(BaseModel):
    """Sentiment label for one entry, supplied by the suggestion agent."""

    sentiment: str | None = Field(None, description="e.g. positive | neutral | negative | concerned")


class HealthResponse(BaseModel):
    status: str = "ok"
    providers: dict[str, bool] = Field(default_factory=dict, description="Provider name -> reachable")
