"""Pydantic schemas for API request/response."""
from app.schemas.transcript import (
    ConversationStateOut,
    HealthResponse,
    SentimentRequest,
    SessionCreated,
    TranscriptEntryOut,
    TranscriptResponse,
)
from app.schemas.validation import (
    CustomerProfile,
    PartySize,
    TravelDates,
    ValidateRequest,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    "ConversationStateOut",
    "CustomerProfile",
    "HealthResponse",
    "PartySize",
    "SentimentRequest",
    "SessionCreated",
    "TranscriptEntryOut",
    "TranscriptResponse",
    "TravelDates",
    "ValidateRequest",
    "ValidationIssue",
    "ValidationResult",
]
