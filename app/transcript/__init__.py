"""Transcript handling: ordered assembly and conversation progress."""
from .assembler import AppendAction, AppendResult, TranscriptAssembler, TranscriptEntry
from .progress import ConversationProgressTracker, ConversationState, STAGES

__all__ = [
    "AppendAction",
    "AppendResult",
    "ConversationProgressTracker",
    "ConversationState",
    "STAGES",
    "TranscriptAssembler",
    "TranscriptEntry",
]
