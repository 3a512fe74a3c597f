"""
ConversationProgressTracker: conversation stage and health from the transcript.

Stage advances with speaker turns (maximal same-speaker runs), not with the
number of entries, and never moves backwards. Health is recomputed from the
whole transcript on every update.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

from app.diarization.models import SpeakerRole
from app.transcript.assembler import TranscriptEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    id: str
    label: str


STAGES: tuple[Stage, ...] = (
    Stage("greeting", "Initial Greeting"),
    Stage("needs-assessment", "Needs Assessment"),
    Stage("property-selection", "Property Selection"),
    Stage("pricing-quote", "Pricing & Quote"),
    Stage("closing", "Closing & Follow-up"),
)

# Turns needed to reach stage 1, 2, 3, 4
STAGE_TURN_THRESHOLDS: tuple[int, ...] = (2, 4, 6, 8)

DEFAULT_HEALTH_SCORE = 75
NEGATIVE_SENTIMENTS = frozenset({"negative", "concerned"})
CONFIDENCE_WEIGHT = 20
SENTIMENT_WEIGHT = 30
TALK_BALANCE_PENALTY = 15
MAX_AGENT_CUSTOMER_RATIO = 3.0
MIN_AGENT_CUSTOMER_RATIO = 0.3


def count_turns(entries: Sequence[TranscriptEntry]) -> int:
    turns = 0
    previous: SpeakerRole | None = None
    for entry in entries:
        if entry.speaker != previous:
            turns += 1
            previous = entry.speaker
    return turns


def stage_for_turns(turns: int) -> int:
    return sum(1 for threshold in STAGE_TURN_THRESHOLDS if turns >= threshold)


def compute_health(entries: Sequence[TranscriptEntry]) -> int:
    """
    100, minus up to 20 for low transcription confidence, up to 30 for the share
    of negative/concerned entries, and 15 when one side dominates the talk.
    Clamped to [0, 100]; an empty transcript scores 75.
    """
    if not entries:
        return DEFAULT_HEALTH_SCORE

    score = 100.0

    # unknown confidence counts as 0
    avg_confidence = sum(e.confidence or 0.0 for e in entries) / len(entries)
    score -= (1 - avg_confidence) * CONFIDENCE_WEIGHT

    negative = sum(1 for e in entries if (e.sentiment or "").lower() in NEGATIVE_SENTIMENTS)
    score -= negative / len(entries) * SENTIMENT_WEIGHT

    agent = sum(1 for e in entries if e.speaker == SpeakerRole.AGENT)
    customer = len(entries) - agent
    ratio = agent / customer if customer else 1.0
    if ratio > MAX_AGENT_CUSTOMER_RATIO or ratio < MIN_AGENT_CUSTOMER_RATIO:
        score -= TALK_BALANCE_PENALTY

    # half rounds up
    return math.floor(max(0.0, min(100.0, score)) + 0.5)


@dataclass(frozen=True)
class ConversationState:
    stage_index: int = 0
    health_score: int = DEFAULT_HEALTH_SCORE
    turn_count: int = 0

    @property
    def stage(self) -> Stage:
        return STAGES[self.stage_index]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stageIndex": self.stage_index,
            "stageId": self.stage.id,
            "stageLabel": self.stage.label,
            "healthScore": self.health_score,
            "turnCount": self.turn_count,
        }


class ConversationProgressTracker:
    """One per session. update() takes the full, ordered transcript."""

    def __init__(self) -> None:
        self._state = ConversationState()

    @property
    def state(self) -> ConversationState:
        return self._state

    def update(self, entries: Sequence[TranscriptEntry]) -> ConversationState:
        turns = count_turns(entries)
        stage_index = max(self._state.stage_index, stage_for_turns(turns))
        if stage_index != self._state.stage_index:
            logger.info("Conversation stage %s -> %s (%d turns)", self._state.stage.id, STAGES[stage_index].id, turns)
        self._state = ConversationState(stage_index=stage_index, health_score=compute_health(entries), turn_count=turns)
        return self._state
