"""
TranscriptAssembler: canonical, timestamp-ordered transcript for one session.

- Empty chunk text is dropped and changes nothing.
- Re-delivered (timestamp, text) pairs are ignored, even after they were merged.
- A chunk from the same speaker less than MERGE_WINDOW_SECONDS after the entry
  just before it is merged into that entry (text joined, confidence averaged).
- Chunks may finish transcription out of order: entries are inserted at their
  sorted position, never blindly appended. A late chunk can only merge into
  its timestamp predecessor, never into the entry after it.
"""
from __future__ import annotations

import bisect
import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from app.asr.base import TranscriptionResult, WordTimestamp
from app.diarization.models import SpeakerRole

logger = logging.getLogger(__name__)

DEFAULT_MERGE_WINDOW_SECONDS = 5.0


def format_timestamp(seconds: float) -> str:
    """MM:SS for display."""
    mins, secs = divmod(int(seconds), 60)
    return f"{mins:02d}:{secs:02d}"


@dataclass
class TranscriptEntry:
    """
    One transcript line. timestamp is the start time (seconds) of the first
    chunk it contains; text is rebuilt from its fragments in time order.
    """

    id: str
    timestamp: float
    text: str
    speaker: SpeakerRole
    confidence: float | None
    chunk_index: int
    is_final: bool = True
    words: list[WordTimestamp] = field(default_factory=list)
    sentiment: str | None = None
    fragments: list[tuple[float, str]] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "text": self.text,
            "speaker": self.speaker.value,
            "confidence": self.confidence,
            "chunkIndex": self.chunk_index,
            "isFinal": self.is_final,
            "sentiment": self.sentiment,
        }


class AppendAction(str, Enum):
    EMPTY = "empty"
    DUPLICATE = "duplicate"
    MERGED = "merged"
    INSERTED = "inserted"


@dataclass(frozen=True)
class AppendResult:
    action: AppendAction
    entry: TranscriptEntry | None
    snapshot: list[TranscriptEntry]


def _mean_confidence(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return (a + b) / 2


def _copy(entry: TranscriptEntry) -> TranscriptEntry:
    return replace(entry, words=list(entry.words), fragments=list(entry.fragments))


class TranscriptAssembler:
    """Owned by one session; callers serialize access (see CallSession)."""

    def __init__(self, merge_window: float = DEFAULT_MERGE_WINDOW_SECONDS) -> None:
        self._merge_window = merge_window
        self._entries: list[TranscriptEntry] = []
        self._timestamps: list[float] = []  # parallel to _entries, for bisect
        self._delivered: set[tuple[float, str]] = set()

    @property
    def entries(self) -> list[TranscriptEntry]:
        """Snapshot copies; mutating them does not touch the transcript."""
        return [_copy(e) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def is_duplicate(self, timestamp: float, text: str) -> bool:
        return (timestamp, (text or "").strip()) in self._delivered

    def append(
        self,
        result: TranscriptionResult,
        role: SpeakerRole,
        timestamp: float,
        chunk_index: int,
    ) -> AppendResult:
        text = (result.text or "").strip()
        if not text:
            return AppendResult(AppendAction.EMPTY, None, self.entries)

        key = (timestamp, text)
        if key in self._delivered:
            logger.debug("Duplicate chunk %d at %.2fs ignored", chunk_index, timestamp)
            return AppendResult(AppendAction.DUPLICATE, None, self.entries)
        self._delivered.add(key)

        index = bisect.bisect_right(self._timestamps, timestamp)
        if index < len(self._entries):
            logger.debug("Chunk %d at %.2fs arrived out of order; inserting at %d", chunk_index, timestamp, index)

        previous = self._entries[index - 1] if index else None
        if (
            previous is not None
            and previous.speaker == role
            and timestamp - previous.timestamp < self._merge_window
        ):
            bisect.insort(previous.fragments, (timestamp, text))
            previous.text = " ".join(fragment for _, fragment in previous.fragments)
            previous.confidence = _mean_confidence(previous.confidence, result.confidence)
            previous.words.extend(result.words or ())
            return AppendResult(AppendAction.MERGED, _copy(previous), self.entries)

        entry = TranscriptEntry(
            id=f"entry-{uuid.uuid4().hex[:12]}",
            timestamp=timestamp,
            text=text,
            speaker=role,
            confidence=result.confidence,
            chunk_index=chunk_index,
            words=list(result.words or ()),
            fragments=[(timestamp, text)],
        )
        self._entries.insert(index, entry)
        self._timestamps.insert(index, timestamp)
        return AppendResult(AppendAction.INSERTED, _copy(entry), self.entries)

    def annotate_sentiment(self, entry_id: str, sentiment: str | None) -> TranscriptEntry | None:
        """Attach an external sentiment label (e.g. from the suggestion agent). None if unknown id."""
        for entry in self._entries:
            if entry.id == entry_id:
                entry.sentiment = sentiment
                return _copy(entry)
        return None

    def tail(self, count: int) -> list[TranscriptEntry]:
        return self.entries[-count:] if count > 0 else []

    def to_plain_text(self) -> str:
        """[MM:SS] [Agent] text, one line per entry."""
        return "\n".join(
            f"[{format_timestamp(e.timestamp)}] [{e.speaker.value.capitalize()}] {e.text}" for e in self._entries
        )
